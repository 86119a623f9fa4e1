"""Dependency injection container."""

from dataclasses import dataclass, field
from typing import TypeVar, Generic, Callable, Optional, Any

import httpx

from attention_core.domain.protocols import Clock, SlackSender
from attention_core.repositories.database import Database


T = TypeVar("T")


class Provider(Generic[T]):
    """Lazy provider that creates instance on first access."""

    def __init__(self, factory: Callable[[], T]) -> None:
        self._factory = factory
        self._instance: Optional[T] = None

    def get(self) -> T:
        """Get the instance, creating it if necessary."""
        if self._instance is None:
            self._instance = self._factory()
        return self._instance

    def reset(self) -> None:
        """Reset the instance (for testing)."""
        self._instance = None

    def override(self, instance: T) -> None:
        """Override with a specific instance (for testing)."""
        self._instance = instance


@dataclass
class Container:
    """Dependency injection container.

    Services are singletons: the consumer's health flag, the keyed locks and
    the directory caches must be shared by every caller in the process.
    """

    _database: Optional[Provider[Database]] = None
    _http_client: Optional[Provider[httpx.AsyncClient]] = None
    _slack_sender: Optional[Provider[SlackSender]] = None
    _clock: Optional[Clock] = None

    _services: dict[str, Provider[Any]] = field(default_factory=dict)

    # Settings cache
    _settings: Optional[Any] = None

    def _service(self, name: str, factory: Callable[[], T]) -> T:
        provider = self._services.get(name)
        if provider is None:
            provider = self._services[name] = Provider(factory)
        return provider.get()

    def override(self, name: str, instance: Any) -> "Container":
        """Replace one service by name (for testing)."""
        self._services.setdefault(name, Provider(lambda: instance)).override(instance)
        return self

    @property
    def settings(self) -> Any:
        """Get application settings."""
        if self._settings is None:
            from attention_core.config.settings import get_settings

            self._settings = get_settings()
        return self._settings

    @property
    def clock(self) -> Clock:
        if self._clock is None:
            from attention_core.repositories.schema import utcnow

            return utcnow
        return self._clock

    @property
    def database(self) -> Database:
        """Get the database, built from settings unless configured."""
        if self._database is None:
            db_settings = self.settings.database
            self._database = Provider(
                lambda: Database(db_settings.url, echo=db_settings.echo)
            )
        return self._database.get()

    @property
    def http_client(self) -> Optional[httpx.AsyncClient]:
        """Shared HTTP client for Slack, if one was configured."""
        if self._http_client is None:
            return None
        return self._http_client.get()

    @property
    def attention_store(self) -> Any:
        from attention_core.repositories.attention_store import AttentionStore

        return self._service(
            "attention_store", lambda: AttentionStore(self.database, clock=self.clock)
        )

    @property
    def task_repository(self) -> Any:
        from attention_core.repositories.tasks import TaskRepository

        return self._service("task_repository", lambda: TaskRepository(self.database))

    @property
    def directory(self) -> Any:
        from attention_core.repositories.directory import ProjectDirectory

        fanout = self.settings.fanout
        return self._service(
            "directory",
            lambda: ProjectDirectory(
                self.database,
                ttl_seconds=fanout.membership_cache_ttl.total_seconds(),
                max_entries=fanout.cache_max_entries,
            ),
        )

    @property
    def outbox(self) -> Any:
        from attention_core.repositories.outbox import EventOutbox

        return self._service("outbox", lambda: EventOutbox(self.database, clock=self.clock))

    @property
    def mention_service(self) -> Any:
        from attention_core.services.mention_service import MentionService

        fanout = self.settings.fanout
        return self._service(
            "mention_service",
            lambda: MentionService(
                self.attention_store,
                self.directory,
                context_length=fanout.comment_excerpt_length,
            ),
        )

    @property
    def fanout_service(self) -> Any:
        from attention_core.services.fanout_service import FanoutService

        return self._service(
            "fanout_service",
            lambda: FanoutService(
                self.attention_store,
                self.directory,
                self.task_repository,
                self.mention_service,
                settings=self.settings.fanout,
            ),
        )

    @property
    def slack_sender(self) -> SlackSender:
        """Get the Slack sender, built from settings unless configured."""
        if self._slack_sender is None:
            from attention_core.notifications.slack_sender import SlackWebhookSender

            fanout = self.settings.fanout
            self._slack_sender = Provider(
                lambda: SlackWebhookSender(
                    http_client=self.http_client,
                    attempts=fanout.slack_retry_attempts,
                    per_attempt_timeout=fanout.slack_per_attempt_timeout.total_seconds(),
                    overall_budget=fanout.slack_overall_budget.total_seconds(),
                    backoff_base=fanout.slack_backoff_base.total_seconds(),
                    backoff_factor=fanout.slack_backoff_factor,
                )
            )
        return self._slack_sender.get()

    @property
    def slack_dispatcher(self) -> Any:
        from attention_core.notifications.slack_dispatcher import SlackDispatcher

        return self._service(
            "slack_dispatcher",
            lambda: SlackDispatcher(
                self.database,
                self.directory,
                self.task_repository,
                self.attention_store,
                self.slack_sender,
                settings=self.settings.fanout,
            ),
        )

    @property
    def event_consumer(self) -> Any:
        from attention_core.services.event_consumer import EventConsumer

        return self._service(
            "event_consumer",
            lambda: EventConsumer(
                self.database,
                self.attention_store,
                self.fanout_service,
                dispatcher=self.slack_dispatcher,
                settings=self.settings.fanout,
            ),
        )

    @property
    def due_date_scanner(self) -> Any:
        from attention_core.services.due_date_scanner import DueDateScanner

        return self._service(
            "due_date_scanner",
            lambda: DueDateScanner(
                self.task_repository,
                self.event_consumer,
                settings=self.settings.fanout,
                clock=self.clock,
            ),
        )

    @property
    def inbox_service(self) -> Any:
        from attention_core.services.inbox_service import InboxService

        return self._service("inbox_service", lambda: InboxService(self.attention_store))

    def configure_database(self, factory: Callable[[], Database]) -> "Container":
        """Configure the database."""
        self._database = Provider(factory)
        return self

    def configure_http_client(
        self, factory: Callable[[], httpx.AsyncClient]
    ) -> "Container":
        """Configure the HTTP client used for Slack."""
        self._http_client = Provider(factory)
        return self

    def configure_slack_sender(self, factory: Callable[[], SlackSender]) -> "Container":
        """Configure the Slack sender."""
        self._slack_sender = Provider(factory)
        return self

    def configure_clock(self, clock: Clock) -> "Container":
        self._clock = clock
        return self

    def configure_settings(self, settings: Any) -> "Container":
        self._settings = settings
        return self

    async def aclose(self) -> None:
        """Close the HTTP client and dispose the engine."""
        if self._http_client is not None:
            await self._http_client.get().aclose()
        if self._database is not None:
            await self._database.get().dispose()

    def reset(self) -> None:
        """Reset all providers (for testing)."""
        for provider in (self._database, self._http_client, self._slack_sender):
            if provider:
                provider.reset()
        for provider in self._services.values():
            provider.reset()
        self._services.clear()
        self._settings = None
        self._clock = None


# Global container instance
container = Container()


def get_container() -> Container:
    """Get the global container instance."""
    return container


def reset_container() -> None:
    """Reset the global container (for testing)."""
    global container
    container.reset()
    container = Container()
