"""Event consumer: one event at a time through planner and Slack dispatcher."""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional
import asyncio
import logging
import random

from ..config.settings import FanoutSettings
from ..domain.errors import (
    BadInputError,
    FatalError,
    IntegrityViolationError,
    TransientError,
    classify_store_error,
)
from ..domain.events import DomainEvent, DueThresholdCrossed
from ..parsers.event_parser import EventParser
from ..repositories.attention_store import AttentionStore
from ..repositories.database import Database
from .fanout_service import FanoutResult, FanoutService
from .locks import KeyedLock

if TYPE_CHECKING:
    from ..notifications.slack_dispatcher import DispatchResult, SlackDispatcher

logger = logging.getLogger(__name__)


BACKOFF_BASE = 0.05
BACKOFF_MAX = 1.0


class ProcessStatus(Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


@dataclass
class ProcessResult:
    """Acknowledgement returned to the event source."""

    status: ProcessStatus
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    fanout: Optional[FanoutResult] = None
    slack: Optional["DispatchResult"] = None
    error: Optional[str] = None

    @property
    def rejected(self) -> bool:
        return self.status is ProcessStatus.REJECTED

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": self.status.value,
            "event_id": self.event_id,
            "event_type": self.event_type,
        }
        if self.fanout is not None:
            data["created"] = self.fanout.created
            data["touched"] = self.fanout.touched
            data["dismissed"] = self.fanout.dismissed
            data["recipients"] = sorted(self.fanout.recipients)
        if self.slack is not None:
            data["slack"] = self.slack.status
        if self.error:
            data["error"] = self.error
        return data


class EventConsumer:
    """Runs each event through the planner in its own transaction.

    Events for the same task are serialised; after commit the Slack
    dispatcher is called best-effort.
    """

    def __init__(
        self,
        database: Database,
        store: AttentionStore,
        planner: FanoutService,
        dispatcher: Optional["SlackDispatcher"] = None,
        parser: Optional[EventParser] = None,
        settings: Optional[FanoutSettings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize consumer.

        Args:
            database: Database providing transactions
            store: Attention store for claims and rejections
            planner: Fanout planner
            dispatcher: Slack dispatcher, or None to skip Slack
            parser: Envelope parser
            settings: Fanout settings
            sleep: Awaitable sleep, replaceable in tests
        """
        self._db = database
        self._store = store
        self._planner = planner
        self._dispatcher = dispatcher
        self._parser = parser or EventParser()
        self._settings = settings or FanoutSettings()
        self._sleep = sleep
        self._locks = KeyedLock()
        self._healthy = True

    @property
    def healthy(self) -> bool:
        return self._healthy

    def mark_healthy(self) -> None:
        """Accept events again after an operator fixed the store."""
        self._healthy = True

    async def process_raw(self, raw: Any) -> ProcessResult:
        """Parse an envelope and process it.

        Malformed envelopes are recorded and acknowledged as rejected.
        """
        self._ensure_healthy()
        try:
            event = self._parser.parse(raw)
        except BadInputError as e:
            envelope = raw if isinstance(raw, dict) else {}
            await self._reject(
                e,
                event_id=_text(envelope.get("event_id")),
                event_type=_text(envelope.get("type")),
                project_id=_text(envelope.get("project_id")),
                task_id=_text(envelope.get("task_id")),
                actor=_text(envelope.get("actor_user_id")),
            )
            return ProcessResult(
                status=ProcessStatus.REJECTED,
                event_id=_text(envelope.get("event_id")),
                event_type=_text(envelope.get("type")),
                error=str(e),
            )
        return await self.process(event)

    async def process(self, event: DomainEvent) -> ProcessResult:
        """Plan one event and hand it to the Slack dispatcher.

        Returns:
            ProcessResult; duplicates and rejected events are acknowledged

        Raises:
            TransientError: If retries are exhausted
            IntegrityViolationError: On a repeated unexpected constraint violation
            FatalError: If the store is unreachable
        """
        self._ensure_healthy()

        async with self._locks.hold(event.task_id or event.event_id):
            try:
                fanout = await self._plan_with_retries(event)
            except BadInputError as e:
                await self._reject(
                    e,
                    event_id=event.event_id,
                    event_type=event.type.value,
                    project_id=event.project_id,
                    task_id=event.task_id,
                    actor=event.actor_user_id,
                )
                return ProcessResult(
                    status=ProcessStatus.REJECTED,
                    event_id=event.event_id,
                    event_type=event.type.value,
                    error=str(e),
                )

            if fanout is None:
                logger.info(f"Event {event.event_id} already processed, skipping")
                return ProcessResult(
                    status=ProcessStatus.DUPLICATE,
                    event_id=event.event_id,
                    event_type=event.type.value,
                )

            slack = None
            if self._dispatcher is not None:
                slack = await self._dispatcher.dispatch(event)

        return ProcessResult(
            status=ProcessStatus.PROCESSED,
            event_id=event.event_id,
            event_type=event.type.value,
            fanout=fanout,
            slack=slack,
        )

    def _ensure_healthy(self) -> None:
        if not self._healthy:
            raise FatalError("Consumer is unhealthy and refuses events")

    def backoff_delay(self, attempt: int) -> float:
        """Jittered delay before retry number ``attempt`` (1-based)."""
        nominal = min(BACKOFF_BASE * (2 ** (attempt - 1)), BACKOFF_MAX)
        return nominal * (0.5 + random.random() / 2)

    async def _plan_with_retries(self, event: DomainEvent) -> Optional[FanoutResult]:
        deadline = self._settings.planner_txn_deadline.total_seconds()
        retries = self._settings.planner_transient_retries
        attempt = 0
        integrity_retried = False

        while True:
            try:
                return await asyncio.wait_for(self._plan_once(event), timeout=deadline)
            except BadInputError:
                raise
            except Exception as e:
                error = classify_store_error(e)

                if isinstance(error, FatalError):
                    self._healthy = False
                    logger.error(f"Store unreachable while planning {event.event_id}: {error}")
                    raise error from e

                if isinstance(error, IntegrityViolationError):
                    if integrity_retried:
                        logger.error(f"Integrity violation planning {event.event_id}: {error}")
                        raise error from e
                    integrity_retried = True
                    logger.warning(f"Integrity violation planning {event.event_id}, retrying once")
                    continue

                if not isinstance(error, TransientError):
                    raise error from e

                if attempt >= retries:
                    logger.error(
                        f"Giving up on {event.event_id} after {attempt + 1} attempts: {error}"
                    )
                    raise TransientError(
                        f"Event {event.event_id} failed after {attempt + 1} attempts: {error}"
                    ) from e

                attempt += 1
                delay = self.backoff_delay(attempt)
                logger.warning(
                    f"Transient failure planning {event.event_id} ({error}), "
                    f"retry {attempt}/{retries} in {delay:.2f}s"
                )
                await self._sleep(delay)

    async def _plan_once(self, event: DomainEvent) -> Optional[FanoutResult]:
        async with self._db.transaction() as session:
            # Due events are idempotent through their dedup keys and are re-emitted every tick
            if not isinstance(event, DueThresholdCrossed):
                claimed = await self._store.claim_event(
                    session, event.event_id, event.type.value, event.task_id
                )
                if not claimed:
                    return None
            return await self._planner.plan(session, event)

    async def _reject(
        self,
        error: BadInputError,
        *,
        event_id: Optional[str],
        event_type: Optional[str],
        project_id: Optional[str],
        task_id: Optional[str],
        actor: Optional[str],
    ) -> None:
        logger.warning(f"Rejected event {event_id} ({event_type}): {error}")
        try:
            async with self._db.transaction() as session:
                await self._store.record_activity(
                    session,
                    action="event_rejected",
                    entity_type="event",
                    entity_id=event_id,
                    user_id=actor,
                    project_id=project_id,
                    task_id=task_id,
                    new_values={
                        "event_type": event_type,
                        "error": str(error),
                        "field": error.field,
                    },
                )
        except Exception as e:
            classified = classify_store_error(e)
            if isinstance(classified, FatalError):
                self._healthy = False
                logger.error(f"Store unreachable while rejecting {event_id}: {classified}")
                raise classified from e
            logger.error(f"Could not record rejection of {event_id}: {classified}")


def _text(value: Any, limit: int = 80) -> Optional[str]:
    if value is None:
        return None
    return str(value)[:limit]
