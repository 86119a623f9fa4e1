"""Shared pytest fixtures."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
import pytest

from attention_core.api.app import create_app
from attention_core.config.settings import FanoutSettings
from attention_core.container import get_container, reset_container
from attention_core.domain.models import TaskSnapshot
from attention_core.domain.protocols import SlackDelivery
from attention_core.parsers.event_parser import task_to_payload
from attention_core.repositories.attention_store import AttentionStore
from attention_core.repositories.database import Database
from attention_core.repositories.directory import ProjectDirectory
from attention_core.repositories.outbox import EventOutbox
from attention_core.repositories.schema import (
    CommentRow,
    ProjectMemberRow,
    ProjectRow,
    SlackIntegrationRow,
    TaskRow,
    UserRow,
)
from attention_core.repositories.tasks import TaskRepository
from attention_core.services.due_date_scanner import DueDateScanner
from attention_core.services.event_consumer import EventConsumer
from attention_core.services.fanout_service import FanoutService
from attention_core.services.inbox_service import InboxService
from attention_core.services.mention_service import MentionService


T0 = datetime(2025, 1, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSender:
    """Slack sender double that records payloads and returns scripted outcomes."""

    def __init__(self, *, ts_start: Optional[float] = None, fail: bool = False):
        self.sent: list[dict[str, Any]] = []
        self._ts = ts_start
        self._fail = fail

    async def send(self, config, payload):
        self.sent.append(payload)
        if self._fail:
            return SlackDelivery(
                ok=False, attempts=1, status_code=404, error="HTTP 404: no_service", permanent=True
            )
        if self._ts is None:
            return SlackDelivery(ok=True, attempts=1, status_code=200)
        self._ts += 1.0
        return SlackDelivery(ok=True, attempts=1, ts=f"{self._ts:.6f}", status_code=200)


class Seeder:
    """Writes the application-owned rows the core reads."""

    def __init__(self, database: Database):
        self._db = database

    async def user(self, user_id: str, handle: Optional[str] = None, name: Optional[str] = None):
        async with self._db.transaction() as session:
            session.add(
                UserRow(
                    id=user_id,
                    handle=handle or user_id,
                    display_name=name or (handle or user_id).title(),
                    email=f"{handle or user_id}@example.com",
                )
            )

    async def project(self, project_id: str, members: dict[str, str]):
        async with self._db.transaction() as session:
            session.add(ProjectRow(id=project_id, name=f"Project {project_id}"))
            await session.flush()
            for user_id, role in members.items():
                session.add(ProjectMemberRow(project_id=project_id, user_id=user_id, role=role))

    async def task(self, task: TaskSnapshot, **overrides: Any):
        values = dict(
            id=task.task_id,
            project_id=task.project_id,
            title=task.title,
            description=task.description,
            stage=task.stage,
            priority=task.priority.value,
            assignees=sorted(task.assignees),
            watchers=sorted(task.watchers),
            due_at=task.due_at,
            created_by=task.created_by,
            approval_status=task.approval_status.value,
            slack_thread_ts=task.slack_thread_ts,
            slack_message_ts=task.slack_message_ts,
            updated_at=task.updated_at or T0 - timedelta(days=1),
        )
        values.update(overrides)
        async with self._db.transaction() as session:
            session.add(TaskRow(**values))

    async def comment(self, comment_id: str, task_id: str, author_id: str, body: str):
        async with self._db.transaction() as session:
            session.add(CommentRow(id=comment_id, task_id=task_id, author_id=author_id, body=body))

    async def slack(self, project_id: str, **overrides: Any):
        values = dict(
            project_id=project_id,
            webhook_url="https://hooks.slack.com/services/T000/B000/XXXX",
            notify_on_task_create=True,
            notify_on_task_update=True,
            notify_on_task_delete=True,
            notify_on_task_move=True,
            notify_on_task_complete=True,
        )
        values.update(overrides)
        async with self._db.transaction() as session:
            session.add(SlackIntegrationRow(**values))


def make_task(
    task_id: str = "t1",
    project_id: str = "p1",
    *,
    title: str = "Write release notes",
    stage: str = "todo",
    assignees: tuple[str, ...] = (),
    **kwargs: Any,
) -> TaskSnapshot:
    return TaskSnapshot(
        task_id=task_id,
        project_id=project_id,
        title=title,
        stage=stage,
        assignees=frozenset(assignees),
        **kwargs,
    )


def envelope(
    event_type: str,
    payload: dict[str, Any],
    *,
    event_id: Optional[str] = None,
    occurred_at: datetime = T0,
    project_id: str = "p1",
    actor: Optional[str] = "alice",
) -> dict[str, Any]:
    data: dict[str, Any] = {
        "type": event_type,
        "occurred_at": occurred_at.isoformat(),
        "project_id": project_id,
        "actor_user_id": actor,
        "payload": payload,
    }
    if event_id is not None:
        data["event_id"] = event_id
    return data


def task_payload(task: TaskSnapshot) -> dict[str, Any]:
    return task_to_payload(task)


@dataclass
class Core:
    """Fully wired pipeline over one database."""

    database: Database
    store: AttentionStore
    directory: ProjectDirectory
    tasks: TaskRepository
    mentions: MentionService
    planner: FanoutService
    consumer: EventConsumer
    scanner: DueDateScanner
    inbox: InboxService
    outbox: EventOutbox
    clock: FakeClock
    settings: FanoutSettings


async def _no_sleep(delay: float) -> None:
    return None


def build_core(database: Database, clock: FakeClock, dispatcher=None) -> Core:
    settings = FanoutSettings()
    store = AttentionStore(database, clock=clock)
    directory = ProjectDirectory(database, ttl_seconds=30)
    tasks = TaskRepository(database)
    mentions = MentionService(store, directory)
    planner = FanoutService(store, directory, tasks, mentions, settings=settings)
    consumer = EventConsumer(
        database, store, planner, dispatcher=dispatcher, settings=settings, sleep=_no_sleep
    )
    return Core(
        database=database,
        store=store,
        directory=directory,
        tasks=tasks,
        mentions=mentions,
        planner=planner,
        consumer=consumer,
        scanner=DueDateScanner(tasks, consumer, settings=settings, clock=clock),
        inbox=InboxService(store),
        outbox=EventOutbox(database, clock=clock),
        clock=clock,
        settings=settings,
    )


@pytest.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'attention.db'}")
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def seed(database) -> Seeder:
    return Seeder(database)


@pytest.fixture
async def team(seed):
    """Project p1 with an owner, an admin and two editors."""
    await seed.user("alice", "alice", "Alice")
    await seed.user("bob", "bob", "Bob")
    await seed.user("carol", "carol", "Carol")
    await seed.user("dave", "dave", "Dave")
    await seed.user("erin", "erin", "Erin")
    await seed.project(
        "p1",
        {"alice": "owner", "bob": "member", "carol": "editor", "dave": "admin"},
    )
    return seed


@pytest.fixture
def core(database, clock) -> Core:
    return build_core(database, clock)


@pytest.fixture
def app_container(database, clock):
    """Global container wired to the test database and a recording Slack sender."""
    reset_container()
    container = get_container()
    container.configure_database(lambda: database)
    container.configure_slack_sender(RecordingSender)
    container.configure_clock(clock)
    yield container
    reset_container()


@pytest.fixture
async def client(app_container):
    """HTTP client for the API, running in the test's event loop."""
    transport = httpx.ASGITransport(app=create_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
