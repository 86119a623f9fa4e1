"""Slack Dispatcher: decides, formats, delivers and threads Slack messages."""

from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
import logging

from ..config.settings import FanoutSettings
from ..domain.events import (
    SLACK_RELEVANT_FIELDS,
    CommentCreated,
    DomainEvent,
    TaskApprovalDecided,
    TaskCreated,
    TaskDeleted,
    TaskStageChanged,
    TaskUpdated,
    event_task,
)
from ..domain.models import SlackConfig, TaskSnapshot
from ..domain.protocols import SlackDelivery, SlackSender
from ..repositories.attention_store import AttentionStore
from ..repositories.database import Database
from ..repositories.directory import ProjectDirectory
from ..repositories.tasks import TaskRepository, task_to_snapshot
from ..services.locks import KeyedLock
from .slack_formatter import SlackMessageFormatter

logger = logging.getLogger(__name__)


SENT = "sent"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of one dispatch. Never an exception."""

    status: str
    reason: Optional[str] = None
    ts: Optional[str] = None
    thread_ts: Optional[str] = None
    new_anchor: bool = False
    attempts: int = 0

    @property
    def sent(self) -> bool:
        return self.status == SENT


def ts_day(ts: Optional[str], zone: tzinfo):
    """Calendar day of a Slack timestamp in a zone, or None if unparseable."""
    if not ts:
        return None
    try:
        return datetime.fromtimestamp(float(ts), tz=zone).date()
    except (ValueError, OverflowError, OSError):
        return None


def should_thread(
    thread_ts: Optional[str],
    message_ts: Optional[str],
    event_time: datetime,
    zone: tzinfo,
) -> bool:
    """Reply in the existing thread only if its latest message is from the event's day."""
    if not thread_ts:
        return False
    last_day = ts_day(message_ts, zone)
    return last_day is not None and last_day == event_time.astimezone(zone).date()


def pseudo_ts(event_time: datetime, last_ts: Optional[str]) -> str:
    """Stand-in timestamp for webhook replies that carry no ``ts``.

    Derived from the event time and strictly greater than the previous
    message's timestamp.
    """
    candidate = event_time.timestamp()
    try:
        last = float(last_ts) if last_ts else None
    except ValueError:
        last = None
    if last is not None and candidate <= last:
        candidate = last + 0.000001
    return f"{candidate:.6f}"


class SlackDispatcher:
    """Delivers one Slack message per eligible event, threading per day.

    Messages for one task are serialised under a per-task lock that spans the
    send and the pointer update, so concurrent events never post two anchors.
    On PostgreSQL the task row lock is held for the same span.
    """

    def __init__(
        self,
        database: Database,
        directory: ProjectDirectory,
        tasks: TaskRepository,
        store: AttentionStore,
        sender: SlackSender,
        settings: Optional[FanoutSettings] = None,
    ):
        """Initialize dispatcher.

        Args:
            database: Database for pointer updates
            directory: Slack config and display name lookups
            tasks: Task row locks and pointer writes
            store: Activity log writes
            sender: Slack sender
            settings: Fanout settings
        """
        self._db = database
        self._directory = directory
        self._tasks = tasks
        self._store = store
        self._sender = sender
        self._settings = settings or FanoutSettings()
        self._formatter = SlackMessageFormatter(
            done_stage=self._settings.done_stage,
            excerpt_length=self._settings.comment_excerpt_length,
        )
        self._locks = KeyedLock()

    def flag_for(self, event: DomainEvent) -> Optional[str]:
        """Per-project flag governing the event, or None if it never goes to Slack."""
        if isinstance(event, TaskCreated):
            return "on_create"
        if isinstance(event, (TaskUpdated, CommentCreated)):
            return "on_update"
        if isinstance(event, TaskStageChanged):
            return "on_complete" if event.new_stage == self._settings.done_stage else "on_move"
        if isinstance(event, TaskDeleted):
            return "on_delete"
        if isinstance(event, TaskApprovalDecided):
            return "on_complete" if event.approved else "on_move"
        return None

    def zone_for(self, config: SlackConfig) -> tzinfo:
        name = config.timezone or self._settings.slack_timezone
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(f"Unknown timezone {name!r} for project {config.project_id}, using UTC")
            return timezone.utc

    async def dispatch(self, event: DomainEvent) -> DispatchResult:
        """Send the Slack message an event owes, if any.

        Never raises; failures are logged and recorded in the activity log.
        """
        try:
            return await self._dispatch(event)
        except Exception as e:
            logger.error(f"Slack dispatch for {event.type.value} {event.event_id} failed: {e}")
            return DispatchResult(status=FAILED, reason=str(e))

    async def _dispatch(self, event: DomainEvent) -> DispatchResult:
        flag = self.flag_for(event)
        task = event_task(event)
        if flag is None or task is None:
            return DispatchResult(status=SKIPPED, reason="no slack message for this event")

        if isinstance(event, TaskUpdated) and not (set(event.changes) & SLACK_RELEVANT_FIELDS):
            return DispatchResult(status=SKIPPED, reason="no slack-relevant changes")

        config = await self._directory.slack_config(event.project_id)
        if config is None:
            return DispatchResult(status=SKIPPED, reason="no slack integration")
        if not config.is_enabled(flag):
            return DispatchResult(status=SKIPPED, reason=f"{flag} disabled")

        async with self._locks.hold(task.task_id):
            if self._db.is_sqlite:
                # No row locks; the per-task lock alone serialises senders
                current = await self._tasks.get(task.task_id) or task
                result = await self._send(event, config, current)
                if result.sent:
                    async with self._db.transaction() as session:
                        await self._save_pointers(session, task.task_id, result)
            else:
                async with self._db.transaction() as session:
                    row = await self._tasks.lock(session, task.task_id)
                    current = task_to_snapshot(row) if row is not None else task
                    result = await self._send(event, config, current)
                    if result.sent:
                        await self._save_pointers(session, task.task_id, result)

        if result.status == FAILED:
            await self._record_failure(event, result)
        return result

    async def _save_pointers(self, session, task_id: str, result: DispatchResult) -> None:
        saved = await self._tasks.set_slack_pointers(
            session,
            task_id,
            message_ts=result.ts,
            thread_ts=result.thread_ts if result.new_anchor else None,
        )
        if not saved:
            logger.info(f"Task {task_id} is gone, Slack pointers not stored")

    async def _send(
        self, event: DomainEvent, config: SlackConfig, current: TaskSnapshot
    ) -> DispatchResult:
        zone = self.zone_for(config)
        threaded = should_thread(
            current.slack_thread_ts, current.slack_message_ts, event.occurred_at, zone
        )

        names = {}
        people = set(current.assignees)
        if isinstance(event, TaskUpdated):
            people |= event.old.assignees | event.new.assignees
        for user_id in people:
            names[user_id] = await self._directory.display_name(user_id)
        actor_name = await self._directory.display_name(event.actor_user_id)

        payload = self._formatter.build(
            event,
            actor_name=actor_name,
            names=names,
            new_thread=not threaded and bool(current.slack_thread_ts),
            zone=zone,
        )
        if payload is None:
            return DispatchResult(status=SKIPPED, reason="nothing to format")
        if threaded:
            payload["thread_ts"] = current.slack_thread_ts

        delivery: SlackDelivery = await self._sender.send(config, payload)
        if not delivery.ok:
            return DispatchResult(
                status=FAILED,
                reason=delivery.error,
                attempts=delivery.attempts,
                thread_ts=current.slack_thread_ts if threaded else None,
            )

        ts = delivery.ts or pseudo_ts(event.occurred_at, current.slack_message_ts)
        thread_ts = current.slack_thread_ts if threaded else ts
        logger.info(
            f"Slack message {ts} for task {current.task_id} "
            f"({'reply in ' + str(thread_ts) if threaded else 'new anchor'})"
        )
        return DispatchResult(
            status=SENT,
            ts=ts,
            thread_ts=thread_ts,
            new_anchor=not threaded,
            attempts=delivery.attempts,
        )

    async def _record_failure(self, event: DomainEvent, result: DispatchResult) -> None:
        try:
            async with self._db.transaction() as session:
                await self._store.record_activity(
                    session,
                    action="slack_failed",
                    entity_type="task",
                    entity_id=event.task_id,
                    user_id=event.actor_user_id,
                    project_id=event.project_id,
                    task_id=event.task_id,
                    new_values={
                        "event_id": event.event_id,
                        "event_type": event.type.value,
                        "error": result.reason,
                        "attempts": result.attempts,
                    },
                )
        except Exception as e:
            logger.error(f"Could not record slack failure for {event.event_id}: {e}")
