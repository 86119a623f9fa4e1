"""Fanout Planner: turns one domain event into attention items and notifications."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ..config.settings import FanoutSettings
from ..domain.events import (
    CommentCreated,
    CommentUpdated,
    DomainEvent,
    DueThresholdCrossed,
    MentionCreated,
    TaskApprovalDecided,
    TaskCreated,
    TaskDeleted,
    TaskStageChanged,
    TaskUpdated,
)
from ..domain.models import (
    AttentionKind,
    AttentionPriority,
    AttentionRefs,
    DismissReason,
    DueThreshold,
    MentionRecord,
    TaskPriority,
    TaskSnapshot,
    UpsertOutcome,
    UpsertStatus,
)
from ..repositories.attention_store import AttentionStore
from ..repositories.directory import ProjectDirectory
from ..repositories.tasks import TaskRepository, task_to_snapshot
from .mention_service import MentionService

logger = logging.getLogger(__name__)


COMMENT_PREVIEW_LENGTH = 100


def dedup_key(kind: AttentionKind, task_id: str, qualifier: Optional[str] = None) -> str:
    """Deterministic key collapsing repeated signals for one recipient.

    ``qualifier`` is the recipient for per-user kinds, the stage for
    status changes, or the comment/task id for mentions (which then take the
    comment or task id in place of ``task_id``).
    """
    if qualifier is None:
        return f"{kind.value}:{task_id}"
    return f"{kind.value}:{task_id}:{qualifier}"


@dataclass
class PlannedItem:
    """One attention item to upsert for one recipient."""

    user_id: str
    kind: AttentionKind
    dedup_key: str
    priority: AttentionPriority
    title: str
    body: Optional[str]
    refs: AttentionRefs
    elevate_unread: bool = False


@dataclass
class FanoutResult:
    """What one event did to the store."""

    event_id: str
    event_type: str
    created: int = 0
    touched: int = 0
    elevated: int = 0
    dismissed: int = 0
    notifications: int = 0
    recipients: set[str] = field(default_factory=set)
    mentions: list[MentionRecord] = field(default_factory=list)
    item_ids: list[str] = field(default_factory=list)

    def record(self, user_id: str, outcome: UpsertOutcome) -> None:
        self.recipients.add(user_id)
        self.item_ids.append(outcome.item_id)
        if outcome.status is UpsertStatus.CREATED:
            self.created += 1
        else:
            self.touched += 1
        if outcome.elevated:
            self.elevated += 1

    def merge(self, other: "FanoutResult") -> None:
        self.created += other.created
        self.touched += other.touched
        self.elevated += other.elevated
        self.dismissed += other.dismissed
        self.notifications += other.notifications
        self.recipients |= other.recipients
        self.mentions.extend(other.mentions)
        self.item_ids.extend(other.item_ids)


class FanoutService:
    """Computes recipients, kinds, dedup keys and priorities for events.

    Every method works inside the caller's transaction; the consumer commits
    or rolls back the whole event.
    """

    def __init__(
        self,
        store: AttentionStore,
        directory: ProjectDirectory,
        tasks: TaskRepository,
        mention_service: MentionService,
        settings: Optional[FanoutSettings] = None,
    ) -> None:
        """Initialize planner.

        Args:
            store: Attention store
            directory: Membership lookups
            tasks: Task access and row locks
            mention_service: Mention extractor run inline for bodies
            settings: Fanout settings
        """
        self._store = store
        self._directory = directory
        self._tasks = tasks
        self._mentions = mention_service
        self._settings = settings or FanoutSettings()
        self._terminal_stages = self._settings.get_terminal_stages()

    @property
    def done_stage(self) -> str:
        return self._settings.done_stage

    async def plan(self, session: AsyncSession, event: DomainEvent) -> FanoutResult:
        """Apply one event.

        Args:
            session: Session of the per-event transaction
            event: Typed domain event

        Returns:
            FanoutResult with counts and recipients

        Raises:
            BadInputError: If the event references invalid data
        """
        row = None
        if event.task_id:
            row = await self._tasks.lock(session, event.task_id)

        result = FanoutResult(event_id=event.event_id, event_type=event.type.value)

        if isinstance(event, TaskCreated):
            await self._on_task_created(session, event, result)
        elif isinstance(event, TaskUpdated):
            await self._on_task_updated(session, event, result)
        elif isinstance(event, TaskStageChanged):
            await self._on_stage_changed(
                session, event, event.task, event.old_stage, event.new_stage, result
            )
        elif isinstance(event, TaskDeleted):
            result.dismissed += await self._store.resolve_task(
                session, event.task.task_id, now=event.occurred_at
            )
        elif isinstance(event, TaskApprovalDecided):
            await self._on_approval_decided(session, event, result)
        elif isinstance(event, CommentCreated):
            await self._on_comment_created(session, event, result)
        elif isinstance(event, CommentUpdated):
            await self._fan_out_mentions(session, event, result)
        elif isinstance(event, MentionCreated):
            mention, _created = await self._mentions.record(session, event.mention)
            await self._on_mention(session, event, mention, result)
        elif isinstance(event, DueThresholdCrossed):
            current = task_to_snapshot(row) if row is not None else event.task
            await self._on_due_threshold(session, event, current, result)

        if not isinstance(event, DueThresholdCrossed) or result.created:
            await self._record_activity(session, event, result)

        logger.debug(
            f"Planned {event.type.value} {event.event_id}: {result.created} created, "
            f"{result.touched} touched, {result.dismissed} dismissed"
        )
        return result

    # Event handlers

    async def _on_task_created(
        self, session: AsyncSession, event: TaskCreated, result: FanoutResult
    ) -> None:
        task = event.task
        actor_name = await self._directory.display_name(event.actor_user_id, session)
        for user_id in self._recipients(task.assignees, event.actor_user_id):
            await self._deliver(session, event, result, self._assignment(task, user_id, actor_name, event))
        await self._fan_out_mentions(session, event, result)

    async def _on_task_updated(
        self, session: AsyncSession, event: TaskUpdated, result: FanoutResult
    ) -> None:
        task = event.new
        actor = event.actor_user_id

        if "assignees" in event.changes:
            actor_name = await self._directory.display_name(actor, session)
            for user_id in sorted(event.added_assignees):
                result.dismissed += await self._store.dismiss_by_dedup(
                    session,
                    user_id,
                    dedup_key(AttentionKind.UNASSIGNMENT, task.task_id, user_id),
                    now=event.occurred_at,
                )
                if user_id != actor:
                    await self._deliver(
                        session, event, result, self._assignment(task, user_id, actor_name, event)
                    )
            for user_id in sorted(event.removed_assignees):
                result.dismissed += await self._store.dismiss_by_dedup(
                    session,
                    user_id,
                    dedup_key(AttentionKind.ASSIGNMENT, task.task_id, user_id),
                    now=event.occurred_at,
                )
                if user_id != actor:
                    await self._deliver(
                        session,
                        event,
                        result,
                        PlannedItem(
                            user_id=user_id,
                            kind=AttentionKind.UNASSIGNMENT,
                            dedup_key=dedup_key(AttentionKind.UNASSIGNMENT, task.task_id, user_id),
                            priority=self._priority(AttentionPriority.NORMAL, task),
                            title=f"Task unassigned: {task.title}",
                            body="You were unassigned from this task",
                            refs=self._refs(event, task),
                        ),
                    )

        if "due_at" in event.changes:
            await self._resolve_due_change(session, task, event.occurred_at, result)

        if "stage" in event.changes:
            await self._on_stage_changed(
                session, event, task, event.old.stage, event.new.stage, result
            )

        await self._fan_out_mentions(session, event, result)

    async def _on_stage_changed(
        self,
        session: AsyncSession,
        event: DomainEvent,
        task: TaskSnapshot,
        old_stage: str,
        new_stage: str,
        result: FanoutResult,
    ) -> None:
        actor = event.actor_user_id
        actor_name = await self._directory.display_name(actor, session)

        for user_id in self._recipients(task.assignees | task.watchers, actor):
            await self._deliver(
                session,
                event,
                result,
                PlannedItem(
                    user_id=user_id,
                    kind=AttentionKind.STATUS_CHANGE,
                    dedup_key=dedup_key(AttentionKind.STATUS_CHANGE, task.task_id, new_stage),
                    priority=self._priority(AttentionPriority.NORMAL, task),
                    title=f"Status changed: {task.title}",
                    body=f"{actor_name} changed status to {new_stage}",
                    refs=self._refs(event, task, trigger_key=event.event_id),
                    elevate_unread=True,
                ),
            )

        approval_key = dedup_key(AttentionKind.APPROVAL_PENDING, task.task_id)
        if new_stage == self.done_stage and old_stage != self.done_stage:
            approvers = await self._directory.approvers(task.project_id, session)
            for user_id in self._recipients(approvers, actor):
                await self._deliver(
                    session,
                    event,
                    result,
                    PlannedItem(
                        user_id=user_id,
                        kind=AttentionKind.APPROVAL_PENDING,
                        dedup_key=approval_key,
                        priority=self._priority(AttentionPriority.HIGH, task),
                        title=f"Pending approval: {task.title}",
                        body=f"{actor_name} moved this task to {new_stage}",
                        refs=self._refs(event, task),
                    ),
                )
        elif old_stage == self.done_stage and new_stage != self.done_stage:
            result.dismissed += await self._store.resolve_dedup(
                session, approval_key, now=event.occurred_at
            )

        if new_stage in self._terminal_stages:
            result.dismissed += await self._resolve_due(session, task.task_id, event.occurred_at)

    async def _on_approval_decided(
        self, session: AsyncSession, event: TaskApprovalDecided, result: FanoutResult
    ) -> None:
        task = event.task
        result.dismissed += await self._store.resolve_dedup(
            session,
            dedup_key(AttentionKind.APPROVAL_PENDING, task.task_id),
            now=event.occurred_at,
        )

        decision = "approved" if event.approved else "rejected"
        actor_name = await self._directory.display_name(event.actor_user_id, session)
        body = f"{actor_name} {decision} this task"
        if event.reason:
            body = f"{body}: {event.reason}"
        recipients = set(task.assignees)
        if task.created_by:
            recipients.add(task.created_by)
        for user_id in self._recipients(recipients, event.actor_user_id):
            await self._deliver(
                session,
                event,
                result,
                PlannedItem(
                    user_id=user_id,
                    kind=AttentionKind.STATUS_CHANGE,
                    dedup_key=dedup_key(AttentionKind.STATUS_CHANGE, task.task_id, decision),
                    priority=self._priority(AttentionPriority.NORMAL, task),
                    title=f"Task {decision}: {task.title}",
                    body=body,
                    refs=self._refs(event, task, trigger_key=event.event_id),
                    elevate_unread=True,
                ),
            )

    async def _on_comment_created(
        self, session: AsyncSession, event: CommentCreated, result: FanoutResult
    ) -> None:
        task = event.task
        comment = event.comment
        actor = event.actor_user_id or comment.author_id

        recipients = set(task.assignees)
        if task.created_by:
            recipients.add(task.created_by)
        recipients |= await self._tasks.thread_participants(
            session, task.task_id, exclude_comment_id=comment.comment_id
        )
        recipients.discard(comment.author_id)

        actor_name = await self._directory.display_name(actor, session)
        preview = " ".join(comment.body.split())[:COMMENT_PREVIEW_LENGTH]
        for user_id in self._recipients(recipients, actor):
            await self._deliver(
                session,
                event,
                result,
                PlannedItem(
                    user_id=user_id,
                    kind=AttentionKind.COMMENT,
                    dedup_key=dedup_key(AttentionKind.COMMENT, task.task_id),
                    priority=self._priority(AttentionPriority.NORMAL, task),
                    title=f"New comment on: {task.title}",
                    body=f"{actor_name}: {preview}",
                    refs=self._refs(
                        event,
                        task,
                        comment_id=comment.comment_id,
                        trigger_key=comment.comment_id,
                        actor=actor,
                    ),
                    elevate_unread=True,
                ),
            )

        await self._fan_out_mentions(session, event, result)

    async def _fan_out_mentions(
        self, session: AsyncSession, event: DomainEvent, result: FanoutResult
    ) -> None:
        for mention_event in await self._mentions.mention_events(session, event):
            await self._on_mention(session, mention_event, mention_event.mention, result)

    async def _on_mention(
        self,
        session: AsyncSession,
        event: MentionCreated,
        mention: MentionRecord,
        result: FanoutResult,
    ) -> None:
        result.mentions.append(mention)
        user_id = mention.mentioned_user_id
        if user_id in (mention.mentioner_user_id, event.actor_user_id):
            return

        task = event.task
        if task is None and mention.task_id:
            task = await self._tasks.get(mention.task_id, session)

        mentioner = await self._directory.display_name(mention.mentioner_user_id, session)
        where = task.title if task else "a comment"
        await self._deliver(
            session,
            event,
            result,
            PlannedItem(
                user_id=user_id,
                kind=AttentionKind.MENTION,
                dedup_key=dedup_key(AttentionKind.MENTION, mention.subject_id, user_id),
                priority=self._priority(AttentionPriority.HIGH, task),
                title=f"{mentioner} mentioned you in: {where}",
                body=mention.context,
                refs=AttentionRefs(
                    task_id=mention.task_id,
                    comment_id=mention.comment_id,
                    mention_id=mention.mention_id,
                    project_id=mention.project_id,
                    actor_user_id=mention.mentioner_user_id,
                    trigger_key=mention.mention_id,
                ),
            ),
        )

    async def _on_due_threshold(
        self,
        session: AsyncSession,
        event: DueThresholdCrossed,
        task: TaskSnapshot,
        result: FanoutResult,
    ) -> None:
        """Surface due_soon/overdue items.

        ``task`` is the current row, not the snapshot the event was built
        from, so a replayed event cannot revive a reminder for a task that
        has since been finished, rescheduled or undated.
        """
        now = event.occurred_at
        if task.due_at is None or task.is_terminal(self._terminal_stages):
            return

        if event.threshold is DueThreshold.OVERDUE:
            if not task.is_overdue(now):
                return
            kind, base, title = AttentionKind.OVERDUE, AttentionPriority.URGENT, "Overdue"
        else:
            if task.is_overdue(now) or task.due_at > now + self._settings.due_soon_window:
                return
            kind, base, title = AttentionKind.DUE_SOON, AttentionPriority.HIGH, "Due soon"

        key = dedup_key(kind, task.task_id)
        due_text = task.due_at.strftime("%Y-%m-%d %H:%M UTC")
        for user_id in self._recipients(task.assignees, event.actor_user_id):
            if kind is AttentionKind.OVERDUE:
                result.dismissed += await self._store.dismiss_by_dedup(
                    session, user_id, dedup_key(AttentionKind.DUE_SOON, task.task_id), now=now
                )
            if await self._store.has_user_dismissed(session, user_id, key, since=task.updated_at):
                continue
            if await self._store.has_dismissal(
                session, user_id, key, since=now, reason=DismissReason.RESOLVED
            ):
                continue
            await self._deliver(
                session,
                event,
                result,
                PlannedItem(
                    user_id=user_id,
                    kind=kind,
                    dedup_key=key,
                    priority=self._priority(base, task),
                    title=f"{title}: {task.title}",
                    body=f"Due {due_text}",
                    refs=self._refs(event, task),
                ),
            )

    # Resolution

    async def _resolve_due(self, session: AsyncSession, task_id: str, now: datetime) -> int:
        dismissed = await self._store.resolve_dedup(
            session, dedup_key(AttentionKind.DUE_SOON, task_id), now=now
        )
        dismissed += await self._store.resolve_dedup(
            session, dedup_key(AttentionKind.OVERDUE, task_id), now=now
        )
        return dismissed

    async def _resolve_due_change(
        self, session: AsyncSession, task: TaskSnapshot, now: datetime, result: FanoutResult
    ) -> None:
        if task.due_at is None or task.due_at > now + self._settings.due_soon_window:
            result.dismissed += await self._resolve_due(session, task.task_id, now)
        elif task.due_at >= now:
            result.dismissed += await self._store.resolve_dedup(
                session, dedup_key(AttentionKind.OVERDUE, task.task_id), now=now
            )

    # Helpers

    async def _deliver(
        self,
        session: AsyncSession,
        event: DomainEvent,
        result: FanoutResult,
        planned: PlannedItem,
    ) -> None:
        outcome = await self._store.upsert_attention(
            session,
            user_id=planned.user_id,
            kind=planned.kind,
            dedup_key=planned.dedup_key,
            title=planned.title,
            body=planned.body,
            refs=planned.refs,
            priority=planned.priority,
            elevate_unread=planned.elevate_unread,
            now=event.occurred_at,
        )
        result.record(planned.user_id, outcome)
        if not outcome.surfaced:
            return

        await self._store.add_notification(
            session,
            user_id=planned.user_id,
            type=planned.kind.value,
            title=planned.title,
            message=planned.body or planned.title,
            data={
                "task_id": planned.refs.task_id,
                "comment_id": planned.refs.comment_id,
                "project_id": planned.refs.project_id,
                "dedup_key": planned.dedup_key,
            },
            attention_item_id=outcome.item_id,
            now=event.occurred_at,
        )
        result.notifications += 1

    def _assignment(
        self, task: TaskSnapshot, user_id: str, actor_name: str, event: DomainEvent
    ) -> PlannedItem:
        return PlannedItem(
            user_id=user_id,
            kind=AttentionKind.ASSIGNMENT,
            dedup_key=dedup_key(AttentionKind.ASSIGNMENT, task.task_id, user_id),
            priority=self._priority(AttentionPriority.HIGH, task),
            title=f"Task assigned: {task.title}",
            body=f"{actor_name} assigned you to this task",
            refs=self._refs(event, task),
        )

    @staticmethod
    def _recipients(users: Iterable[str], actor: Optional[str]) -> list[str]:
        """Sorted recipients without the actor."""
        return sorted(u for u in set(users) if u and u != actor)

    @staticmethod
    def _priority(base: AttentionPriority, task: Optional[TaskSnapshot]) -> AttentionPriority:
        if task is not None and task.priority is TaskPriority.URGENT:
            return base.elevated()
        return base

    @staticmethod
    def _refs(
        event: DomainEvent,
        task: TaskSnapshot,
        *,
        comment_id: Optional[str] = None,
        trigger_key: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> AttentionRefs:
        return AttentionRefs(
            task_id=task.task_id,
            comment_id=comment_id,
            project_id=task.project_id,
            actor_user_id=actor or event.actor_user_id,
            trigger_key=trigger_key,
        )

    async def _record_activity(
        self, session: AsyncSession, event: DomainEvent, result: FanoutResult
    ) -> None:
        old_values: Optional[dict[str, Any]] = None
        new_values: dict[str, Any] = {
            "event_id": event.event_id,
            "created": result.created,
            "touched": result.touched,
            "dismissed": result.dismissed,
        }
        entity_type, entity_id = "task", event.task_id

        if isinstance(event, TaskUpdated):
            old_values = {k: _jsonable(v[0]) for k, v in event.changes.items()}
            new_values.update({k: _jsonable(v[1]) for k, v in event.changes.items()})
        elif isinstance(event, TaskStageChanged):
            old_values = {"stage": event.old_stage}
            new_values["stage"] = event.new_stage
        elif isinstance(event, TaskApprovalDecided):
            new_values["approved"] = event.approved
        elif isinstance(event, (CommentCreated, CommentUpdated)):
            entity_type, entity_id = "comment", event.comment.comment_id
        elif isinstance(event, MentionCreated):
            entity_type, entity_id = "mention", event.mention.mention_id
        elif isinstance(event, DueThresholdCrossed):
            new_values["threshold"] = event.threshold.value

        if result.mentions:
            new_values["mentions"] = sorted({m.mentioned_user_id for m in result.mentions})

        await self._store.record_activity(
            session,
            action=event.type.value,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=event.actor_user_id,
            project_id=event.project_id,
            task_id=event.task_id,
            old_values=old_values,
            new_values=new_values,
            now=event.occurred_at,
        )


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if hasattr(value, "value"):
        return value.value
    return value
