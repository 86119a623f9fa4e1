"""Parse raw event envelopes into typed domain events."""

from datetime import datetime, timezone
from typing import Any, Optional
import hashlib
import json

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..domain.errors import BadInputError
from ..domain.events import (
    CommentCreated,
    CommentUpdated,
    DomainEvent,
    DueThresholdCrossed,
    EventType,
    MentionCreated,
    TaskApprovalDecided,
    TaskCreated,
    TaskDeleted,
    TaskStageChanged,
    TaskUpdated,
    compute_changes,
)
from ..domain.models import (
    ApprovalStatus,
    CommentSnapshot,
    DueThreshold,
    MentionRecord,
    TaskPriority,
    TaskSnapshot,
    new_id,
)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class EventEnvelope(_Payload):
    """Wire envelope shared by every event."""

    type: str
    occurred_at: datetime
    project_id: str = Field(min_length=1)
    actor_user_id: Optional[str] = None
    task_id: Optional[str] = None
    event_id: Optional[str] = Field(default=None, max_length=80)
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("occurred_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return _as_utc(v)


class TaskPayload(_Payload):
    id: str = Field(min_length=1)
    project_id: Optional[str] = None
    title: str = ""
    stage: str = Field(default="todo", alias="status")
    assignees: list[str] = Field(default_factory=list)
    priority: str = "normal"
    description: Optional[str] = None
    due_at: Optional[datetime] = Field(default=None, alias="due_date")
    created_by: Optional[str] = None
    watchers: list[str] = Field(default_factory=list)
    approval_status: Optional[str] = None
    updated_at: Optional[datetime] = None
    slack_thread_ts: Optional[str] = None
    slack_message_ts: Optional[str] = None


class CommentPayload(_Payload):
    id: str = Field(min_length=1)
    task_id: Optional[str] = None
    author_id: str = Field(min_length=1, alias="user_id")
    body: str = Field(alias="content")
    created_at: Optional[datetime] = None


class MentionPayload(_Payload):
    id: Optional[str] = None
    mentioned_user_id: str = Field(min_length=1)
    mentioner_user_id: str = Field(min_length=1)
    task_id: Optional[str] = None
    comment_id: Optional[str] = None
    context: Optional[str] = None
    created_at: Optional[datetime] = None


class EventParser:
    """Turns envelopes into the typed event sum type.

    Every malformed envelope or payload raises BadInputError; nothing else
    escapes ``parse``.
    """

    def parse(self, raw: Any) -> DomainEvent:
        """Parse one envelope.

        Args:
            raw: Envelope as a dict, or JSON text/bytes

        Returns:
            Typed domain event

        Raises:
            BadInputError: If the envelope or payload is malformed
        """
        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except (UnicodeDecodeError, ValueError) as e:
                raise BadInputError(f"Event is not valid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise BadInputError("Event envelope must be a JSON object")

        try:
            envelope = EventEnvelope.model_validate(raw)
        except ValidationError as e:
            raise BadInputError(f"Invalid event envelope: {_summarize(e)}") from e

        try:
            event_type = EventType(envelope.type)
        except ValueError:
            raise BadInputError(f"Unknown event type: {envelope.type}", field="type")

        event_id = envelope.event_id or fingerprint(raw)
        try:
            return self._build(event_type, envelope, event_id)
        except ValidationError as e:
            raise BadInputError(f"Invalid {event_type.value} payload: {_summarize(e)}") from e
        except (KeyError, ValueError, TypeError) as e:
            raise BadInputError(f"Invalid {event_type.value} payload: {e}") from e

    def _build(self, event_type: EventType, env: EventEnvelope, event_id: str) -> DomainEvent:
        payload = env.payload
        common: dict[str, Any] = {
            "event_id": event_id,
            "occurred_at": env.occurred_at,
            "project_id": env.project_id,
            "actor_user_id": env.actor_user_id,
        }

        if event_type is EventType.TASK_UPDATED:
            old = self._task(payload["old"], env)
            new = self._task(payload["new"], env)
            if old.task_id != new.task_id:
                raise ValueError("old and new snapshots describe different tasks")
            return TaskUpdated(
                **common, task_id=new.task_id, old=old, new=new, changes=compute_changes(old, new)
            )

        if event_type is EventType.MENTION_CREATED:
            mention = self._mention(payload["mention"], env)
            task = self._task(payload["task"], env) if payload.get("task") else None
            return MentionCreated(
                **common, task_id=mention.task_id or env.task_id, mention=mention, task=task
            )

        task = self._task(payload["task"], env)
        common["task_id"] = task.task_id

        if event_type is EventType.TASK_CREATED:
            return TaskCreated(**common, task=task)
        if event_type is EventType.TASK_DELETED:
            return TaskDeleted(**common, task=task)
        if event_type is EventType.TASK_STAGE_CHANGED:
            new_stage = payload.get("new_stage") or task.stage
            old_stage = payload.get("old_stage")
            if not old_stage:
                raise ValueError("old_stage is required")
            return TaskStageChanged(
                **common, task=task, old_stage=str(old_stage), new_stage=str(new_stage)
            )
        if event_type is EventType.TASK_APPROVAL_DECIDED:
            approved = payload.get("approved")
            if not isinstance(approved, bool):
                raise ValueError("approved must be a boolean")
            return TaskApprovalDecided(
                **common,
                task=task,
                approved=approved,
                reason=payload.get("reason"),
                return_stage=payload.get("return_stage"),
            )
        if event_type in (EventType.COMMENT_CREATED, EventType.COMMENT_UPDATED):
            comment = self._comment(payload["comment"], task, env)
            cls = CommentCreated if event_type is EventType.COMMENT_CREATED else CommentUpdated
            return cls(**common, comment=comment, task=task)
        if event_type is EventType.DUE_THRESHOLD_CROSSED:
            return DueThresholdCrossed(
                **common, task=task, threshold=DueThreshold(payload["threshold"])
            )
        raise ValueError(f"Unhandled event type {event_type.value}")

    def _task(self, raw: Any, env: EventEnvelope) -> TaskSnapshot:
        data = TaskPayload.model_validate(raw)
        return TaskSnapshot(
            task_id=data.id,
            project_id=data.project_id or env.project_id,
            title=data.title,
            stage=data.stage,
            assignees=frozenset(data.assignees),
            priority=TaskPriority(data.priority.lower()),
            description=data.description,
            due_at=_as_utc(data.due_at),
            created_by=data.created_by,
            watchers=frozenset(data.watchers),
            approval_status=ApprovalStatus(data.approval_status or "none"),
            updated_at=_as_utc(data.updated_at),
            slack_thread_ts=data.slack_thread_ts,
            slack_message_ts=data.slack_message_ts,
        )

    def _comment(self, raw: Any, task: TaskSnapshot, env: EventEnvelope) -> CommentSnapshot:
        data = CommentPayload.model_validate(raw)
        if data.task_id and data.task_id != task.task_id:
            raise ValueError("comment belongs to a different task")
        return CommentSnapshot(
            comment_id=data.id,
            task_id=task.task_id,
            author_id=data.author_id,
            body=data.body,
            created_at=_as_utc(data.created_at) or env.occurred_at,
        )

    def _mention(self, raw: Any, env: EventEnvelope) -> MentionRecord:
        data = MentionPayload.model_validate(raw)
        task_id = data.task_id or env.task_id
        if not task_id and not data.comment_id:
            raise ValueError("mention needs a task_id or a comment_id")
        return MentionRecord(
            mention_id=data.id or new_id(),
            mentioned_user_id=data.mentioned_user_id,
            mentioner_user_id=data.mentioner_user_id,
            project_id=env.project_id,
            created_at=_as_utc(data.created_at) or env.occurred_at,
            task_id=task_id,
            comment_id=data.comment_id,
            context=data.context,
        )


def fingerprint(raw: dict[str, Any]) -> str:
    """Deterministic id of an envelope that carries no event_id."""
    canonical = json.dumps(
        {k: v for k, v in raw.items() if k != "event_id"},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
        ensure_ascii=False,
    )
    digest = hashlib.sha256(canonical.encode("utf-8", "surrogatepass")).hexdigest()
    return f"sha256:{digest}"


def task_to_payload(task: TaskSnapshot) -> dict[str, Any]:
    """Serialize a snapshot into the wire shape ``EventParser`` reads."""
    return {
        "id": task.task_id,
        "project_id": task.project_id,
        "title": task.title,
        "status": task.stage,
        "assignees": sorted(task.assignees),
        "priority": task.priority.value,
        "description": task.description,
        "due_date": task.due_at.isoformat() if task.due_at else None,
        "created_by": task.created_by,
        "watchers": sorted(task.watchers),
        "approval_status": task.approval_status.value,
        "updated_at": task.updated_at.isoformat() if task.updated_at else None,
        "slack_thread_ts": task.slack_thread_ts,
        "slack_message_ts": task.slack_message_ts,
    }


def event_to_envelope(event: DomainEvent) -> dict[str, Any]:
    """Serialize a typed event back into its wire envelope."""
    payload: dict[str, Any]
    if isinstance(event, TaskUpdated):
        payload = {"old": task_to_payload(event.old), "new": task_to_payload(event.new)}
    elif isinstance(event, TaskStageChanged):
        payload = {
            "task": task_to_payload(event.task),
            "old_stage": event.old_stage,
            "new_stage": event.new_stage,
        }
    elif isinstance(event, TaskApprovalDecided):
        payload = {
            "task": task_to_payload(event.task),
            "approved": event.approved,
            "reason": event.reason,
            "return_stage": event.return_stage,
        }
    elif isinstance(event, (CommentCreated, CommentUpdated)):
        payload = {
            "task": task_to_payload(event.task),
            "comment": {
                "id": event.comment.comment_id,
                "task_id": event.comment.task_id,
                "user_id": event.comment.author_id,
                "content": event.comment.body,
                "created_at": event.comment.created_at.isoformat(),
            },
        }
    elif isinstance(event, MentionCreated):
        m = event.mention
        payload = {
            "mention": {
                "id": m.mention_id,
                "mentioned_user_id": m.mentioned_user_id,
                "mentioner_user_id": m.mentioner_user_id,
                "task_id": m.task_id,
                "comment_id": m.comment_id,
                "context": m.context,
                "created_at": m.created_at.isoformat(),
            }
        }
        if event.task is not None:
            payload["task"] = task_to_payload(event.task)
    elif isinstance(event, DueThresholdCrossed):
        payload = {"task": task_to_payload(event.task), "threshold": event.threshold.value}
    else:
        payload = {"task": task_to_payload(event.task)}

    return {
        "event_id": event.event_id,
        "type": event.type.value,
        "occurred_at": event.occurred_at.isoformat(),
        "project_id": event.project_id,
        "actor_user_id": event.actor_user_id,
        "task_id": event.task_id,
        "payload": payload,
    }


def _summarize(error: ValidationError) -> str:
    parts = []
    for err in error.errors()[:3]:
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)
