"""Typed domain events consumed by the fanout pipeline."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Optional, Union

from .models import CommentSnapshot, DueThreshold, MentionRecord, TaskSnapshot


class EventType(Enum):
    """Wire names of the event variants."""

    TASK_CREATED = "task.created"
    TASK_UPDATED = "task.updated"
    TASK_STAGE_CHANGED = "task.stage_changed"
    TASK_DELETED = "task.deleted"
    TASK_APPROVAL_DECIDED = "task.approval_decided"
    COMMENT_CREATED = "comment.created"
    COMMENT_UPDATED = "comment.updated"
    MENTION_CREATED = "mention.created"
    DUE_THRESHOLD_CROSSED = "due.threshold_crossed"


# Fields whose change makes a task.updated event worth a Slack message
SLACK_RELEVANT_FIELDS = frozenset({"title", "description", "assignees", "due_at", "stage"})

TRACKED_FIELDS = ("title", "description", "assignees", "due_at", "priority", "stage")


@dataclass(frozen=True, kw_only=True)
class EventBase:
    """Envelope fields shared by every event."""

    type: ClassVar[EventType]

    event_id: str
    occurred_at: datetime
    project_id: str
    actor_user_id: Optional[str] = None
    task_id: Optional[str] = None

    def envelope(self) -> dict[str, Any]:
        """Envelope summary used for logs and the activity trail."""
        return {
            "event_id": self.event_id,
            "type": self.type.value,
            "occurred_at": self.occurred_at.isoformat(),
            "project_id": self.project_id,
            "task_id": self.task_id,
            "actor_user_id": self.actor_user_id,
        }


@dataclass(frozen=True, kw_only=True)
class TaskCreated(EventBase):
    type: ClassVar[EventType] = EventType.TASK_CREATED

    task: TaskSnapshot


@dataclass(frozen=True, kw_only=True)
class TaskUpdated(EventBase):
    type: ClassVar[EventType] = EventType.TASK_UPDATED

    old: TaskSnapshot
    new: TaskSnapshot
    changes: dict[str, tuple[Any, Any]] = field(default_factory=dict)

    @property
    def task(self) -> TaskSnapshot:
        return self.new

    @property
    def added_assignees(self) -> frozenset[str]:
        return self.new.assignees - self.old.assignees

    @property
    def removed_assignees(self) -> frozenset[str]:
        return self.old.assignees - self.new.assignees


@dataclass(frozen=True, kw_only=True)
class TaskStageChanged(EventBase):
    type: ClassVar[EventType] = EventType.TASK_STAGE_CHANGED

    task: TaskSnapshot
    old_stage: str
    new_stage: str


@dataclass(frozen=True, kw_only=True)
class TaskDeleted(EventBase):
    type: ClassVar[EventType] = EventType.TASK_DELETED

    task: TaskSnapshot


@dataclass(frozen=True, kw_only=True)
class TaskApprovalDecided(EventBase):
    type: ClassVar[EventType] = EventType.TASK_APPROVAL_DECIDED

    task: TaskSnapshot
    approved: bool
    reason: Optional[str] = None
    return_stage: Optional[str] = None


@dataclass(frozen=True, kw_only=True)
class CommentCreated(EventBase):
    type: ClassVar[EventType] = EventType.COMMENT_CREATED

    comment: CommentSnapshot
    task: TaskSnapshot


@dataclass(frozen=True, kw_only=True)
class CommentUpdated(EventBase):
    type: ClassVar[EventType] = EventType.COMMENT_UPDATED

    comment: CommentSnapshot
    task: TaskSnapshot


@dataclass(frozen=True, kw_only=True)
class MentionCreated(EventBase):
    type: ClassVar[EventType] = EventType.MENTION_CREATED

    mention: MentionRecord
    task: Optional[TaskSnapshot] = None


@dataclass(frozen=True, kw_only=True)
class DueThresholdCrossed(EventBase):
    type: ClassVar[EventType] = EventType.DUE_THRESHOLD_CROSSED

    task: TaskSnapshot
    threshold: DueThreshold


DomainEvent = Union[
    TaskCreated,
    TaskUpdated,
    TaskStageChanged,
    TaskDeleted,
    TaskApprovalDecided,
    CommentCreated,
    CommentUpdated,
    MentionCreated,
    DueThresholdCrossed,
]


def compute_changes(old: TaskSnapshot, new: TaskSnapshot) -> dict[str, tuple[Any, Any]]:
    """Compute the old/new pairs of tracked fields that differ."""
    changes: dict[str, tuple[Any, Any]] = {}
    for name in TRACKED_FIELDS:
        before = getattr(old, name)
        after = getattr(new, name)
        if before != after:
            changes[name] = (before, after)
    return changes


def event_task(event: DomainEvent) -> Optional[TaskSnapshot]:
    """Get the task snapshot an event carries, if any."""
    return getattr(event, "task", None)
