"""Domain models for the attention and notification fanout core."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional
import uuid


class AttentionKind(Enum):
    """Reason an attention item exists."""

    MENTION = "mention"
    ASSIGNMENT = "assignment"
    UNASSIGNMENT = "unassignment"
    DUE_SOON = "due_soon"
    OVERDUE = "overdue"
    COMMENT = "comment"
    STATUS_CHANGE = "status_change"
    APPROVAL_PENDING = "approval_pending"


class AttentionPriority(Enum):
    """Inbox priority. Lower rank sorts first."""

    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_ORDER.index(self)

    def elevated(self) -> "AttentionPriority":
        """Return the priority one level above this one."""
        return _PRIORITY_ORDER[max(self.rank - 1, 0)]


_PRIORITY_ORDER = [
    AttentionPriority.URGENT,
    AttentionPriority.HIGH,
    AttentionPriority.NORMAL,
    AttentionPriority.LOW,
]


class TaskPriority(Enum):
    """Task priority levels."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @classmethod
    def _missing_(cls, value: object) -> Optional["TaskPriority"]:
        # Older clients still send "medium"
        if isinstance(value, str) and value.lower() == "medium":
            return cls.NORMAL
        return None


class ProjectRole(Enum):
    """Project membership roles."""

    OWNER = "owner"
    ADMIN = "admin"
    EDITOR = "editor"
    READER = "reader"

    @classmethod
    def _missing_(cls, value: object) -> Optional["ProjectRole"]:
        # Organization-level "member" maps onto the project editor role
        if isinstance(value, str) and value.lower() == "member":
            return cls.EDITOR
        return None

    @property
    def can_approve(self) -> bool:
        return self in (ProjectRole.OWNER, ProjectRole.ADMIN)


class DueThreshold(Enum):
    """Due-date thresholds the scanner watches."""

    SOON = "soon"
    OVERDUE = "overdue"


class ApprovalStatus(Enum):
    """Approval workflow state of a task in the done stage."""

    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DismissReason(Enum):
    """Why an attention item left the inbox."""

    USER = "user"
    RESOLVED = "resolved"


class UpsertStatus(Enum):
    """Outcome of an attention upsert."""

    CREATED = "created"
    TOUCHED = "touched"


def new_id() -> str:
    """Generate a new unique row id."""
    return str(uuid.uuid4())


@dataclass(frozen=True)
class TaskSnapshot:
    """Point-in-time view of a task as carried by events."""

    task_id: str
    project_id: str
    title: str
    stage: str
    assignees: frozenset[str] = frozenset()
    priority: TaskPriority = TaskPriority.NORMAL
    description: Optional[str] = None
    due_at: Optional[datetime] = None
    created_by: Optional[str] = None
    watchers: frozenset[str] = frozenset()
    approval_status: ApprovalStatus = ApprovalStatus.NONE
    updated_at: Optional[datetime] = None
    slack_thread_ts: Optional[str] = None
    slack_message_ts: Optional[str] = None

    def is_terminal(self, terminal_stages: set[str]) -> bool:
        """Check if the task sits in a stage that ends its lifecycle."""
        return self.stage in terminal_stages

    def is_overdue(self, now: datetime) -> bool:
        """Check if the due date has passed."""
        return self.due_at is not None and now > self.due_at


@dataclass(frozen=True)
class CommentSnapshot:
    """Comment as carried by events."""

    comment_id: str
    task_id: str
    author_id: str
    body: str
    created_at: datetime


@dataclass(frozen=True)
class MentionRecord:
    """A resolved @mention of a project member."""

    mention_id: str
    mentioned_user_id: str
    mentioner_user_id: str
    project_id: str
    created_at: datetime
    task_id: Optional[str] = None
    comment_id: Optional[str] = None
    context: Optional[str] = None
    read_at: Optional[datetime] = None

    @property
    def source_key(self) -> str:
        """Idempotency key of the body the mention was parsed from."""
        if self.comment_id:
            return f"comment:{self.comment_id}"
        return f"task:{self.task_id}"

    @property
    def subject_id(self) -> str:
        """The comment id, or the task id for mentions in a task description."""
        return self.comment_id or self.task_id or ""


@dataclass
class AttentionRefs:
    """Foreign references attached to an attention item."""

    task_id: Optional[str] = None
    comment_id: Optional[str] = None
    mention_id: Optional[str] = None
    project_id: Optional[str] = None
    actor_user_id: Optional[str] = None
    # Identifies the signal behind the latest touch; a change may re-surface the item
    trigger_key: Optional[str] = None


@dataclass
class AttentionItem:
    """Recipient-scoped record that powers the inbox."""

    id: str
    user_id: str
    kind: AttentionKind
    priority: AttentionPriority
    title: str
    dedup_key: str
    created_at: datetime
    updated_at: datetime
    body: Optional[str] = None
    task_id: Optional[str] = None
    comment_id: Optional[str] = None
    mention_id: Optional[str] = None
    project_id: Optional[str] = None
    actor_user_id: Optional[str] = None
    trigger_key: Optional[str] = None
    read_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None
    dismiss_reason: Optional[DismissReason] = None
    actioned_at: Optional[datetime] = None

    @property
    def is_read(self) -> bool:
        return self.read_at is not None

    @property
    def is_dismissed(self) -> bool:
        return self.dismissed_at is not None


@dataclass(frozen=True)
class UpsertOutcome:
    """Result of upserting one attention item."""

    item_id: str
    status: UpsertStatus
    elevated: bool = False

    @property
    def surfaced(self) -> bool:
        """True when the recipient should be told about the item again."""
        return self.status is UpsertStatus.CREATED or self.elevated


@dataclass
class Notification:
    """Lightweight in-app notification shown under the bell icon."""

    id: str
    user_id: str
    type: str
    title: str
    message: str
    created_at: datetime
    data: dict[str, Any] = field(default_factory=dict)
    is_read: bool = False
    attention_item_id: Optional[str] = None


@dataclass
class SlackConfig:
    """Per-project Slack integration."""

    project_id: str
    webhook_url: str
    channel_id: Optional[str] = None
    channel_name: Optional[str] = None
    access_token: Optional[str] = None
    timezone: Optional[str] = None
    on_create: bool = True
    on_update: bool = True
    on_delete: bool = True
    on_move: bool = True
    on_complete: bool = True
    created_by: Optional[str] = None

    def is_enabled(self, flag: str) -> bool:
        """Check a per-event flag such as 'on_update'."""
        return bool(getattr(self, flag, False))

    @property
    def uses_bot_token(self) -> bool:
        return bool(self.access_token and self.channel_id)


@dataclass
class ActivityLogEntry:
    """Append-only audit record."""

    id: str
    user_id: Optional[str]
    action: str
    entity_type: str
    entity_id: Optional[str]
    created_at: datetime
    project_id: Optional[str] = None
    task_id: Optional[str] = None
    old_values: Optional[dict[str, Any]] = None
    new_values: Optional[dict[str, Any]] = None


@dataclass
class InboxFilter:
    """Filter criteria for inbox queries."""

    kinds: Optional[list[AttentionKind]] = None
    priorities: Optional[list[AttentionPriority]] = None
    unread_only: bool = False
    cursor: Optional[str] = None
    limit: int = 50


@dataclass
class KindCounts:
    """Unread and total active items of one kind."""

    unread: int = 0
    total: int = 0


@dataclass
class InboxCounts:
    """Per-kind counters shown next to the inbox."""

    by_kind: dict[AttentionKind, KindCounts] = field(default_factory=dict)
    unread_mentions: int = 0

    @property
    def unread(self) -> int:
        return sum(c.unread for c in self.by_kind.values())

    @property
    def total(self) -> int:
        return sum(c.total for c in self.by_kind.values())


@dataclass
class InboxPage:
    """One page of inbox items."""

    items: list[AttentionItem]
    next_cursor: Optional[str] = None
