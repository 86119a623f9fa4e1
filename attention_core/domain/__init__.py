"""Domain models, events and protocols."""

from .models import (
    AttentionItem,
    AttentionKind,
    AttentionPriority,
    AttentionRefs,
    ApprovalStatus,
    CommentSnapshot,
    DismissReason,
    DueThreshold,
    InboxCounts,
    InboxFilter,
    InboxPage,
    MentionRecord,
    Notification,
    ProjectRole,
    SlackConfig,
    TaskPriority,
    TaskSnapshot,
    UpsertOutcome,
    UpsertStatus,
)
from .events import DomainEvent, EventType, compute_changes, event_task
from .errors import (
    BadInputError,
    DownstreamError,
    FanoutError,
    FatalError,
    IntegrityViolationError,
    NotFoundError,
    StaleStateError,
    TransientError,
    classify_store_error,
)
from .protocols import Clock, EventSink, SlackDelivery, SlackSender

__all__ = [
    "AttentionItem",
    "AttentionKind",
    "AttentionPriority",
    "AttentionRefs",
    "ApprovalStatus",
    "CommentSnapshot",
    "DismissReason",
    "DueThreshold",
    "InboxCounts",
    "InboxFilter",
    "InboxPage",
    "MentionRecord",
    "Notification",
    "ProjectRole",
    "SlackConfig",
    "TaskPriority",
    "TaskSnapshot",
    "UpsertOutcome",
    "UpsertStatus",
    "DomainEvent",
    "EventType",
    "compute_changes",
    "event_task",
    "BadInputError",
    "DownstreamError",
    "FanoutError",
    "FatalError",
    "IntegrityViolationError",
    "NotFoundError",
    "StaleStateError",
    "TransientError",
    "classify_store_error",
    "Clock",
    "EventSink",
    "SlackDelivery",
    "SlackSender",
]
