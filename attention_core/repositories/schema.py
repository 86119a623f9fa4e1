"""Relational schema of the fanout core.

Tables mirror the application's data model. ``tasks``, ``comments``,
``projects``, ``project_members`` and ``users`` are written by the wider
application and only read here, except for the Slack thread pointers on
``tasks`` which belong to the Slack dispatcher.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from ..domain.models import new_id


ACTIVE_ITEM = text("dismissed_at IS NULL")
UNREAD_MENTION = text("read_at IS NULL")

JSONType = JSON().with_variant(JSONB(), "postgresql")


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, returns aware UTC on every backend."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for all tables."""

    type_annotation_map = {
        datetime: UTCDateTime(),
        dict[str, Any]: JSONType,
        list[str]: JSONType,
    }


class UserRow(Base):
    __tablename__ = "users"
    __table_args__ = (Index("ix_users_handle_lower", func.lower(text("handle"))),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    email: Mapped[Optional[str]] = mapped_column(String(320))
    handle: Mapped[str] = mapped_column(String(64), nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(200))


class ProjectRow(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    owner_id: Mapped[Optional[str]] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(default=utcnow)


class ProjectMemberRow(Base):
    __tablename__ = "project_members"

    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="editor")


class TaskRow(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_project", "project_id"),
        Index(
            "ix_tasks_due",
            "due_at",
            postgresql_where=text("due_at IS NOT NULL"),
            sqlite_where=text("due_at IS NOT NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    stage: Mapped[str] = mapped_column(String(64), nullable=False, default="todo")
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="normal")
    assignees: Mapped[list[str]] = mapped_column(default=list)
    watchers: Mapped[list[str]] = mapped_column(default=list)
    due_at: Mapped[Optional[datetime]]
    created_by: Mapped[Optional[str]] = mapped_column(String(36))
    approval_status: Mapped[str] = mapped_column(String(16), nullable=False, default="none")
    slack_thread_ts: Mapped[Optional[str]] = mapped_column(String(32))
    slack_message_ts: Mapped[Optional[str]] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow)


class CommentRow(Base):
    __tablename__ = "comments"
    __table_args__ = (Index("ix_comments_task_created", "task_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    task_id: Mapped[str] = mapped_column(
        ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False
    )
    author_id: Mapped[str] = mapped_column(String(36), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow)


class MentionRow(Base):
    __tablename__ = "mentions"
    __table_args__ = (
        CheckConstraint(
            "task_id IS NOT NULL OR comment_id IS NOT NULL", name="ck_mention_has_context"
        ),
        UniqueConstraint("source_key", "mentioned_user_id", name="uq_mention_source_user"),
        Index(
            "ix_mentions_unread",
            "mentioned_user_id",
            "read_at",
            postgresql_where=UNREAD_MENTION,
            sqlite_where=UNREAD_MENTION,
        ),
        Index("ix_mentions_mentioner", "mentioner_user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    mentioned_user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    mentioner_user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    task_id: Mapped[Optional[str]] = mapped_column(ForeignKey("tasks.id", ondelete="CASCADE"))
    comment_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("comments.id", ondelete="CASCADE")
    )
    project_id: Mapped[str] = mapped_column(String(36), nullable=False)
    source_key: Mapped[str] = mapped_column(String(80), nullable=False)
    context: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    read_at: Mapped[Optional[datetime]]


class AttentionItemRow(Base):
    __tablename__ = "attention_items"
    __table_args__ = (
        # Only one active item per dedup_key per user
        Index(
            "uq_attention_active_dedup",
            "user_id",
            "dedup_key",
            unique=True,
            postgresql_where=ACTIVE_ITEM,
            sqlite_where=ACTIVE_ITEM,
        ),
        Index(
            "ix_attention_user_active",
            "user_id",
            text("created_at DESC"),
            postgresql_where=ACTIVE_ITEM,
            sqlite_where=ACTIVE_ITEM,
        ),
        Index("ix_attention_dedup_key", "dedup_key"),
        Index("ix_attention_task", "task_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="normal")
    task_id: Mapped[Optional[str]] = mapped_column(ForeignKey("tasks.id", ondelete="CASCADE"))
    comment_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("comments.id", ondelete="CASCADE")
    )
    mention_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("mentions.id", ondelete="CASCADE")
    )
    project_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE")
    )
    actor_user_id: Mapped[Optional[str]] = mapped_column(String(36))
    title: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[Optional[str]] = mapped_column(Text)
    dedup_key: Mapped[str] = mapped_column(String(255), nullable=False)
    trigger_key: Mapped[Optional[str]] = mapped_column(String(255))
    read_at: Mapped[Optional[datetime]]
    dismissed_at: Mapped[Optional[datetime]]
    dismiss_reason: Mapped[Optional[str]] = mapped_column(String(16))
    actioned_at: Mapped[Optional[datetime]]
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow)


class NotificationRow(Base):
    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_user_created", "user_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(default=dict)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    attention_item_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("attention_items.id", ondelete="SET NULL")
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow)


class ActivityLogRow(Base):
    """Append-only. Writers never UPDATE or DELETE."""

    __tablename__ = "activity_logs"
    __table_args__ = (
        Index("ix_activity_task", "task_id", "created_at"),
        Index("ix_activity_action", "action"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    project_id: Mapped[Optional[str]] = mapped_column(String(64))
    task_id: Mapped[Optional[str]] = mapped_column(String(64))
    user_id: Mapped[Optional[str]] = mapped_column(String(64))
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(160))
    old_values: Mapped[Optional[dict[str, Any]]]
    new_values: Mapped[Optional[dict[str, Any]]]
    created_at: Mapped[datetime] = mapped_column(default=utcnow)


class SlackIntegrationRow(Base):
    __tablename__ = "slack_integrations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    webhook_url: Mapped[str] = mapped_column(Text, nullable=False)
    channel_id: Mapped[Optional[str]] = mapped_column(String(64))
    channel_name: Mapped[Optional[str]] = mapped_column(String(200))
    access_token: Mapped[Optional[str]] = mapped_column(Text)
    timezone: Mapped[Optional[str]] = mapped_column(String(64))
    notify_on_task_create: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_on_task_update: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_on_task_delete: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_on_task_move: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_on_task_complete: Mapped[bool] = mapped_column(Boolean, default=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow)


class EventOutboxRow(Base):
    __tablename__ = "event_outbox"
    __table_args__ = (Index("ix_outbox_pending", "status", "next_attempt_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[Optional[str]] = mapped_column(String(80))
    payload: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(default=utcnow)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    delivered_at: Mapped[Optional[datetime]]


class ProcessedEventRow(Base):
    __tablename__ = "processed_events"
    __table_args__ = (Index("ix_processed_events_processed_at", "processed_at"),)

    event_id: Mapped[str] = mapped_column(String(160), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    task_id: Mapped[Optional[str]] = mapped_column(String(36))
    processed_at: Mapped[datetime] = mapped_column(default=utcnow)
