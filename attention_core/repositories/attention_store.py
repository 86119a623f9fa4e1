"""Attention Store: mentions, attention items, notifications and activity log."""

from datetime import datetime, timedelta
from typing import Any, Optional, Sequence
import base64
import binascii
import json
import logging

from sqlalchemy import and_, case, delete, func, literal, null, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import BadInputError, NotFoundError, StaleStateError
from ..domain.models import (
    ActivityLogEntry,
    AttentionItem,
    AttentionKind,
    AttentionPriority,
    AttentionRefs,
    DismissReason,
    InboxCounts,
    InboxFilter,
    InboxPage,
    KindCounts,
    MentionRecord,
    Notification,
    UpsertOutcome,
    UpsertStatus,
    new_id,
)
from ..domain.protocols import Clock
from .database import Database
from .schema import (
    ActivityLogRow,
    AttentionItemRow,
    MentionRow,
    NotificationRow,
    ProcessedEventRow,
    UTCDateTime,
    utcnow,
)

logger = logging.getLogger(__name__)


MAX_PAGE_SIZE = 200

# urgent first
PRIORITY_RANK = case(
    {p.value: p.rank for p in AttentionPriority},
    value=AttentionItemRow.priority,
    else_=len(AttentionPriority),
)


def _latest(column: Any, other: Any) -> Any:
    """The later of two timestamps; a NULL column yields ``other``."""
    return case((column > other, column), else_=other)


def read_stamp(now: datetime) -> Any:
    """``now``, but never earlier than the item's creation."""
    return _latest(AttentionItemRow.created_at, literal(now, UTCDateTime()))


def dismiss_stamp(now: datetime) -> Any:
    """``now``, but never earlier than the item's creation or first read."""
    return _latest(AttentionItemRow.read_at, read_stamp(now))


def encode_cursor(rank: int, created_at: datetime, item_id: str) -> str:
    """Encode an opaque keyset cursor."""
    raw = json.dumps([rank, created_at.isoformat(), item_id], separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> tuple[int, datetime, str]:
    """Decode a cursor produced by encode_cursor.

    Raises:
        BadInputError: If the cursor is not one of ours
    """
    try:
        raw = base64.urlsafe_b64decode(cursor.encode("ascii"))
        rank, created_at, item_id = json.loads(raw)
        return int(rank), datetime.fromisoformat(created_at), str(item_id)
    except (binascii.Error, UnicodeError, ValueError, TypeError) as e:
        raise BadInputError(f"Invalid cursor: {e}", field="cursor") from e


class AttentionStore:
    """Durable storage for everything the fanout produces.

    Planner-side operations take an explicit session so that every write for
    one event joins the caller's transaction. Inbox-side operations open their
    own transaction.
    """

    def __init__(self, database: Database, *, clock: Clock = utcnow):
        """Initialize store.

        Args:
            database: Database providing sessions
            clock: Source of the current time
        """
        self._db = database
        self._clock = clock

    @property
    def database(self) -> Database:
        return self._db

    def _insert(self, table: Any) -> Any:
        if self._db.is_sqlite:
            return sqlite_insert(table)
        return pg_insert(table)

    # Attention items (planner side)

    async def upsert_attention(
        self,
        session: AsyncSession,
        *,
        user_id: str,
        kind: AttentionKind,
        dedup_key: str,
        title: str,
        body: Optional[str] = None,
        refs: Optional[AttentionRefs] = None,
        priority: AttentionPriority = AttentionPriority.NORMAL,
        elevate_unread: bool = False,
        now: Optional[datetime] = None,
    ) -> UpsertOutcome:
        """Insert a new active item or touch the existing one.

        One INSERT ... ON CONFLICT against the partial unique index, so
        concurrent callers with the same (user_id, dedup_key) end up with a
        single active row. ``read_at`` is cleared only when ``elevate_unread``
        is set and the signal (``refs.trigger_key``) differs from the one that
        last touched the row.

        Args:
            session: Session of the caller's transaction
            user_id: Recipient
            kind: Attention kind
            dedup_key: Collapsing key
            title: Item title
            body: Optional item body
            refs: Foreign references
            priority: Item priority
            elevate_unread: Whether new information may mark the item unread
            now: Override of the current time

        Returns:
            UpsertOutcome telling created from touched
        """
        refs = refs or AttentionRefs()
        now = now or self._clock()

        prior = (
            await session.execute(
                select(AttentionItemRow.id, AttentionItemRow.trigger_key).where(
                    AttentionItemRow.user_id == user_id,
                    AttentionItemRow.dedup_key == dedup_key,
                    AttentionItemRow.dismissed_at.is_(None),
                )
            )
        ).first()

        candidate_id = new_id()
        stmt = self._insert(AttentionItemRow).values(
            id=candidate_id,
            user_id=user_id,
            kind=kind.value,
            priority=priority.value,
            task_id=refs.task_id,
            comment_id=refs.comment_id,
            mention_id=refs.mention_id,
            project_id=refs.project_id,
            actor_user_id=refs.actor_user_id,
            title=title,
            body=body,
            dedup_key=dedup_key,
            trigger_key=refs.trigger_key,
            created_at=now,
            updated_at=now,
        )
        excluded = stmt.excluded
        set_: dict[str, Any] = {
            "updated_at": excluded.updated_at,
            "title": excluded.title,
            "body": excluded.body,
            "priority": excluded.priority,
            "actor_user_id": excluded.actor_user_id,
            "comment_id": func.coalesce(excluded.comment_id, AttentionItemRow.comment_id),
            "mention_id": func.coalesce(excluded.mention_id, AttentionItemRow.mention_id),
            "trigger_key": excluded.trigger_key,
        }
        if elevate_unread:
            set_["read_at"] = case(
                (AttentionItemRow.trigger_key.is_distinct_from(excluded.trigger_key), null()),
                else_=AttentionItemRow.read_at,
            )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "dedup_key"],
            index_where=AttentionItemRow.dismissed_at.is_(None),
            set_=set_,
        ).returning(AttentionItemRow.id)

        item_id = (await session.execute(stmt)).scalar_one()

        if item_id == candidate_id:
            return UpsertOutcome(item_id=item_id, status=UpsertStatus.CREATED)

        elevated = bool(
            elevate_unread and prior is not None and prior.trigger_key != refs.trigger_key
        )
        return UpsertOutcome(item_id=item_id, status=UpsertStatus.TOUCHED, elevated=elevated)

    async def dismiss_by_dedup(
        self,
        session: AsyncSession,
        user_id: str,
        dedup_key: str,
        reason: DismissReason = DismissReason.RESOLVED,
        now: Optional[datetime] = None,
    ) -> int:
        """Dismiss the active item of one user for a dedup key."""
        now = now or self._clock()
        result = await session.execute(
            update(AttentionItemRow)
            .where(
                AttentionItemRow.user_id == user_id,
                AttentionItemRow.dedup_key == dedup_key,
                AttentionItemRow.dismissed_at.is_(None),
            )
            .values(
                dismissed_at=dismiss_stamp(now),
                dismiss_reason=reason.value,
                updated_at=dismiss_stamp(now),
            )
        )
        return result.rowcount or 0

    async def resolve_dedup(
        self,
        session: AsyncSession,
        dedup_key: str,
        now: Optional[datetime] = None,
    ) -> int:
        """Dismiss every user's active item for a dedup key as resolved."""
        now = now or self._clock()
        result = await session.execute(
            update(AttentionItemRow)
            .where(
                AttentionItemRow.dedup_key == dedup_key,
                AttentionItemRow.dismissed_at.is_(None),
            )
            .values(
                dismissed_at=dismiss_stamp(now),
                dismiss_reason=DismissReason.RESOLVED.value,
                updated_at=dismiss_stamp(now),
            )
        )
        return result.rowcount or 0

    async def resolve_task(
        self,
        session: AsyncSession,
        task_id: str,
        now: Optional[datetime] = None,
    ) -> int:
        """Dismiss every active item pointing at a task as resolved."""
        now = now or self._clock()
        result = await session.execute(
            update(AttentionItemRow)
            .where(
                AttentionItemRow.task_id == task_id,
                AttentionItemRow.dismissed_at.is_(None),
            )
            .values(
                dismissed_at=dismiss_stamp(now),
                dismiss_reason=DismissReason.RESOLVED.value,
                updated_at=dismiss_stamp(now),
            )
        )
        return result.rowcount or 0

    async def has_user_dismissed(
        self,
        session: AsyncSession,
        user_id: str,
        dedup_key: str,
        since: Optional[datetime] = None,
    ) -> bool:
        """Check whether the user dismissed this dedup key themselves.

        Args:
            session: Session to read with
            user_id: Recipient
            dedup_key: Dedup key
            since: Only count dismissals at or after this time

        Returns:
            True if a user dismissal exists
        """
        return await self.has_dismissal(
            session, user_id, dedup_key, since=since, reason=DismissReason.USER
        )

    async def has_dismissal(
        self,
        session: AsyncSession,
        user_id: str,
        dedup_key: str,
        *,
        since: Optional[datetime] = None,
        reason: Optional[DismissReason] = None,
    ) -> bool:
        """Check for a dismissed item of this user and dedup key."""
        query = select(AttentionItemRow.id).where(
            AttentionItemRow.user_id == user_id,
            AttentionItemRow.dedup_key == dedup_key,
            AttentionItemRow.dismissed_at.is_not(None),
        )
        if reason is not None:
            query = query.where(AttentionItemRow.dismiss_reason == reason.value)
        if since is not None:
            query = query.where(AttentionItemRow.dismissed_at >= since)
        return (await session.execute(query.limit(1))).first() is not None

    # Mentions

    async def insert_mention(
        self, session: AsyncSession, record: MentionRecord
    ) -> tuple[MentionRecord, bool]:
        """Insert a mention unless one exists for the same body and user.

        Returns:
            The stored record and whether it was newly created
        """
        stmt = (
            self._insert(MentionRow)
            .values(
                id=record.mention_id,
                mentioned_user_id=record.mentioned_user_id,
                mentioner_user_id=record.mentioner_user_id,
                task_id=record.task_id,
                comment_id=record.comment_id,
                project_id=record.project_id,
                source_key=record.source_key,
                context=record.context,
                created_at=record.created_at,
            )
            .on_conflict_do_nothing(index_elements=["source_key", "mentioned_user_id"])
            .returning(MentionRow.id)
        )
        inserted = (await session.execute(stmt)).scalar_one_or_none()
        if inserted is not None:
            return record, True

        row = (
            await session.execute(
                select(MentionRow).where(
                    MentionRow.source_key == record.source_key,
                    MentionRow.mentioned_user_id == record.mentioned_user_id,
                )
            )
        ).scalar_one()
        return self._to_mention(row), False

    async def list_mentions(
        self,
        *,
        mentioned_user_id: Optional[str] = None,
        comment_id: Optional[str] = None,
        task_id: Optional[str] = None,
    ) -> list[MentionRecord]:
        """List mention records matching all given criteria."""
        query = select(MentionRow).order_by(MentionRow.created_at, MentionRow.id)
        if mentioned_user_id is not None:
            query = query.where(MentionRow.mentioned_user_id == mentioned_user_id)
        if comment_id is not None:
            query = query.where(MentionRow.comment_id == comment_id)
        if task_id is not None:
            query = query.where(MentionRow.task_id == task_id)
        async with self._db.session() as session:
            rows = (await session.execute(query)).scalars().all()
        return [self._to_mention(row) for row in rows]

    # Notifications

    async def add_notification(
        self,
        session: AsyncSession,
        *,
        user_id: str,
        type: str,
        title: str,
        message: str,
        data: Optional[dict[str, Any]] = None,
        attention_item_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Write one in-app notification row."""
        notification_id = new_id()
        session.add(
            NotificationRow(
                id=notification_id,
                user_id=user_id,
                type=type,
                title=title,
                message=message,
                data=data or {},
                is_read=False,
                attention_item_id=attention_item_id,
                created_at=now or self._clock(),
            )
        )
        await session.flush()
        return notification_id

    async def list_notifications(
        self,
        user_id: str,
        *,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        """List a user's notifications, newest first."""
        query = (
            select(NotificationRow)
            .where(NotificationRow.user_id == user_id)
            .order_by(NotificationRow.created_at.desc(), NotificationRow.id.desc())
            .limit(min(max(limit, 1), MAX_PAGE_SIZE))
        )
        if unread_only:
            query = query.where(NotificationRow.is_read.is_(False))
        async with self._db.session() as session:
            rows = (await session.execute(query)).scalars().all()
        return [self._to_notification(row) for row in rows]

    async def mark_notifications_read(
        self, user_id: str, ids: Optional[Sequence[str]] = None
    ) -> int:
        """Mark some (or all) of a user's notifications read."""
        stmt = update(NotificationRow).where(
            NotificationRow.user_id == user_id,
            NotificationRow.is_read.is_(False),
        )
        if ids is not None:
            if not ids:
                return 0
            stmt = stmt.where(NotificationRow.id.in_(list(ids)))
        async with self._db.transaction() as session:
            result = await session.execute(stmt.values(is_read=True))
        return result.rowcount or 0

    # Activity log

    async def record_activity(
        self,
        session: AsyncSession,
        *,
        action: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        user_id: Optional[str] = None,
        project_id: Optional[str] = None,
        task_id: Optional[str] = None,
        old_values: Optional[dict[str, Any]] = None,
        new_values: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Append one activity log entry."""
        entry_id = new_id()
        session.add(
            ActivityLogRow(
                id=entry_id,
                project_id=project_id,
                task_id=task_id,
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                old_values=old_values,
                new_values=new_values,
                created_at=now or self._clock(),
            )
        )
        await session.flush()
        return entry_id

    async def list_activity(
        self,
        *,
        task_id: Optional[str] = None,
        action: Optional[str] = None,
    ) -> list[ActivityLogEntry]:
        """List activity entries, oldest first."""
        query = select(ActivityLogRow).order_by(ActivityLogRow.created_at, ActivityLogRow.id)
        if task_id is not None:
            query = query.where(ActivityLogRow.task_id == task_id)
        if action is not None:
            query = query.where(ActivityLogRow.action == action)
        async with self._db.session() as session:
            rows = (await session.execute(query)).scalars().all()
        return [
            ActivityLogEntry(
                id=row.id,
                user_id=row.user_id,
                action=row.action,
                entity_type=row.entity_type,
                entity_id=row.entity_id,
                created_at=row.created_at,
                project_id=row.project_id,
                task_id=row.task_id,
                old_values=row.old_values,
                new_values=row.new_values,
            )
            for row in rows
        ]

    # Processed events

    async def claim_event(
        self,
        session: AsyncSession,
        event_id: str,
        event_type: str,
        task_id: Optional[str] = None,
    ) -> bool:
        """Record an event as processed.

        Returns:
            False if the event was processed before
        """
        stmt = (
            self._insert(ProcessedEventRow)
            .values(
                event_id=event_id,
                event_type=event_type,
                task_id=task_id,
                processed_at=self._clock(),
            )
            .on_conflict_do_nothing(index_elements=["event_id"])
            .returning(ProcessedEventRow.event_id)
        )
        return (await session.execute(stmt)).scalar_one_or_none() is not None

    async def prune_processed_events(self, older_than: timedelta) -> int:
        """Forget claims older than the retention window.

        An event redelivered after its claim is pruned is processed again,
        so the window must outlast the longest redelivery delay.
        """
        cutoff = self._clock() - older_than
        async with self._db.transaction() as session:
            result = await session.execute(
                delete(ProcessedEventRow).where(ProcessedEventRow.processed_at < cutoff)
            )
        return result.rowcount or 0

    async def is_processed(self, event_id: str) -> bool:
        async with self._db.session() as session:
            row = await session.get(ProcessedEventRow, event_id)
        return row is not None

    # Inbox side

    async def get_item(self, user_id: str, item_id: str) -> Optional[AttentionItem]:
        """Get one of a user's items, dismissed or not."""
        async with self._db.session() as session:
            row = await session.get(AttentionItemRow, item_id)
        if row is None or row.user_id != user_id:
            return None
        return self._to_item(row)

    async def find_items(
        self,
        *,
        user_id: Optional[str] = None,
        task_id: Optional[str] = None,
        dedup_key: Optional[str] = None,
        kind: Optional[AttentionKind] = None,
        include_dismissed: bool = False,
    ) -> list[AttentionItem]:
        """Find items matching all given criteria, oldest first."""
        query = select(AttentionItemRow).order_by(
            AttentionItemRow.created_at, AttentionItemRow.id
        )
        if user_id is not None:
            query = query.where(AttentionItemRow.user_id == user_id)
        if task_id is not None:
            query = query.where(AttentionItemRow.task_id == task_id)
        if dedup_key is not None:
            query = query.where(AttentionItemRow.dedup_key == dedup_key)
        if kind is not None:
            query = query.where(AttentionItemRow.kind == kind.value)
        if not include_dismissed:
            query = query.where(AttentionItemRow.dismissed_at.is_(None))
        async with self._db.session() as session:
            rows = (await session.execute(query)).scalars().all()
        return [self._to_item(row) for row in rows]

    async def mark_read(self, user_id: str, item_ids: Sequence[str]) -> int:
        """Mark active items read. Linked mentions and notifications follow."""
        if not item_ids:
            return 0
        async with self._db.transaction() as session:
            return await self._mark_read(
                session, user_id, AttentionItemRow.id.in_(list(item_ids))
            )

    async def mark_all_read(self, user_id: str) -> int:
        """Mark every active item of a user read."""
        async with self._db.transaction() as session:
            return await self._mark_read(session, user_id, None)

    async def _mark_read(
        self, session: AsyncSession, user_id: str, id_clause: Any
    ) -> int:
        now = self._clock()
        query = select(AttentionItemRow.id, AttentionItemRow.mention_id).where(
            AttentionItemRow.user_id == user_id,
            AttentionItemRow.dismissed_at.is_(None),
            AttentionItemRow.read_at.is_(None),
        )
        if id_clause is not None:
            query = query.where(id_clause)
        rows = (await session.execute(query)).all()
        if not rows:
            return 0

        ids = [row.id for row in rows]
        await session.execute(
            update(AttentionItemRow)
            .where(AttentionItemRow.id.in_(ids))
            .values(read_at=read_stamp(now), updated_at=read_stamp(now))
        )
        await self._read_linked(session, user_id, ids, [r.mention_id for r in rows], now)
        return len(ids)

    async def _read_linked(
        self,
        session: AsyncSession,
        user_id: str,
        item_ids: list[str],
        mention_ids: list[Optional[str]],
        now: datetime,
    ) -> None:
        mention_ids = [m for m in mention_ids if m]
        if mention_ids:
            await session.execute(
                update(MentionRow)
                .where(
                    MentionRow.id.in_(mention_ids),
                    MentionRow.mentioned_user_id == user_id,
                    MentionRow.read_at.is_(None),
                )
                .values(read_at=now)
            )
        await session.execute(
            update(NotificationRow)
            .where(
                NotificationRow.user_id == user_id,
                NotificationRow.attention_item_id.in_(item_ids),
                NotificationRow.is_read.is_(False),
            )
            .values(is_read=True)
        )

    async def mark_dismissed(
        self,
        user_id: str,
        item_ids: Sequence[str],
        reason: DismissReason = DismissReason.USER,
    ) -> int:
        """Dismiss items. Already dismissed items are left as they are."""
        if not item_ids:
            return 0
        now = self._clock()
        async with self._db.transaction() as session:
            result = await session.execute(
                update(AttentionItemRow)
                .where(
                    AttentionItemRow.user_id == user_id,
                    AttentionItemRow.id.in_(list(item_ids)),
                    AttentionItemRow.dismissed_at.is_(None),
                )
                .values(
                dismissed_at=dismiss_stamp(now),
                dismiss_reason=reason.value,
                updated_at=dismiss_stamp(now),
            )
            )
        return result.rowcount or 0

    async def mark_actioned(self, user_id: str, item_id: str) -> AttentionItem:
        """Record that the user followed the item's link.

        Raises:
            NotFoundError: If the item does not belong to the user
            StaleStateError: If the item was dismissed
        """
        now = self._clock()
        async with self._db.transaction() as session:
            row = await session.get(AttentionItemRow, item_id)
            if row is None or row.user_id != user_id:
                raise NotFoundError(f"Attention item not found: {item_id}")
            if row.dismissed_at is not None:
                raise StaleStateError(f"Attention item {item_id} was dismissed")
            now = max(now, row.created_at)
            if row.actioned_at is None:
                row.actioned_at = now
            if row.read_at is None:
                row.read_at = now
                await self._read_linked(session, user_id, [row.id], [row.mention_id], now)
            row.updated_at = now
            await session.flush()
            return self._to_item(row)

    async def list_inbox(self, user_id: str, filters: Optional[InboxFilter] = None) -> InboxPage:
        """List active items, urgent first, then newest first.

        Args:
            user_id: Recipient
            filters: Kind/priority/unread filters, cursor and limit

        Returns:
            One page of items and the cursor of the next page
        """
        filters = filters or InboxFilter()
        limit = min(max(filters.limit, 1), MAX_PAGE_SIZE)
        rank = PRIORITY_RANK.label("rank")

        query = (
            select(AttentionItemRow, rank)
            .where(
                AttentionItemRow.user_id == user_id,
                AttentionItemRow.dismissed_at.is_(None),
            )
            .order_by(
                PRIORITY_RANK.asc(),
                AttentionItemRow.created_at.desc(),
                AttentionItemRow.id.desc(),
            )
            .limit(limit + 1)
        )
        if filters.kinds:
            query = query.where(AttentionItemRow.kind.in_([k.value for k in filters.kinds]))
        if filters.priorities:
            query = query.where(
                AttentionItemRow.priority.in_([p.value for p in filters.priorities])
            )
        if filters.unread_only:
            query = query.where(AttentionItemRow.read_at.is_(None))
        if filters.cursor:
            c_rank, c_created, c_id = decode_cursor(filters.cursor)
            query = query.where(
                or_(
                    PRIORITY_RANK > c_rank,
                    and_(
                        PRIORITY_RANK == c_rank,
                        or_(
                            AttentionItemRow.created_at < c_created,
                            and_(
                                AttentionItemRow.created_at == c_created,
                                AttentionItemRow.id < c_id,
                            ),
                        ),
                    ),
                )
            )

        async with self._db.session() as session:
            rows = (await session.execute(query)).all()

        next_cursor = None
        if len(rows) > limit:
            rows = rows[:limit]
            last, last_rank = rows[-1]
            next_cursor = encode_cursor(last_rank, last.created_at, last.id)
        return InboxPage(items=[self._to_item(row) for row, _ in rows], next_cursor=next_cursor)

    async def inbox_counts(self, user_id: str) -> InboxCounts:
        """Unread and total active items per kind, plus unread mentions."""
        unread = func.sum(case((AttentionItemRow.read_at.is_(None), 1), else_=0))
        query = (
            select(AttentionItemRow.kind, func.count(), unread)
            .where(
                AttentionItemRow.user_id == user_id,
                AttentionItemRow.dismissed_at.is_(None),
            )
            .group_by(AttentionItemRow.kind)
        )
        mention_query = select(func.count()).where(
            MentionRow.mentioned_user_id == user_id,
            MentionRow.read_at.is_(None),
        )
        async with self._db.session() as session:
            rows = (await session.execute(query)).all()
            unread_mentions = (await session.execute(mention_query)).scalar_one()

        counts = InboxCounts(unread_mentions=int(unread_mentions or 0))
        for kind, total, unread_count in rows:
            counts.by_kind[AttentionKind(kind)] = KindCounts(
                unread=int(unread_count or 0), total=int(total)
            )
        return counts

    # Conversion

    @staticmethod
    def _to_item(row: AttentionItemRow) -> AttentionItem:
        return AttentionItem(
            id=row.id,
            user_id=row.user_id,
            kind=AttentionKind(row.kind),
            priority=AttentionPriority(row.priority),
            title=row.title,
            dedup_key=row.dedup_key,
            created_at=row.created_at,
            updated_at=row.updated_at,
            body=row.body,
            task_id=row.task_id,
            comment_id=row.comment_id,
            mention_id=row.mention_id,
            project_id=row.project_id,
            actor_user_id=row.actor_user_id,
            trigger_key=row.trigger_key,
            read_at=row.read_at,
            dismissed_at=row.dismissed_at,
            dismiss_reason=DismissReason(row.dismiss_reason) if row.dismiss_reason else None,
            actioned_at=row.actioned_at,
        )

    @staticmethod
    def _to_mention(row: MentionRow) -> MentionRecord:
        return MentionRecord(
            mention_id=row.id,
            mentioned_user_id=row.mentioned_user_id,
            mentioner_user_id=row.mentioner_user_id,
            project_id=row.project_id,
            created_at=row.created_at,
            task_id=row.task_id,
            comment_id=row.comment_id,
            context=row.context,
            read_at=row.read_at,
        )

    @staticmethod
    def _to_notification(row: NotificationRow) -> Notification:
        return Notification(
            id=row.id,
            user_id=row.user_id,
            type=row.type,
            title=row.title,
            message=row.message,
            created_at=row.created_at,
            data=dict(row.data or {}),
            is_read=row.is_read,
            attention_item_id=row.attention_item_id,
        )
