"""Inbox service: the read/ack surface of the attention store."""

from dataclasses import dataclass
from typing import Optional, Sequence
import logging

from ..domain.errors import BadInputError
from ..domain.models import (
    AttentionItem,
    InboxCounts,
    InboxFilter,
    InboxPage,
    Notification,
)
from ..repositories.attention_store import MAX_PAGE_SIZE, AttentionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NavigationTarget:
    """Where the client should go after actioning an item."""

    task_id: Optional[str]
    comment_id: Optional[str]
    project_id: Optional[str]


class InboxService:
    """Lists, counts and acknowledges a user's attention items."""

    def __init__(self, store: AttentionStore) -> None:
        self._store = store

    async def list_items(
        self, user_id: str, filters: Optional[InboxFilter] = None
    ) -> InboxPage:
        """One page of active items, urgent first then newest first."""
        filters = filters or InboxFilter()
        if filters.limit < 1 or filters.limit > MAX_PAGE_SIZE:
            raise BadInputError(
                f"limit must be between 1 and {MAX_PAGE_SIZE}", field="limit"
            )
        return await self._store.list_inbox(user_id, filters)

    async def counts(self, user_id: str) -> InboxCounts:
        return await self._store.inbox_counts(user_id)

    async def get_item(self, user_id: str, item_id: str) -> Optional[AttentionItem]:
        return await self._store.get_item(user_id, item_id)

    async def mark_read(self, user_id: str, item_ids: Sequence[str]) -> int:
        count = await self._store.mark_read(user_id, _unique(item_ids))
        logger.debug(f"Marked {count} items read for {user_id}")
        return count

    async def mark_all_read(self, user_id: str) -> int:
        return await self._store.mark_all_read(user_id)

    async def dismiss(self, user_id: str, item_ids: Sequence[str]) -> int:
        """Dismiss items. Dismissing an already dismissed item is a no-op."""
        return await self._store.mark_dismissed(user_id, _unique(item_ids))

    async def action(self, user_id: str, item_id: str) -> NavigationTarget:
        """Mark an item actioned and return where it points.

        Raises:
            NotFoundError: If the item is not the user's
            StaleStateError: If the item was dismissed
        """
        item = await self._store.mark_actioned(user_id, item_id)
        return NavigationTarget(
            task_id=item.task_id,
            comment_id=item.comment_id,
            project_id=item.project_id,
        )

    async def notifications(
        self, user_id: str, *, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise BadInputError(
                f"limit must be between 1 and {MAX_PAGE_SIZE}", field="limit"
            )
        return await self._store.list_notifications(
            user_id, unread_only=unread_only, limit=limit
        )

    async def mark_notifications_read(
        self, user_id: str, ids: Optional[Sequence[str]] = None
    ) -> int:
        return await self._store.mark_notifications_read(
            user_id, _unique(ids) if ids is not None else None
        )


def _unique(ids: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(ids))
