"""Inbox routes: list, count and acknowledge attention items."""

from typing import Optional
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ...domain.models import (
    AttentionItem,
    AttentionKind,
    AttentionPriority,
    InboxCounts,
    InboxFilter,
)
from ...repositories.attention_store import MAX_PAGE_SIZE
from ...services.inbox_service import InboxService
from ..dependencies import current_user, get_inbox_service

router = APIRouter(prefix="/inbox", tags=["inbox"])


class AttentionItemResponse(BaseModel):
    """Attention item response model."""

    id: str
    kind: str
    priority: str
    title: str
    body: Optional[str] = None
    dedup_key: str
    task_id: Optional[str] = None
    comment_id: Optional[str] = None
    mention_id: Optional[str] = None
    project_id: Optional[str] = None
    actor_user_id: Optional[str] = None
    read: bool
    read_at: Optional[datetime] = None
    actioned_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class KindCountsResponse(BaseModel):
    unread: int
    total: int


class InboxCountsResponse(BaseModel):
    """Per-kind unread/total counters."""

    unread: int
    total: int
    unread_mentions: int
    by_kind: dict[str, KindCountsResponse] = Field(default_factory=dict)


class InboxResponse(BaseModel):
    """One inbox page."""

    items: list[AttentionItemResponse]
    next_cursor: Optional[str] = None
    counts: InboxCountsResponse


class ItemIdsRequest(BaseModel):
    ids: list[str] = Field(min_length=1, max_length=MAX_PAGE_SIZE)


class ActionRequest(BaseModel):
    id: str = Field(min_length=1)


class NavigationResponse(BaseModel):
    """Where the client should navigate after actioning an item."""

    task_id: Optional[str] = None
    comment_id: Optional[str] = None
    project_id: Optional[str] = None


def item_to_response(item: AttentionItem) -> AttentionItemResponse:
    """Convert AttentionItem to AttentionItemResponse."""
    return AttentionItemResponse(
        id=item.id,
        kind=item.kind.value,
        priority=item.priority.value,
        title=item.title,
        body=item.body,
        dedup_key=item.dedup_key,
        task_id=item.task_id,
        comment_id=item.comment_id,
        mention_id=item.mention_id,
        project_id=item.project_id,
        actor_user_id=item.actor_user_id,
        read=item.read_at is not None,
        read_at=item.read_at,
        actioned_at=item.actioned_at,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


def counts_to_response(counts: InboxCounts) -> InboxCountsResponse:
    return InboxCountsResponse(
        unread=counts.unread,
        total=counts.total,
        unread_mentions=counts.unread_mentions,
        by_kind={
            kind.value: KindCountsResponse(unread=c.unread, total=c.total)
            for kind, c in counts.by_kind.items()
        },
    )


@router.get("", response_model=InboxResponse)
async def list_inbox(
    user_id: str = Depends(current_user),
    service: InboxService = Depends(get_inbox_service),
    cursor: Optional[str] = None,
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    priority: Optional[list[AttentionPriority]] = Query(None),
    kind: Optional[list[AttentionKind]] = Query(None),
    unread: bool = False,
) -> InboxResponse:
    """List active items, urgent first then newest first."""
    page = await service.list_items(
        user_id,
        InboxFilter(
            kinds=kind,
            priorities=priority,
            unread_only=unread,
            cursor=cursor,
            limit=limit,
        ),
    )
    counts = await service.counts(user_id)
    return InboxResponse(
        items=[item_to_response(item) for item in page.items],
        next_cursor=page.next_cursor,
        counts=counts_to_response(counts),
    )


@router.get("/counts", response_model=InboxCountsResponse)
async def inbox_counts(
    user_id: str = Depends(current_user),
    service: InboxService = Depends(get_inbox_service),
) -> InboxCountsResponse:
    return counts_to_response(await service.counts(user_id))


@router.post("/mark-read")
async def mark_read(
    request: ItemIdsRequest,
    user_id: str = Depends(current_user),
    service: InboxService = Depends(get_inbox_service),
) -> dict:
    updated = await service.mark_read(user_id, request.ids)
    return {"updated": updated}


@router.post("/mark-all-read")
async def mark_all_read(
    user_id: str = Depends(current_user),
    service: InboxService = Depends(get_inbox_service),
) -> dict:
    updated = await service.mark_all_read(user_id)
    return {"updated": updated}


@router.post("/dismiss")
async def dismiss(
    request: ItemIdsRequest,
    user_id: str = Depends(current_user),
    service: InboxService = Depends(get_inbox_service),
) -> dict:
    """Dismiss items. Dismissing twice is not an error."""
    dismissed = await service.dismiss(user_id, request.ids)
    return {"dismissed": dismissed}


@router.post("/action", response_model=NavigationResponse)
async def action(
    request: ActionRequest,
    user_id: str = Depends(current_user),
    service: InboxService = Depends(get_inbox_service),
) -> NavigationResponse:
    """Mark an item actioned and return its navigation target."""
    target = await service.action(user_id, request.id)
    return NavigationResponse(
        task_id=target.task_id,
        comment_id=target.comment_id,
        project_id=target.project_id,
    )


@router.get("/{item_id}", response_model=AttentionItemResponse)
async def get_item(
    item_id: str,
    user_id: str = Depends(current_user),
    service: InboxService = Depends(get_inbox_service),
) -> AttentionItemResponse:
    item = await service.get_item(user_id, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Attention item not found")
    return item_to_response(item)
