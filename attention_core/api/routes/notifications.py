"""In-app notification routes."""

from typing import Any, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ...repositories.attention_store import MAX_PAGE_SIZE
from ...services.inbox_service import InboxService
from ..dependencies import current_user, get_inbox_service

router = APIRouter(prefix="/notifications", tags=["notifications"])


class NotificationResponse(BaseModel):
    id: str
    type: str
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    is_read: bool
    attention_item_id: Optional[str] = None
    created_at: datetime


class MarkNotificationsReadRequest(BaseModel):
    # Omitted means every unread notification
    ids: Optional[list[str]] = None


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    user_id: str = Depends(current_user),
    service: InboxService = Depends(get_inbox_service),
    unread: bool = False,
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
) -> list[NotificationResponse]:
    notifications = await service.notifications(user_id, unread_only=unread, limit=limit)
    return [
        NotificationResponse(
            id=n.id,
            type=n.type,
            title=n.title,
            message=n.message,
            data=n.data,
            is_read=n.is_read,
            attention_item_id=n.attention_item_id,
            created_at=n.created_at,
        )
        for n in notifications
    ]


@router.post("/mark-read")
async def mark_notifications_read(
    request: Optional[MarkNotificationsReadRequest] = None,
    user_id: str = Depends(current_user),
    service: InboxService = Depends(get_inbox_service),
) -> dict:
    ids = request.ids if request else None
    updated = await service.mark_notifications_read(user_id, ids)
    return {"updated": updated}
