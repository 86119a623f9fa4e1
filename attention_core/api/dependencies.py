"""Request dependencies shared by the routers."""

from typing import Optional

from fastapi import Header, HTTPException

from ..container import get_container
from ..services.event_consumer import EventConsumer
from ..services.inbox_service import InboxService


async def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Identity of the caller, taken from the ``X-User-Id`` header."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id.strip()


def get_inbox_service() -> InboxService:
    """Get InboxService from container."""
    return get_container().inbox_service


def get_event_consumer() -> EventConsumer:
    """Get EventConsumer from container."""
    return get_container().event_consumer
