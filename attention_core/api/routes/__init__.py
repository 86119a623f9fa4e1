"""API route modules."""

from .events import router as events_router
from .inbox import router as inbox_router
from .notifications import router as notifications_router

__all__ = ["events_router", "inbox_router", "notifications_router"]
