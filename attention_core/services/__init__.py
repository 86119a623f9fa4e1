"""Service layer implementations."""

from .due_date_scanner import DueDateScanner, ScanReport
from .event_consumer import EventConsumer, ProcessResult, ProcessStatus
from .fanout_service import FanoutResult, FanoutService, dedup_key
from .inbox_service import InboxService, NavigationTarget
from .locks import KeyedLock
from .mention_service import MentionService

__all__ = [
    "DueDateScanner",
    "ScanReport",
    "EventConsumer",
    "ProcessResult",
    "ProcessStatus",
    "FanoutResult",
    "FanoutService",
    "dedup_key",
    "InboxService",
    "NavigationTarget",
    "KeyedLock",
    "MentionService",
]
