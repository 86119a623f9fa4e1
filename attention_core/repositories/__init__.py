"""Repository implementations."""

from .attention_store import AttentionStore
from .cache import TTLCache
from .database import Database
from .directory import ProjectDirectory
from .outbox import EventOutbox
from .tasks import TaskRepository

__all__ = [
    "AttentionStore",
    "Database",
    "EventOutbox",
    "ProjectDirectory",
    "TaskRepository",
    "TTLCache",
]
