"""Protocol definitions for dependency injection."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from .models import SlackConfig


Clock = Callable[[], datetime]


@dataclass(frozen=True)
class SlackDelivery:
    """Outcome of delivering one Slack message (after retries)."""

    ok: bool
    attempts: int
    ts: Optional[str] = None
    status_code: Optional[int] = None
    error: Optional[str] = None
    # True when retrying cannot help (4xx other than 429, {"ok": false})
    permanent: bool = False


@runtime_checkable
class SlackSender(Protocol):
    """Protocol for posting messages to Slack."""

    async def send(self, config: SlackConfig, payload: dict[str, Any]) -> SlackDelivery:
        """Post a message, retrying transient failures."""
        ...

    @property
    def channel_name(self) -> str:
        """Return the channel name this sender handles."""
        ...


@runtime_checkable
class EventSink(Protocol):
    """Anything that accepts typed domain events, one at a time."""

    async def process(self, event: Any) -> Any:
        """Process one event and acknowledge it."""
        ...
