"""Slack message sender: incoming webhooks and the chat.postMessage Web API."""

from typing import Any, Awaitable, Callable, Optional
import asyncio
import logging
import random

import httpx

from ..domain.models import SlackConfig
from ..domain.protocols import SlackDelivery

logger = logging.getLogger(__name__)


POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"

# Fraction of the nominal delay added or removed at random
JITTER = 0.2


class _Attempt:
    """Outcome of one HTTP attempt."""

    __slots__ = ("ok", "retryable", "status_code", "ts", "error", "retry_after")

    def __init__(
        self,
        *,
        ok: bool = False,
        retryable: bool = False,
        status_code: Optional[int] = None,
        ts: Optional[str] = None,
        error: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        self.ok = ok
        self.retryable = retryable
        self.status_code = status_code
        self.ts = ts
        self.error = error
        self.retry_after = retry_after


class SlackWebhookSender:
    """Posts messages to Slack with bounded, jittered retries.

    Network errors, timeouts, HTTP 5xx and 429 are retried. Other 4xx and
    Web API ``{"ok": false}`` replies are permanent.
    """

    def __init__(
        self,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        attempts: int = 3,
        per_attempt_timeout: float = 5.0,
        overall_budget: float = 30.0,
        backoff_base: float = 0.25,
        backoff_factor: float = 4.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        """Initialize Slack sender.

        Args:
            http_client: Optional HTTP client for testing
            attempts: Maximum number of attempts per message
            per_attempt_timeout: Seconds allowed for one HTTP attempt
            overall_budget: Seconds allowed for all attempts and waits
            backoff_base: Delay before the second attempt, in seconds
            backoff_factor: Multiplier applied to each following delay
            sleep: Awaitable sleep, replaceable in tests
            rng: Source of jitter in [0, 1)
        """
        self._http_client = http_client
        self._owns_client = http_client is None
        self._attempts = max(attempts, 1)
        self._per_attempt_timeout = per_attempt_timeout
        self._overall_budget = overall_budget
        self._backoff_base = backoff_base
        self._backoff_factor = backoff_factor
        self._sleep = sleep
        self._rng = rng

    @property
    def channel_name(self) -> str:
        """Return channel name for this sender."""
        return "slack"

    def backoff_delay(self, attempt: int) -> float:
        """Jittered delay after the given (1-based) failed attempt."""
        nominal = self._backoff_base * (self._backoff_factor ** (attempt - 1))
        return nominal * (1 - JITTER + 2 * JITTER * self._rng())

    async def send(self, config: SlackConfig, payload: dict[str, Any]) -> SlackDelivery:
        """Send one message.

        Args:
            config: Project Slack configuration
            payload: Slack message body (text, blocks, thread_ts)

        Returns:
            SlackDelivery describing the final outcome
        """
        url, headers, body = self._request(config, payload)

        client = self._http_client or httpx.AsyncClient()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._overall_budget
        last: Optional[_Attempt] = None
        attempt = 0
        try:
            while attempt < self._attempts:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                attempt += 1
                last = await self._attempt(
                    client, url, headers, body, min(self._per_attempt_timeout, remaining)
                )
                if last.ok:
                    return SlackDelivery(
                        ok=True, attempts=attempt, ts=last.ts, status_code=last.status_code
                    )
                if not last.retryable:
                    logger.warning(
                        f"Slack rejected message for project {config.project_id}: {last.error}"
                    )
                    return SlackDelivery(
                        ok=False,
                        attempts=attempt,
                        status_code=last.status_code,
                        error=last.error,
                        permanent=True,
                    )
                if attempt >= self._attempts:
                    break

                delay = self.backoff_delay(attempt)
                if last.retry_after is not None:
                    delay = max(delay, last.retry_after)
                if loop.time() + delay >= deadline:
                    break
                logger.warning(
                    f"Slack attempt {attempt}/{self._attempts} failed ({last.error}), "
                    f"retrying in {delay:.2f}s"
                )
                await self._sleep(delay)
        finally:
            if self._owns_client and not self._http_client:
                await client.aclose()

        error = last.error if last else "Overall Slack budget exhausted"
        return SlackDelivery(
            ok=False,
            attempts=attempt,
            status_code=last.status_code if last else None,
            error=error,
        )

    def _request(
        self, config: SlackConfig, payload: dict[str, Any]
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        """Pick endpoint, headers and body for the configured variant."""
        if config.uses_bot_token:
            body = dict(payload)
            body["channel"] = config.channel_id
            headers = {
                "Authorization": f"Bearer {config.access_token}",
                "Content-Type": "application/json; charset=utf-8",
            }
            return POST_MESSAGE_URL, headers, body
        return config.webhook_url, {"Content-Type": "application/json"}, payload

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any],
        timeout: float,
    ) -> _Attempt:
        try:
            response = await asyncio.wait_for(
                client.post(url, json=body, headers=headers, timeout=timeout),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return _Attempt(retryable=True, error=f"Timed out after {timeout:.1f}s")
        except httpx.TransportError as e:
            return _Attempt(retryable=True, error=f"{type(e).__name__}: {e}")
        except httpx.HTTPError as e:
            return _Attempt(error=f"{type(e).__name__}: {e}")

        status = response.status_code
        if status == 429 or status >= 500:
            return _Attempt(
                retryable=True,
                status_code=status,
                error=f"HTTP {status}",
                retry_after=_retry_after(response),
            )
        if status >= 400:
            return _Attempt(status_code=status, error=f"HTTP {status}: {response.text[:200]}")

        data = _json_body(response)
        if isinstance(data, dict):
            if data.get("ok") is False:
                return _Attempt(status_code=status, error=f"Slack error: {data.get('error')}")
            ts = data.get("ts") or (data.get("message") or {}).get("ts")
            return _Attempt(ok=True, status_code=status, ts=str(ts) if ts else None)
        return _Attempt(ok=True, status_code=status)


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None
