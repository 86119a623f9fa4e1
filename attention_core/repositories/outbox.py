"""Transactional event outbox.

The application appends raw event envelopes in the same transaction as the
write that produced them; ``drain`` feeds them to the consumer afterwards, so
a failed publish never rolls back the originating write.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional, Protocol
import logging

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import BadInputError, FatalError
from ..domain.protocols import Clock
from .database import Database
from .schema import EventOutboxRow, utcnow

logger = logging.getLogger(__name__)


PENDING = "pending"
DELIVERED = "delivered"
FAILED = "failed"


class RawEventSink(Protocol):
    async def process_raw(self, envelope: dict[str, Any]) -> Any:
        ...


@dataclass
class DrainReport:
    """Summary of one drain pass."""

    delivered: int = 0
    rejected: int = 0
    retried: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


class EventOutbox:
    """Append-and-drain queue of raw event envelopes."""

    def __init__(
        self,
        database: Database,
        *,
        max_attempts: int = 10,
        backoff_base: timedelta = timedelta(seconds=1),
        backoff_max: timedelta = timedelta(minutes=5),
        clock: Clock = utcnow,
    ):
        self._db = database
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max
        self._clock = clock

    async def publish(
        self,
        envelope: dict[str, Any],
        session: Optional[AsyncSession] = None,
    ) -> int:
        """Append an envelope, joining the caller's transaction when given.

        Returns:
            Outbox row id
        """
        row = EventOutboxRow(
            event_id=envelope.get("event_id"),
            payload=envelope,
            status=PENDING,
            attempts=0,
            next_attempt_at=self._clock(),
            created_at=self._clock(),
        )
        if session is not None:
            session.add(row)
            await session.flush()
            return row.id

        async with self._db.transaction() as own:
            own.add(row)
            await own.flush()
            return row.id

    def _backoff(self, attempts: int) -> timedelta:
        delay = self._backoff_base * (2 ** max(attempts - 1, 0))
        return min(delay, self._backoff_max)

    async def drain(self, sink: RawEventSink, limit: int = 100) -> DrainReport:
        """Deliver due envelopes in publish order.

        A row that fails blocks later rows of the same task until it is
        delivered or gives up, so per-task order survives retries.

        Raises:
            FatalError: If the consumer reports the store unreachable
        """
        report = DrainReport()
        now = self._clock()

        async with self._db.session() as session:
            rows = (
                await session.execute(
                    select(EventOutboxRow)
                    .where(EventOutboxRow.status == PENDING)
                    .order_by(EventOutboxRow.id.asc())
                    .limit(limit)
                )
            ).scalars().all()

        blocked_tasks: set[Any] = set()
        for row in rows:
            task_key = (row.payload or {}).get("task_id")
            if task_key in blocked_tasks or row.next_attempt_at > now:
                if task_key is not None:
                    blocked_tasks.add(task_key)
                report.skipped += 1
                continue

            try:
                outcome = await sink.process_raw(row.payload)
            except BadInputError as e:
                # The consumer already recorded the rejection
                await self._finish(row.id, DELIVERED, str(e))
                report.rejected += 1
                continue
            except FatalError:
                raise
            except Exception as e:
                attempts = row.attempts + 1
                error = f"{type(e).__name__}: {e}"
                report.errors.append(error)
                if task_key is not None:
                    blocked_tasks.add(task_key)
                if attempts >= self._max_attempts:
                    logger.error(f"Outbox row {row.id} failed after {attempts} attempts: {error}")
                    await self._finish(row.id, FAILED, error, attempts=attempts)
                    report.failed += 1
                else:
                    logger.warning(f"Outbox row {row.id} attempt {attempts} failed: {error}")
                    await self._reschedule(row.id, attempts, error, now + self._backoff(attempts))
                    report.retried += 1
                continue

            if getattr(outcome, "rejected", False):
                await self._finish(row.id, DELIVERED, getattr(outcome, "error", None))
                report.rejected += 1
                continue

            await self._finish(row.id, DELIVERED, None)
            report.delivered += 1

        if rows:
            logger.info(
                f"Outbox drain: {report.delivered} delivered, {report.rejected} rejected, "
                f"{report.retried} retried, {report.failed} failed"
            )
        return report

    async def _finish(
        self,
        row_id: int,
        status: str,
        error: Optional[str],
        attempts: Optional[int] = None,
    ) -> None:
        async with self._db.transaction() as session:
            row = await session.get(EventOutboxRow, row_id)
            if row is None:
                return
            row.status = status
            row.last_error = error
            if attempts is not None:
                row.attempts = attempts
            if status == DELIVERED:
                row.delivered_at = self._clock()

    async def _reschedule(
        self, row_id: int, attempts: int, error: str, next_attempt_at: datetime
    ) -> None:
        async with self._db.transaction() as session:
            row = await session.get(EventOutboxRow, row_id)
            if row is None:
                return
            row.attempts = attempts
            row.last_error = error
            row.next_attempt_at = next_attempt_at

    async def prune(self, older_than: timedelta) -> int:
        """Delete delivered rows older than the retention window.

        Failed rows are kept for inspection.
        """
        cutoff = self._clock() - older_than
        async with self._db.transaction() as session:
            result = await session.execute(
                delete(EventOutboxRow).where(
                    EventOutboxRow.status == DELIVERED,
                    EventOutboxRow.delivered_at < cutoff,
                )
            )
        return result.rowcount or 0

    async def count(self, status: str = PENDING) -> int:
        async with self._db.session() as session:
            return (
                await session.execute(
                    select(func.count()).where(EventOutboxRow.status == status)
                )
            ).scalar_one()
