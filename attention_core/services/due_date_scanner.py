"""Due-Date Scanner: periodically synthesizes due_soon and overdue events."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
import asyncio
import logging

from ..config.settings import FanoutSettings
from ..domain.errors import FanoutError, FatalError
from ..domain.events import DueThresholdCrossed
from ..domain.models import DueThreshold, TaskSnapshot
from ..domain.protocols import Clock
from ..repositories.schema import utcnow
from ..repositories.tasks import TaskRepository
from .event_consumer import EventConsumer

logger = logging.getLogger(__name__)


@dataclass
class ScanReport:
    """What one tick emitted."""

    scanned_at: datetime
    due_soon: int = 0
    overdue: int = 0
    created: int = 0
    task_ids: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def emitted(self) -> int:
        return self.due_soon + self.overdue


class DueDateScanner:
    """Emits DueThresholdCrossed events for tasks near or past their due date.

    Re-emitting is safe: the planner collapses repeats on their dedup keys.
    """

    def __init__(
        self,
        tasks: TaskRepository,
        consumer: EventConsumer,
        settings: Optional[FanoutSettings] = None,
        clock: Clock = utcnow,
    ):
        """Initialize scanner.

        Args:
            tasks: Task reads
            consumer: Consumer the synthesized events go through
            settings: Fanout settings (window, tick, terminal stages)
            clock: Source of the current time
        """
        self._tasks = tasks
        self._consumer = consumer
        self._settings = settings or FanoutSettings()
        self._clock = clock

    @staticmethod
    def threshold_for(task: TaskSnapshot, now: datetime) -> DueThreshold:
        return DueThreshold.OVERDUE if task.is_overdue(now) else DueThreshold.SOON

    async def tick(self) -> ScanReport:
        """Run one pass, earliest deadline first."""
        now = self._clock()
        report = ScanReport(scanned_at=now)
        due = await self._tasks.list_due(
            now, self._settings.due_soon_window, self._settings.get_terminal_stages()
        )

        for task in due:
            threshold = self.threshold_for(task, now)
            event = DueThresholdCrossed(
                event_id=f"scan:{task.task_id}:{threshold.value}:{now.isoformat()}",
                occurred_at=now,
                project_id=task.project_id,
                task_id=task.task_id,
                task=task,
                threshold=threshold,
            )
            try:
                result = await self._consumer.process(event)
            except FatalError:
                raise
            except FanoutError as e:
                logger.error(f"Due-date scan skipped task {task.task_id}: {e}")
                report.failed.append(task.task_id)
                continue
            if threshold is DueThreshold.OVERDUE:
                report.overdue += 1
            else:
                report.due_soon += 1
            report.task_ids.append(task.task_id)
            if result.fanout is not None:
                report.created += result.fanout.created

        if report.emitted or report.failed:
            logger.info(
                f"Due-date scan: {report.due_soon} due soon, {report.overdue} overdue, "
                f"{report.created} new items, {len(report.failed)} failed"
            )
        return report

    async def run_forever(self) -> None:
        """Tick every ``scanner_tick`` until cancelled."""
        interval = self._settings.scanner_tick.total_seconds()
        logger.info(f"Due-date scanner started, tick every {interval:.0f}s")
        try:
            while True:
                try:
                    await self.tick()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Due-date scan failed: {e}")
                    if not self._consumer.healthy:
                        raise
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("Due-date scanner stopped")
            raise
