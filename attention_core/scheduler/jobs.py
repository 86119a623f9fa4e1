"""Job definitions for the scheduler."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Any, Optional
from dataclasses import dataclass, field
import logging

logger = logging.getLogger(__name__)


@dataclass
class Job:
    """Definition of a scheduled job.

    Exactly one of ``cron`` and ``interval`` is set.
    """

    name: str
    func: Callable[..., Any]
    cron: Optional[str] = None
    interval: Optional[timedelta] = None
    description: str = ""
    enabled: bool = True
    args: tuple = field(default_factory=tuple)
    kwargs: dict = field(default_factory=dict)
    last_run: Optional[datetime] = None
    runs: int = 0

    def __post_init__(self) -> None:
        if (self.cron is None) == (self.interval is None):
            raise ValueError(f"Job {self.name} needs exactly one of cron or interval")
        if self.interval is not None and self.interval <= timedelta(0):
            raise ValueError(f"Job {self.name} interval must be positive")

    @property
    def schedule(self) -> str:
        if self.cron is not None:
            return f"cron {self.cron}"
        return f"every {self.interval.total_seconds():g}s"


class JobRegistry:
    """Registry for managing scheduled jobs."""

    def __init__(self):
        self._jobs: dict[str, Job] = {}

    def register(
        self,
        name: str,
        func: Callable[..., Any],
        cron: Optional[str] = None,
        interval: Optional[timedelta] = None,
        description: str = "",
        enabled: bool = True,
        args: tuple = (),
        kwargs: Optional[dict] = None,
    ) -> Job:
        """Register a new job, replacing any job of the same name.

        Args:
            name: Unique job name
            func: Function or coroutine function to execute
            cron: Cron expression for scheduling
            interval: Fixed interval between runs
            description: Job description
            enabled: Whether job is enabled
            args: Positional arguments for func
            kwargs: Keyword arguments for func

        Returns:
            Created Job instance

        Raises:
            ValueError: If neither or both of cron and interval are given
        """
        job = Job(
            name=name,
            func=func,
            cron=cron,
            interval=interval,
            description=description,
            enabled=enabled,
            args=args,
            kwargs=kwargs or {},
        )
        self._jobs[name] = job
        return job

    def get(self, name: str) -> Optional[Job]:
        return self._jobs.get(name)

    def list_jobs(self) -> list[Job]:
        return list(self._jobs.values())

    def list_enabled(self) -> list[Job]:
        return [job for job in self._jobs.values() if job.enabled]

    def disable(self, name: str) -> bool:
        job = self._jobs.get(name)
        if job:
            job.enabled = False
            return True
        return False

    async def run_job(self, name: str) -> Any:
        """Run a job immediately.

        Args:
            name: Job name to run

        Returns:
            Result from job execution

        Raises:
            KeyError: If job not found
        """
        job = self._jobs.get(name)
        if not job:
            raise KeyError(f"Job not found: {name}")

        result = job.func(*job.args, **job.kwargs)
        if asyncio.iscoroutine(result):
            result = await result

        job.last_run = datetime.now(timezone.utc)
        job.runs += 1
        return result


def create_default_jobs(registry: JobRegistry, container) -> None:
    """Register the due-date scan, the outbox drain and the retention sweep.

    Args:
        registry: Job registry to add jobs to
        container: DI container for service access
    """
    fanout = container.settings.fanout
    scheduler_settings = container.settings.scheduler

    async def due_date_scan():
        """Emit due_soon/overdue events for tasks near their due date."""
        return await container.due_date_scanner.tick()

    async def drain_event_outbox():
        """Feed pending outbox envelopes to the consumer."""
        return await container.outbox.drain(container.event_consumer)

    registry.register(
        name="due_date_scan",
        func=due_date_scan,
        interval=fanout.scanner_tick,
        description="Synthesize due-date threshold events",
    )

    registry.register(
        name="drain_event_outbox",
        func=drain_event_outbox,
        interval=scheduler_settings.outbox_drain_interval,
        description="Deliver pending events from the outbox",
    )

    async def prune_event_history():
        """Delete delivered outbox rows and old processed-event claims."""
        retention = scheduler_settings.event_retention
        outbox_rows = await container.outbox.prune(retention)
        claims = await container.attention_store.prune_processed_events(retention)
        if outbox_rows or claims:
            logger.info(f"Pruned {outbox_rows} outbox rows and {claims} processed-event claims")
        return outbox_rows, claims

    registry.register(
        name="prune_event_history",
        func=prune_event_history,
        interval=scheduler_settings.retention_sweep_interval,
        description="Apply the retention window to the outbox and event claims",
    )

    for name in scheduler_settings.get_disabled_jobs():
        if not registry.disable(name):
            logger.warning(f"Cannot disable unknown job: {name}")
