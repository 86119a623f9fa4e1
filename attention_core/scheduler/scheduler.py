"""Job scheduler using APScheduler."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from .jobs import Job, JobRegistry, create_default_jobs

logger = logging.getLogger(__name__)


class TaskScheduler:
    """Runs registered jobs on an asyncio scheduler.

    Each job runs at most once at a time; missed runs are coalesced.
    """

    def __init__(
        self,
        registry: JobRegistry,
        timezone: str = "UTC",
    ):
        """Initialize scheduler.

        Args:
            registry: Job registry with registered jobs
            timezone: Timezone for cron scheduling
        """
        self._registry = registry
        self._timezone = timezone
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    def start(self) -> None:
        """Start the scheduler. Must be called with a running event loop."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        for job in self._registry.list_enabled():
            self._add_job_to_scheduler(job)

        self._scheduler.start()
        self._running = True
        logger.info(f"Scheduler started with {len(self._registry.list_enabled())} jobs")

    def stop(self) -> None:
        if not self._running or not self._scheduler:
            return

        self._scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Scheduler stopped")

    def trigger_for(self, job: Job):
        """Build the APScheduler trigger of a job."""
        if job.cron is not None:
            return CronTrigger.from_crontab(job.cron, timezone=self._timezone)
        return IntervalTrigger(
            seconds=job.interval.total_seconds(), timezone=self._timezone
        )

    def _add_job_to_scheduler(self, job: Job) -> None:
        if not self._scheduler:
            return

        async def wrapped_job():
            try:
                result = job.func(*job.args, **job.kwargs)
                if asyncio.iscoroutine(result):
                    result = await result
                job.last_run = datetime.now(timezone.utc)
                job.runs += 1
                logger.info(f"Job {job.name} completed successfully")
                return result
            except Exception as e:
                logger.error(f"Job {job.name} failed: {e}")
                raise

        self._scheduler.add_job(
            wrapped_job,
            trigger=self.trigger_for(job),
            id=job.name,
            name=job.description or job.name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.debug(f"Added job: {job.name} ({job.schedule})")

    async def run_job_now(self, name: str) -> Any:
        return await self._registry.run_job(name)

    def get_job_status(self, name: str) -> Optional[dict]:
        """Get status of a job.

        Args:
            name: Job name

        Returns:
            Job status dict or None if not found
        """
        job = self._registry.get(name)
        if not job:
            return None

        status = {
            "name": job.name,
            "description": job.description,
            "schedule": job.schedule,
            "enabled": job.enabled,
            "runs": job.runs,
            "last_run": job.last_run.isoformat() if job.last_run else None,
        }

        if self._running and self._scheduler:
            apjob = self._scheduler.get_job(name)
            if apjob:
                status["next_run"] = (
                    apjob.next_run_time.isoformat()
                    if apjob.next_run_time
                    else None
                )

        return status

    def list_jobs(self) -> list[dict]:
        return [
            status
            for job in self._registry.list_jobs()
            if (status := self.get_job_status(job.name))
        ]


def build_scheduler(container) -> TaskScheduler:
    """Scheduler over the default jobs, honouring ``SCHEDULER_DISABLED_JOBS``."""
    registry = JobRegistry()
    create_default_jobs(registry, container)
    return TaskScheduler(registry, timezone=container.settings.scheduler.timezone)
