"""Scheduler module for background jobs."""

from .scheduler import TaskScheduler, build_scheduler
from .jobs import Job, JobRegistry, create_default_jobs

__all__ = ["TaskScheduler", "Job", "JobRegistry", "build_scheduler", "create_default_jobs"]
