"""Application settings using Pydantic."""

from datetime import timedelta
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


MAX_CACHE_TTL = timedelta(seconds=60)


class DatabaseSettings(BaseSettings):
    """Relational store configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="DATABASE_",
        extra="ignore",
    )

    # Any SQLAlchemy async URL: sqlite+aiosqlite:///... or postgresql+asyncpg://...
    url: str = Field(default="sqlite+aiosqlite:///./attention.db")
    echo: bool = Field(default=False)


class FanoutSettings(BaseSettings):
    """Attention fanout, Slack delivery and due-date scanning knobs."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FANOUT_",
        extra="ignore",
    )

    due_soon_window: timedelta = Field(default=timedelta(hours=24))

    slack_retry_attempts: int = Field(default=3, ge=1)
    slack_per_attempt_timeout: timedelta = Field(default=timedelta(seconds=5))
    slack_overall_budget: timedelta = Field(default=timedelta(seconds=30))
    slack_backoff_base: timedelta = Field(default=timedelta(milliseconds=250))
    slack_backoff_factor: float = Field(default=4.0, ge=1.0)
    slack_timezone: str = Field(default="UTC")

    scanner_tick: timedelta = Field(default=timedelta(seconds=60))

    planner_txn_deadline: timedelta = Field(default=timedelta(seconds=2))
    planner_transient_retries: int = Field(default=3, ge=0)

    membership_cache_ttl: timedelta = Field(default=timedelta(seconds=30))
    cache_max_entries: int = Field(default=1024, ge=1)

    done_stage: str = Field(default="done")
    # Comma-separated list of stages that never get due-date attention
    terminal_stages: str = Field(default="done")
    comment_excerpt_length: int = Field(default=200, ge=1)

    @field_validator("membership_cache_ttl")
    @classmethod
    def _bounded_ttl(cls, value: timedelta) -> timedelta:
        if value > MAX_CACHE_TTL:
            raise ValueError("membership_cache_ttl must be at most 60 seconds")
        return value

    def get_terminal_stages(self) -> set[str]:
        """Get the set of terminal stage ids."""
        stages = {s.strip() for s in self.terminal_stages.split(",") if s.strip()}
        stages.add(self.done_stage)
        return stages


class SchedulerSettings(BaseSettings):
    """Scheduler configuration."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_", extra="ignore")

    enabled: bool = Field(default=True)
    timezone: str = Field(default="UTC")
    outbox_drain_interval: timedelta = Field(default=timedelta(seconds=5))
    # Must outlast the longest redelivery delay of any event source
    event_retention: timedelta = Field(default=timedelta(days=7))
    retention_sweep_interval: timedelta = Field(default=timedelta(hours=1))
    # Comma-separated job names registered but not scheduled in this process
    disabled_jobs: str = Field(default="")

    def get_disabled_jobs(self) -> list[str]:
        return [name.strip() for name in self.disabled_jobs.split(",") if name.strip()]


class AppSettings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = Field(default=False)
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    log_level: str = Field(default="INFO")

    # Nested settings - manually create to avoid env prefix issues
    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def fanout(self) -> FanoutSettings:
        return FanoutSettings()

    @property
    def scheduler(self) -> SchedulerSettings:
        return SchedulerSettings()


@lru_cache
def get_settings() -> AppSettings:
    """Get cached application settings."""
    return AppSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
