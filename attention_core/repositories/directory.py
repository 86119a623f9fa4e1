"""Project directory: members, handles, user names and Slack configuration.

Lookups are cached in bounded TTL caches. The caches are never
authoritative; writes made by the application become visible within the TTL.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.models import ProjectRole, SlackConfig
from .cache import TTLCache
from .database import Database
from .schema import ProjectMemberRow, SlackIntegrationRow, UserRow

logger = logging.getLogger(__name__)


def _to_slack_config(row: SlackIntegrationRow) -> SlackConfig:
    return SlackConfig(
        project_id=row.project_id,
        webhook_url=row.webhook_url,
        channel_id=row.channel_id,
        channel_name=row.channel_name,
        access_token=row.access_token,
        timezone=row.timezone,
        on_create=bool(row.notify_on_task_create),
        on_update=bool(row.notify_on_task_update),
        on_delete=bool(row.notify_on_task_delete),
        on_move=bool(row.notify_on_task_move),
        on_complete=bool(row.notify_on_task_complete),
        created_by=row.created_by,
    )


class ProjectDirectory:
    """Cached read access to membership and per-project integrations."""

    def __init__(
        self,
        database: Database,
        *,
        ttl_seconds: float = 30.0,
        max_entries: int = 1024,
    ):
        """Initialize directory.

        Args:
            database: Database providing sessions
            ttl_seconds: Cache TTL, at most 60 seconds
            max_entries: Cache size bound per lookup kind
        """
        self._db = database
        self._members: TTLCache[dict[str, ProjectRole]] = TTLCache(ttl_seconds, max_entries)
        self._handles: TTLCache[dict[str, str]] = TTLCache(ttl_seconds, max_entries)
        self._slack: TTLCache[Optional[SlackConfig]] = TTLCache(ttl_seconds, max_entries)
        self._names: TTLCache[str] = TTLCache(ttl_seconds, max_entries)

    @asynccontextmanager
    async def _reading(self, session: Optional[AsyncSession]) -> AsyncIterator[AsyncSession]:
        if session is not None:
            yield session
            return
        async with self._db.session() as own:
            yield own

    async def members(
        self, project_id: str, session: Optional[AsyncSession] = None
    ) -> dict[str, ProjectRole]:
        """Map of member user id to role."""
        cached = self._members.get(project_id)
        if cached is not None:
            return cached

        async with self._reading(session) as s:
            rows = (
                await s.execute(
                    select(ProjectMemberRow.user_id, ProjectMemberRow.role).where(
                        ProjectMemberRow.project_id == project_id
                    )
                )
            ).all()

        members: dict[str, ProjectRole] = {}
        for user_id, role in rows:
            try:
                members[user_id] = ProjectRole(role)
            except ValueError:
                logger.warning(f"Unknown role {role!r} for {user_id} in {project_id}")
                members[user_id] = ProjectRole.READER
        self._members.set(project_id, members)
        return members

    async def is_member(
        self, project_id: str, user_id: str, session: Optional[AsyncSession] = None
    ) -> bool:
        return user_id in await self.members(project_id, session)

    async def approvers(
        self, project_id: str, session: Optional[AsyncSession] = None
    ) -> set[str]:
        """Members allowed to approve completed tasks."""
        members = await self.members(project_id, session)
        return {user_id for user_id, role in members.items() if role.can_approve}

    async def member_handles(
        self, project_id: str, session: Optional[AsyncSession] = None
    ) -> dict[str, str]:
        """Map of lower-cased handle to user id, for members only."""
        cached = self._handles.get(project_id)
        if cached is not None:
            return cached

        async with self._reading(session) as s:
            rows = (
                await s.execute(
                    select(func.lower(UserRow.handle), UserRow.id)
                    .join(ProjectMemberRow, ProjectMemberRow.user_id == UserRow.id)
                    .where(ProjectMemberRow.project_id == project_id)
                )
            ).all()

        handles = {handle: user_id for handle, user_id in rows if handle}
        self._handles.set(project_id, handles)
        return handles

    async def display_name(
        self, user_id: Optional[str], session: Optional[AsyncSession] = None
    ) -> str:
        """Human readable label for a user."""
        if not user_id:
            return "Someone"
        cached = self._names.get(user_id)
        if cached is not None:
            return cached

        async with self._reading(session) as s:
            row = await s.get(UserRow, user_id)

        if row is None:
            name = "Someone"
        else:
            name = row.display_name or row.handle or (row.email or "").split("@")[0] or "Someone"
        self._names.set(user_id, name)
        return name

    async def slack_config(
        self, project_id: str, session: Optional[AsyncSession] = None
    ) -> Optional[SlackConfig]:
        """The project's Slack integration, or None."""
        if self._slack.contains(project_id):
            return self._slack.get(project_id)

        async with self._reading(session) as s:
            row = (
                await s.execute(
                    select(SlackIntegrationRow).where(
                        SlackIntegrationRow.project_id == project_id
                    )
                )
            ).scalar_one_or_none()

        config = _to_slack_config(row) if row else None
        self._slack.set(project_id, config)
        return config

    def invalidate(self, project_id: Optional[str] = None) -> None:
        """Drop cached entries for one project, or everything."""
        if project_id is None:
            for cache in (self._members, self._handles, self._slack, self._names):
                cache.clear()
            return
        self._members.invalidate(project_id)
        self._handles.invalidate(project_id)
        self._slack.invalidate(project_id)
