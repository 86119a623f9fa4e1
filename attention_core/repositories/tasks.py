"""Read access to tasks and comments, plus the Slack thread pointers."""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.models import ApprovalStatus, TaskPriority, TaskSnapshot
from .database import Database
from .schema import CommentRow, TaskRow


def task_to_snapshot(row: TaskRow) -> TaskSnapshot:
    """Convert a task row to the snapshot events carry."""
    return TaskSnapshot(
        task_id=row.id,
        project_id=row.project_id,
        title=row.title,
        stage=row.stage,
        assignees=frozenset(row.assignees or ()),
        priority=TaskPriority(row.priority),
        description=row.description,
        due_at=row.due_at,
        created_by=row.created_by,
        watchers=frozenset(row.watchers or ()),
        approval_status=ApprovalStatus(row.approval_status),
        updated_at=row.updated_at,
        slack_thread_ts=row.slack_thread_ts,
        slack_message_ts=row.slack_message_ts,
    )


class TaskRepository:
    """Tasks are owned by the application; only the Slack pointers are written here."""

    def __init__(self, database: Database):
        self._db = database

    @asynccontextmanager
    async def _reading(self, session: Optional[AsyncSession]) -> AsyncIterator[AsyncSession]:
        if session is not None:
            yield session
            return
        async with self._db.session() as own:
            yield own

    async def lock(self, session: AsyncSession, task_id: str) -> Optional[TaskRow]:
        """Take the row lock on a task for the rest of the transaction.

        SELECT ... FOR UPDATE on PostgreSQL. SQLite has no row locks; there the
        transaction already holds the database write lock from BEGIN IMMEDIATE.
        """
        result = await session.execute(
            select(TaskRow).where(TaskRow.id == task_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def get(
        self, task_id: str, session: Optional[AsyncSession] = None
    ) -> Optional[TaskSnapshot]:
        async with self._reading(session) as s:
            row = await s.get(TaskRow, task_id)
            return task_to_snapshot(row) if row else None

    async def thread_participants(
        self,
        session: AsyncSession,
        task_id: str,
        exclude_comment_id: Optional[str] = None,
    ) -> set[str]:
        """Authors of the comments already on the task."""
        query = select(CommentRow.author_id).where(CommentRow.task_id == task_id).distinct()
        if exclude_comment_id is not None:
            query = query.where(CommentRow.id != exclude_comment_id)
        return set((await session.execute(query)).scalars().all())

    async def list_due(
        self,
        now: datetime,
        window: timedelta,
        terminal_stages: Iterable[str],
        session: Optional[AsyncSession] = None,
    ) -> list[TaskSnapshot]:
        """Tasks in non-terminal stages due before ``now + window``, earliest first."""
        query = (
            select(TaskRow)
            .where(
                TaskRow.due_at.is_not(None),
                TaskRow.due_at <= now + window,
                TaskRow.stage.not_in(list(terminal_stages)),
            )
            .order_by(TaskRow.due_at.asc(), TaskRow.id.asc())
        )
        async with self._reading(session) as s:
            rows = (await s.execute(query)).scalars().all()
            return [task_to_snapshot(row) for row in rows]

    async def set_slack_pointers(
        self,
        session: AsyncSession,
        task_id: str,
        *,
        message_ts: str,
        thread_ts: Optional[str] = None,
    ) -> bool:
        """Record the latest Slack message, and the new anchor when one was posted.

        Returns:
            False if the task row no longer exists
        """
        values: dict[str, str] = {"slack_message_ts": message_ts}
        if thread_ts is not None:
            values["slack_thread_ts"] = thread_ts
        result = await session.execute(
            update(TaskRow).where(TaskRow.id == task_id).values(**values)
        )
        return bool(result.rowcount)
