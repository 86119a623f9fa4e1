"""Mention Extractor: finds @handles in bodies and records Mentions."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import BadInputError
from ..domain.events import (
    CommentCreated,
    CommentUpdated,
    DomainEvent,
    MentionCreated,
    TaskCreated,
    TaskUpdated,
)
from ..domain.models import MentionRecord, TaskSnapshot, new_id
from ..parsers.mention_parser import context_snippet, unique_mentions, validate_body
from ..repositories.attention_store import AttentionStore
from ..repositories.directory import ProjectDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MentionSource:
    """A body that may contain mentions, with the ids it belongs to."""

    body: str
    project_id: str
    author_id: str
    task_id: str
    comment_id: Optional[str] = None


class MentionService:
    """Parses bodies, resolves handles against project members, stores Mentions."""

    def __init__(
        self,
        store: AttentionStore,
        directory: ProjectDirectory,
        *,
        context_length: int = 200,
    ) -> None:
        self._store = store
        self._directory = directory
        self._context_length = context_length

    def source_for(self, event: DomainEvent) -> Optional[MentionSource]:
        """Find the body an event asks us to scan, if any."""
        if isinstance(event, (CommentCreated, CommentUpdated)):
            return MentionSource(
                body=event.comment.body,
                project_id=event.project_id,
                author_id=event.comment.author_id,
                task_id=event.comment.task_id,
                comment_id=event.comment.comment_id,
            )
        if isinstance(event, TaskCreated) and event.task.description:
            return self._task_source(event.task, event.actor_user_id)
        if isinstance(event, TaskUpdated) and "description" in event.changes:
            if event.new.description:
                return self._task_source(event.new, event.actor_user_id)
        return None

    def _task_source(self, task: TaskSnapshot, actor: Optional[str]) -> Optional[MentionSource]:
        author = actor or task.created_by
        if not author:
            return None
        return MentionSource(
            body=task.description or "",
            project_id=task.project_id,
            author_id=author,
            task_id=task.task_id,
        )

    async def extract(
        self,
        session: AsyncSession,
        source: MentionSource,
        occurred_at: datetime,
    ) -> list[tuple[MentionRecord, bool]]:
        """Parse a body and store one Mention per resolved member.

        Re-running on the same body returns the stored records with
        ``created=False`` and writes nothing.

        Args:
            session: Session of the planner transaction
            source: Body and ids
            occurred_at: Time the body was written

        Returns:
            List of (mention, created) pairs

        Raises:
            BadInputError: If the body is not valid text
        """
        body = validate_body(source.body)
        tokens = unique_mentions(body)
        if not tokens:
            return []

        handles = await self._directory.member_handles(source.project_id, session)
        results: list[tuple[MentionRecord, bool]] = []
        seen: set[str] = set()

        for token in tokens:
            user_id = next((handles[c] for c in token.candidates if c in handles), None)
            if user_id is None:
                logger.debug(f"Dropping unresolved mention @{token.handle}")
                continue
            if user_id == source.author_id or user_id in seen:
                continue
            seen.add(user_id)

            record = MentionRecord(
                mention_id=new_id(),
                mentioned_user_id=user_id,
                mentioner_user_id=source.author_id,
                project_id=source.project_id,
                created_at=occurred_at,
                task_id=source.task_id,
                comment_id=source.comment_id,
                context=context_snippet(body, token.start, token.end, self._context_length),
            )
            stored, created = await self._store.insert_mention(session, record)
            results.append((stored, created))

        return results

    async def record(self, session: AsyncSession, mention: MentionRecord) -> tuple[MentionRecord, bool]:
        """Store a mention that arrived as its own event.

        Raises:
            BadInputError: On a self-mention or a mention of a non-member
        """
        if mention.mentioned_user_id == mention.mentioner_user_id:
            raise BadInputError("Mention of the mentioner themselves", field="mentioned_user_id")
        if not await self._directory.is_member(
            mention.project_id, mention.mentioned_user_id, session
        ):
            raise BadInputError(
                f"User {mention.mentioned_user_id} is not a member of {mention.project_id}",
                field="mentioned_user_id",
            )
        return await self._store.insert_mention(session, mention)

    async def mention_events(
        self,
        session: AsyncSession,
        event: DomainEvent,
    ) -> list[MentionCreated]:
        """Extract mentions for an event and wrap them as MentionCreated events."""
        source = self.source_for(event)
        if source is None:
            return []

        extracted = await self.extract(session, source, event.occurred_at)
        task = getattr(event, "task", None)
        return [
            MentionCreated(
                event_id=f"{event.event_id}:mention:{mention.mentioned_user_id}",
                occurred_at=event.occurred_at,
                project_id=event.project_id,
                actor_user_id=mention.mentioner_user_id,
                task_id=mention.task_id,
                mention=mention,
                task=task,
            )
            for mention, _created in extracted
        ]
