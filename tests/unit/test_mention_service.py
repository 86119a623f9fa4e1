"""Tests for MentionService."""

import pytest
from unittest.mock import MagicMock

from attention_core.domain.errors import BadInputError
from attention_core.domain.events import CommentCreated, TaskCreated, TaskUpdated
from attention_core.domain.models import CommentSnapshot, MentionRecord
from attention_core.services.mention_service import MentionService, MentionSource

from conftest import T0, make_task


@pytest.fixture
async def task(team):
    task = make_task()
    await team.task(task)
    await team.comment("c1", "t1", "alice", "placeholder")
    return task


def comment_source(body: str, author: str = "alice") -> MentionSource:
    return MentionSource(body=body, project_id="p1", author_id=author, task_id="t1", comment_id="c1")


class TestExtract:
    """Tests for MentionService.extract."""

    @pytest.mark.asyncio
    async def test_resolves_member_handles(self, core, task, database):
        async with database.transaction() as session:
            results = await core.mentions.extract(
                session, comment_source("@Bob and @carol, please review"), T0
            )

        assert [(m.mentioned_user_id, created) for m, created in results] == [
            ("bob", True),
            ("carol", True),
        ]
        assert results[0][0].context == "@Bob and @carol, please review"

    @pytest.mark.asyncio
    async def test_drops_non_members_unknown_handles_and_author(self, core, task, database):
        async with database.transaction() as session:
            results = await core.mentions.extract(
                session, comment_source("@erin @nobody @alice @bob"), T0
            )

        assert [m.mentioned_user_id for m, _ in results] == ["bob"]

    @pytest.mark.asyncio
    async def test_trailing_period_resolves(self, core, task, database):
        async with database.transaction() as session:
            results = await core.mentions.extract(session, comment_source("thanks @dave."), T0)
        assert [m.mentioned_user_id for m, _ in results] == ["dave"]

    @pytest.mark.asyncio
    async def test_rerun_on_same_body_is_idempotent(self, core, task, database):
        async with database.transaction() as session:
            first = await core.mentions.extract(session, comment_source("@bob"), T0)
        async with database.transaction() as session:
            second = await core.mentions.extract(session, comment_source("@bob"), T0)

        assert second[0][1] is False
        assert second[0][0].mention_id == first[0][0].mention_id
        assert len(await core.store.list_mentions(mentioned_user_id="bob")) == 1

    @pytest.mark.asyncio
    async def test_body_without_tokens_skips_lookup(self, core, task, database):
        async with database.transaction() as session:
            assert await core.mentions.extract(session, comment_source("no mentions"), T0) == []

    @pytest.mark.asyncio
    async def test_invalid_body_is_bad_input(self, core, task, database):
        with pytest.raises(BadInputError):
            async with database.transaction() as session:
                await core.mentions.extract(session, comment_source("x\x00 @bob"), T0)


class TestRecord:
    """Tests for MentionService.record."""

    def _mention(self, mentioned: str, mentioner: str = "alice") -> MentionRecord:
        return MentionRecord("m1", mentioned, mentioner, "p1", T0, task_id="t1")

    @pytest.mark.asyncio
    async def test_rejects_self_mention(self, core, task, database):
        with pytest.raises(BadInputError):
            async with database.transaction() as session:
                await core.mentions.record(session, self._mention("alice"))

    @pytest.mark.asyncio
    async def test_rejects_non_member(self, core, task, database):
        with pytest.raises(BadInputError):
            async with database.transaction() as session:
                await core.mentions.record(session, self._mention("erin"))

    @pytest.mark.asyncio
    async def test_stores_member_mention(self, core, task, database):
        async with database.transaction() as session:
            stored, created = await core.mentions.record(session, self._mention("bob"))
        assert created
        assert stored.source_key == "task:t1"


class TestSourceFor:
    """Tests for picking the body to scan."""

    @pytest.fixture
    def service(self):
        return MentionService(MagicMock(), MagicMock())

    def test_comment_events_scan_the_comment(self, service):
        comment = CommentSnapshot("c1", "t1", "bob", "hi @alice", T0)
        event = CommentCreated(
            event_id="e1", occurred_at=T0, project_id="p1", comment=comment, task=make_task()
        )
        source = service.source_for(event)
        assert source.comment_id == "c1"
        assert source.author_id == "bob"

    def test_task_created_scans_description(self, service):
        task = make_task(description="@bob owns this")
        event = TaskCreated(
            event_id="e1", occurred_at=T0, project_id="p1", actor_user_id="alice", task=task
        )
        source = service.source_for(event)
        assert source.body == "@bob owns this"
        assert source.comment_id is None

    def test_task_updated_without_description_change_is_ignored(self, service):
        old = make_task(description="@bob")
        new = make_task(description="@bob", title="Renamed")
        event = TaskUpdated(
            event_id="e1",
            occurred_at=T0,
            project_id="p1",
            old=old,
            new=new,
            changes={"title": (old.title, new.title)},
        )
        assert service.source_for(event) is None

    @pytest.mark.asyncio
    async def test_mention_events_wrap_records(self, core, task, database):
        comment = CommentSnapshot("c1", "t1", "alice", "@bob look", T0)
        event = CommentCreated(
            event_id="e1", occurred_at=T0, project_id="p1", comment=comment, task=task
        )
        async with database.transaction() as session:
            events = await core.mentions.mention_events(session, event)

        assert [e.event_id for e in events] == ["e1:mention:bob"]
        assert events[0].task == task
