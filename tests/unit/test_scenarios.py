"""End-to-end runs of the pipeline: envelope in, inbox and Slack out."""

import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx

from attention_core.domain.models import AttentionKind, AttentionPriority
from attention_core.notifications.slack_dispatcher import FAILED, SENT, SlackDispatcher
from attention_core.notifications.slack_sender import SlackWebhookSender
from attention_core.repositories.attention_store import AttentionStore
from attention_core.repositories.directory import ProjectDirectory
from attention_core.repositories.tasks import TaskRepository

from conftest import T0, RecordingSender, build_core, envelope, make_task, task_payload


def wire(database, clock, sender):
    dispatcher = SlackDispatcher(
        database,
        ProjectDirectory(database, ttl_seconds=30),
        TaskRepository(database),
        AttentionStore(database, clock=clock),
        sender,
    )
    return build_core(database, clock, dispatcher=dispatcher)


def comment_envelope(task, comment_id, author, body, *, event_type="comment.created", **kwargs):
    return envelope(
        event_type,
        {
            "task": task_payload(task),
            "comment": {"id": comment_id, "user_id": author, "content": body},
        },
        actor=author,
        **kwargs,
    )


class TestMentionScenarios:
    """A comment mentioning a member, then an edit of that comment."""

    @pytest.fixture
    async def task(self, team):
        await team.slack("p1")
        task = make_task(assignees=("dave",), created_by="alice")
        await team.task(task)
        await team.comment("c1", "t1", "carol", "@bob can you review?")
        return task

    @pytest.mark.asyncio
    async def test_mention_in_new_comment(self, database, clock, task):
        sender = RecordingSender(ts_start=T0.timestamp())
        core = wire(database, clock, sender)

        result = await core.consumer.process_raw(
            comment_envelope(task, "c1", "carol", "@bob can you review?", event_id="c1-created")
        )

        (mention,) = await core.store.list_mentions(mentioned_user_id="bob")
        assert mention.mentioner_user_id == "carol"
        assert (mention.comment_id, mention.task_id, mention.project_id) == ("c1", "t1", "p1")

        (item,) = await core.store.find_items(user_id="bob")
        assert item.kind is AttentionKind.MENTION
        assert item.priority is AttentionPriority.HIGH
        assert item.dedup_key == "mention:c1:bob"

        notifications = await core.inbox.notifications("bob")
        assert [n.type for n in notifications] == ["mention"]

        assert result.slack.status == SENT
        assert result.slack.new_anchor
        (payload,) = sender.sent
        assert "thread_ts" not in payload

    @pytest.mark.asyncio
    async def test_editing_comment_adds_nothing(self, database, clock, task):
        core = wire(database, clock, RecordingSender())
        await core.consumer.process_raw(
            comment_envelope(task, "c1", "carol", "@bob can you review?", event_id="c1-created")
        )
        (item,) = await core.store.find_items(user_id="bob")
        await core.inbox.mark_read("bob", [item.id])
        (read,) = await core.store.find_items(user_id="bob")

        result = await core.consumer.process_raw(
            comment_envelope(
                task,
                "c1",
                "carol",
                "@bob can you review? @bob again",
                event_type="comment.updated",
                event_id="c1-edited",
                occurred_at=T0 + timedelta(hours=1),
            )
        )

        assert result.fanout.created == 0
        assert len(await core.store.list_mentions(mentioned_user_id="bob")) == 1
        (after,) = await core.store.find_items(user_id="bob")
        assert after.id == item.id
        assert after.updated_at > read.updated_at
        assert after.read_at == read.read_at


class TestTaskScenarios:
    """Stage moves, due dates and Slack delivery of one task."""

    @pytest.fixture
    def task(self):
        return make_task(assignees=("bob", "carol"), created_by="alice")

    @pytest.mark.asyncio
    async def test_stage_move_fans_out_and_threads(self, database, clock, team, task):
        await team.slack("p1")
        await team.task(task)
        sender = RecordingSender(ts_start=T0.timestamp())
        core = wire(database, clock, sender)

        created = await core.consumer.process_raw(
            envelope("task.created", {"task": task_payload(task)}, event_id="created")
        )
        moved = make_task(assignees=("bob", "carol"), created_by="alice", stage="in_progress")
        result = await core.consumer.process_raw(
            envelope(
                "task.stage_changed",
                {"task": task_payload(moved), "old_stage": "todo"},
                event_id="moved",
                occurred_at=T0 + timedelta(hours=2),
            )
        )

        for user_id in ("bob", "carol"):
            (item,) = await core.store.find_items(user_id=user_id, kind=AttentionKind.STATUS_CHANGE)
            assert item.dedup_key == "status_change:t1:in_progress"
        assert await core.store.find_items(user_id="alice") == []

        assert result.slack.status == SENT
        assert sender.sent[1]["thread_ts"] == created.slack.ts

    @pytest.mark.asyncio
    async def test_scanner_flags_overdue_once(self, database, clock, team):
        await team.task(make_task(assignees=("bob", "carol"), due_at=T0 - timedelta(minutes=30)))
        core = wire(database, clock, RecordingSender())

        first = await core.scanner.tick()
        clock.advance(minutes=1)
        second = await core.scanner.tick()

        assert first.overdue == 1
        assert first.created == 2
        assert second.created == 0
        for user_id in ("bob", "carol"):
            (item,) = await core.store.find_items(user_id=user_id)
            assert item.kind is AttentionKind.OVERDUE
            assert item.priority is AttentionPriority.URGENT

    @pytest.mark.asyncio
    async def test_slack_retries_until_delivered(self, database, clock, team, task):
        await team.slack("p1", access_token="xoxb-1", channel_id="C123")
        await team.task(task)
        client = AsyncMock(spec=httpx.AsyncClient)
        client.post.side_effect = [
            httpx.Response(500),
            httpx.Response(500),
            httpx.Response(200, json={"ok": True, "ts": "1735808400.000100"}),
        ]
        sender = SlackWebhookSender(http_client=client, sleep=AsyncMock(), rng=lambda: 0.5)
        core = wire(database, clock, sender)

        result = await core.consumer.process_raw(
            envelope("task.created", {"task": task_payload(task)}, event_id="created")
        )

        assert result.slack.status == SENT
        assert result.slack.attempts == 3
        assert client.post.await_count == 3
        stored = await core.tasks.get("t1")
        assert stored.slack_message_ts == "1735808400.000100"
        assert stored.slack_thread_ts == "1735808400.000100"

    @pytest.mark.asyncio
    async def test_disabled_webhook_is_logged_not_fatal(self, database, clock, team, task):
        await team.slack("p1")
        await team.task(task)
        core = wire(database, clock, RecordingSender(fail=True))

        result = await core.consumer.process_raw(
            envelope("task.created", {"task": task_payload(task)}, event_id="created")
        )

        assert result.slack.status == FAILED
        (entry,) = await core.store.list_activity(action="slack_failed")
        assert entry.new_values["event_id"] == "created"
        assert len(await core.store.find_items(user_id="bob")) == 1
        assert len(await core.inbox.notifications("carol")) == 1
