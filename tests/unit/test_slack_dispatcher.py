"""Tests for the Slack dispatcher."""

import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

from attention_core.domain.events import (
    DueThresholdCrossed,
    TaskCreated,
    TaskStageChanged,
    TaskUpdated,
    compute_changes,
)
from attention_core.domain.models import DueThreshold, SlackConfig, TaskPriority
from attention_core.notifications.slack_dispatcher import (
    FAILED,
    SENT,
    SKIPPED,
    SlackDispatcher,
    pseudo_ts,
    should_thread,
)

from conftest import T0, RecordingSender, make_task


def created(occurred_at=T0, event_id="e1"):
    return TaskCreated(
        event_id=event_id,
        occurred_at=occurred_at,
        project_id="p1",
        actor_user_id="alice",
        task_id="t1",
        task=make_task(assignees=("bob",)),
    )


def moved(occurred_at, event_id, new_stage="review", old_stage="todo"):
    return TaskStageChanged(
        event_id=event_id,
        occurred_at=occurred_at,
        project_id="p1",
        actor_user_id="bob",
        task_id="t1",
        task=make_task(stage=new_stage),
        old_stage=old_stage,
        new_stage=new_stage,
    )


class TestThreadingRules:
    """Tests for the pure threading helpers."""

    def test_no_thread_means_new_anchor(self):
        assert not should_thread(None, None, T0, timezone.utc)

    def test_same_day_replies_in_thread(self):
        ts = str(T0.timestamp())
        assert should_thread(ts, ts, T0 + timedelta(hours=10), timezone.utc)

    def test_next_day_starts_new_anchor(self):
        ts = str(T0.timestamp())
        assert not should_thread(ts, ts, T0 + timedelta(days=1), timezone.utc)

    def test_day_boundary_follows_zone(self):
        last = datetime(2025, 1, 2, 23, 30, tzinfo=timezone.utc)
        event = datetime(2025, 1, 3, 0, 30, tzinfo=timezone.utc)
        ts = str(last.timestamp())

        assert not should_thread(ts, ts, event, timezone.utc)
        assert should_thread(ts, ts, event, ZoneInfo("America/New_York"))

    def test_unparseable_message_ts_starts_new_anchor(self):
        assert not should_thread("1.0", "garbage", T0, timezone.utc)

    def test_pseudo_ts_is_strictly_increasing(self):
        first = pseudo_ts(T0, None)
        assert float(first) == pytest.approx(T0.timestamp())

        second = pseudo_ts(T0, first)
        assert float(second) > float(first)
        assert pseudo_ts(T0 - timedelta(hours=1), second) > second


class TestSlackDispatcher:
    """Tests for SlackDispatcher.dispatch."""

    @pytest.fixture
    async def task(self, team):
        await team.task(make_task(assignees=("bob",)))
        return team

    def dispatcher(self, core, sender):
        return SlackDispatcher(core.database, core.directory, core.tasks, core.store, sender)

    @pytest.mark.asyncio
    async def test_first_message_anchors_then_same_day_replies(self, core, task):
        await task.slack("p1")
        sender = RecordingSender(ts_start=T0.timestamp())
        dispatcher = self.dispatcher(core, sender)

        first = await dispatcher.dispatch(created())
        second = await dispatcher.dispatch(moved(T0 + timedelta(hours=1), "e2"))

        assert first.status == SENT
        assert first.new_anchor
        assert "thread_ts" not in sender.sent[0]
        assert second.status == SENT
        assert not second.new_anchor
        assert sender.sent[1]["thread_ts"] == first.ts

        stored = await core.tasks.get("t1")
        assert stored.slack_thread_ts == first.ts
        assert stored.slack_message_ts == second.ts

    @pytest.mark.asyncio
    async def test_next_day_posts_new_anchor(self, core, task):
        await task.slack("p1")
        sender = RecordingSender()
        dispatcher = self.dispatcher(core, sender)

        first = await dispatcher.dispatch(created())
        later = await dispatcher.dispatch(moved(T0 + timedelta(days=1), "e2"))

        assert later.new_anchor
        assert "thread_ts" not in sender.sent[1]
        assert sender.sent[1]["blocks"][0]["text"]["text"].startswith("📋")
        stored = await core.tasks.get("t1")
        assert stored.slack_thread_ts == later.ts
        assert stored.slack_thread_ts != first.ts

    @pytest.mark.asyncio
    async def test_webhook_without_ts_uses_event_time(self, core, task):
        await task.slack("p1")
        dispatcher = self.dispatcher(core, RecordingSender())

        result = await dispatcher.dispatch(created())

        assert float(result.ts) == pytest.approx(T0.timestamp())

    @pytest.mark.asyncio
    async def test_concurrent_events_post_a_single_anchor(self, core, task):
        await task.slack("p1")
        sender = RecordingSender(ts_start=T0.timestamp())
        dispatcher = self.dispatcher(core, sender)

        results = await asyncio.gather(
            *(dispatcher.dispatch(moved(T0 + timedelta(minutes=i), f"e{i}")) for i in range(4))
        )

        assert all(r.status == SENT for r in results)
        assert sum(r.new_anchor for r in results) == 1
        assert sum("thread_ts" not in payload for payload in sender.sent) == 1

    @pytest.mark.asyncio
    async def test_disabled_flag_skips(self, core, task):
        await task.slack("p1", notify_on_task_move=False)
        sender = RecordingSender()
        dispatcher = self.dispatcher(core, sender)

        result = await dispatcher.dispatch(moved(T0, "e1"))

        assert result.status == SKIPPED
        assert result.reason == "on_move disabled"
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_done_uses_complete_flag(self, core, task):
        await task.slack("p1", notify_on_task_move=False)
        sender = RecordingSender()
        dispatcher = self.dispatcher(core, sender)

        result = await dispatcher.dispatch(moved(T0, "e1", new_stage="done", old_stage="review"))

        assert result.status == SENT

    @pytest.mark.asyncio
    async def test_irrelevant_update_skips(self, core, task):
        await task.slack("p1")
        sender = RecordingSender()
        old = make_task(assignees=("bob",))
        new = make_task(assignees=("bob",), priority=TaskPriority.HIGH)
        event = TaskUpdated(
            event_id="e1",
            occurred_at=T0,
            project_id="p1",
            task_id="t1",
            old=old,
            new=new,
            changes=compute_changes(old, new),
        )

        result = await self.dispatcher(core, sender).dispatch(event)

        assert result.status == SKIPPED
        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_no_integration_or_due_event_skips(self, core, task):
        dispatcher = self.dispatcher(core, RecordingSender())

        assert (await dispatcher.dispatch(created())).reason == "no slack integration"
        due = DueThresholdCrossed(
            event_id="d1",
            occurred_at=T0,
            project_id="p1",
            task_id="t1",
            task=make_task(due_at=T0),
            threshold=DueThreshold.OVERDUE,
        )
        assert (await dispatcher.dispatch(due)).status == SKIPPED

    @pytest.mark.asyncio
    async def test_failure_is_recorded_and_pointers_kept(self, core, task):
        await task.slack("p1")
        dispatcher = self.dispatcher(core, RecordingSender(fail=True))

        result = await dispatcher.dispatch(created())

        assert result.status == FAILED
        (entry,) = await core.store.list_activity(action="slack_failed")
        assert entry.new_values["event_id"] == "e1"
        assert "404" in entry.new_values["error"]
        stored = await core.tasks.get("t1")
        assert stored.slack_thread_ts is None

    @pytest.mark.asyncio
    async def test_sender_exception_never_escapes(self, core, task):
        await task.slack("p1")
        sender = AsyncMock()
        sender.send.side_effect = RuntimeError("boom")

        result = await self.dispatcher(core, sender).dispatch(created())

        assert result.status == FAILED
        assert result.reason == "boom"

    def test_invalid_zone_falls_back_to_utc(self):
        dispatcher = SlackDispatcher(
            MagicMock(), MagicMock(), MagicMock(), MagicMock(), RecordingSender()
        )
        config = SlackConfig(project_id="p1", webhook_url="", timezone="Mars/Olympus")
        assert dispatcher.zone_for(config) is timezone.utc
