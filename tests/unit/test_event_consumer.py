"""Tests for the event consumer."""

import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

from attention_core.domain.errors import (
    FatalError,
    IntegrityViolationError,
    TransientError,
)
from attention_core.domain.events import TaskCreated
from attention_core.services.event_consumer import EventConsumer, ProcessStatus
from attention_core.services.fanout_service import FanoutResult

from conftest import T0, envelope, make_task, task_payload


def created_event(event_id: str = "e1") -> TaskCreated:
    return TaskCreated(
        event_id=event_id,
        occurred_at=T0,
        project_id="p1",
        actor_user_id="alice",
        task_id="t1",
        task=make_task(assignees=("bob",)),
    )


class TestProcess:
    """Tests for EventConsumer.process and process_raw."""

    @pytest.fixture
    async def task(self, team):
        task = make_task(assignees=("bob",))
        await team.task(task)
        return task

    @pytest.mark.asyncio
    async def test_processes_once_and_acknowledges_duplicates(self, core, task):
        raw = envelope("task.created", {"task": task_payload(task)}, event_id="e1")

        first = await core.consumer.process_raw(raw)
        second = await core.consumer.process_raw(raw)

        assert first.status is ProcessStatus.PROCESSED
        assert first.fanout.created == 1
        assert second.status is ProcessStatus.DUPLICATE
        assert second.fanout is None
        assert len(await core.store.find_items(user_id="bob")) == 1
        assert await core.store.is_processed("e1")

    @pytest.mark.asyncio
    async def test_redelivery_after_dismissal_revives_nothing(self, core, task):
        raw = envelope("task.created", {"task": task_payload(task)}, event_id="e1")
        await core.consumer.process_raw(raw)
        (item,) = await core.store.find_items(user_id="bob")
        await core.inbox.dismiss("bob", [item.id])

        again = await core.consumer.process_raw(raw)

        assert again.status is ProcessStatus.DUPLICATE
        assert await core.store.find_items(user_id="bob") == []

    @pytest.mark.asyncio
    async def test_malformed_envelope_is_rejected_and_logged(self, core, task):
        raw = {"type": "task.created", "event_id": "bad-1", "project_id": "p1"}

        result = await core.consumer.process_raw(raw)

        assert result.status is ProcessStatus.REJECTED
        assert result.rejected
        assert result.to_dict()["status"] == "rejected"
        (entry,) = await core.store.list_activity(action="event_rejected")
        assert entry.entity_id == "bad-1"
        assert entry.new_values["event_type"] == "task.created"

    @pytest.mark.asyncio
    async def test_non_json_is_rejected(self, core):
        result = await core.consumer.process_raw(b"{not json")
        assert result.rejected
        assert result.event_id is None

    @pytest.mark.asyncio
    async def test_mention_of_non_member_is_rejected_without_claim(self, core, task):
        raw = envelope(
            "mention.created",
            {"mention": {"mentioned_user_id": "erin", "mentioner_user_id": "alice", "task_id": "t1"}},
            event_id="m1",
        )

        result = await core.consumer.process_raw(raw)

        assert result.rejected
        assert "not a member" in result.error
        assert not await core.store.is_processed("m1")
        assert await core.store.find_items(user_id="erin") == []

    @pytest.mark.asyncio
    async def test_to_dict(self, core, task):
        result = await core.consumer.process_raw(
            envelope("task.created", {"task": task_payload(task)}, event_id="e1")
        )
        assert result.to_dict() == {
            "status": "processed",
            "event_id": "e1",
            "event_type": "task.created",
            "created": 1,
            "touched": 0,
            "dismissed": 0,
            "recipients": ["bob"],
        }

    @pytest.mark.asyncio
    async def test_same_task_events_are_serialized(self, core, task):
        events = [
            envelope("task.created", {"task": task_payload(task)}, event_id=f"e{i}")
            for i in range(4)
        ]

        results = await asyncio.gather(*(core.consumer.process_raw(e) for e in events))

        assert all(r.status is ProcessStatus.PROCESSED for r in results)
        assert sum(r.fanout.created for r in results) == 1
        assert sum(r.fanout.touched for r in results) == 3

    @pytest.mark.asyncio
    async def test_dispatcher_called_after_commit(self, core, task, database):
        dispatcher = MagicMock()
        dispatcher.dispatch = AsyncMock(return_value=None)
        consumer = EventConsumer(
            database, core.store, core.planner, dispatcher=dispatcher, sleep=AsyncMock()
        )

        await consumer.process(created_event())

        dispatcher.dispatch.assert_awaited_once()
        assert await core.store.is_processed("e1")


class TestFailures:
    """Tests for retry and health handling."""

    def consumer(self, database, store, planner, retries=2):
        consumer = EventConsumer(database, store, planner, sleep=AsyncMock())
        consumer._settings = consumer._settings.model_copy(
            update={"planner_transient_retries": retries}
        )
        return consumer

    @pytest.fixture
    def planner(self):
        planner = MagicMock()
        planner.plan = AsyncMock(return_value=FanoutResult(event_id="e1", event_type="task.created"))
        return planner

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, core, database, planner):
        planner.plan.side_effect = [
            OperationalError("UPDATE", {}, Exception("database is locked")),
            planner.plan.return_value,
        ]
        consumer = self.consumer(database, core.store, planner)

        result = await consumer.process(created_event())

        assert result.status is ProcessStatus.PROCESSED
        assert planner.plan.await_count == 2
        consumer._sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_transient_errors_exhaust_retries(self, core, database, planner):
        planner.plan.side_effect = OperationalError("UPDATE", {}, Exception("database is locked"))
        consumer = self.consumer(database, core.store, planner, retries=2)

        with pytest.raises(TransientError):
            await consumer.process(created_event())

        assert planner.plan.await_count == 3
        assert consumer.healthy
        # Nothing committed, so the event can be retried later
        assert not await core.store.is_processed("e1")

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, core, database, planner):
        planner.plan.side_effect = asyncio.TimeoutError()
        consumer = self.consumer(database, core.store, planner, retries=0)

        with pytest.raises(TransientError):
            await consumer.process(created_event())

    @pytest.mark.asyncio
    async def test_integrity_violation_retried_once(self, core, database, planner):
        planner.plan.side_effect = IntegrityError("INSERT", {}, Exception("FOREIGN KEY"))
        consumer = self.consumer(database, core.store, planner)

        with pytest.raises(IntegrityViolationError):
            await consumer.process(created_event())

        assert planner.plan.await_count == 2

    @pytest.mark.asyncio
    async def test_fatal_error_marks_unhealthy(self, core, database, planner):
        planner.plan.side_effect = InterfaceError("SELECT", {}, Exception("connection closed"))
        consumer = self.consumer(database, core.store, planner)

        with pytest.raises(FatalError):
            await consumer.process(created_event())

        assert not consumer.healthy
        with pytest.raises(FatalError):
            await consumer.process(created_event("e2"))

        planner.plan.side_effect = None
        consumer.mark_healthy()
        result = await consumer.process(created_event("e3"))
        assert result.status is ProcessStatus.PROCESSED

    def test_backoff_is_bounded(self, core):
        delays = [core.consumer.backoff_delay(n) for n in range(1, 10)]
        assert delays[0] <= 0.05
        assert all(d <= 1.0 for d in delays)
        assert delays[-1] >= 0.5
