"""Tests for SlackMessageFormatter."""

import pytest
from datetime import timedelta, timezone
from zoneinfo import ZoneInfo

from attention_core.domain.events import (
    CommentCreated,
    DueThresholdCrossed,
    TaskApprovalDecided,
    TaskCreated,
    TaskStageChanged,
    TaskUpdated,
    compute_changes,
)
from attention_core.domain.models import CommentSnapshot, DueThreshold
from attention_core.notifications.slack_formatter import SlackMessageFormatter, truncate

from conftest import T0, make_task


COMMON = dict(event_id="e1", occurred_at=T0, project_id="p1", actor_user_id="alice")


@pytest.fixture
def formatter():
    return SlackMessageFormatter()


def texts(payload):
    return [
        b["text"]["text"] if "text" in b else b["elements"][0]["text"]
        for b in payload["blocks"]
    ]


class TestTruncate:
    def test_short_text_untouched(self):
        assert truncate("  hello ", 10) == "hello"

    def test_long_text_gets_ellipsis(self):
        result = truncate("a" * 20, 10)
        assert len(result) == 10
        assert result.endswith("…")


class TestSlackMessageFormatter:
    """Tests for message building."""

    def test_task_created(self, formatter):
        task = make_task(assignees=("bob",), description="Details", due_at=T0)
        payload = formatter.build(
            TaskCreated(**COMMON, task=task), actor_name="Alice", names={"bob": "Bob"}
        )

        assert payload["text"] == "🆕 New task: Write release notes"
        header, section, context = texts(payload)
        assert header == "🆕 New Task Created"
        assert "*Assignees:* Bob" in section
        assert "*Due:* Jan 02, 2025 09:00" in section
        assert context == "Created by: Alice"

    def test_dates_render_in_zone(self):
        formatter = SlackMessageFormatter(zone=ZoneInfo("Asia/Tokyo"))
        task = make_task(due_at=T0)
        payload = formatter.build(TaskCreated(**COMMON, task=task))
        assert "Jan 02, 2025 18:00" in texts(payload)[1]

    def test_task_updated_lists_changes(self, formatter):
        old = make_task(assignees=("bob",))
        new = make_task(title="Final notes", assignees=("carol",), due_at=T0 + timedelta(days=1))
        event = TaskUpdated(**COMMON, old=old, new=new, changes=compute_changes(old, new))

        payload = formatter.build(event, names={"bob": "Bob", "carol": "Carol"}, new_thread=True)

        header, section, _context = texts(payload)
        assert header == "✏️ Task Updated (New Day)"
        assert "*Title:* ~Write release notes~ → Final notes" in section
        assert "*Assignees:* Bob → Carol" in section
        assert "*Due:* (none) → Jan 03, 2025 09:00" in section

    def test_move_to_done_asks_for_approval(self, formatter):
        event = TaskStageChanged(
            **COMMON, task=make_task(stage="done"), old_stage="review", new_stage="done"
        )
        payload = formatter.build(event, actor_name="Bob")

        assert "pending approval" in payload["text"]
        assert len(payload["blocks"]) == 4

    def test_move_to_other_stage(self, formatter):
        event = TaskStageChanged(
            **COMMON, task=make_task(stage="in_progress"), old_stage="todo", new_stage="in_progress"
        )
        payload = formatter.build(event)
        assert texts(payload)[0] == "📋 Task Moved to IN PROGRESS"

    def test_rejection_carries_reason(self, formatter):
        event = TaskApprovalDecided(
            **COMMON, task=make_task(), approved=False, reason="No tests", return_stage="in_progress"
        )
        section = texts(formatter.build(event))[1]
        assert "*Returned to:* in progress" in section
        assert "*Reason:* No tests" in section

    def test_comment_is_quoted(self, formatter):
        comment = CommentSnapshot("c1", "t1", "bob", "line one\nline two", T0)
        payload = formatter.build(CommentCreated(**COMMON, comment=comment, task=make_task()))
        assert ">line one\n>line two" in texts(payload)[1]

    def test_untitled_task_has_fallback_text(self, formatter):
        payload = formatter.build(TaskCreated(**COMMON, task=make_task(title="  ")))
        assert payload["text"] == "🆕 New task: (untitled task)"

    def test_due_events_have_no_message(self, formatter):
        event = DueThresholdCrossed(**COMMON, task=make_task(), threshold=DueThreshold.SOON)
        assert formatter.build(event) is None

    def test_default_zone_is_utc(self, formatter):
        task = make_task(due_at=T0.astimezone(timezone(timedelta(hours=-5))))
        assert "Jan 02, 2025 09:00" in texts(formatter.build(TaskCreated(**COMMON, task=task)))[1]
