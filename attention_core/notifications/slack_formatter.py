"""Slack message building for task events."""

from datetime import datetime, timezone, tzinfo
from typing import Any, Mapping, Optional

from ..domain.events import (
    CommentCreated,
    DomainEvent,
    TaskApprovalDecided,
    TaskCreated,
    TaskDeleted,
    TaskStageChanged,
    TaskUpdated,
)
from ..domain.models import TaskSnapshot


STAGE_ICONS = {
    "todo": "⏳",
    "in_progress": "🔄",
    "review": "👁️",
    "done": "⏰",
}
DEFAULT_STAGE_ICON = "📋"


def truncate(text: str, limit: int) -> str:
    """Cut text to ``limit`` characters, marking the cut with an ellipsis."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[: max(limit - 1, 0)].rstrip() + "…"


def stage_label(stage: str) -> str:
    return stage.replace("_", " ")


class SlackMessageFormatter:
    """Builds Slack ``text`` + ``blocks`` payloads.

    ``text`` is never empty so clients without block support still render
    something.
    """

    def __init__(
        self,
        *,
        zone: tzinfo = timezone.utc,
        done_stage: str = "done",
        excerpt_length: int = 200,
    ):
        self._zone = zone
        self._done_stage = done_stage
        self._excerpt_length = excerpt_length

    def build(
        self,
        event: DomainEvent,
        *,
        actor_name: str = "Someone",
        names: Optional[Mapping[str, str]] = None,
        new_thread: bool = False,
        zone: Optional[tzinfo] = None,
    ) -> Optional[dict[str, Any]]:
        """Build the message for an event, or None when the event has no message.

        Args:
            event: Domain event
            actor_name: Display name of the actor
            names: Display names of users referenced in changes
            new_thread: Whether the message starts a new day's thread
            zone: Zone for rendering dates, defaults to the formatter's

        Returns:
            Slack payload with ``text`` and ``blocks``
        """
        names = names or {}
        zone = zone or self._zone

        if isinstance(event, TaskCreated):
            task = event.task
            return self._message(
                header="🆕 New Task Created",
                text=f"🆕 New task: {self._title(task)}",
                body=self._details(task, names, zone),
                task=task,
                context=f"Created by: {actor_name}",
            )

        if isinstance(event, TaskUpdated):
            task = event.new
            header = "✏️ Task Updated (New Day)" if new_thread else "✏️ Task Updated"
            return self._message(
                header=header,
                text=f"✏️ Task updated: {self._title(task)}",
                body=self._changes(event.changes, names, zone),
                task=task,
                context=f"Updated by: {actor_name}",
            )

        if isinstance(event, TaskStageChanged):
            task = event.task
            old_icon = STAGE_ICONS.get(event.old_stage, DEFAULT_STAGE_ICON)
            if event.new_stage == self._done_stage:
                return self._message(
                    header="⏰ Task Marked as Done (Pending Approval)",
                    text=f"⏰ Task marked as done (pending approval): {self._title(task)}",
                    body=f"{old_icon} {stage_label(event.old_stage)} → ⏰ Done (Pending Approval)",
                    task=task,
                    context=f"Moved by: {actor_name}",
                    note="⚠️ _This task requires owner/admin approval to be marked as completed._",
                )
            new_icon = STAGE_ICONS.get(event.new_stage, DEFAULT_STAGE_ICON)
            return self._message(
                header=f"📋 Task Moved to {stage_label(event.new_stage).upper()}",
                text=f"📋 Task moved to {stage_label(event.new_stage)}: {self._title(task)}",
                body=(
                    f"{old_icon} {stage_label(event.old_stage)} → "
                    f"{new_icon} {stage_label(event.new_stage)}"
                ),
                task=task,
                context=f"Moved by: {actor_name}",
            )

        if isinstance(event, TaskDeleted):
            task = event.task
            return self._message(
                header="🗑️ Task Deleted",
                text=f"🗑️ Task deleted: {self._title(task)}",
                body="This task has been deleted.",
                task=task,
                context=f"Deleted by: {actor_name}",
            )

        if isinstance(event, TaskApprovalDecided):
            task = event.task
            if event.approved:
                return self._message(
                    header="✅ Task Approved and Completed",
                    text=f"✅ Task approved: {self._title(task)}",
                    body="This task has been approved and marked as completed.",
                    task=task,
                    context=f"Approved by: {actor_name}",
                )
            lines = ["This task was sent back for more work."]
            if event.return_stage:
                lines.append(f"*Returned to:* {stage_label(event.return_stage)}")
            if event.reason:
                lines.append(f"*Reason:* {truncate(event.reason, self._excerpt_length)}")
            return self._message(
                header="❌ Task Rejected",
                text=f"❌ Task rejected: {self._title(task)}",
                body="\n".join(lines),
                task=task,
                context=f"Rejected by: {actor_name}",
            )

        if isinstance(event, CommentCreated):
            task = event.task
            excerpt = truncate(event.comment.body, self._excerpt_length)
            quoted = "\n".join(f">{line}" for line in excerpt.splitlines() or [""])
            return self._message(
                header="💬 New Comment",
                text=f"💬 New comment on: {self._title(task)}",
                body=quoted,
                task=task,
                context=f"Comment by: {actor_name}",
            )

        return None

    def _message(
        self,
        *,
        header: str,
        text: str,
        body: str,
        task: TaskSnapshot,
        context: Optional[str] = None,
        note: Optional[str] = None,
    ) -> dict[str, Any]:
        section = f"*{self._title(task)}*"
        if body:
            section = f"{section}\n\n{body}"
        blocks: list[dict[str, Any]] = [
            {"type": "header", "text": {"type": "plain_text", "text": header, "emoji": True}},
            {"type": "section", "text": {"type": "mrkdwn", "text": section}},
        ]
        for extra in (context, note):
            if extra:
                blocks.append(
                    {"type": "context", "elements": [{"type": "mrkdwn", "text": extra}]}
                )
        return {"text": text or header, "blocks": blocks}

    @staticmethod
    def _title(task: TaskSnapshot) -> str:
        return task.title.strip() or "(untitled task)"

    def _details(self, task: TaskSnapshot, names: Mapping[str, str], zone: tzinfo) -> str:
        parts = []
        if task.description:
            parts.append(f"*Description:* {truncate(task.description, self._excerpt_length)}")
        icon = STAGE_ICONS.get(task.stage, DEFAULT_STAGE_ICON)
        parts.append(f"*Status:* {icon} {stage_label(task.stage).upper()}")
        if task.assignees:
            parts.append(f"*Assignees:* {self._people(task.assignees, names)}")
        if task.due_at:
            parts.append(f"*Due:* {self._date(task.due_at, zone)}")
        return "\n".join(parts)

    def _changes(
        self, changes: Mapping[str, tuple[Any, Any]], names: Mapping[str, str], zone: tzinfo
    ) -> str:
        parts = []
        if "title" in changes:
            old, new = changes["title"]
            parts.append(f"*Title:* ~{old}~ → {new}")
        if "description" in changes:
            old, new = changes["description"]
            old_text = truncate(old, 80) if old else "(none)"
            new_text = truncate(new, self._excerpt_length) if new else "(removed)"
            parts.append(f"*Description:* {old_text} → {new_text}")
        if "stage" in changes:
            old, new = changes["stage"]
            parts.append(
                f"*Status:* {STAGE_ICONS.get(old, DEFAULT_STAGE_ICON)} {stage_label(old)} → "
                f"{STAGE_ICONS.get(new, DEFAULT_STAGE_ICON)} {stage_label(new)}"
            )
        if "assignees" in changes:
            old, new = changes["assignees"]
            parts.append(
                f"*Assignees:* {self._people(old, names)} → {self._people(new, names)}"
            )
        if "due_at" in changes:
            old, new = changes["due_at"]
            old_text = self._date(old, zone) if old else "(none)"
            new_text = self._date(new, zone) if new else "(removed)"
            parts.append(f"*Due:* {old_text} → {new_text}")
        if "priority" in changes:
            old, new = changes["priority"]
            parts.append(f"*Priority:* {getattr(old, 'value', old)} → {getattr(new, 'value', new)}")
        return "\n".join(parts)

    @staticmethod
    def _people(user_ids: Any, names: Mapping[str, str]) -> str:
        if not user_ids:
            return "(none)"
        return ", ".join(sorted(names.get(u, u) for u in user_ids))

    @staticmethod
    def _date(value: datetime, zone: tzinfo) -> str:
        return value.astimezone(zone).strftime("%b %d, %Y %H:%M")
