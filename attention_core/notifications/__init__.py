"""Slack notification formatting, delivery and dispatch."""

from .slack_dispatcher import DispatchResult, SlackDispatcher
from .slack_formatter import SlackMessageFormatter
from .slack_sender import SlackWebhookSender

__all__ = [
    "DispatchResult",
    "SlackDispatcher",
    "SlackMessageFormatter",
    "SlackWebhookSender",
]
