"""Parsers for event envelopes and @mention tokens."""

from .event_parser import EventParser, event_to_envelope, fingerprint
from .mention_parser import (
    ParsedMention,
    context_snippet,
    extract_mentions,
    unique_mentions,
    validate_body,
)

__all__ = [
    "EventParser",
    "event_to_envelope",
    "fingerprint",
    "ParsedMention",
    "context_snippet",
    "extract_mentions",
    "unique_mentions",
    "validate_body",
]
