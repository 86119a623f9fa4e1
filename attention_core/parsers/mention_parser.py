"""@mention token parsing."""

from dataclasses import dataclass
from typing import Union
import re

from ..domain.errors import BadInputError


HANDLE_CHARS = r"A-Za-z0-9._-"
MAX_HANDLE_LENGTH = 64

# "@" must start a token: "user@host.com" is an email address, not a mention
MENTION_PATTERN = re.compile(
    rf"(?<![{HANDLE_CHARS}])@([{HANDLE_CHARS}]{{1,{MAX_HANDLE_LENGTH}}})(?![{HANDLE_CHARS}])"
)


@dataclass(frozen=True)
class ParsedMention:
    """One @handle token found in a body."""

    handle: str
    start: int
    end: int
    raw: str

    @property
    def candidates(self) -> tuple[str, ...]:
        """Lower-cased handles to try, most specific first.

        A trailing "." is usually sentence punctuation ("thanks @bob.").
        """
        handle = self.handle.lower()
        stripped = handle.rstrip(".")
        if stripped and stripped != handle:
            return (handle, stripped)
        return (handle,)


def validate_body(body: Union[str, bytes, None]) -> str:
    """Return the body as text, rejecting invalid encodings.

    Raises:
        BadInputError: On undecodable bytes, lone surrogates or NUL characters
    """
    if body is None:
        return ""
    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise BadInputError(f"Body is not valid UTF-8: {e}", field="body") from e
    if not isinstance(body, str):
        raise BadInputError(f"Body must be text, got {type(body).__name__}", field="body")
    try:
        body.encode("utf-8")
    except UnicodeEncodeError as e:
        raise BadInputError(f"Body contains unpaired surrogates: {e}", field="body") from e
    if "\x00" in body:
        raise BadInputError("Body contains NUL characters", field="body")
    return body


def extract_mentions(body: str) -> list[ParsedMention]:
    """Find every mention token in order of appearance."""
    return [
        ParsedMention(handle=m.group(1), start=m.start(), end=m.end(), raw=m.group(0))
        for m in MENTION_PATTERN.finditer(body)
    ]


def unique_mentions(body: str) -> list[ParsedMention]:
    """First occurrence of each distinct handle, case-insensitively."""
    seen: set[str] = set()
    result = []
    for mention in extract_mentions(body):
        key = mention.handle.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(mention)
    return result


def context_snippet(body: str, start: int, end: int, max_length: int = 200) -> str:
    """Excerpt of the body around a token, at most ``max_length`` characters."""
    body_len = len(body)
    if body_len <= max_length:
        return " ".join(body.split())

    token_len = end - start
    room = max(max_length - token_len, 0)
    left = max(start - room // 2, 0)
    right = min(left + max_length, body_len)
    left = max(right - max_length, 0)

    snippet = body[left:right]
    if left > 0:
        snippet = "…" + snippet[1:]
    if right < body_len:
        snippet = snippet[:-1] + "…"
    return " ".join(snippet.split())
