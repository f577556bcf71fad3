"""@mention parsing utilities.

Handles mention detection in comment text, autocomplete cursor context and
conversion between plain text and a segment model used by clients.
"""

import re
from dataclasses import dataclass
from typing import Literal

MENTION_CHARS = r"[A-Za-z0-9_.-]"
MAX_USERNAME_LENGTH = 50

# A mention is "@" followed by 1-50 mention characters; longer runs are not mentions
MENTION_PATTERN = re.compile(rf"@({MENTION_CHARS}{{1,{MAX_USERNAME_LENGTH}}})(?!{MENTION_CHARS})")
_MENTION_CHAR = re.compile(MENTION_CHARS)
_USERNAME = re.compile(rf"^{MENTION_CHARS}{{1,{MAX_USERNAME_LENGTH}}}$")


@dataclass(frozen=True)
class ParsedMention:
    username: str
    start: int
    end: int
    raw: str


@dataclass(frozen=True)
class TextSegment:
    type: Literal["text", "mention"]
    content: str
    username: str | None = None


@dataclass(frozen=True)
class MentionContext:
    """Partial mention under the cursor."""

    query: str
    start: int


def find_mentions(text: str) -> list[ParsedMention]:
    """Find all @mentions in text, in order of appearance."""
    return [
        ParsedMention(
            username=match.group(1).lower(),
            start=match.start(),
            end=match.end(),
            raw=match.group(0),
        )
        for match in MENTION_PATTERN.finditer(text or "")
    ]


def extract_mentions(text: str) -> list[str]:
    """Unique lower-cased usernames mentioned in text, first occurrence first."""
    return list(dict.fromkeys(m.username for m in find_mentions(text)))


def has_mentions(text: str) -> bool:
    return MENTION_PATTERN.search(text or "") is not None


def current_mention(text: str, cursor: int) -> MentionContext | None:
    """Get the mention being typed at ``cursor``, for autocomplete.

    Walks back from the cursor over mention characters; if the run is
    immediately preceded by ``@`` the run is the current query.
    """
    start = min(cursor, len(text)) - 1
    while start >= 0:
        char = text[start]
        if char == "@":
            return MentionContext(query=text[start + 1 : cursor], start=start)
        if not _MENTION_CHAR.match(char):
            return None
        start -= 1
    return None


def replace_mention(text: str, start: int, cursor: int, username: str) -> tuple[str, int]:
    """Replace the partial mention at ``start..cursor`` with a resolved username.

    Returns:
        Tuple of (new text, new cursor position after the inserted space)
    """
    new_text = f"{text[:start]}@{username} {text[cursor:]}"
    return new_text, start + len(username) + 2


def parse_segments(text: str) -> list[TextSegment]:
    """Split text into plain-text and mention segments."""
    mentions = find_mentions(text)
    if not mentions:
        return [TextSegment(type="text", content=text)]

    segments: list[TextSegment] = []
    last = 0
    for mention in mentions:
        if mention.start > last:
            segments.append(TextSegment(type="text", content=text[last : mention.start]))
        segments.append(TextSegment(type="mention", content=mention.raw, username=mention.username))
        last = mention.end

    if last < len(text):
        segments.append(TextSegment(type="text", content=text[last:]))

    return segments


def render_segments(segments: list[TextSegment]) -> str:
    return "".join(segment.content for segment in segments)


def is_valid_username(username: str) -> bool:
    return bool(_USERNAME.match(username or ""))
