"""
Markdown note parsing.

Pure functions over note text, no filesystem or database access:
- Front matter: the YAML block between two ``---`` lines at the top of a note
- Wiki links: ``[[target]]`` and ``[[target|alias]]``
- Tasks: checklist lines ``- [ ] text`` and ``- [x] text``

A malformed front matter block is never an error. When YAML decoding fails,
a line-based fallback recovers ``title`` and ``tags`` and ignores the rest.
"""

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

_OPENERS = ("---\n", "---\r\n")

# A line consisting solely of "---", ended by a newline or end of text
_CLOSING_RE = re.compile(r"^---(?:\r?\n|\Z)", re.MULTILINE)

_LINK_RE = re.compile(r"\[\[([^\]|]+)(?:\|([^\]]+))?\]\]")

_TODO_PREFIX = "- [ ]"
_DONE_PREFIXES = ("- [x]", "- [X]")

_QUOTES = "\"'"


# -----------------------------------------------------------------------------
# Types
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class FrontMatter:
    """
    Raw result of splitting a note into header and body.

    Attributes:
        header: Text between the delimiter lines, without the newline
            that precedes the closing ``---``
        body: Everything after the closing delimiter line
    """
    header: str
    body: str


@dataclass
class Document:
    """
    A parsed note.

    Attributes:
        metadata: Decoded front matter (empty if the note has none)
        body: The note text with the front matter removed
    """
    metadata: dict[str, Any] = field(default_factory=dict)
    body: str = ""

    @property
    def title(self) -> Optional[str]:
        """Explicit ``title`` from the front matter, if it is a string."""
        value = self.metadata.get("title")
        return value if isinstance(value, str) else None

    @property
    def tags(self) -> list[str]:
        """
        String tags from the front matter.

        A list keeps only its string entries; a bare string is split on
        commas. Any other shape yields no tags.
        """
        value = self.metadata.get("tags")
        if isinstance(value, list):
            return [t for t in value if isinstance(t, str)]
        if isinstance(value, str):
            return _split_csv(value)
        return []


@dataclass(frozen=True)
class Link:
    """An outgoing wiki link. ``target`` is unresolved."""
    target: str
    alias: Optional[str] = None


class TaskState(str, Enum):
    TODO = "todo"
    DONE = "done"


@dataclass(frozen=True)
class Task:
    """A checklist item. ``line`` is 1-based within the body."""
    line: int
    text: str
    state: TaskState


# -----------------------------------------------------------------------------
# Front matter
# -----------------------------------------------------------------------------

def split(text: str) -> Optional[FrontMatter]:
    """
    Split a note into its raw front matter and body.

    The note must start with a ``---`` line; the header ends at the next line
    that is exactly ``---``.

    Args:
        text: Full note text

    Returns:
        FrontMatter, or None if the note has no (closed) front matter
    """
    for opener in _OPENERS:
        if text.startswith(opener):
            break
    else:
        return None

    start = len(opener)
    match = _CLOSING_RE.search(text, start)
    if match is None:
        return None

    header = text[start:match.start()]
    if header.endswith("\r\n"):
        header = header[:-2]
    elif header.endswith("\n"):
        header = header[:-1]
    return FrontMatter(header=header, body=text[match.end():])


def parse_document(text: str) -> Document:
    """
    Parse a note into metadata and body.

    Header decode failures are not reported to the caller: they degrade to
    whatever ``title``/``tags`` the fallback extraction can recover, possibly
    nothing.

    Args:
        text: Full note text

    Returns:
        Document with metadata and the header-stripped body
    """
    parts = split(text)
    if parts is None:
        return Document(metadata={}, body=text)

    metadata = _decode_yaml(parts.header)
    if metadata is None:
        metadata = _fallback_metadata(parts.header)
    return Document(metadata=metadata, body=parts.body)


def _decode_yaml(header: str) -> Optional[dict[str, Any]]:
    """Decode a header as a YAML mapping. None means "use the fallback"."""
    if not header.strip():
        return {}
    try:
        decoded = yaml.safe_load(header)
    except (yaml.YAMLError, ValueError, TypeError, RecursionError) as e:
        # Constructors raise plain ValueError for e.g. "2024-02-30" or "!!int abc"
        logger.debug("Front matter is not valid YAML: %s", e)
        return None
    if decoded is None:
        return {}
    if not isinstance(decoded, dict):
        logger.debug("Front matter is not a mapping (%s)", type(decoded).__name__)
        return None
    return {str(k): v for k, v in decoded.items()}


def _fallback_metadata(header: str) -> dict[str, Any]:
    """Best-effort ``title`` and ``tags`` extraction from a broken header."""
    metadata: dict[str, Any] = {}
    lines = header.splitlines()

    for raw in lines:
        key, sep, value = raw.strip().partition(":")
        if sep and key.strip() == "title":
            metadata["title"] = value.strip().strip(_QUOTES)
            break

    for idx, raw in enumerate(lines):
        line = raw.strip()
        if not line.startswith("tags:"):
            continue
        rest = line[len("tags:"):].strip()
        if rest.startswith("[") and rest.endswith("]"):
            tags = _split_csv(rest[1:-1])
        elif not rest:
            tags = []
            for following in lines[idx + 1:]:
                item = following.strip()
                if not item.startswith("-"):
                    break
                tags.append(item[1:].strip().strip(_QUOTES))
        else:
            tags = _split_csv(rest)
        if tags:
            metadata["tags"] = tags
        break

    return metadata


def _split_csv(value: str) -> list[str]:
    items = (part.strip().strip(_QUOTES) for part in value.split(","))
    return [item for item in items if item]


# -----------------------------------------------------------------------------
# Links and tasks
# -----------------------------------------------------------------------------

class LinkScan:
    """
    Lazy, restartable scan for wiki links.

    Each iteration rescans the text from the start, left to right.
    Unmatched or malformed brackets are skipped.
    """

    def __init__(self, text: str):
        self._text = text

    def __iter__(self) -> Iterator[Link]:
        for m in _LINK_RE.finditer(self._text):
            yield Link(target=m.group(1), alias=m.group(2))

    def __repr__(self) -> str:
        return f"LinkScan({len(self._text)} chars)"


def parse_links(body: str) -> LinkScan:
    """Find ``[[target]]`` and ``[[target|alias]]`` links in a note body."""
    return LinkScan(body)


def parse_tasks(body: str) -> list[Task]:
    """
    Find checklist items in a note body.

    Lines are matched after trimming surrounding whitespace, so indented
    (nested) items count. ``[x]`` and ``[X]`` both mean done.

    Args:
        body: Note body (front matter already removed)

    Returns:
        Tasks in line order
    """
    tasks: list[Task] = []
    for line_no, raw in enumerate(body.split("\n"), start=1):
        line = raw.strip()
        if line.startswith(_TODO_PREFIX):
            state = TaskState.TODO
        elif line.startswith(_DONE_PREFIXES):
            state = TaskState.DONE
        else:
            continue
        tasks.append(Task(line=line_no, text=line[len(_TODO_PREFIX):].strip(), state=state))
    return tasks
