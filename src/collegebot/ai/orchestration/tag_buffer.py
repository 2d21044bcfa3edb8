"""Incremental buffer that only releases fully delimited model output.

Model text arrives as arbitrary fragments, so a tag such as ``<thinking>`` may
be split across any number of deltas (``<thi`` + ``nking>``). The buffer keeps
everything that could still turn into a tag and hands out only the prefix
that can be classified safely.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from .types import BufferState, RegionKind

__all__ = [
    "KNOWN_TAGS",
    "OPEN_TAGS",
    "CLOSE_TAGS",
    "TagMatch",
    "match_tag",
    "contains_known_tag",
    "TagBuffer",
]

LOGGER = logging.getLogger(__name__)

KNOWN_TAGS: tuple[str, ...] = tuple(kind.value for kind in RegionKind)
OPEN_TAGS: dict[str, str] = {name: f"<{name}>" for name in KNOWN_TAGS}
CLOSE_TAGS: dict[str, str] = {name: f"</{name}>" for name in KNOWN_TAGS}


@dataclass(slots=True, frozen=True)
class TagMatch:
    """What sits at a ``<`` in the text.

    ``kind`` is ``open``/``close`` for a complete known tag, ``partial`` when
    the text ends before it can be decided, and ``none`` for a plain ``<``.
    ``end`` is the index just past the inspected construct.
    """

    kind: Literal["open", "close", "partial", "none"]
    name: str | None
    end: int


def match_tag(text: str, pos: int) -> TagMatch:
    """Classify the ``<`` at ``text[pos]``."""

    tail = text[pos:]
    partial = False
    for name in KNOWN_TAGS:
        for kind, tag in (("open", OPEN_TAGS[name]), ("close", CLOSE_TAGS[name])):
            if tail.startswith(tag):
                return TagMatch(kind, name, pos + len(tag))  # type: ignore[arg-type]
            if len(tail) < len(tag) and tag.startswith(tail):
                partial = True
    if partial:
        return TagMatch("partial", None, pos)
    return TagMatch("none", None, pos + 1)


def contains_known_tag(text: str) -> str | None:
    """Return the first known opening or closing tag found in ``text``."""

    for name in KNOWN_TAGS:
        for tag in (OPEN_TAGS[name], CLOSE_TAGS[name]):
            if tag in text:
                return tag
    return None


class TagBuffer:
    """Accumulates raw deltas and exposes only resolved text.

    Example:
        buffer = TagBuffer()
        buffer.append("<thi")
        buffer.drain_complete()  # ("", "<thi")
        buffer.append("nking>plan</thinking>")
        buffer.drain_complete()  # ("<thinking>plan</thinking>", "")
    """

    def __init__(self) -> None:
        self._state = BufferState()

    @property
    def state(self) -> BufferState:
        return self._state

    @property
    def pending(self) -> str:
        """Text currently held back."""
        return self._state.text

    def append(self, delta: str) -> None:
        if delta:
            self._state.text += delta

    def drain_complete(self) -> tuple[str, str]:
        """Release the longest prefix with no unfinished tag.

        Returns:
            ``(resolved, remainder)`` where ``remainder`` stays buffered.
        """
        state = self._state
        text = state.text
        pos = state.cursor

        while True:
            if state.open_tag is not None:
                close = CLOSE_TAGS[state.open_tag]
                found = text.find(close, state.search_from)
                if found < 0:
                    # Only the last len(close) - 1 chars can start the close tag.
                    state.search_from = max(state.search_from, len(text) - len(close) + 1)
                    break
                pos = found + len(close)
                state.cursor = pos
                state.open_tag = None
                continue

            lt = text.find("<", pos)
            if lt < 0:
                state.cursor = len(text)
                break
            match = match_tag(text, lt)
            if match.kind == "partial":
                state.cursor = lt
                break
            if match.kind == "open":
                state.open_tag = match.name
                state.cursor = lt
                state.search_from = match.end
                continue
            pos = match.end

        cursor = state.cursor
        resolved, remainder = text[:cursor], text[cursor:]
        state.text = remainder
        state.cursor = 0
        state.search_from = state.search_from - cursor if state.open_tag is not None else 0
        return resolved, remainder

    def flush(self) -> str:
        """Return and clear everything still held; used at end of turn."""

        trailing = self._state.text
        if trailing:
            LOGGER.debug("Flushing %d unresolved character(s) from tag buffer", len(trailing))
        self._state = BufferState()
        return trailing
