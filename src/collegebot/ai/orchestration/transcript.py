"""Hand-off of finished conversations to persistence."""

from __future__ import annotations

import logging
from typing import Iterable, Protocol, Sequence, runtime_checkable

from .types import ConversationMessage, ConversationResult

__all__ = [
    "LARGE_TOOL_RESPONSES",
    "MAX_STORED_TOOL_RESULT_CHARS",
    "TranscriptSink",
    "MemoryTranscriptSink",
    "truncate_tool_results",
]

LOGGER = logging.getLogger(__name__)

LARGE_TOOL_RESPONSES: tuple[str, ...] = ("fetch_markdown", "get_cds_data")
MAX_STORED_TOOL_RESULT_CHARS = 500


@runtime_checkable
class TranscriptSink(Protocol):
    """Receives the final transcript once a run reaches a terminal state."""

    async def save(self, conversation_id: str | None, result: ConversationResult) -> None:
        ...


class MemoryTranscriptSink:
    """Keeps transcripts in memory, keyed by conversation id."""

    def __init__(self) -> None:
        self.saved: dict[str | None, ConversationResult] = {}

    async def save(self, conversation_id: str | None, result: ConversationResult) -> None:
        self.saved[conversation_id] = result


def truncate_tool_results(
    history: Sequence[ConversationMessage],
    *,
    tool_names: Iterable[str] = LARGE_TOOL_RESPONSES,
    limit: int = MAX_STORED_TOOL_RESULT_CHARS,
) -> list[ConversationMessage]:
    """Shorten bulky tool results before they are stored.

    Only ``tool-result`` messages for ``tool_names`` longer than ``limit`` are
    touched; everything else is returned as-is.
    """
    prefixes = tuple(f"Tool {name} returned:" for name in tool_names)
    filtered: list[ConversationMessage] = []
    for message in history:
        content = message.content
        if message.role == "tool-result" and prefixes and content.startswith(prefixes) and len(content) > limit:
            LOGGER.debug("Truncating stored tool result from %d characters", len(content))
            content = (
                f"{content[:limit]}... [truncated for storage - original length: {len(content)} characters]"
            )
            message = ConversationMessage(role=message.role, content=content)
        filtered.append(message)
    return filtered
