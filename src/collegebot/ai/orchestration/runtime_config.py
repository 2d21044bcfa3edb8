"""Runtime configuration for the turn controller."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .transcript import LARGE_TOOL_RESPONSES, MAX_STORED_TOOL_RESULT_CHARS

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from ...services.settings import Settings

TITLE_INSTRUCTION = (
    "\n\nAfter providing your answer, suggest a brief, descriptive title for this chat based on the "
    "discussion. Format it as: <title>Your suggested title</title>"
)

MALFORMED_TURN_MESSAGE = (
    "Your previous response did not contain a complete <tool> call or <answer> block. "
    "Wrap tool requests in <tool><name>...</name><parameters>{...}</parameters></tool> "
    "and your final reply in <answer>...</answer>."
)


@dataclass(slots=True)
class TurnConfig:
    """Limits and toggles for one conversation run.

    Attributes:
        max_turns: Model invocations allowed per run; ``None`` is unbounded.
        max_malformed_turns: Consecutive turns with neither a tool call nor an
            answer tolerated before the run fails.
        untagged_as_answer: Treat stray untagged text as the answer instead of
            retrying the model.
        request_title: Ask for and recognise a ``<title>`` block.
        max_tool_concurrency: Upper bound on concurrent tool calls.
        parallel_tools: Run the tool calls of a turn concurrently.
        large_tool_results: Tools whose results are truncated before storage.
        max_stored_tool_result_chars: Truncation limit for those results.
    """

    max_turns: int | None = 25
    max_malformed_turns: int = 2
    untagged_as_answer: bool = False
    request_title: bool = False
    max_tool_concurrency: int | None = 4
    parallel_tools: bool = True
    large_tool_results: tuple[str, ...] = field(default_factory=lambda: LARGE_TOOL_RESPONSES)
    max_stored_tool_result_chars: int = MAX_STORED_TOOL_RESULT_CHARS

    @classmethod
    def from_settings(cls, settings: "Settings") -> "TurnConfig":
        return cls(
            max_turns=settings.max_turns if settings.max_turns and settings.max_turns > 0 else None,
            max_malformed_turns=max(0, settings.max_malformed_turns),
            untagged_as_answer=settings.untagged_as_answer,
            max_tool_concurrency=settings.max_tool_concurrency or None,
            parallel_tools=settings.parallel_tools,
            large_tool_results=tuple(settings.large_tool_results),
            max_stored_tool_result_chars=settings.max_stored_tool_result_chars,
        )


__all__ = ["TurnConfig", "TITLE_INSTRUCTION", "MALFORMED_TURN_MESSAGE"]
