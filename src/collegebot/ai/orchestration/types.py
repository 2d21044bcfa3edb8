"""Core type definitions for the dialogue orchestrator.

This module defines the immutable dataclasses that flow between the tag
buffer, the region classifier, the tool dispatcher and the turn controller.
Everything here is frozen so a value can be handed from one stage to the next
without defensive copies.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Mapping, Sequence

__all__ = [
    # Conversation
    "MessageRole",
    "ConversationMessage",
    "StreamDelta",
    # Stream classification
    "RegionKind",
    "Region",
    "BufferState",
    # Tools
    "ToolCall",
    "ToolOutcome",
    # Turn lifecycle
    "TurnResult",
    "TurnState",
    "ConversationResult",
]


# -----------------------------------------------------------------------------
# Conversation messages
# -----------------------------------------------------------------------------

MessageRole = Literal["system", "user", "assistant", "tool-result"]


@dataclass(slots=True, frozen=True)
class ConversationMessage:
    """One entry of the running conversation history.

    Attributes:
        role: Who produced the message. ``tool-result`` entries carry tool
            outcomes back to the model.
        content: Plain text content.
    """

    role: MessageRole
    content: str

    def to_chat_param(self) -> dict[str, str]:
        """Convert to the OpenAI chat message format.

        Model vendors only know ``system``/``user``/``assistant``; tool results
        are replayed as user messages, matching how the prompt instructs the
        model to read them.
        """
        role = "user" if self.role == "tool-result" else self.role
        return {"role": role, "content": self.content}

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> ConversationMessage:
        role = str(payload.get("role", "user"))
        if role == "tool":
            role = "tool-result"
        if role not in ("system", "user", "assistant", "tool-result"):
            raise ValueError(f"Unsupported message role: {role!r}")
        return cls(role=role, content=str(payload.get("content") or ""))  # type: ignore[arg-type]

    @classmethod
    def user(cls, content: str) -> ConversationMessage:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str) -> ConversationMessage:
        return cls(role="assistant", content=content)

    @classmethod
    def tool_result(cls, content: str) -> ConversationMessage:
        return cls(role="tool-result", content=content)


@dataclass(slots=True, frozen=True)
class StreamDelta:
    """A chunk of model output. ``final`` marks the end of the turn."""

    text: str = ""
    final: bool = False


# -----------------------------------------------------------------------------
# Regions
# -----------------------------------------------------------------------------


class RegionKind(str, Enum):
    """Semantic blocks the model wraps its output in."""

    THINKING = "thinking"
    TOOL = "tool"
    ANSWER = "answer"
    TITLE = "title"


@dataclass(slots=True, frozen=True)
class Region:
    """A fully delimited block recognised in the model stream.

    Attributes:
        kind: Which tag enclosed the block.
        text: Raw inner text, byte-identical to what the model produced.
        index: Arrival order of the block within its turn.
        violation: Set when the block breaks the wire protocol (for example
            nested tags); such a region is rejected instead of acted upon.
    """

    kind: RegionKind
    text: str
    index: int = 0
    violation: str | None = None

    @property
    def content(self) -> str:
        """Inner text with surrounding whitespace removed, for display."""
        return self.text.strip()


@dataclass(slots=True)
class BufferState:
    """Mutable accumulator owned by exactly one :class:`TagBuffer`.

    ``text[:cursor]`` has been scanned and is ready to drain. ``open_tag`` names
    an opening tag found at ``cursor`` whose close has not arrived yet and
    ``search_from`` is where the next close-tag search resumes.
    """

    text: str = ""
    cursor: int = 0
    open_tag: str | None = None
    search_from: int = 0


# -----------------------------------------------------------------------------
# Tools
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolCall:
    """A decoded request to invoke a named capability.

    Attributes:
        name: Provider name, never empty.
        parameters: Parsed JSON object handed to the provider.
        index: Region index the call was decoded from; results are returned
            to the model in this order.
    """

    name: str
    parameters: Mapping[str, Any] = field(default_factory=dict)
    index: int = 0


@dataclass(slots=True, frozen=True)
class ToolOutcome:
    """Normalised result of attempting a tool region.

    ``call`` is ``None`` when the region could not be decoded at all; in that
    case ``name`` holds whatever tool name could be recovered (possibly "").
    """

    call: ToolCall | None
    ok: bool
    payload: str = ""
    error_message: str | None = None
    name: str = ""
    index: int = 0
    duration_ms: float = 0.0

    @classmethod
    def success(cls, call: ToolCall, payload: str, *, duration_ms: float = 0.0) -> ToolOutcome:
        return cls(
            call=call,
            ok=True,
            payload=payload,
            name=call.name,
            index=call.index,
            duration_ms=duration_ms,
        )

    @classmethod
    def failure(
        cls,
        message: str,
        *,
        call: ToolCall | None = None,
        name: str = "",
        index: int | None = None,
        duration_ms: float = 0.0,
    ) -> ToolOutcome:
        return cls(
            call=call,
            ok=False,
            payload="",
            error_message=message,
            name=call.name if call is not None else name,
            index=call.index if call is not None else (index or 0),
            duration_ms=duration_ms,
        )

    def to_history_text(self) -> str:
        """Render the outcome the way the model expects to read it back."""
        if self.ok:
            return f"Tool {self.name} returned: {self.payload}"
        if self.call is None:
            return f"Tool call error: {self.error_message}"
        return f"Tool {self.name} error: {self.error_message}"


# -----------------------------------------------------------------------------
# Turn lifecycle
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TurnResult:
    """Everything one full stream consumption produced.

    Attributes:
        pending_tool_calls: Decoded calls awaiting dispatch, in region order.
        answer_region: The accepted answer, if any.
        raw_trailing: Text still held by the buffer when the stream ended.
        rejected: Outcomes for tool regions (or answers) rejected while
            streaming; they never reach a provider.
        assistant_text: Everything the model produced this turn.
        title: Suggested conversation title, if the model offered one.
        leftover: Untagged text seen during the turn.
    """

    pending_tool_calls: tuple[ToolCall, ...] = ()
    answer_region: Region | None = None
    raw_trailing: str = ""
    rejected: tuple[ToolOutcome, ...] = ()
    assistant_text: str = ""
    title: str | None = None
    leftover: str = ""

    @property
    def has_tool_activity(self) -> bool:
        return bool(self.pending_tool_calls or self.rejected)


class TurnState(str, Enum):
    """States of the turn controller."""

    STREAMING = "streaming"
    DISPATCHING = "dispatching"
    APPENDING = "appending"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TurnState.DONE, TurnState.FAILED, TurnState.CANCELLED)


@dataclass(slots=True, frozen=True)
class ConversationResult:
    """Final state handed back by :meth:`TurnController.run`."""

    state: TurnState
    history: Sequence[ConversationMessage]
    answer: str | None = None
    title: str | None = None
    turns: int = 0
    error: str | None = None
