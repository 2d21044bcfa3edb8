"""Unrecoverable orchestration errors.

Recoverable problems (malformed tool regions, provider failures) never raise
out of a turn; they become failed tool outcomes the model can read. The
exceptions here end a run in the ``FAILED`` state.
"""

from __future__ import annotations

__all__ = ["OrchestrationError", "TokenSourceError", "TurnLimitError", "MalformedOutputError"]


class OrchestrationError(Exception):
    """Base class for errors that terminate a conversation run."""


class TokenSourceError(OrchestrationError):
    """The model stream failed or could not be reached."""

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        self.retryable = retryable
        super().__init__(message)


class TurnLimitError(OrchestrationError):
    """The run used every model invocation it was allowed."""

    def __init__(self, max_turns: int) -> None:
        self.max_turns = max_turns
        super().__init__(f"Conversation exceeded the maximum of {max_turns} model turn(s)")


class MalformedOutputError(OrchestrationError):
    """The model kept producing turns with neither a tool call nor an answer."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(
            f"Model produced {attempts} consecutive turn(s) without a tool call or an answer"
        )
