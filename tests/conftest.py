"""Shared pytest fixtures."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Callable, Sequence

import pytest

from collegebot.ai.orchestration.event_emitter import CallbackChannel, EventEmitter
from collegebot.ai.orchestration.tools.registry import ProviderRegistry
from collegebot.ai.orchestration.types import ConversationMessage, StreamDelta


class ScriptedTokenSource:
    """Token source replaying one scripted list of chunks per model turn.

    A script entry that is an exception is raised at that point of the
    stream. With ``repeat_last`` the final script is replayed forever.
    """

    def __init__(self, turns: Sequence[Sequence[Any]], *, repeat_last: bool = False) -> None:
        self._turns = [list(turn) for turn in turns]
        self._repeat_last = repeat_last
        self.calls: list[tuple[tuple[ConversationMessage, ...], str]] = []
        self.closed_streams = 0

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def stream(self, history: Sequence[ConversationMessage], system_prompt: str) -> AsyncIterator[StreamDelta]:
        self.calls.append((tuple(history), system_prompt))
        if not self._turns:
            raise AssertionError("model was invoked more often than scripted")
        script = self._turns[0] if self._repeat_last and len(self._turns) == 1 else self._turns.pop(0)
        try:
            for item in script:
                await asyncio.sleep(0)
                if isinstance(item, BaseException):
                    raise item
                yield StreamDelta(text=item)
            yield StreamDelta(final=True)
        finally:
            self.closed_streams += 1


@pytest.fixture
def token_source_factory() -> Callable[..., ScriptedTokenSource]:
    def _factory(*turns: Sequence[Any], repeat_last: bool = False) -> ScriptedTokenSource:
        return ScriptedTokenSource(turns, repeat_last=repeat_last)

    return _factory


@pytest.fixture
def events() -> list[dict[str, Any]]:
    return []


@pytest.fixture
def channel(events: list[dict[str, Any]]) -> CallbackChannel:
    return CallbackChannel(events.append)


@pytest.fixture
def emitter(channel: CallbackChannel) -> EventEmitter:
    return EventEmitter(channel)


@pytest.fixture
def registry() -> ProviderRegistry:
    return ProviderRegistry()
