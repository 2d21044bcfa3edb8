"""Tests for ToolDispatcher.

Tests cover:
- Single dispatch against registered, unknown and disabled tools
- Schema rejection before a provider is contacted
- Provider failures reported as outcomes
- Ordering and the concurrency bound of dispatch_all
- Cancellation of an in-flight batch
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Mapping

import pytest

from collegebot.ai.orchestration.tool_dispatcher import (
    UNKNOWN_TOOL_MESSAGE,
    DispatcherConfig,
    ToolDispatcher,
    format_tool_payload,
)
from collegebot.ai.orchestration.tools import ProviderRegistry, ToolSpec
from collegebot.ai.orchestration.types import ToolCall, ToolOutcome


# =============================================================================
# Helpers
# =============================================================================


async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class _SlowTool:
    """Records concurrency and finishes after a per-call delay."""

    def __init__(self) -> None:
        self.active = 0
        self.peak = 0
        self.calls: list[Mapping[str, Any]] = []

    async def __call__(self, params: Mapping[str, Any]) -> str:
        self.calls.append(params)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(params.get("delay", 0))
        finally:
            self.active -= 1
        return f"done:{params['id']}"


def _geocode_registry(handler: Callable[..., Any]) -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register_function(
        ToolSpec(
            name="geocode",
            parameters={
                "type": "object",
                "properties": {"address": {"type": "string"}},
                "required": ["address"],
            },
        ),
        handler,
    )
    return registry


# =============================================================================
# Single dispatch
# =============================================================================


class TestDispatch:
    """Outcomes of a single call."""

    @pytest.mark.asyncio
    async def test_successful_call(self) -> None:
        dispatcher = ToolDispatcher(_geocode_registry(lambda params: f"coords for {params['address']}"))
        call = ToolCall(name="geocode", parameters={"address": "Cambridge"}, index=2)

        outcome = await dispatcher.dispatch(call)

        assert outcome.ok is True
        assert outcome.call == call
        assert outcome.index == 2
        assert outcome.payload == "coords for Cambridge"
        assert outcome.duration_ms >= 0
        assert outcome.to_history_text() == "Tool geocode returned: coords for Cambridge"

    @pytest.mark.asyncio
    async def test_unknown_tool(self) -> None:
        dispatcher = ToolDispatcher(ProviderRegistry())

        outcome = await dispatcher.dispatch(ToolCall(name="nope"))

        assert outcome.ok is False
        assert outcome.error_message == UNKNOWN_TOOL_MESSAGE
        assert outcome.to_history_text() == "Tool nope error: unknown tool"

    @pytest.mark.asyncio
    async def test_disabled_tool_is_unknown(self) -> None:
        registry = _geocode_registry(lambda params: "unused")
        registry.disable("geocode")

        outcome = await ToolDispatcher(registry).dispatch(ToolCall(name="geocode", parameters={"address": "x"}))

        assert outcome.error_message == UNKNOWN_TOOL_MESSAGE

    @pytest.mark.asyncio
    async def test_schema_violation_never_reaches_provider(self) -> None:
        calls: list[Any] = []
        dispatcher = ToolDispatcher(_geocode_registry(calls.append))

        outcome = await dispatcher.dispatch(ToolCall(name="geocode", parameters={"address": 7}))

        assert outcome.ok is False
        assert outcome.error_message is not None
        assert outcome.error_message.startswith("Invalid parameters for geocode: ")
        assert "address" in outcome.error_message
        assert calls == []

    @pytest.mark.asyncio
    async def test_provider_exception_becomes_failure(self) -> None:
        def handler(params: Mapping[str, Any]) -> str:
            raise RuntimeError("geocoder offline")

        outcome = await ToolDispatcher(_geocode_registry(handler)).dispatch(
            ToolCall(name="geocode", parameters={"address": "x"})
        )

        assert outcome.ok is False
        assert outcome.error_message == "geocoder offline"
        assert outcome.to_history_text() == "Tool geocode error: geocoder offline"

    @pytest.mark.asyncio
    async def test_empty_provider_result_is_a_failure(self) -> None:
        outcome = await ToolDispatcher(_geocode_registry(lambda params: None)).dispatch(
            ToolCall(name="geocode", parameters={"address": "x"})
        )

        assert outcome.ok is False
        assert outcome.error_message == "Invalid tool result format: provider returned no content"


# =============================================================================
# Batches
# =============================================================================


class TestDispatchAll:
    """Batches keep call order and honour the concurrency bound."""

    @pytest.mark.asyncio
    async def test_outcomes_follow_call_order(self) -> None:
        tool = _SlowTool()
        registry = ProviderRegistry()
        registry.register_function(ToolSpec(name="slow"), tool)
        completed: list[int] = []

        async def on_outcome(outcome: ToolOutcome) -> None:
            completed.append(outcome.index)

        calls = [
            ToolCall(name="slow", parameters={"id": 0, "delay": 0.05}, index=0),
            ToolCall(name="slow", parameters={"id": 1, "delay": 0.0}, index=1),
            ToolCall(name="slow", parameters={"id": 2, "delay": 0.02}, index=2),
        ]

        outcomes = await ToolDispatcher(registry).dispatch_all(calls, on_outcome=on_outcome)

        assert [outcome.payload for outcome in outcomes] == ["done:0", "done:1", "done:2"]
        assert completed == [1, 2, 0]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self) -> None:
        tool = _SlowTool()
        registry = ProviderRegistry()
        registry.register_function(ToolSpec(name="slow"), tool)
        dispatcher = ToolDispatcher(registry, DispatcherConfig(max_concurrency=2))

        calls = [ToolCall(name="slow", parameters={"id": i, "delay": 0.01}, index=i) for i in range(6)]
        outcomes = await dispatcher.dispatch_all(calls)

        assert len(outcomes) == 6
        assert tool.peak == 2

    @pytest.mark.asyncio
    async def test_sequential_mode_runs_one_at_a_time(self) -> None:
        tool = _SlowTool()
        registry = ProviderRegistry()
        registry.register_function(ToolSpec(name="slow"), tool)

        calls = [ToolCall(name="slow", parameters={"id": i, "delay": 0.005}, index=i) for i in range(3)]
        await ToolDispatcher(registry).dispatch_all(calls, parallel=False)

        assert tool.peak == 1
        assert [params["id"] for params in tool.calls] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_mixed_batch_reports_every_call(self) -> None:
        dispatcher = ToolDispatcher(_geocode_registry(lambda params: "ok"))
        calls = [
            ToolCall(name="geocode", parameters={"address": "x"}, index=0),
            ToolCall(name="missing", index=1),
            ToolCall(name="geocode", parameters={}, index=2),
        ]

        outcomes = await dispatcher.dispatch_all(calls)

        assert [outcome.ok for outcome in outcomes] == [True, False, False]
        assert outcomes[1].error_message == UNKNOWN_TOOL_MESSAGE

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_break_the_batch(self) -> None:
        dispatcher = ToolDispatcher(_geocode_registry(lambda params: "ok"))

        async def on_outcome(outcome: ToolOutcome) -> None:
            raise ConnectionError("client went away")

        outcomes = await dispatcher.dispatch_all(
            [ToolCall(name="geocode", parameters={"address": "x"})], on_outcome=on_outcome
        )

        assert outcomes[0].ok is True

    @pytest.mark.asyncio
    async def test_empty_batch(self) -> None:
        assert await ToolDispatcher(ProviderRegistry()).dispatch_all([]) == []


class TestCancellation:
    """A cancelled batch skips unstarted calls and discards late results."""

    @pytest.mark.asyncio
    async def test_cancel_skips_pending_and_discards_running(self) -> None:
        started = asyncio.Event()
        release = asyncio.Event()
        invoked: list[int] = []
        reported: list[ToolOutcome] = []

        async def gated(params: Mapping[str, Any]) -> str:
            invoked.append(params["id"])
            started.set()
            await release.wait()
            return "late"

        async def on_outcome(outcome: ToolOutcome) -> None:
            reported.append(outcome)

        registry = ProviderRegistry()
        registry.register_function(ToolSpec(name="gated"), gated)
        dispatcher = ToolDispatcher(registry, DispatcherConfig(max_concurrency=1))
        calls = [ToolCall(name="gated", parameters={"id": i}, index=i) for i in range(2)]

        task = asyncio.create_task(dispatcher.dispatch_all(calls, on_outcome=on_outcome))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert dispatcher.background_count == 2

        release.set()
        await _wait_until(lambda: dispatcher.background_count == 0)

        assert invoked == [0]
        assert reported == []

    @pytest.mark.asyncio
    async def test_abandon_predicate_skips_queued_calls(self) -> None:
        gone = False
        invoked: list[int] = []
        reported: list[ToolOutcome] = []

        def lookup(params: Mapping[str, Any]) -> str:
            nonlocal gone
            invoked.append(params["id"])
            gone = True
            return "found"

        async def on_outcome(outcome: ToolOutcome) -> None:
            reported.append(outcome)

        registry = ProviderRegistry()
        registry.register_function(ToolSpec(name="lookup"), lookup)
        calls = [ToolCall(name="lookup", parameters={"id": i}, index=i) for i in range(3)]

        outcomes = await ToolDispatcher(registry).dispatch_all(
            calls, on_outcome=on_outcome, parallel=False, should_abandon=lambda: gone
        )

        assert invoked == [0]
        assert reported == []
        assert [outcome.ok for outcome in outcomes] == [False, False, False]
        assert {outcome.error_message for outcome in outcomes} == {"cancelled"}


# =============================================================================
# Payload formatting
# =============================================================================


def test_format_tool_payload_pretty_prints_json() -> None:
    payload = json.dumps({"name": "MIT", "city": "Cambridge"})

    assert format_tool_payload(payload) == '{\n  "name": "MIT",\n  "city": "Cambridge"\n}'


def test_format_tool_payload_leaves_text_alone() -> None:
    assert format_tool_payload("plain text") == "plain text"
    assert format_tool_payload("{not json") == "{not json"
