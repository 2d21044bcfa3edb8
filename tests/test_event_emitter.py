"""Tests for client event delivery."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from collegebot.ai.orchestration.event_emitter import CallbackChannel, ChatEvent, EventEmitter, QueueChannel
from collegebot.ai.orchestration.types import Region, RegionKind, ToolCall, ToolOutcome


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class TestPayloads:
    """Event helpers build the client wire format."""

    @pytest.mark.asyncio
    async def test_thinking_uses_stripped_region_content(self, emitter: EventEmitter, events: list[dict[str, Any]]) -> None:
        await emitter.thinking(Region(kind=RegionKind.THINKING, text="\n Check deadlines \n"))

        assert events == [{"type": "thinking", "content": "Check deadlines"}]

    @pytest.mark.asyncio
    async def test_tool_call_payload(self, emitter: EventEmitter, events: list[dict[str, Any]]) -> None:
        await emitter.tool_call(ToolCall(name="geocode", parameters={"address": "Cambridge"}))

        assert events == [
            {
                "type": "tool_call",
                "content": "Using geocode tool...",
                "toolName": "geocode",
                "toolData": '{\n  "address": "Cambridge"\n}',
            }
        ]

    @pytest.mark.asyncio
    async def test_tool_result_payloads(self, emitter: EventEmitter, events: list[dict[str, Any]]) -> None:
        call = ToolCall(name="geocode", parameters={})
        await emitter.tool_result(ToolOutcome.success(call, '{"lat": 1}'))
        await emitter.tool_result(ToolOutcome.failure("geocoder offline", call=call))
        await emitter.tool_result(ToolOutcome.failure("Malformed tool call - missing name or parameters"))

        assert events[0] == {
            "type": "tool_result",
            "content": "Tool geocode result:",
            "toolName": "geocode",
            "toolData": '{\n  "lat": 1\n}',
        }
        assert events[1] == {
            "type": "tool_result",
            "content": "Error executing tool: geocoder offline",
            "toolName": "geocode",
        }
        assert events[2] == {
            "type": "tool_result",
            "content": "Error parsing tool call: Malformed tool call - missing name or parameters",
        }

    @pytest.mark.asyncio
    async def test_response_with_research_tasks(
        self, emitter: EventEmitter, events: list[dict[str, Any]]
    ) -> None:
        task = {"type": "college", "name": "MIT", "findings": []}
        await emitter.response("Apply early.", research_tasks=[task])
        await emitter.response("No extras.")

        assert events[0] == {
            "type": "response",
            "content": "Apply early.",
            "researchTasks": [task],
        }
        assert events[1] == {"type": "response", "content": "No extras."}

    def test_chat_event_to_json(self) -> None:
        event = ChatEvent(type="title", suggested_title="Financial aid")

        assert json.loads(event.to_json()) == {"type": "title", "suggestedTitle": "Financial aid"}


# ---------------------------------------------------------------------------
# Delivery rules
# ---------------------------------------------------------------------------


class TestDelivery:
    """Completion and disconnect handling."""

    @pytest.mark.asyncio
    async def test_complete_is_sent_once_and_terminates(
        self, emitter: EventEmitter, events: list[dict[str, Any]]
    ) -> None:
        assert await emitter.complete() is True
        assert await emitter.complete() is False
        assert await emitter.thinking("late") is False

        assert events == [{"type": "complete"}]
        assert emitter.completed is True
        assert emitter.sent_count == 1

    @pytest.mark.asyncio
    async def test_closed_channel_drops_events(
        self, emitter: EventEmitter, channel: CallbackChannel, events: list[dict[str, Any]]
    ) -> None:
        await emitter.thinking("first")
        channel.close()

        assert await emitter.thinking("second") is False
        assert await emitter.complete() is False
        assert emitter.disconnected is True
        assert [event["content"] for event in events] == ["first"]

    @pytest.mark.asyncio
    async def test_connection_error_marks_disconnect(self) -> None:
        delivered: list[dict[str, Any]] = []

        def callback(payload: dict[str, Any]) -> None:
            if payload["type"] == "tool_call":
                raise ConnectionError("socket closed")
            delivered.append(payload)

        emitter = EventEmitter(CallbackChannel(callback))
        await emitter.thinking("plan")
        assert await emitter.tool_call(ToolCall(name="geocode")) is False
        assert await emitter.complete() is False

        assert emitter.disconnected is True
        assert [payload["type"] for payload in delivered] == ["thinking"]

    @pytest.mark.asyncio
    async def test_async_callback_is_awaited(self) -> None:
        delivered: list[dict[str, Any]] = []

        async def callback(payload: dict[str, Any]) -> None:
            await asyncio.sleep(0)
            delivered.append(payload)

        emitter = EventEmitter(CallbackChannel(callback))
        await emitter.error("model unavailable")

        assert delivered == [{"type": "error", "content": "model unavailable"}]

    @pytest.mark.asyncio
    async def test_concurrent_emits_are_all_delivered(
        self, emitter: EventEmitter, events: list[dict[str, Any]]
    ) -> None:
        await asyncio.gather(*(emitter.thinking(f"step {i}") for i in range(20)))

        assert len(events) == 20
        assert emitter.sent_count == 20


# ---------------------------------------------------------------------------
# Queue channel
# ---------------------------------------------------------------------------


class TestQueueChannel:
    @pytest.mark.asyncio
    async def test_iteration_stops_after_complete(self) -> None:
        channel = QueueChannel()
        emitter = EventEmitter(channel)
        await emitter.thinking("plan")
        await emitter.response("answer")
        await emitter.complete()

        received = [payload async for payload in channel]

        assert [payload["type"] for payload in received] == ["thinking", "response", "complete"]

    @pytest.mark.asyncio
    async def test_close_wakes_reader_and_rejects_sends(self) -> None:
        channel = QueueChannel()
        reader = asyncio.create_task(_collect(channel))
        await asyncio.sleep(0)

        channel.close()

        assert await reader == []
        assert channel.closed is True
        with pytest.raises(ConnectionError):
            await channel.send({"type": "thinking"})


async def _collect(channel: QueueChannel) -> list[dict[str, Any]]:
    return [payload async for payload in channel]
