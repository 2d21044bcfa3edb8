"""Ordered event delivery to a live client connection.

The :class:`EventEmitter` is the only writer to a :class:`ClientChannel`.
Every event is one JSON object; nothing is batched.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Literal, Mapping, Protocol, Sequence, runtime_checkable

from .tool_dispatcher import format_tool_payload
from .types import Region, ToolCall, ToolOutcome

__all__ = [
    "EventType",
    "ChatEvent",
    "ClientChannel",
    "QueueChannel",
    "CallbackChannel",
    "EventEmitter",
]

LOGGER = logging.getLogger(__name__)

EventType = Literal["thinking", "tool_call", "tool_result", "response", "title", "error", "complete"]


@dataclass(slots=True, frozen=True)
class ChatEvent:
    """One client-facing event."""

    type: EventType
    content: str | None = None
    tool_data: str | None = None
    tool_name: str | None = None
    suggested_title: str | None = None
    research_tasks: tuple[Mapping[str, Any], ...] | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type}
        if self.content is not None:
            payload["content"] = self.content
        if self.tool_data is not None:
            payload["toolData"] = self.tool_data
        if self.tool_name is not None:
            payload["toolName"] = self.tool_name
        if self.suggested_title is not None:
            payload["suggestedTitle"] = self.suggested_title
        if self.research_tasks:
            payload["researchTasks"] = [dict(task) for task in self.research_tasks]
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), ensure_ascii=False)


# -----------------------------------------------------------------------------
# Channels
# -----------------------------------------------------------------------------


@runtime_checkable
class ClientChannel(Protocol):
    """Push channel to one client."""

    @property
    def closed(self) -> bool:
        ...

    async def send(self, payload: Mapping[str, Any]) -> None:
        ...


class QueueChannel:
    """Channel backed by an :class:`asyncio.Queue`.

    Iterating the channel yields payloads until ``complete`` has been
    delivered or the channel is closed.
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, payload: Mapping[str, Any]) -> None:
        if self._closed:
            raise ConnectionError("Client channel is closed")
        await self._queue.put(dict(payload))

    def close(self) -> None:
        """Mark the client as gone and wake any reader."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(self._CLOSED)

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[dict[str, Any]]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item
            if item.get("type") == "complete":
                return


class CallbackChannel:
    """Channel that forwards payloads to a sync or async callable.

    A callback raising :class:`ConnectionError` marks the channel closed.
    """

    def __init__(self, callback: Callable[[dict[str, Any]], Any]) -> None:
        self._callback = callback
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    async def send(self, payload: Mapping[str, Any]) -> None:
        if self._closed:
            raise ConnectionError("Client channel is closed")
        try:
            result = self._callback(dict(payload))
            if inspect.isawaitable(result):
                await result
        except ConnectionError:
            self._closed = True
            raise


# -----------------------------------------------------------------------------
# Emitter
# -----------------------------------------------------------------------------


class EventEmitter:
    """Serialises writes to a client channel.

    ``complete`` goes out at most once and nothing follows it. Once the
    channel reports closed (or a send fails) the emitter is disconnected and
    silently drops further events.
    """

    def __init__(self, channel: ClientChannel) -> None:
        self._channel = channel
        self._lock = asyncio.Lock()
        self._completed = False
        self._disconnected = False
        self._sent = 0

    @property
    def channel(self) -> ClientChannel:
        return self._channel

    @property
    def disconnected(self) -> bool:
        if not self._disconnected and self._channel.closed:
            self._disconnected = True
        return self._disconnected

    @property
    def completed(self) -> bool:
        return self._completed

    @property
    def sent_count(self) -> int:
        return self._sent

    async def emit(self, event: ChatEvent) -> bool:
        """Send ``event``; return ``False`` if it was dropped."""

        async with self._lock:
            if self._completed:
                LOGGER.debug("Dropping %s event emitted after complete", event.type)
                return False
            if self.disconnected:
                LOGGER.debug("Dropping %s event; client disconnected", event.type)
                return False
            try:
                await self._channel.send(event.to_payload())
            except Exception as exc:
                self._disconnected = True
                LOGGER.warning("Client channel send failed; treating as disconnect: %s", exc)
                return False
            self._sent += 1
            if event.type == "complete":
                self._completed = True
            return True

    async def thinking(self, region: Region | str) -> bool:
        content = region.content if isinstance(region, Region) else region
        return await self.emit(ChatEvent(type="thinking", content=content))

    async def tool_call(self, call: ToolCall) -> bool:
        return await self.emit(
            ChatEvent(
                type="tool_call",
                content=f"Using {call.name} tool...",
                tool_name=call.name,
                tool_data=json.dumps(dict(call.parameters), ensure_ascii=False, indent=2),
            )
        )

    async def tool_result(self, outcome: ToolOutcome) -> bool:
        if outcome.ok:
            event = ChatEvent(
                type="tool_result",
                content=f"Tool {outcome.name} result:",
                tool_name=outcome.name,
                tool_data=format_tool_payload(outcome.payload),
            )
        elif outcome.call is None:
            event = ChatEvent(
                type="tool_result",
                content=f"Error parsing tool call: {outcome.error_message}",
                tool_name=outcome.name or None,
            )
        else:
            event = ChatEvent(
                type="tool_result",
                content=f"Error executing tool: {outcome.error_message}",
                tool_name=outcome.name,
            )
        return await self.emit(event)

    async def response(
        self,
        content: str,
        *,
        research_tasks: Sequence[Mapping[str, Any]] | None = None,
    ) -> bool:
        return await self.emit(
            ChatEvent(
                type="response",
                content=content,
                research_tasks=tuple(research_tasks) if research_tasks else None,
            )
        )

    async def title(self, title: str) -> bool:
        return await self.emit(ChatEvent(type="title", suggested_title=title))

    async def error(self, message: str) -> bool:
        return await self.emit(ChatEvent(type="error", content=message))

    async def complete(self) -> bool:
        return await self.emit(ChatEvent(type="complete"))
