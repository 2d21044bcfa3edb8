"""Turn controller: drives one conversation through model and tool round-trips.

Each run loops ``STREAMING -> DISPATCHING -> APPENDING`` until a turn ends
with an answer and no tool activity (``DONE``), an unrecoverable error occurs
(``FAILED``), or the run is cancelled or the client goes away
(``CANCELLED``). One controller instance owns all state for its conversation.
"""

from __future__ import annotations

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, Sequence

from ...utils import logging as logging_utils
from ..errors import MalformedOutputError, OrchestrationError, TurnLimitError
from .event_emitter import EventEmitter
from .event_log import ChatEventLogger
from .region_classifier import RegionClassifier
from .research_tasks import extract_research_tasks
from .runtime_config import MALFORMED_TURN_MESSAGE, TITLE_INSTRUCTION, TurnConfig
from .tag_buffer import OPEN_TAGS, TagBuffer
from .tool_call_parser import DecodeError, DecodeErrorKind, decode_tool_call, rejected_outcome
from .tool_dispatcher import ToolDispatcher
from .transcript import TranscriptSink, truncate_tool_results
from .types import (
    ConversationMessage,
    ConversationResult,
    Region,
    RegionKind,
    ToolCall,
    ToolOutcome,
    TurnResult,
    TurnState,
)

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from ..client import TokenSource

__all__ = ["TurnController"]

LOGGER = logging.getLogger(__name__)

_KNOWN_TAG_RE = re.compile(r"</?(?:%s)>" % "|".join(kind.value for kind in RegionKind))


class _ClientDisconnected(Exception):
    """Raised internally once the client channel is gone."""


@dataclass(slots=True)
class _TurnScratch:
    """Mutable bookkeeping for the turn currently streaming."""

    pending: list[ToolCall] = field(default_factory=list)
    rejected: list[ToolOutcome] = field(default_factory=list)
    answer: Region | None = None
    title: str | None = None
    tool_seen: bool = False
    raw: list[str] = field(default_factory=list)
    leftover: list[str] = field(default_factory=list)
    regions: list[dict[str, Any]] = field(default_factory=list)


class TurnController:
    """Runs one conversation to a terminal state.

    Example:
        controller = TurnController(token_source, dispatcher, EventEmitter(channel))
        result = await controller.run(history, system_prompt)
    """

    def __init__(
        self,
        token_source: TokenSource,
        dispatcher: ToolDispatcher,
        emitter: EventEmitter,
        *,
        config: TurnConfig | None = None,
        transcript_sink: TranscriptSink | None = None,
        event_logger: ChatEventLogger | None = None,
        conversation_id: str | None = None,
    ) -> None:
        self._token_source = token_source
        self._dispatcher = dispatcher
        self._emitter = emitter
        self._config = config or TurnConfig()
        self._transcript_sink = transcript_sink
        self._event_logger = event_logger or ChatEventLogger(enabled=False)
        self.conversation_id = conversation_id

        self._state = TurnState.STREAMING
        self._started = False
        self._task: asyncio.Task[Any] | None = None
        self._cancel_requested = False
        self._turns = 0
        self._answer: str | None = None
        self._title: str | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def config(self) -> TurnConfig:
        return self._config

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def cancel(self) -> None:
        """Abort the run; it finishes in ``CANCELLED``."""

        if self._state.is_terminal:
            return
        self._cancel_requested = True
        task = self._task
        if task is not None and not task.done():
            LOGGER.debug("Cancelling conversation %s", self.conversation_id)
            task.cancel()

    async def run(self, history: Sequence[ConversationMessage], system_prompt: str) -> ConversationResult:
        """Drive the conversation until it reaches a terminal state.

        ``history`` is copied; the returned result carries the extended
        history. A controller can only be run once.
        """
        if self._started:
            raise RuntimeError("TurnController.run() may only be called once")
        self._started = True
        self._task = asyncio.current_task()

        with logging_utils.conversation_context(self.conversation_id):
            return await self._run(list(history), system_prompt)

    async def _run(self, working: list[ConversationMessage], system_prompt: str) -> ConversationResult:
        prompt = system_prompt + TITLE_INSTRUCTION if self._config.request_title else system_prompt
        error: str | None = None

        log_run = self._event_logger.start_run(
            run_id=self.conversation_id or uuid.uuid4().hex,
            system_prompt=prompt,
            history=[message.to_chat_param() for message in working],
            metadata={"conversation_id": self.conversation_id},
        )
        with log_run:
            if self._cancel_requested:
                self._set_state(TurnState.CANCELLED)
            else:
                try:
                    await self._loop(working, prompt, log_run)
                    self._set_state(TurnState.DONE)
                except asyncio.CancelledError:
                    if not self._cancel_requested:
                        raise
                    if self._task is not None:
                        self._task.uncancel()
                    self._set_state(TurnState.CANCELLED)
                except _ClientDisconnected:
                    LOGGER.info("Client disconnected; cancelling conversation %s", self.conversation_id)
                    self._cancel_requested = True
                    self._set_state(TurnState.CANCELLED)
                except OrchestrationError as exc:
                    error = str(exc)
                    LOGGER.warning("Conversation %s failed: %s", self.conversation_id, error)
                    self._set_state(TurnState.FAILED)
                    await self._emitter.error(error)
                except Exception as exc:
                    error = str(exc) or exc.__class__.__name__
                    LOGGER.exception("Unexpected error in conversation %s", self.conversation_id)
                    self._set_state(TurnState.FAILED)
                    await self._emitter.error(error)

            await self._emitter.complete()
            log_run.log_completion(
                state=self._state.value, answer=self._answer, turns=self._turns, error=error
            )

        result = ConversationResult(
            state=self._state,
            history=tuple(working),
            answer=self._answer,
            title=self._title,
            turns=self._turns,
            error=error,
        )
        await self._save_transcript(result)
        return result

    # ------------------------------------------------------------------
    # Turn loop
    # ------------------------------------------------------------------
    async def _loop(self, history: list[ConversationMessage], prompt: str, log_run: Any) -> None:
        config = self._config
        malformed = 0

        while True:
            if config.max_turns is not None and self._turns >= config.max_turns:
                raise TurnLimitError(config.max_turns)
            self._check_client()

            self._turns += 1
            self._set_state(TurnState.STREAMING)
            scratch = _TurnScratch()
            turn = await self._stream_turn(history, prompt, scratch)
            log_run.log_turn(
                turn_index=self._turns,
                assistant_text=turn.assistant_text,
                regions=scratch.regions,
                leftover=turn.leftover,
            )

            self._set_state(TurnState.DISPATCHING)
            outcomes = await self._dispatch(turn)
            self._check_client()

            self._set_state(TurnState.APPENDING)
            if turn.assistant_text:
                history.append(ConversationMessage.assistant(turn.assistant_text))
            history.extend(ConversationMessage.tool_result(outcome.to_history_text()) for outcome in outcomes)
            log_run.log_tool_batch(turn_index=self._turns, outcomes=[_outcome_record(item) for item in outcomes])

            if turn.has_tool_activity:
                malformed = 0
                continue

            if turn.answer_region is not None:
                self._answer = turn.answer_region.content
                return

            stray = _strip_known_tags(turn.leftover + turn.raw_trailing).strip()
            if config.untagged_as_answer and stray:
                LOGGER.info("Using untagged model output as the answer")
                self._answer = stray
                await self._emitter.response(stray)
                return

            malformed += 1
            LOGGER.warning("Turn %s produced neither a tool call nor an answer (%s)", self._turns, malformed)
            if malformed > config.max_malformed_turns:
                raise MalformedOutputError(malformed)
            history.append(ConversationMessage.user(MALFORMED_TURN_MESSAGE))

    async def _stream_turn(
        self, history: Sequence[ConversationMessage], prompt: str, scratch: _TurnScratch
    ) -> TurnResult:
        buffer = TagBuffer()
        classifier = RegionClassifier()
        stream = self._token_source.stream(tuple(history), prompt)
        try:
            async for delta in stream:
                if delta.text:
                    scratch.raw.append(delta.text)
                    buffer.append(delta.text)
                    resolved, _ = buffer.drain_complete()
                    if resolved:
                        regions, leftover = classifier.extract_regions(resolved)
                        if leftover:
                            scratch.leftover.append(leftover)
                        for region in regions:
                            await self._handle_region(region, scratch)
                self._check_client()
                if delta.final:
                    break
        finally:
            await _close_stream(stream)

        trailing = buffer.flush()
        if trailing.startswith(OPEN_TAGS[RegionKind.TOOL.value]):
            error = DecodeError(
                DecodeErrorKind.MALFORMED,
                "Malformed tool call - unterminated tool block",
                index=classifier.count,
            )
            scratch.tool_seen = True
            await self._reject(rejected_outcome(error), scratch)
            trailing = ""

        return TurnResult(
            pending_tool_calls=tuple(scratch.pending),
            answer_region=scratch.answer,
            raw_trailing=trailing,
            rejected=tuple(scratch.rejected),
            assistant_text="".join(scratch.raw),
            title=scratch.title,
            leftover="".join(scratch.leftover),
        )

    async def _handle_region(self, region: Region, scratch: _TurnScratch) -> None:
        scratch.regions.append(
            {"index": region.index, "kind": region.kind.value, "text": region.text, "violation": region.violation}
        )
        kind = region.kind

        if kind is RegionKind.TOOL:
            scratch.tool_seen = True
            try:
                call = decode_tool_call(region)
            except DecodeError as exc:
                LOGGER.warning("Rejected tool region %s: %s", region.index, exc)
                await self._reject(rejected_outcome(exc), scratch)
                return
            scratch.pending.append(call)
            await self._emitter.tool_call(call)
            return

        if region.violation:
            message = f"Protocol violation - {region.violation}"
            LOGGER.warning("Rejected <%s> region %s: %s", kind.value, region.index, region.violation)
            await self._reject(ToolOutcome.failure(message, index=region.index), scratch)
            return

        if kind is RegionKind.THINKING:
            await self._emitter.thinking(region)
        elif kind is RegionKind.TITLE:
            title = region.content
            if self._title is None:
                self._title = title
                scratch.title = title
                await self._emitter.title(title)
        elif kind is RegionKind.ANSWER:
            if scratch.tool_seen:
                message = (
                    "Protocol violation - <answer> received while tool calls are pending; "
                    "wait for the tool results before answering"
                )
                LOGGER.warning("Rejected answer region %s: tool calls pending", region.index)
                await self._reject(ToolOutcome.failure(message, index=region.index), scratch)
                return
            scratch.answer = region
            tasks = extract_research_tasks(region.content)
            await self._emitter.response(region.content, research_tasks=[task.to_payload() for task in tasks])

    async def _reject(self, outcome: ToolOutcome, scratch: _TurnScratch) -> None:
        scratch.rejected.append(outcome)
        await self._emitter.tool_result(outcome)

    async def _dispatch(self, turn: TurnResult) -> list[ToolOutcome]:
        outcomes = list(turn.rejected)
        if turn.pending_tool_calls:
            outcomes.extend(
                await self._dispatcher.dispatch_all(
                    turn.pending_tool_calls,
                    on_outcome=self._emitter.tool_result,
                    parallel=self._config.parallel_tools,
                    should_abandon=lambda: self._emitter.disconnected,
                )
            )
        outcomes.sort(key=lambda outcome: outcome.index)
        return outcomes

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _set_state(self, state: TurnState) -> None:
        if state is not self._state:
            LOGGER.debug("Conversation %s: %s -> %s", self.conversation_id, self._state.value, state.value)
        self._state = state

    def _check_client(self) -> None:
        if self._emitter.disconnected:
            raise _ClientDisconnected()

    async def _save_transcript(self, result: ConversationResult) -> None:
        if self._transcript_sink is None:
            return
        stored = ConversationResult(
            state=result.state,
            history=tuple(
                truncate_tool_results(
                    result.history,
                    tool_names=self._config.large_tool_results,
                    limit=self._config.max_stored_tool_result_chars,
                )
            ),
            answer=result.answer,
            title=result.title,
            turns=result.turns,
            error=result.error,
        )
        try:
            await self._transcript_sink.save(self.conversation_id, stored)
        except Exception:
            LOGGER.warning("Failed to save transcript for conversation %s", self.conversation_id, exc_info=True)


async def _close_stream(stream: AsyncIterator[Any]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()


def _strip_known_tags(text: str) -> str:
    return _KNOWN_TAG_RE.sub("", text)


def _outcome_record(outcome: ToolOutcome) -> dict[str, Any]:
    return {
        "index": outcome.index,
        "name": outcome.name,
        "ok": outcome.ok,
        "payload": outcome.payload,
        "error": outcome.error_message,
        "duration_ms": round(outcome.duration_ms, 3),
    }
