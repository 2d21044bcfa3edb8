"""Tool dispatcher: runs decoded tool calls against registered providers.

The dispatcher never raises for tool-level problems. Unknown tools, schema
violations and provider exceptions all come back as failed
:class:`ToolOutcome` values so the turn can continue and the model can read
the error.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

from .tools.registry import ProviderRegistry
from .tools.types import normalize_provider_result
from .tools.validation import validate_parameters
from .types import ToolCall, ToolOutcome

__all__ = [
    "UNKNOWN_TOOL_MESSAGE",
    "DispatcherConfig",
    "OutcomeCallback",
    "ToolDispatcher",
    "format_tool_payload",
]

LOGGER = logging.getLogger(__name__)

UNKNOWN_TOOL_MESSAGE = "unknown tool"

OutcomeCallback = Callable[[ToolOutcome], Awaitable[Any]]


@dataclass(slots=True, frozen=True)
class DispatcherConfig:
    """Configuration for the tool dispatcher.

    Attributes:
        max_concurrency: Upper bound on calls running at once in
            :meth:`ToolDispatcher.dispatch_all`. ``None`` means unbounded.
        log_arguments: Whether to log tool parameters (may contain user data).
        log_results: Whether to log tool payloads.
    """

    max_concurrency: int | None = None
    log_arguments: bool = False
    log_results: bool = False


class ToolDispatcher:
    """Resolves tool names to providers and invokes them.

    Example:
        dispatcher = ToolDispatcher(registry)
        outcome = await dispatcher.dispatch(ToolCall("geocode", {"address": "..."}))
    """

    def __init__(self, registry: ProviderRegistry, config: DispatcherConfig | None = None) -> None:
        self._registry = registry
        self._config = config or DispatcherConfig()
        # Calls abandoned by a cancelled dispatch_all keep running here.
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def config(self) -> DispatcherConfig:
        return self._config

    @property
    def background_count(self) -> int:
        """Number of abandoned calls still running."""
        return len(self._background)

    async def dispatch(self, call: ToolCall) -> ToolOutcome:
        """Execute ``call`` and return its outcome. Never raises for tool errors."""

        if self._config.log_arguments:
            LOGGER.debug("Dispatching tool %s (index=%s) with parameters: %s", call.name, call.index, call.parameters)
        else:
            LOGGER.debug("Dispatching tool %s (index=%s)", call.name, call.index)

        registration = self._registry.get_registration(call.name)
        if registration is None or not registration.enabled:
            LOGGER.warning("Tool '%s' not found or disabled", call.name)
            return ToolOutcome.failure(UNKNOWN_TOOL_MESSAGE, call=call)

        problems = validate_parameters(call.parameters, registration.spec.parameters)
        if problems:
            message = f"Invalid parameters for {call.name}: " + "; ".join(problems)
            LOGGER.warning(message)
            return ToolOutcome.failure(message, call=call)

        start_time = time.perf_counter()
        try:
            result = await registration.provider.invoke(call.parameters)
            payload = normalize_provider_result(result).text
        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            LOGGER.warning("Tool %s failed after %.1fms: %s", call.name, duration_ms, exc)
            return ToolOutcome.failure(str(exc) or exc.__class__.__name__, call=call, duration_ms=duration_ms)

        duration_ms = (time.perf_counter() - start_time) * 1000
        if self._config.log_results:
            LOGGER.debug("Tool %s completed in %.1fms with result: %s", call.name, duration_ms, payload)
        else:
            LOGGER.debug("Tool %s completed in %.1fms", call.name, duration_ms)
        return ToolOutcome.success(call, payload, duration_ms=duration_ms)

    async def dispatch_all(
        self,
        calls: Sequence[ToolCall],
        *,
        on_outcome: OutcomeCallback | None = None,
        parallel: bool = True,
        should_abandon: Callable[[], bool] | None = None,
    ) -> list[ToolOutcome]:
        """Dispatch every call and return outcomes in call order.

        ``on_outcome`` is awaited as each call finishes (completion order). If
        the awaiting task is cancelled, calls that have not started are
        skipped, calls already running finish in the background and their
        outcomes are discarded, and the cancellation propagates.

        ``should_abandon`` is polled before each call starts and after it
        finishes. Once it returns true the batch is abandoned the same way,
        except that the method returns instead of raising; skipped and
        discarded calls come back as ``"cancelled"`` failures the caller is
        expected to drop.
        """
        if not calls:
            return []

        limit = self._config.max_concurrency
        if not parallel:
            limit = 1
        semaphore = asyncio.Semaphore(limit) if limit and limit > 0 else None
        abandoned = asyncio.Event()

        def is_abandoned() -> bool:
            if not abandoned.is_set() and should_abandon is not None and should_abandon():
                LOGGER.debug("Abandoning tool dispatch batch of %d call(s)", len(calls))
                abandoned.set()
            return abandoned.is_set()

        async def run_one(call: ToolCall) -> ToolOutcome | None:
            if semaphore is not None:
                await semaphore.acquire()
            try:
                if is_abandoned():
                    LOGGER.debug("Skipping tool %s; dispatch was cancelled", call.name)
                    return None
                outcome = await self.dispatch(call)
                if is_abandoned():
                    LOGGER.debug("Discarding late outcome for tool %s", call.name)
                    return None
                if on_outcome is not None:
                    try:
                        await on_outcome(outcome)
                    except Exception:
                        LOGGER.debug("Outcome callback failed for tool %s", call.name, exc_info=True)
                return outcome
            finally:
                if semaphore is not None:
                    semaphore.release()

        tasks = [asyncio.create_task(run_one(call), name=f"tool:{call.name}:{call.index}") for call in calls]
        try:
            await asyncio.wait(tasks)
        except asyncio.CancelledError:
            abandoned.set()
            for task in tasks:
                if not task.done():
                    self._background.add(task)
                    task.add_done_callback(self._forget_background)
            LOGGER.debug("Tool dispatch cancelled; %d call(s) left in background", len(self._background))
            raise

        outcomes: list[ToolOutcome] = []
        for call, task in zip(calls, tasks):
            outcome = task.result()
            outcomes.append(outcome if outcome is not None else ToolOutcome.failure("cancelled", call=call))
        return outcomes

    def _forget_background(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            LOGGER.debug("Background tool call failed", exc_info=task.exception())


def format_tool_payload(payload: str) -> str:
    """Pretty-print ``payload`` when it is JSON, otherwise return it unchanged."""

    stripped = payload.strip()
    if not stripped or stripped[0] not in "[{":
        return payload
    try:
        parsed = json.loads(stripped)
    except (TypeError, ValueError):
        return payload
    return json.dumps(parsed, ensure_ascii=False, indent=2)
