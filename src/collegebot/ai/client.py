"""Async model client built around OpenAI-compatible endpoints."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncGenerator, AsyncIterator, Callable, Dict, Iterable, List, Mapping, Protocol, Sequence, cast

import httpx
from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI, OpenAIError, RateLimitError
from openai.lib.streaming.chat import ChatCompletionStreamEvent
from openai.types.chat import ChatCompletionMessageParam
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from .errors import TokenSourceError
from .orchestration.types import ConversationMessage, StreamDelta

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from ..services.settings import Settings

__all__ = [
    "ClientSettings",
    "AIStreamEvent",
    "AIClient",
    "TokenSource",
    "OpenAITokenSource",
]

LOGGER = logging.getLogger(__name__)

_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    APIError,
    APIStatusError,
    APIConnectionError,
    RateLimitError,
    httpx.TimeoutException,
)


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the model client."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    temperature: float | None = 0.2
    max_tokens: int | None = None
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = None
    debug_logging: bool = False

    @classmethod
    def from_settings(cls, settings: "Settings", *, debug_logging: bool = False) -> "ClientSettings":
        return cls(
            base_url=settings.base_url,
            api_key=settings.api_key,
            model=settings.model,
            organization=settings.organization,
            request_timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            default_headers=settings.default_headers,
            metadata=settings.metadata,
            debug_logging=debug_logging or settings.debug_logging,
        )


@dataclass(slots=True)
class AIStreamEvent:
    """Normalized representation of streaming deltas."""

    type: str
    content: str | None = None


class AIClient:
    """Async client providing streaming helpers with retry semantics.

    Retries only cover establishing the stream: once the first event has been
    yielded a failure propagates, because replaying would duplicate text the
    caller already consumed.
    """

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def stream_chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
        metadata: Mapping[str, str] | None = None,
        **extra_params: Any,
    ) -> AsyncGenerator[AIStreamEvent, None]:
        """Stream chat completions for the provided messages."""

        payload = self._build_chat_payload(
            messages=self._coerce_messages(messages),
            temperature=temperature if temperature is not None else self._settings.temperature,
            max_tokens=max_tokens if max_tokens is not None else self._settings.max_tokens,
            metadata=metadata,
            extra_params=extra_params,
        )
        LOGGER.debug(
            "Starting streamed chat completion via %s with %s message(s)",
            self._settings.model,
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        started = False

        def _should_retry(exc: BaseException) -> bool:
            return not started and isinstance(exc, _RETRYABLE_ERRORS)

        async for attempt in self._retrying(_should_retry):
            with attempt:
                async with self._client.chat.completions.stream(**payload) as stream:
                    async for event in stream:
                        normalized = self._normalize_stream_event(event)
                        if normalized is not None:
                            started = True
                            yield normalized
                break

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
        )

    def _retrying(self, predicate: Callable[[BaseException], bool]) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception(predicate),
        )

    def _coerce_messages(
        self, messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam]
    ) -> List[ChatCompletionMessageParam]:
        normalized: List[ChatCompletionMessageParam] = []
        for message in messages:
            try:
                normalized.append(cast(ChatCompletionMessageParam, dict(message)))
            except TypeError as exc:
                raise TypeError("Messages must be mapping-like objects") from exc
        if not normalized:
            raise ValueError("At least one message is required to start a chat")
        return normalized

    def _build_chat_payload(
        self,
        *,
        messages: Sequence[ChatCompletionMessageParam],
        temperature: float | None,
        max_tokens: int | None,
        metadata: Mapping[str, str] | None,
        extra_params: Mapping[str, Any],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": list(messages),
        }

        merged_metadata = self._merge_metadata(metadata)
        if merged_metadata:
            payload["metadata"] = merged_metadata
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if extra_params:
            payload.update(extra_params)

        return payload

    def _merge_metadata(self, runtime_metadata: Mapping[str, str] | None) -> Dict[str, str] | None:
        combined: Dict[str, str] = {}
        if self._settings.metadata:
            combined.update(self._settings.metadata)
        if runtime_metadata:
            combined.update(runtime_metadata)
        return combined or None

    def _normalize_stream_event(self, event: ChatCompletionStreamEvent[Any]) -> AIStreamEvent | None:
        event_type = getattr(event, "type", None)
        if event_type == "content.delta":
            delta_text = getattr(event, "delta", None)
            if delta_text:
                return AIStreamEvent(type=event_type, content=str(delta_text))
            return None
        if event_type == "refusal.done":
            return AIStreamEvent(type=event_type, content=getattr(event, "refusal", None))
        return None

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("Model prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("Model prompt payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result


# -----------------------------------------------------------------------------
# Token sources
# -----------------------------------------------------------------------------


class TokenSource(Protocol):
    """Produces the text deltas of one model turn.

    The iterator ends with a ``StreamDelta(final=True)``. Closing it early
    (``aclose``) must abort the underlying request.
    """

    def stream(
        self, history: Sequence[ConversationMessage], system_prompt: str
    ) -> AsyncIterator[StreamDelta]:
        ...


class OpenAITokenSource:
    """:class:`TokenSource` backed by :class:`AIClient` chat streaming."""

    def __init__(self, client: AIClient) -> None:
        self._client = client

    @property
    def client(self) -> AIClient:
        return self._client

    async def stream(
        self, history: Sequence[ConversationMessage], system_prompt: str
    ) -> AsyncIterator[StreamDelta]:
        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.extend(message.to_chat_param() for message in history)

        events = self._client.stream_chat(messages)
        try:
            async for event in events:
                if event.type == "content.delta" and event.content:
                    yield StreamDelta(text=event.content)
                elif event.type == "refusal.done" and event.content:
                    LOGGER.warning("Model refused the request: %s", event.content)
        except (OpenAIError, httpx.HTTPError) as exc:
            raise TokenSourceError(str(exc) or exc.__class__.__name__) from exc
        finally:
            # Closing early must tear down the HTTP stream, not wait for GC.
            await events.aclose()
        yield StreamDelta(final=True)

    async def aclose(self) -> None:
        await self._client.aclose()
