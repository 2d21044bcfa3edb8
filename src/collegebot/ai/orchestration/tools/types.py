"""Capability provider types.

A capability provider is anything reachable by a tool name that can execute
a request: a web search backend, a geocoder, a data-set lookup. The
dispatcher only depends on the :class:`CapabilityProvider` protocol.
"""

from __future__ import annotations

import inspect
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Mapping, Protocol, runtime_checkable

__all__ = [
    "ToolSpec",
    "ProviderResult",
    "CapabilityProvider",
    "ProviderHandler",
    "AsyncProviderHandler",
    "FunctionProvider",
    "normalize_provider_result",
]


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Description of a tool, used for validation and prompt listings.

    Attributes:
        name: Unique tool name the model refers to.
        description: Human-readable summary.
        parameters: JSON Schema for the parameter object. Empty means any
            object is accepted.
    """

    name: str
    description: str = ""
    parameters: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": dict(self.parameters) if self.parameters else {},
        }


@dataclass(slots=True, frozen=True)
class ProviderResult:
    """Text a provider hands back for the model to read."""

    text: str


@runtime_checkable
class CapabilityProvider(Protocol):
    """Protocol for tool backends.

    ``invoke`` may raise; the dispatcher turns any exception into a failed
    outcome.
    """

    async def invoke(self, parameters: Mapping[str, Any]) -> ProviderResult:
        ...


ProviderHandler = Callable[[Mapping[str, Any]], Any]
AsyncProviderHandler = Callable[[Mapping[str, Any]], Coroutine[Any, Any, Any]]


@dataclass
class FunctionProvider:
    """Provider wrapping a plain sync or async callable.

    Example:
        provider = FunctionProvider(lambda params: f"Hello, {params['name']}")
    """

    handler: ProviderHandler | AsyncProviderHandler

    async def invoke(self, parameters: Mapping[str, Any]) -> ProviderResult:
        result = self.handler(parameters)
        # Callable objects with an async __call__ are not coroutine functions.
        if inspect.isawaitable(result):
            result = await result
        return normalize_provider_result(result)


def normalize_provider_result(result: Any) -> ProviderResult:
    """Coerce whatever a provider returned into a :class:`ProviderResult`.

    Accepts a ``ProviderResult``, a string, a mapping with ``text``, or an
    MCP-style ``{"content": [{"type": "text", "text": ...}]}`` payload. Other
    values are serialised to JSON.

    Raises:
        ValueError: If the provider returned nothing usable.
    """
    if isinstance(result, ProviderResult):
        return result
    if result is None:
        raise ValueError("Invalid tool result format: provider returned no content")
    if isinstance(result, str):
        return ProviderResult(text=result)
    if isinstance(result, bytes):
        return ProviderResult(text=result.decode("utf-8", errors="replace"))
    if isinstance(result, Mapping):
        text = result.get("text")
        if isinstance(text, str):
            return ProviderResult(text=text)
        content = result.get("content")
        if isinstance(content, (list, tuple)) and content:
            first = content[0]
            if isinstance(first, Mapping) and isinstance(first.get("text"), str):
                return ProviderResult(text=first["text"])
            raise ValueError("Invalid tool result format: content block has no text")
    text_attr = getattr(result, "text", None)
    if isinstance(text_attr, str):
        return ProviderResult(text=text_attr)
    try:
        return ProviderResult(text=json.dumps(result, ensure_ascii=False, default=str))
    except (TypeError, ValueError):
        return ProviderResult(text=str(result))
