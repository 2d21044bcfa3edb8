"""Registry mapping tool names to capability providers.

New tools are added by registering a provider; the dispatcher never needs to
change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from .types import (
    AsyncProviderHandler,
    CapabilityProvider,
    FunctionProvider,
    ProviderHandler,
    ToolSpec,
)

__all__ = [
    "ProviderRegistry",
    "ProviderRegistration",
    "DuplicateToolError",
    "ToolNotFoundError",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class DuplicateToolError(Exception):
    """Raised when attempting to register a tool with a name that already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")


class ToolNotFoundError(Exception):
    """Raised when a requested tool is not found in the registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found")


# -----------------------------------------------------------------------------
# Registration
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ProviderRegistration:
    """Record of a registered provider.

    Attributes:
        name: Tool name.
        provider: The provider implementation.
        spec: Tool specification (schema used for parameter validation).
        enabled: Whether the tool may currently be dispatched.
        metadata: Free-form registration metadata.
    """

    name: str
    provider: CapabilityProvider
    spec: ToolSpec
    enabled: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------


class ProviderRegistry:
    """Name to provider table consulted by the dispatcher.

    Example:
        registry = ProviderRegistry()
        registry.register_function(
            ToolSpec(name="geocode", parameters={"type": "object", "required": ["address"]}),
            geocode_handler,
        )
    """

    def __init__(self) -> None:
        self._providers: dict[str, ProviderRegistration] = {}

    def register(
        self,
        name: str,
        provider: CapabilityProvider,
        *,
        spec: ToolSpec | None = None,
        enabled: bool = True,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ProviderRegistration:
        """Register ``provider`` under ``name``.

        Raises:
            DuplicateToolError: If the name is taken and ``allow_override`` is False.
            ValueError: If the name is blank or disagrees with ``spec.name``.
        """
        key = (name or "").strip()
        if not key:
            raise ValueError("Tool name is required")
        if spec is not None and spec.name != key:
            raise ValueError(f"Spec name '{spec.name}' does not match tool name '{key}'")
        if key in self._providers and not allow_override:
            raise DuplicateToolError(key)

        registration = ProviderRegistration(
            name=key,
            provider=provider,
            spec=spec or ToolSpec(name=key),
            enabled=enabled,
            metadata=dict(metadata) if metadata else {},
        )
        self._providers[key] = registration
        LOGGER.debug("Registered tool provider: %s", key)
        return registration

    def register_function(
        self,
        spec: ToolSpec,
        handler: ProviderHandler | AsyncProviderHandler,
        *,
        enabled: bool = True,
        allow_override: bool = False,
        metadata: Mapping[str, Any] | None = None,
    ) -> ProviderRegistration:
        """Register a plain callable as a provider."""
        return self.register(
            spec.name,
            FunctionProvider(handler),
            spec=spec,
            enabled=enabled,
            allow_override=allow_override,
            metadata=metadata,
        )

    def unregister(self, name: str) -> bool:
        if name in self._providers:
            del self._providers[name]
            LOGGER.debug("Unregistered tool provider: %s", name)
            return True
        return False

    def get(self, name: str) -> CapabilityProvider | None:
        """Return the provider if registered and enabled."""
        registration = self._providers.get(name)
        if registration is None or not registration.enabled:
            return None
        return registration.provider

    def get_required(self, name: str) -> CapabilityProvider:
        provider = self.get(name)
        if provider is None:
            raise ToolNotFoundError(name)
        return provider

    def get_registration(self, name: str) -> ProviderRegistration | None:
        return self._providers.get(name)

    def has(self, name: str) -> bool:
        registration = self._providers.get(name)
        return registration is not None and registration.enabled

    def enable(self, name: str) -> bool:
        registration = self._providers.get(name)
        if registration is None:
            return False
        registration.enabled = True
        return True

    def disable(self, name: str) -> bool:
        registration = self._providers.get(name)
        if registration is None:
            return False
        registration.enabled = False
        return True

    def list_names(self, *, include_disabled: bool = False) -> list[str]:
        return [
            registration.name
            for registration in self._providers.values()
            if registration.enabled or include_disabled
        ]

    def list_specs(self, *, include_disabled: bool = False) -> list[ToolSpec]:
        return [
            registration.spec
            for registration in self._providers.values()
            if registration.enabled or include_disabled
        ]

    def clear(self) -> None:
        self._providers.clear()

    def __len__(self) -> int:
        return len(self._providers)

    def __contains__(self, name: object) -> bool:
        return name in self._providers
