"""Capability providers and the registry the dispatcher resolves them from."""

from .http_provider import HttpToolProvider
from .registry import DuplicateToolError, ProviderRegistration, ProviderRegistry, ToolNotFoundError
from .types import (
    CapabilityProvider,
    FunctionProvider,
    ProviderResult,
    ToolSpec,
    normalize_provider_result,
)
from .validation import validate_parameters

__all__ = [
    "CapabilityProvider",
    "DuplicateToolError",
    "FunctionProvider",
    "HttpToolProvider",
    "ProviderRegistration",
    "ProviderRegistry",
    "ProviderResult",
    "ToolNotFoundError",
    "ToolSpec",
    "normalize_provider_result",
    "validate_parameters",
]
