"""Model client, token sources and the dialogue orchestrator."""

from .client import AIClient, ClientSettings, OpenAITokenSource, TokenSource
from .errors import MalformedOutputError, OrchestrationError, TokenSourceError, TurnLimitError

__all__ = [
    "AIClient",
    "ClientSettings",
    "OpenAITokenSource",
    "TokenSource",
    "OrchestrationError",
    "TokenSourceError",
    "TurnLimitError",
    "MalformedOutputError",
]
