"""Decoding of ``<tool>`` regions into :class:`ToolCall` values.

The model requests a tool with::

    <tool><name>geocode</name><parameters>{"address": "..."}</parameters></tool>

Decoding is pure: the same region always yields an equal call or the same
error, and nothing here contacts a provider.
"""

from __future__ import annotations

import json
import re
from enum import Enum
from json import JSONDecodeError
from typing import Any

from .types import Region, RegionKind, ToolCall, ToolOutcome

__all__ = [
    "TOOL_NAME_RE",
    "TOOL_PARAMETERS_RE",
    "DecodeErrorKind",
    "DecodeError",
    "decode_tool_call",
    "extract_tool_name",
    "rejected_outcome",
]

TOOL_NAME_RE = re.compile(r"<name>(?P<name>.*?)</name>", re.DOTALL)
TOOL_PARAMETERS_RE = re.compile(r"<parameters>(?P<params>[\s\S]*?)</parameters>")


class DecodeErrorKind(str, Enum):
    MALFORMED = "malformed"
    INVALID_PARAMETERS = "invalid_parameters"
    PROTOCOL_VIOLATION = "protocol_violation"


class DecodeError(Exception):
    """Raised when a tool region cannot become a :class:`ToolCall`.

    Attributes:
        kind: Which rule the region broke.
        name: Tool name, when it could be recovered.
        index: Region index the error belongs to.
    """

    def __init__(self, kind: DecodeErrorKind, message: str, *, name: str = "", index: int = 0) -> None:
        self.kind = kind
        self.message = message
        self.name = name
        self.index = index
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


def extract_tool_name(body: str) -> str:
    match = TOOL_NAME_RE.search(body)
    if not match:
        return ""
    return match.group("name").strip().strip("\"'")


def decode_tool_call(region: Region) -> ToolCall:
    """Parse a ``tool`` region.

    Raises:
        DecodeError: ``MALFORMED`` if ``<name>`` or ``<parameters>`` is missing
            or the name is blank, ``INVALID_PARAMETERS`` if the parameters are
            not a JSON object, ``PROTOCOL_VIOLATION`` if the region was
            flagged by the classifier.
    """
    if region.kind is not RegionKind.TOOL:
        raise DecodeError(
            DecodeErrorKind.PROTOCOL_VIOLATION,
            f"Expected a tool region, got <{region.kind.value}>",
            index=region.index,
        )

    body = region.text
    name = extract_tool_name(body)
    if region.violation:
        raise DecodeError(
            DecodeErrorKind.PROTOCOL_VIOLATION,
            f"Malformed tool call - {region.violation}",
            name=name,
            index=region.index,
        )

    params_match = TOOL_PARAMETERS_RE.search(body)
    if not TOOL_NAME_RE.search(body) or params_match is None:
        raise DecodeError(
            DecodeErrorKind.MALFORMED,
            "Malformed tool call - missing name or parameters",
            name=name,
            index=region.index,
        )
    if not name:
        raise DecodeError(
            DecodeErrorKind.MALFORMED,
            "Malformed tool call - tool name is empty",
            index=region.index,
        )

    raw_params = params_match.group("params").strip()
    try:
        parameters: Any = json.loads(raw_params)
    except JSONDecodeError as exc:
        raise DecodeError(
            DecodeErrorKind.INVALID_PARAMETERS,
            f"Invalid parameters for {name}: {_format_json_decode_message(exc)}",
            name=name,
            index=region.index,
        ) from exc
    if not isinstance(parameters, dict):
        raise DecodeError(
            DecodeErrorKind.INVALID_PARAMETERS,
            f"Invalid parameters for {name}: expected a JSON object, got {type(parameters).__name__}",
            name=name,
            index=region.index,
        )

    return ToolCall(name=name, parameters=parameters, index=region.index)


def rejected_outcome(error: DecodeError) -> ToolOutcome:
    """Build the outcome reported for a region that failed to decode."""
    return ToolOutcome.failure(error.message, name=error.name, index=error.index)


def _format_json_decode_message(exc: JSONDecodeError) -> str:
    lines = exc.doc.splitlines() if exc.doc else []
    snippet = lines[exc.lineno - 1].strip() if 0 < exc.lineno <= len(lines) else ""
    detail = exc.msg
    if snippet:
        return f"{detail} (line {exc.lineno}, column {exc.colno}): {snippet}"
    return f"{detail} (line {exc.lineno}, column {exc.colno})"
