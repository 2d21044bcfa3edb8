"""Settings dataclass and JSON persistence."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

__all__ = [
    "Settings",
    "SettingsStore",
    "ToolEndpoint",
    "DEFAULT_SYSTEM_PROMPT",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".collegebot"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_OVERRIDES: Mapping[str, str] = {
    "COLLEGEBOT_API_KEY": "api_key",
    "COLLEGEBOT_BASE_URL": "base_url",
    "COLLEGEBOT_MODEL": "model",
    "COLLEGEBOT_ORGANIZATION": "organization",
    "COLLEGEBOT_HOST": "host",
    "COLLEGEBOT_LOG_LEVEL": "log_level",
}
_BOOL_ENV_OVERRIDES: Mapping[str, str] = {
    "COLLEGEBOT_DEBUG_LOGGING": "debug_logging",
    "COLLEGEBOT_DEBUG_EVENT_LOGGING": "debug_event_logging",
    "COLLEGEBOT_UNTAGGED_AS_ANSWER": "untagged_as_answer",
    "COLLEGEBOT_PARALLEL_TOOLS": "parallel_tools",
}
_FLOAT_ENV_OVERRIDES: Mapping[str, str] = {
    "COLLEGEBOT_REQUEST_TIMEOUT": "request_timeout",
    "COLLEGEBOT_TEMPERATURE": "temperature",
}
_INT_ENV_OVERRIDES: Mapping[str, str] = {
    "COLLEGEBOT_PORT": "port",
    "COLLEGEBOT_MAX_TURNS": "max_turns",
    "COLLEGEBOT_MAX_MALFORMED_TURNS": "max_malformed_turns",
    "COLLEGEBOT_MAX_TOOL_CONCURRENCY": "max_tool_concurrency",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}

DEFAULT_SYSTEM_PROMPT = (
    "You are a college admissions advisor. Think inside <thinking></thinking> tags. "
    "To use a tool, reply with <tool><name>TOOL_NAME</name><parameters>{JSON}</parameters></tool> "
    "and wait for the result. Put your final reply to the student inside <answer></answer> tags."
)


@dataclass(slots=True)
class ToolEndpoint:
    """HTTP capability provider declared in settings."""

    url: str
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float | None = 30.0

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "ToolEndpoint":
        allowed = {item.name for item in fields(cls)}
        data = {key: value for key, value in payload.items() if key in allowed}
        if not data.get("url"):
            raise ValueError("Tool endpoint requires a 'url'")
        return cls(**data)


@dataclass(slots=True)
class Settings:
    """Service settings persisted between runs.

    ``api_key`` is never written to disk; supply it through
    ``COLLEGEBOT_API_KEY`` or a ``--set`` override.
    """

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    temperature: float = 0.2
    max_tokens: int | None = None
    organization: str | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"
    debug_logging: bool = False
    debug_event_logging: bool = False
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_turns: int = 25
    max_malformed_turns: int = 2
    untagged_as_answer: bool = False
    max_tool_concurrency: int = 4
    parallel_tools: bool = True
    large_tool_results: list[str] = field(default_factory=lambda: ["fetch_markdown", "get_cds_data"])
    max_stored_tool_result_chars: int = 500
    tool_endpoints: dict[str, dict[str, Any]] = field(default_factory=dict)

    def resolved_tool_endpoints(self) -> dict[str, ToolEndpoint]:
        resolved: dict[str, ToolEndpoint] = {}
        for name, payload in (self.tool_endpoints or {}).items():
            if not isinstance(payload, Mapping):
                LOGGER.warning("Ignoring tool endpoint %s: expected an object", name)
                continue
            try:
                resolved[name] = ToolEndpoint.from_mapping(payload)
            except (TypeError, ValueError) as exc:
                LOGGER.warning("Ignoring tool endpoint %s: %s", name, exc)
        return resolved


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()

        if payload:
            if payload.pop("api_key", None):
                LOGGER.warning("Ignoring api_key stored in %s; use COLLEGEBOT_API_KEY instead", self._path)
            data = _filter_fields(payload)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            LOGGER.debug("Settings loaded from %s", self._path)

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        data.pop("api_key", None)
        data["version"] = _SETTINGS_VERSION
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            payload = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain a JSON object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {item.name for item in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in overrides.items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        metadata_override = filtered.get("metadata")
        if isinstance(metadata_override, Mapping):
            merged_metadata = dict(settings.metadata or {})
            merged_metadata.update(metadata_override)
            filtered["metadata"] = merged_metadata
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        for env_name, field_name in _BOOL_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value.strip().lower() in _TRUE_VALUES
        for env_name, field_name in _INT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = int(value, 10)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid integer", env_name, value)
        for env_name, field_name in _FLOAT_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is None:
                continue
            try:
                overrides[field_name] = float(value)
            except ValueError:
                LOGGER.warning("Environment override %s=%s is not a valid float", env_name, value)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)}
    return {key: value for key, value in payload.items() if key in allowed}


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
