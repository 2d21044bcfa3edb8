"""Application bootstrap for the collegebot chat service."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

import uvicorn

from .ai.client import AIClient, ClientSettings, OpenAITokenSource
from .ai.orchestration.event_log import ChatEventLogger
from .ai.orchestration.runtime_config import TurnConfig
from .ai.orchestration.tool_dispatcher import DispatcherConfig
from .ai.orchestration.tools.http_provider import HttpToolProvider
from .ai.orchestration.tools.registry import ProviderRegistry
from .ai.orchestration.tools.types import ToolSpec
from .api.server import ChatServices, create_app
from .services.settings import Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)


def configure_logging(debug: bool = False, *, level: str | int | None = None, force: bool = False) -> None:
    """Configure structured logging for the service."""

    logging_utils.setup_logging(logging.DEBUG if debug else level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(logging.getLogger().level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        settings = active_store.load(overrides=overrides)
    except OSError as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        settings = Settings()
    return settings


def build_registry(settings: Settings) -> ProviderRegistry:
    """Register an :class:`HttpToolProvider` for each configured tool endpoint."""

    registry = ProviderRegistry()
    for name, endpoint in settings.resolved_tool_endpoints().items():
        provider = HttpToolProvider(endpoint.url, headers=endpoint.headers, timeout=endpoint.timeout)
        spec = ToolSpec(name=name, description=endpoint.description, parameters=endpoint.parameters)
        registry.register(name, provider, spec=spec)
        _LOGGER.info("Registered tool %s -> %s", name, endpoint.url)
    return registry


def build_services(settings: Settings, *, debug_logging: bool = False) -> ChatServices:
    """Assemble the collaborators the HTTP app needs from ``settings``."""

    client = AIClient(ClientSettings.from_settings(settings, debug_logging=debug_logging))
    turn_config = TurnConfig.from_settings(settings)
    return ChatServices(
        token_source=OpenAITokenSource(client),
        registry=build_registry(settings),
        system_prompt=settings.system_prompt,
        turn_config=turn_config,
        dispatcher_config=DispatcherConfig(
            max_concurrency=turn_config.max_tool_concurrency,
            log_arguments=debug_logging,
        ),
        event_logger=ChatEventLogger(enabled=settings.debug_event_logging),
    )


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `collegebot` console script."""

    args = _parse_cli_args(argv)

    debug = _env_flag("COLLEGEBOT_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("COLLEGEBOT_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc
    if args.host:
        cli_overrides["host"] = args.host
    if args.port:
        cli_overrides["port"] = args.port

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return

    if settings.debug_logging and not debug:
        debug = True
    configure_logging(debug, level=settings.log_level, force=True)

    if not settings.api_key:
        _LOGGER.warning("No API key configured; set COLLEGEBOT_API_KEY or pass --set api_key=...")

    app = create_app(build_services(settings, debug_logging=debug))
    _LOGGER.info("Serving collegebot on %s:%s", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="collegebot",
        description="Run the collegebot streaming chat service or inspect its configuration.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.collegebot/settings.json path.",
    )
    parser.add_argument("--host", help="Interface to bind (overrides settings).")
    parser.add_argument("--port", type=int, help="Port to bind (overrides settings).")
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings before launch (repeatable).",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if normalized.lower() in {"none", "null"} and _is_optional(annotation):
        return None
    if target is str or target is Any:
        return normalized
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if is_dataclass(target):
        try:
            payload = json.loads(normalized or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dataclass overrides must be valid JSON") from exc
        if isinstance(target, type):
            return target(**payload)
        raise ValueError("Dataclass override target is not instantiable")
    if target is list:
        try:
            value = json.loads(normalized or "[]")
        except json.JSONDecodeError as exc:
            raise ValueError("List overrides must be valid JSON arrays") from exc
        if not isinstance(value, list):
            raise ValueError("List overrides must be valid JSON arrays")
        return value
    if target is dict:
        try:
            value = json.loads(normalized or "{}")
        except json.JSONDecodeError as exc:
            raise ValueError("Dict overrides must be valid JSON objects") from exc
        if not isinstance(value, dict):
            raise ValueError("Dict overrides must be valid JSON objects")
        return value
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return _resolve_annotation(args[0])


def _is_optional(annotation: Any) -> bool:
    return type(None) in get_args(annotation)


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_key"] = redact_secret(payload.get("api_key") or "")
    metadata = {
        "path": str(store.path),
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    output = {"settings": payload, "meta": metadata}
    json.dump(output, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("COLLEGEBOT_"))


if __name__ == "__main__":  # pragma: no cover - manual launch
    main()
