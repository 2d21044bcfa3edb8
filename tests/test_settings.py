"""Tests for the settings persistence layer."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from collegebot.ai.orchestration.runtime_config import TurnConfig
from collegebot.services.settings import Settings, SettingsStore, ToolEndpoint, redact_secret


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "COLLEGEBOT_API_KEY",
        "COLLEGEBOT_MODEL",
        "COLLEGEBOT_PORT",
        "COLLEGEBOT_MAX_TURNS",
        "COLLEGEBOT_PARALLEL_TOOLS",
        "COLLEGEBOT_TEMPERATURE",
    ):
        monkeypatch.delenv(name, raising=False)


def test_load_returns_defaults_when_file_missing(tmp_path: Path) -> None:
    settings = SettingsStore(tmp_path / "settings.json").load()

    assert settings == Settings()


def test_save_and_load_roundtrip_without_api_key(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    store = SettingsStore(path)
    original = Settings(
        api_key="super-secret",
        model="gpt-4.1-mini",
        max_turns=10,
        tool_endpoints={"geocode": {"url": "https://tools.local/geocode"}},
    )

    store.save(original)
    payload = json.loads(path.read_text(encoding="utf-8"))
    reloaded = SettingsStore(path).load()

    assert "api_key" not in payload
    assert payload["version"] == 1
    assert reloaded.api_key == ""
    assert reloaded.model == "gpt-4.1-mini"
    assert reloaded.max_turns == 10
    assert reloaded.tool_endpoints == original.tool_endpoints


def test_api_key_in_file_is_ignored(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"api_key": "leaked", "model": "gpt-4o"}), encoding="utf-8")

    settings = SettingsStore(path).load()

    assert settings.api_key == ""
    assert settings.model == "gpt-4o"


def test_invalid_json_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")

    assert SettingsStore(path).load() == Settings()


def test_unknown_fields_are_dropped(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"model": "gpt-4o", "theme": "dark"}), encoding="utf-8")

    assert SettingsStore(path).load().model == "gpt-4o"


def test_environment_overrides_win_over_cli(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COLLEGEBOT_API_KEY", "env-key")
    monkeypatch.setenv("COLLEGEBOT_MODEL", "env-model")
    monkeypatch.setenv("COLLEGEBOT_PORT", "9001")
    monkeypatch.setenv("COLLEGEBOT_MAX_TURNS", "not-a-number")
    monkeypatch.setenv("COLLEGEBOT_PARALLEL_TOOLS", "false")
    monkeypatch.setenv("COLLEGEBOT_TEMPERATURE", "0.7")

    settings = SettingsStore(tmp_path / "settings.json").load(
        overrides={"model": "cli-model", "max_turns": 5, "metadata": {"team": "advising"}}
    )

    assert settings.api_key == "env-key"
    assert settings.model == "env-model"
    assert settings.port == 9001
    assert settings.max_turns == 5
    assert settings.parallel_tools is False
    assert settings.temperature == 0.7
    assert settings.metadata == {"team": "advising"}


def test_resolved_tool_endpoints_skip_invalid_entries() -> None:
    settings = Settings(
        tool_endpoints={
            "geocode": {"url": "https://tools.local/geocode", "timeout": 5, "unknown": True},
            "broken": {"description": "no url"},
            "weird": "not-an-object",  # type: ignore[dict-item]
        }
    )

    resolved = settings.resolved_tool_endpoints()

    assert list(resolved) == ["geocode"]
    assert resolved["geocode"] == ToolEndpoint(url="https://tools.local/geocode", timeout=5)


def test_turn_config_from_settings() -> None:
    config = TurnConfig.from_settings(
        Settings(max_turns=0, max_malformed_turns=-1, max_tool_concurrency=0, large_tool_results=["fetch_markdown"])
    )

    assert config.max_turns is None
    assert config.max_malformed_turns == 0
    assert config.max_tool_concurrency is None
    assert config.large_tool_results == ("fetch_markdown",)
    assert config.request_title is False


@pytest.mark.parametrize(
    ("secret", "expected"),
    [("", ""), ("abcd", "****"), ("sk-1234567", "sk******67")],
)
def test_redact_secret(secret: str, expected: str) -> None:
    assert redact_secret(secret) == expected
