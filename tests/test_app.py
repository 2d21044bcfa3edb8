"""Tests covering the application bootstrap helpers."""

from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Any

import pytest

from collegebot import app
from collegebot.ai.orchestration.tools import HttpToolProvider
from collegebot.services.settings import Settings, SettingsStore


class _StubAIClient:
    def __init__(self, settings: Any):
        self.settings = settings


@pytest.fixture(autouse=True)
def _stub_ai_client(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(app, "AIClient", _StubAIClient)


def test_build_services_uses_settings() -> None:
    settings = Settings(
        api_key="test-key",
        model="gpt-4o-mini",
        max_turns=12,
        max_tool_concurrency=3,
        system_prompt="Advise students.",
        tool_endpoints={"geocode": {"url": "https://tools.local/geocode", "description": "Coordinates"}},
    )

    services = app.build_services(settings, debug_logging=True)

    assert services.system_prompt == "Advise students."
    assert services.turn_config.max_turns == 12
    assert services.dispatcher_config.max_concurrency == 3
    assert services.dispatcher_config.log_arguments is True
    assert services.token_source.client.settings.model == "gpt-4o-mini"
    assert services.registry.list_names() == ["geocode"]


def test_build_registry_creates_http_providers() -> None:
    registry = app.build_registry(
        Settings(
            tool_endpoints={
                "geocode": {
                    "url": "https://tools.local/geocode",
                    "parameters": {"type": "object", "required": ["address"]},
                },
                "invalid": {"description": "missing url"},
            }
        )
    )

    registration = registry.get_registration("geocode")
    assert registration is not None
    assert isinstance(registration.provider, HttpToolProvider)
    assert registration.spec.parameters == {"type": "object", "required": ["address"]}
    assert "invalid" not in registry


class TestCliOverrides:
    """``--set KEY=VALUE`` coercion."""

    def test_coerces_by_field_type(self) -> None:
        overrides = app._coerce_cli_overrides(
            [
                "model=gpt-4.1",
                "max_turns=7",
                "temperature=0.5",
                "parallel_tools=off",
                "max_tokens=none",
                "large_tool_results=[\"fetch_markdown\"]",
                "default_headers={\"X-Team\": \"advising\"}",
            ]
        )

        assert overrides == {
            "model": "gpt-4.1",
            "max_turns": 7,
            "temperature": 0.5,
            "parallel_tools": False,
            "max_tokens": None,
            "large_tool_results": ["fetch_markdown"],
            "default_headers": {"X-Team": "advising"},
        }

    def test_optional_int_accepts_number(self) -> None:
        assert app._coerce_cli_overrides(["max_tokens=512"]) == {"max_tokens": 512}

    @pytest.mark.parametrize(
        "entry",
        ["model", "=value", "unknown_field=1", "parallel_tools=maybe", "max_turns=ten", "default_headers=[1]"],
    )
    def test_invalid_entries_raise(self, entry: str) -> None:
        with pytest.raises(ValueError):
            app._coerce_cli_overrides([entry])


def test_dump_settings_redacts_api_key(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COLLEGEBOT_MODEL", "env-model")
    store = SettingsStore(tmp_path / "settings.json")
    buffer = io.StringIO()

    app._dump_settings(Settings(api_key="sk-secret-value"), store, overrides={"port": 9000}, stream=buffer)

    output = json.loads(buffer.getvalue())
    assert output["settings"]["api_key"] == "sk***********ue"
    assert output["meta"]["path"] == str(tmp_path / "settings.json")
    assert output["meta"]["cli_overrides"] == ["port"]
    assert "COLLEGEBOT_MODEL" in output["meta"]["environment_variables"]


def test_main_dump_settings_exits_without_serving(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setattr(app, "configure_logging", lambda *args, **kwargs: None)

    def _fail_run(*args: Any, **kwargs: Any) -> None:  # pragma: no cover - must not be reached
        raise AssertionError("server should not start")

    monkeypatch.setattr(app.uvicorn, "run", _fail_run)

    app.main(
        [
            "--dump-settings",
            "--settings-path",
            str(tmp_path / "settings.json"),
            "--port",
            "9100",
            "--set",
            "model=gpt-4.1",
        ]
    )

    output = json.loads(capsys.readouterr().out)
    assert output["settings"]["port"] == 9100
    assert output["settings"]["model"] == "gpt-4.1"


def test_main_rejects_bad_override(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(app, "configure_logging", lambda *args, **kwargs: None)

    with pytest.raises(SystemExit) as excinfo:
        app.main(["--set", "not-an-override"])

    assert excinfo.value.code == 2
