"""Debug event logging for conversation runs."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Mapping, Sequence

from ...utils import logging as logging_utils

LOGGER = logging.getLogger(__name__)


def _default_event_dir() -> Path:
    log_path = logging_utils.get_log_path()
    if log_path is not None:
        return log_path.parent / "events"
    return Path.home() / ".collegebot" / "logs" / "events"


@dataclass(slots=True)
class _NullChatEventLogRun:
    """No-op implementation used when event logging is disabled."""

    path: Path | None = None

    def __enter__(self) -> "_NullChatEventLogRun":  # noqa: D401
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # noqa: D401
        return False

    def log_turn(self, *_: Any, **__: Any) -> None:
        return

    def log_tool_batch(self, *_: Any, **__: Any) -> None:
        return

    def log_completion(self, *_: Any, **__: Any) -> None:
        return

    def log_failure(self, *_: Any, **__: Any) -> None:
        return


class ChatEventLogRun:
    """Context manager that writes structured JSONL entries for one run."""

    def __init__(self, path: Path, *, context: Mapping[str, Any]) -> None:
        self.path = path
        self._file = path.open("w", encoding="utf-8")
        self._finalized = False
        self._write_entry("start", context)

    def __enter__(self) -> "ChatEventLogRun":  # noqa: D401
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # noqa: D401
        if exc is not None and not self._finalized:
            self.log_failure(message=str(exc) or exc.__class__.__name__)
        elif not self._finalized:
            self.log_failure(message="run aborted without completion")
        return False

    @property
    def finalized(self) -> bool:
        return self._finalized

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()

    def log_turn(
        self,
        *,
        turn_index: int,
        assistant_text: str,
        regions: Sequence[Mapping[str, Any]],
        leftover: str = "",
    ) -> None:
        payload = {
            "turn_index": turn_index,
            "assistant_text": assistant_text,
            "regions": list(regions),
            "leftover": leftover,
        }
        self._write_entry("turn", payload)

    def log_tool_batch(self, *, turn_index: int, outcomes: Sequence[Mapping[str, Any]]) -> None:
        if not outcomes:
            return
        self._write_entry("tools", {"turn_index": turn_index, "outcomes": list(outcomes)})

    def log_completion(self, *, state: str, answer: str | None, turns: int, error: str | None = None) -> None:
        if self._finalized:
            return
        payload = {
            "state": state,
            "answer": answer,
            "turns": turns,
            "error": error,
            "status": "success" if state == "done" else state,
        }
        self._write_entry("completion", payload)
        self._finalized = True
        self.close()

    def log_failure(self, *, message: str, details: Mapping[str, Any] | None = None) -> None:
        if self._finalized:
            return
        payload: dict[str, Any] = {
            "status": "failure",
            "message": message,
        }
        if details:
            payload["details"] = dict(details)
        self._write_entry("failure", payload)
        self._finalized = True
        self.close()

    def _write_entry(self, event: str, payload: Mapping[str, Any] | None = None) -> None:
        entry: dict[str, Any] = {
            "event": event,
            "timestamp": time.time(),
        }
        if payload:
            for key, value in payload.items():
                entry[key] = self._safe_json(value)
        json.dump(entry, self._file, ensure_ascii=False)
        self._file.write("\n")
        self._file.flush()

    def _safe_json(self, value: Any, *, depth: int = 0) -> Any:
        if depth > 6:
            return repr(value)
        if value is None or isinstance(value, (str, int, float, bool)):
            return value
        if isinstance(value, Mapping):
            return {str(key): self._safe_json(val, depth=depth + 1) for key, val in value.items()}
        if isinstance(value, (list, tuple, set)):
            return [self._safe_json(item, depth=depth + 1) for item in value]
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        return repr(value)


class ChatEventLogger:
    """Factory for per-conversation event logs when debug logging is enabled."""

    def __init__(self, *, enabled: bool, base_dir: Path | str | None = None) -> None:
        self.enabled = bool(enabled)
        self._base_dir = Path(base_dir) if base_dir else _default_event_dir()

    def start_run(
        self,
        *,
        run_id: str,
        system_prompt: str,
        history: Sequence[Mapping[str, Any]] | None,
        metadata: Mapping[str, Any] | None = None,
    ) -> ChatEventLogRun | _NullChatEventLogRun:
        if not self.enabled:
            return _NullChatEventLogRun()
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
            path = self._allocate_path(run_id)
            context = {
                "run_id": run_id,
                "system_prompt": system_prompt,
                "metadata": dict(metadata or {}),
                "history": list(history or ()),
            }
            log_run = ChatEventLogRun(path, context=context)
            LOGGER.debug("Conversation event log started: %s", path)
            return log_run
        except OSError:
            LOGGER.debug("Failed to start conversation event log", exc_info=True)
            return _NullChatEventLogRun()

    def _allocate_path(self, run_id: str) -> Path:
        timestamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
        safe_run_id = "".join(ch for ch in run_id if ch.isalnum())[:12] or "run"
        return self._base_dir / f"chat-{timestamp}-{safe_run_id}.jsonl"


__all__ = [
    "ChatEventLogger",
    "ChatEventLogRun",
]
