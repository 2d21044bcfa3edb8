"""Logging setup for the collegebot service.

Several conversations run concurrently in one process, so every record is
stamped with the id of the conversation it belongs to (``-`` outside a run)
before it reaches the shared log file.
"""

from __future__ import annotations

import contextvars
import logging
import logging.handlers
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

__all__ = ["ConversationFilter", "conversation_context", "get_log_path", "setup_logging"]

LOG_FILE_NAME = "collegebot.log"
_DEFAULT_LOG_DIR = Path.home() / ".collegebot" / "logs"
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(conversation_id)s | %(name)s | %(message)s"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai", "uvicorn.access")

_CONVERSATION_ID: contextvars.ContextVar[str] = contextvars.ContextVar("collegebot_conversation_id", default="-")
_CONFIGURED = False
_LOG_PATH: Path | None = None


class ConversationFilter(logging.Filter):
    """Adds ``conversation_id`` to every record passing through a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.conversation_id = _CONVERSATION_ID.get()
        return True


@contextmanager
def conversation_context(conversation_id: str | None) -> Iterator[None]:
    """Attribute log records emitted inside the block to ``conversation_id``."""

    token = _CONVERSATION_ID.set(conversation_id or "-")
    try:
        yield
    finally:
        _CONVERSATION_ID.reset(token)


def setup_logging(
    level: str | int | None = None,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install the service's rotating file handler and optional console handler.

    ``level`` accepts a logging constant, a name such as ``"debug"`` or a
    numeric string. When omitted, ``COLLEGEBOT_LOG_LEVEL`` is consulted and
    unrecognised values fall back to ``INFO``. Repeated calls are no-ops
    unless ``force`` is set.
    """

    global _CONFIGURED, _LOG_PATH
    if _CONFIGURED and not force and _LOG_PATH is not None:
        return _LOG_PATH

    if level is None or level == "":
        level = os.environ.get("COLLEGEBOT_LOG_LEVEL")
    resolved = _coerce_level(level)

    log_path = _resolve_log_dir(log_dir) / LOG_FILE_NAME
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())

    formatter = logging.Formatter(_LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    conversation_filter = ConversationFilter()
    for handler in handlers:
        handler.setLevel(resolved)
        handler.setFormatter(formatter)
        handler.addFilter(conversation_filter)

    logging.basicConfig(level=resolved, handlers=handlers, force=True)
    logging.captureWarnings(True)

    # Client libraries log every request at INFO/DEBUG.
    quiet_level = max(resolved, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)

    _CONFIGURED = True
    _LOG_PATH = log_path
    return log_path


def get_log_path() -> Path | None:
    """Return the active log file, or ``None`` before :func:`setup_logging`."""

    return _LOG_PATH


def _coerce_level(value: str | int | None) -> int:
    if value is None or value == "":
        return logging.INFO
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    resolved = logging.getLevelName(text.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    return Path(log_dir or os.environ.get("COLLEGEBOT_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()
