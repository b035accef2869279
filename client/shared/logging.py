"""structlog setup for the client process.

Output format and level come from the caller (normally ClientSettings) and
fall back to the environment:
- CARO_LOG_FORMAT: "json" for one JSON object per line, "console" (default)
  for human-readable output.
- CARO_LOG_LEVEL: "DEBUG", "INFO" (default), "WARNING", "ERROR", "CRITICAL".

Every log line emitted while a room is active carries its room_id (see
bind_room_context).
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import UTC, datetime
from enum import Enum, StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from typing import Any

LOG_FILE_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

# Transport libraries log every request or frame at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore", "socketio.client", "engineio.client")


class LogFormat(StrEnum):
    JSON = "json"
    CONSOLE = "console"


def _plain(value: object) -> object:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_plain(v) for v in value)
    return value


def _serialize_enums(
    _logger: object,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Log enum members (session status, notice kinds, results) by value."""
    for key, value in event_dict.items():
        event_dict[key] = _plain(value)
    return event_dict


def _is_test() -> bool:
    return "pytest" in sys.modules


def resolve_log_format(value: str | None = None) -> LogFormat:
    raw = (value if value is not None else os.environ.get("CARO_LOG_FORMAT", "")).strip().lower()
    if not raw:
        return LogFormat.CONSOLE
    try:
        return LogFormat(raw)
    except ValueError:
        msg = f"Invalid log format {raw!r}. Must be 'json' or 'console'."
        raise ValueError(msg) from None


def resolve_log_level(value: str | int | None = None) -> int:
    if isinstance(value, int):
        return value
    raw = (value if value is not None else os.environ.get("CARO_LOG_LEVEL", "INFO")).strip().upper()
    level = logging.getLevelNamesMapping().get(raw)
    if level is None or raw in ("NOTSET", "WARN", "FATAL"):
        msg = f"Invalid log level {raw!r}. Must be one of CRITICAL, DEBUG, ERROR, INFO, WARNING."
        raise ValueError(msg)
    return level


def _formatter(log_format: LogFormat, *, colors: bool) -> logging.Formatter:
    renderer = (
        structlog.processors.JSONRenderer()
        if log_format == LogFormat.JSON
        else structlog.dev.ConsoleRenderer(colors=colors)
    )
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )


def setup_logging(
    log_dir: Path | str | None = None,
    level: str | int | None = None,
    log_format: str | None = None,
) -> Path | None:
    """Route structlog through stdlib handlers: stdout always, a file when log_dir is set.

    The file is named after the current UTC time. Returns its path, or None
    when no file was opened (no log_dir, or running under pytest).
    """
    fmt = resolve_log_format(log_format)
    resolved_level = resolve_log_level(level)

    # Exceptions are rendered by the handler formatter, once per handler.
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _serialize_enums,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    root = logging.getLogger()
    root.setLevel(resolved_level)
    root.handlers.clear()
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(_formatter(fmt, colors=sys.stdout.isatty()))
    root.addHandler(console)

    if log_dir is None or _is_test():
        return None

    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{datetime.now(tz=UTC).strftime(LOG_FILE_TIMESTAMP_FORMAT)}.log"
    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setFormatter(_formatter(fmt, colors=False))
    root.addHandler(file_handler)
    return path


def bind_room_context(room_id: str | None) -> None:
    """Attach the active room id to every log line emitted from this context."""
    if room_id is None:
        structlog.contextvars.unbind_contextvars("room_id")
    else:
        structlog.contextvars.bind_contextvars(room_id=room_id)
