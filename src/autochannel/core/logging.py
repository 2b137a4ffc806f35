"""
Auto-channel logging — context-tagged text for terminals, JSON for collectors.

Engine code logs through a ContextLogger bound to its thread id, and passes
per-call context (client_id, channel_id, code) with ``extra=``. Both
formatters render those fields: the text formatter as a ``[thread]`` prefix
and a ``key=value`` tail, the JSON formatter as top-level keys.

Configured via AUTOCHANNEL_LOG_LEVEL, AUTOCHANNEL_LOG_COLOR and
AUTOCHANNEL_LOG_FORMAT.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, MutableMapping

CONTEXT_FIELDS = ("thread_id", "client_id", "channel_id", "code")

_LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[1;31m",
}
_RESET = "\033[0m"
_DIM = "\033[2m"


def _context(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class ContextLogger(logging.LoggerAdapter):
    """LoggerAdapter whose bound context merges with per-call ``extra``.

    The stdlib adapter replaces the caller's ``extra`` wholesale; here the
    call site wins key by key, so ``thread_id`` survives alongside
    ``client_id``.
    """

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs


def context_logger(name: str, **context: Any) -> ContextLogger:
    return ContextLogger(logging.getLogger(name), context)


class ColorFormatter(logging.Formatter):
    """One line per record; context fields rendered around the message."""

    def __init__(self, use_color: bool = True):
        super().__init__(datefmt="%H:%M:%S")
        self.use_color = use_color

    def _paint(self, text: str, color: str) -> str:
        return f"{color}{text}{_RESET}" if self.use_color else text

    def format(self, record: logging.LogRecord) -> str:
        context = _context(record)
        thread_id = context.pop("thread_id", None)

        parts = [
            self.formatTime(record, self.datefmt),
            self._paint(f"[{record.name}]", _DIM),
            self._paint(record.levelname, _LEVEL_COLORS.get(record.levelname, "")) + ":",
        ]
        if thread_id is not None:
            parts.append(f"[{thread_id}]")
        parts.append(record.getMessage())
        if context:
            parts.append(
                self._paint(" ".join(f"{k}={v}" for k, v in context.items()), _DIM)
            )

        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredFormatter(logging.Formatter):
    """JSON object per record, context fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **_context(record),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _should_use_color() -> bool:
    env_val = os.getenv("AUTOCHANNEL_LOG_COLOR", "auto").lower()
    if env_val in ("true", "false"):
        return env_val == "true"
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def setup_logging() -> None:
    """Configure the root logger once at startup.

    AUTOCHANNEL_LOG_LEVEL: DEBUG / INFO / WARNING / ERROR (default INFO)
    AUTOCHANNEL_LOG_COLOR: true / false / auto (default auto)
    AUTOCHANNEL_LOG_FORMAT: text / json (default text)
    """
    level_name = os.getenv("AUTOCHANNEL_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    log_format = os.getenv("AUTOCHANNEL_LOG_FORMAT", "text").lower()

    if log_format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = ColorFormatter(use_color=_should_use_color())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # Per-statement SQL and per-request access lines drown the engine's output.
    for noisy in ("aiosqlite", "uvicorn.access", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger("autochannel").debug(
        "Logging configured (level=%s, format=%s)", level_name, log_format
    )
