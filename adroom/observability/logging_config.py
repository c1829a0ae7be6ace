"""
Logging for the AdRoom passes.

Every pass (optimize, execute, worker, ipe, learn) wraps its work in
run_context(), which tags each record it emits with a run_id such as
"optimize-3f9a1c2e". Passes are asyncio tasks, so the run_id lives in a
ContextVar rather than thread-local storage.

Output:
- ADROOM_ENV=production: one JSON object per line on stdout
- anything else: short coloured lines on stderr

ADROOM_LOG_LEVEL overrides the level (DEBUG, INFO, WARNING, ...).

Usage:
    configure_logging()

    with run_context("optimize") as run_id:
        logger.info("optimization_triggered", extra={
            "strategy_id": "s-123",
            "action": "SCALE_UP",
        })
"""

from __future__ import annotations

import contextvars
import json
import logging
import os
import sys
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Optional, Union

_run_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "adroom_run_id", default=None
)

# Attributes every LogRecord has; anything else came from `extra=`.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "run_id"}

QUIET_LOGGERS = ("httpx", "httpcore", "hpack", "supabase", "postgrest", "openai", "apscheduler")


# ── Run context ──


@contextmanager
def run_context(prefix: str) -> Iterator[str]:
    """Tag records logged inside the block with a fresh `<prefix>-<hex>` run_id."""
    run_id = f"{prefix}-{uuid.uuid4().hex[:8]}"
    token = _run_id.set(run_id)
    try:
        yield run_id
    finally:
        _run_id.reset(token)


def get_run_id() -> Optional[str]:
    return _run_id.get()


class ContextFilter(logging.Filter):
    """Copies the active run_id onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        run_id = _run_id.get()
        if run_id:
            record.run_id = run_id  # type: ignore[attr-defined]
        return True


def record_fields(record: logging.LogRecord) -> dict[str, Any]:
    """The `extra=` fields attached to a record, in insertion order."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


# ── Formatters ──


class JSONFormatter(logging.Formatter):
    """
    {"ts": ..., "level": "INFO", "logger": "adroom.optimization...",
     "event": "optimization_triggered", "run_id": ..., <extra fields>}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        run_id = getattr(record, "run_id", None)
        if run_id:
            entry["run_id"] = run_id
        entry.update(record_fields(record))
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class DevFormatter(logging.Formatter):
    """
    HH:MM:SS LEVEL [run_id] event  key=value ...

    Only warnings and errors are coloured. Long values are cut to keep
    one record on one line.
    """

    LEVEL_COLORS = {
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }
    RESET = "\033[0m"
    MAX_VALUE_LEN = 80

    def format(self, record: logging.LogRecord) -> str:
        level = record.levelname[:4]
        color = self.LEVEL_COLORS.get(record.levelno)
        if color:
            level = f"{color}{level}{self.RESET}"

        run_id = getattr(record, "run_id", None)
        run = f" [{run_id}]" if run_id else ""

        pairs = " ".join(
            f"{key}={self._short(value)}" for key, value in record_fields(record).items()
        )
        line = (
            f"{self.formatTime(record, '%H:%M:%S')} {level}{run} "
            f"{record.getMessage()}"
        )
        if pairs:
            line += f"  {pairs}"
        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line

    def _short(self, value: Any) -> str:
        text = str(value)
        if len(text) > self.MAX_VALUE_LEN:
            return text[: self.MAX_VALUE_LEN - 3] + "..."
        return text


# ── Setup ──


def configure_logging(
    env: Optional[str] = None,
    level: Union[int, str, None] = None,
) -> None:
    """
    Install one handler on the root logger, replacing any others.

    Args:
        env: "production" for JSON. Defaults to ADROOM_ENV, then "development".
        level: Defaults to ADROOM_LOG_LEVEL, then INFO.
    """
    env = (env or os.environ.get("ADROOM_ENV", "development")).lower().strip()
    if level is None:
        level = os.environ.get("ADROOM_LOG_LEVEL", "INFO").upper().strip()

    if env == "production":
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(DevFormatter())
    handler.addFilter(ContextFilter())

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
