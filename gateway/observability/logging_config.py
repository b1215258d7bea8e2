"""
Structured logging configuration for the gateway.

Uses the standard logging module with two formatters so every existing
logging.getLogger(__name__) call works unchanged:

- production: JSON to stdout (machine-readable)
- development/staging/test: colored text to stderr (human-readable)

The current pipeline trace id lives in a ContextVar, so concurrent
requests running on one event loop each log their own trace id.

Usage:
    from gateway.observability.logging_config import configure_logging

    configure_logging()  # auto-detects from GATEWAY_ENV

    logger = logging.getLogger(__name__)
    logger.info("backend_generate", extra={
        "backend": "openai",
        "model": "gpt-4o",
        "latency_ms": 812,
    })
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional

# ─── Trace Context ────────────────────────────────────────────────────

_trace_id: ContextVar[Optional[str]] = ContextVar("gateway_trace_id", default=None)


def set_trace_id(trace_id: str) -> None:
    """Set the trace id for log records emitted in the current context."""
    _trace_id.set(trace_id)


def get_trace_id() -> Optional[str]:
    """Get the current trace_id, or None if not in a traced context."""
    return _trace_id.get()


def clear_trace_id() -> None:
    _trace_id.set(None)


# ─── Context Filter ───────────────────────────────────────────────────


class ContextFilter(logging.Filter):
    """Injects the current trace_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        trace_id = get_trace_id()
        if trace_id:
            record.trace_id = trace_id  # type: ignore[attr-defined]
        return True


# ─── JSON Formatter (Production) ──────────────────────────────────────


_STANDARD_FIELDS = frozenset({
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message",
    "taskName",
})


class JSONFormatter(logging.Formatter):
    """
    Single-line JSON log records.

    Output format:
        {"timestamp": "...", "level": "INFO", "logger": "gateway.backends.base",
         "message": "backend_generate", "backend": "openai", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "trace_id"):
            entry["trace_id"] = record.trace_id

        for key, value in record.__dict__.items():
            if key in _STANDARD_FIELDS or key.startswith("_") or key == "trace_id":
                continue
            try:
                json.dumps(value)
                entry[key] = value
            except (TypeError, ValueError):
                entry[key] = str(value)

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


# ─── Dev Formatter (Local Development) ────────────────────────────────


class DevFormatter(logging.Formatter):
    """
    Colorful, human-readable logs for local development.

    Format: [HH:MM:SS] LEVEL logger: message [key=value key=value]
    """

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[41m",
    }
    RESET = "\033[0m"

    _EXTRA_KEYS = (
        "trace_id", "stage", "backend", "provider", "model",
        "finish_reason", "latency_ms", "tokens", "error",
    )

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno, self.RESET)
        timestamp = self.formatTime(record, "%H:%M:%S")

        extras = [
            f"{key}={getattr(record, key)}"
            for key in self._EXTRA_KEYS
            if getattr(record, key, None) is not None
        ]
        extra_str = f" [{' '.join(extras)}]" if extras else ""

        formatted = (
            f"{self.RESET}[{timestamp}] "
            f"{color}{record.levelname:<8}{self.RESET} "
            f"{record.name}: {record.getMessage()}{extra_str}"
        )

        if record.exc_info and record.exc_info[1]:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


# ─── Configuration ────────────────────────────────────────────────────

NOISY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic")


def configure_logging(
    env: Optional[str] = None,
    level: int = logging.INFO,
) -> None:
    """
    Configure the root logger based on environment.

    Args:
        env: Override environment. If None, reads GATEWAY_ENV
             (defaults to "development").
        level: Log level (default: INFO).
    """
    env = (env or os.environ.get("GATEWAY_ENV", "development")).lower().strip()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if env == "production":
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(DevFormatter())

    handler.addFilter(ContextFilter())
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
