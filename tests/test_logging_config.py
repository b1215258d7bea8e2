"""
Tests for the gateway logging configuration.

Validates:
- JSONFormatter emits one JSON object with extra fields
- DevFormatter shows only the whitelisted extras inline
- the trace id is per-context, so concurrent tasks don't leak it
- configure_logging() picks a formatter from GATEWAY_ENV
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from io import StringIO
from unittest.mock import patch

import pytest

from gateway.observability.logging_config import (
    NOISY_LOGGERS,
    ContextFilter,
    DevFormatter,
    JSONFormatter,
    clear_trace_id,
    configure_logging,
    get_trace_id,
    set_trace_id,
)


@pytest.fixture(autouse=True)
def _reset_logging():
    clear_trace_id()
    yield
    clear_trace_id()
    root = logging.getLogger()
    for h in root.handlers[:]:
        if isinstance(h.formatter, (JSONFormatter, DevFormatter)):
            root.removeHandler(h)


def _record(msg: str = "event", level: int = logging.INFO, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="gateway.test", level=level, pathname="x.py", lineno=1,
        msg=msg, args=(), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    def test_core_fields(self):
        parsed = json.loads(JSONFormatter().format(_record("backend_generate", logging.WARNING)))
        assert parsed["message"] == "backend_generate"
        assert parsed["level"] == "WARNING"
        assert parsed["logger"] == "gateway.test"
        assert "T" in parsed["timestamp"]

    def test_extra_fields_and_trace_id(self):
        record = _record(backend="openai", latency_ms=812, trace_id="t-1")
        parsed = json.loads(JSONFormatter().format(record))
        assert parsed["backend"] == "openai"
        assert parsed["latency_ms"] == 812
        assert parsed["trace_id"] == "t-1"

    def test_unserializable_extra_is_stringified(self):
        parsed = json.loads(JSONFormatter().format(_record(client=object())))
        assert isinstance(parsed["client"], str)

    def test_exception_included(self):
        try:
            raise RuntimeError("provider exploded")
        except RuntimeError:
            import sys
            record = _record("failed")
            record.exc_info = sys.exc_info()

        parsed = json.loads(JSONFormatter().format(record))
        assert "provider exploded" in parsed["exception"]


class TestDevFormatter:

    def test_whitelisted_extras_inline(self):
        output = DevFormatter().format(_record(backend="anthropic", finish_reason="stop"))
        assert "backend=anthropic" in output
        assert "finish_reason=stop" in output

    def test_other_extras_hidden(self):
        output = DevFormatter().format(_record(cache_key="abc123"))
        assert "cache_key" not in output

    def test_error_is_red(self):
        assert "\033[31m" in DevFormatter().format(_record(level=logging.ERROR))


class TestTraceContext:

    def test_set_get_clear(self):
        assert get_trace_id() is None
        set_trace_id("trace-1")
        assert get_trace_id() == "trace-1"
        clear_trace_id()
        assert get_trace_id() is None

    def test_filter_injects_only_when_set(self):
        record = _record()
        assert ContextFilter().filter(record) is True
        assert not hasattr(record, "trace_id")

        set_trace_id("trace-2")
        record = _record()
        ContextFilter().filter(record)
        assert record.trace_id == "trace-2"

    @pytest.mark.asyncio
    async def test_concurrent_tasks_keep_their_own_trace(self):
        async def worker(trace: str) -> str:
            set_trace_id(trace)
            await asyncio.sleep(0)
            return get_trace_id()

        results = await asyncio.gather(worker("a"), worker("b"))
        assert results == ["a", "b"]


class TestConfigureLogging:

    def test_production_uses_json(self):
        configure_logging(env="production")
        assert isinstance(logging.getLogger().handlers[0].formatter, JSONFormatter)

    def test_reads_gateway_env(self):
        with patch.dict(os.environ, {"GATEWAY_ENV": "production"}):
            configure_logging()
        assert isinstance(logging.getLogger().handlers[0].formatter, JSONFormatter)

    def test_defaults_to_development(self):
        with patch.dict(os.environ, {}, clear=True):
            configure_logging()
        assert isinstance(logging.getLogger().handlers[0].formatter, DevFormatter)

    def test_replaces_handlers_and_attaches_filter(self):
        logging.getLogger().addHandler(logging.StreamHandler())
        configure_logging(env="development")
        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        assert any(isinstance(f, ContextFilter) for f in handlers[0].filters)

    def test_quiets_sdk_loggers(self):
        configure_logging(env="development", level=logging.DEBUG)
        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING

    def test_json_end_to_end(self):
        configure_logging(env="production")
        stream = StringIO()
        logging.getLogger().handlers[0].stream = stream

        set_trace_id("trace-e2e")
        logging.getLogger("gateway.e2e").info("pipeline_complete", extra={"backend": "ollama"})

        parsed = json.loads(stream.getvalue().strip())
        assert parsed["message"] == "pipeline_complete"
        assert parsed["backend"] == "ollama"
        assert parsed["trace_id"] == "trace-e2e"
