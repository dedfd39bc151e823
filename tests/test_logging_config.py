"""Tests for structured logging, request context and request tracing."""

import json
import logging
import sys

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from backoffice.logging_config import (
    LogFormat,
    LoggingConfig,
    LogLevel,
    RequestContext,
    configure_logging,
    generate_request_id,
    get_logger,
    log_performance,
)
from backoffice.logging_config.context import (
    bind_user_id,
    get_context_dict,
    get_correlation_id,
    get_request_id,
)
from backoffice.logging_config.middleware import RequestTracingMiddleware
from backoffice.logging_config.setup import ConsoleFormatter, StructuredFormatter


def _record(msg="test", level=logging.INFO, exc_info=None, lineno=1):
    return logging.LogRecord(
        name="test", level=level, pathname="test.py",
        lineno=lineno, msg=msg, args=(), exc_info=exc_info,
    )


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


class TestLoggingConfig:
    def test_defaults(self):
        config = LoggingConfig()
        assert config.level == LogLevel.INFO
        assert config.format == LogFormat.JSON
        assert config.slow_threshold_ms == 500.0
        assert config.exclude_paths == ["/health"]
        assert config.service_name == "backoffice"


class TestRequestContext:
    def test_generate_request_id_unique(self):
        assert generate_request_id() != generate_request_id()

    def test_context_sets_ids(self):
        with RequestContext(request_id="req-1", user_id="checker_1"):
            assert get_request_id() == "req-1"
            assert get_correlation_id() == "req-1"
            assert get_context_dict()["user_id"] == "checker_1"

    def test_cleanup_on_exit(self):
        with RequestContext(request_id="req-2"):
            pass
        assert get_request_id() == ""

    def test_bind_user_id_inside_context(self):
        with RequestContext(request_id="req-3"):
            bind_user_id("maker_1")
            assert get_context_dict()["user_id"] == "maker_1"
        assert "user_id" not in get_context_dict()

    def test_bind_extra(self):
        with RequestContext(request_id="req-4") as ctx:
            ctx.bind(exception_id="EXC-1")
            assert get_context_dict()["exception_id"] == "EXC-1"

    def test_nested_contexts(self):
        with RequestContext(request_id="outer"):
            with RequestContext(request_id="inner"):
                assert get_request_id() == "inner"
            assert get_request_id() == "outer"


class TestStructuredFormatter:
    def test_formats_as_json(self):
        parsed = json.loads(StructuredFormatter().format(_record("hello world")))
        assert parsed["message"] == "hello world"
        assert parsed["level"] == "INFO"
        assert parsed["service"] == "backoffice"
        assert "timestamp" in parsed

    def test_caller_info_toggle(self):
        parsed = json.loads(StructuredFormatter(include_caller=True).format(_record(lineno=42)))
        assert parsed["line"] == 42
        parsed = json.loads(StructuredFormatter(include_caller=False).format(_record(lineno=42)))
        assert "line" not in parsed

    def test_includes_request_context(self):
        with RequestContext(request_id="ctx-test"):
            parsed = json.loads(StructuredFormatter().format(_record()))
        assert parsed["request_id"] == "ctx-test"

    def test_formats_exception(self):
        try:
            raise ValueError("test error")
        except ValueError:
            record = _record("failed", logging.ERROR, exc_info=sys.exc_info())
        parsed = json.loads(StructuredFormatter().format(record))
        assert parsed["exception"]["type"] == "ValueError"

    def test_includes_transition_fields(self):
        record = _record()
        record.entity_id = "EXC-1"
        record.transition = "in_progress->escalated"
        record.duration_ms = 12.5
        parsed = json.loads(StructuredFormatter().format(record))
        assert parsed["entity_id"] == "EXC-1"
        assert parsed["transition"] == "in_progress->escalated"
        assert parsed["duration_ms"] == 12.5


class TestConsoleFormatter:
    def test_readable_output(self):
        output = ConsoleFormatter().format(_record("hello"))
        assert "hello" in output
        assert "INFO" in output

    def test_error_is_red(self):
        assert "\033[31m" in ConsoleFormatter().format(_record(level=logging.ERROR))


class TestConfigureLogging:
    def test_json_format(self, restore_root_logger):
        configure_logging(LoggingConfig(format=LogFormat.JSON))
        assert len(restore_root_logger.handlers) == 1
        assert isinstance(restore_root_logger.handlers[0].formatter, StructuredFormatter)

    def test_console_format(self, restore_root_logger):
        configure_logging(LoggingConfig(format=LogFormat.CONSOLE))
        assert isinstance(restore_root_logger.handlers[0].formatter, ConsoleFormatter)

    def test_sets_log_level(self, restore_root_logger):
        configure_logging(LoggingConfig(level=LogLevel.DEBUG))
        assert restore_root_logger.level == logging.DEBUG

    def test_quiets_noisy_loggers(self, restore_root_logger):
        configure_logging()
        assert logging.getLogger("httpx").level >= logging.WARNING

    def test_env_overrides(self, restore_root_logger, monkeypatch):
        monkeypatch.setenv("BACKOFFICE_LOG_LEVEL", "debug")
        monkeypatch.setenv("BACKOFFICE_LOG_FORMAT", "CONSOLE")
        configure_logging(LoggingConfig(level=LogLevel.ERROR, format=LogFormat.JSON))
        assert restore_root_logger.level == logging.DEBUG
        assert isinstance(restore_root_logger.handlers[0].formatter, ConsoleFormatter)

    def test_get_logger(self):
        assert get_logger("backoffice.test").name == "backoffice.test"


class TestLogPerformance:
    def test_returns_result_and_preserves_name(self):
        @log_performance(threshold_ms=10000)
        def reconcile():
            return 42

        assert reconcile() == 42
        assert reconcile.__name__ == "reconcile"

    def test_slow_call_logged(self, caplog):
        @log_performance(threshold_ms=0, logger_name="perf.test")
        def slow():
            return "done"

        with caplog.at_level(logging.WARNING, logger="perf.test"):
            slow()
        assert any("Slow operation" in r.getMessage() for r in caplog.records)

    def test_failure_logged_and_reraised(self, caplog):
        @log_performance(logger_name="perf.test")
        def broken():
            raise RuntimeError("feed down")

        with caplog.at_level(logging.ERROR, logger="perf.test"):
            with pytest.raises(RuntimeError):
                broken()
        assert any("failed" in r.getMessage() for r in caplog.records)


class TestRequestTracingMiddleware:
    @pytest.fixture
    def client(self):
        app = FastAPI()
        app.add_middleware(RequestTracingMiddleware)

        @app.get("/ping")
        async def ping():
            return {"request_id": get_request_id()}

        return TestClient(app)

    def test_generates_request_id(self, client):
        resp = client.get("/ping")
        assert resp.headers["x-request-id"] == resp.json()["request_id"]
        assert resp.headers["x-correlation-id"] == resp.headers["x-request-id"]

    def test_propagates_request_id(self, client):
        resp = client.get("/ping", headers={"X-Request-ID": "upstream-1"})
        assert resp.headers["x-request-id"] == "upstream-1"
        assert resp.json()["request_id"] == "upstream-1"
