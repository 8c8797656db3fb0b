"""
Unit tests for logging, metrics and tracing setup.
"""

import io
import json
import logging

import pytest
import structlog
from opentelemetry.sdk.trace import TracerProvider

from jobengine.config import Settings, get_settings
from jobengine.observability import (
    MetricsCollector,
    get_tracer,
    job_log_context,
    setup_logging,
    setup_tracing,
)
from jobengine.observability.logging import add_trace_context


@pytest.fixture
def restore_root_logger():
    """Restore root logger handlers replaced by setup_logging."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_record(self, metrics: MetricsCollector, registry):
        metrics.record_job_enqueued("test.email")
        metrics.record_job_claimed("w1")
        metrics.record_job_finished("test.email", "success", "done", 0.25)
        metrics.record_storage_error("ack")
        metrics.record_rate_limit_wait(0.01)

        assert registry.get_sample_value(
            "jobengine_jobs_enqueued_total", {"job_name": "test.email"}
        ) == 1
        assert registry.get_sample_value(
            "jobengine_job_duration_seconds_count",
            {"job_name": "test.email", "outcome": "success"},
        ) == 1
        assert registry.get_sample_value(
            "jobengine_storage_errors_total", {"operation": "ack"}
        ) == 1
        assert registry.get_sample_value(
            "jobengine_jobs_claimed_total", {"worker_id": "w1"}
        ) == 1


class TestLogging:
    """Tests for structured logging helpers."""

    def test_job_log_context_binds_fields(self):
        with job_log_context(job_id="abc", worker_id="w1"):
            bound = structlog.contextvars.get_contextvars()
            assert bound["job_id"] == "abc"
            assert bound["worker_id"] == "w1"

        assert "job_id" not in structlog.contextvars.get_contextvars()

    def test_add_trace_context_without_span(self):
        event = add_trace_context(None, "info", {"event": "x"})

        assert "trace_id" not in event

    @pytest.mark.parametrize("log_format", ["json", "console"])
    def test_setup_logging(self, restore_root_logger, log_format):
        setup_logging(log_level="debug", log_format=log_format)

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, structlog.stdlib.ProcessorFormatter)

    def test_json_lines_carry_job_fields(self, restore_root_logger):
        stream = io.StringIO()
        setup_logging(log_level="info", log_format="json", stream=stream)

        with job_log_context(job_id="abc", worker_id="w1"):
            logging.getLogger("jobengine.worker").info(
                "Job completed successfully", extra={"duration": "0.01s"}
            )

        record = json.loads(stream.getvalue().splitlines()[-1])
        assert record["event"] == "Job completed successfully"
        assert record["job_id"] == "abc"
        assert record["worker_id"] == "w1"
        assert record["duration"] == "0.01s"
        assert record["level"] == "info"

    def test_noisy_loggers_quieted(self, restore_root_logger):
        setup_logging(log_level="debug", log_format="console")

        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING


class TestTracing:
    """Tests for tracing setup."""

    def test_get_tracer(self):
        assert get_tracer() is not None

    def test_setup_with_provider(self):
        provider = TracerProvider()

        tracer = setup_tracing(provider=provider)

        with tracer.start_as_current_span("job") as span:
            assert span.is_recording()
            event = add_trace_context(None, "info", {})
            assert len(event["trace_id"]) == 32


class TestSettings:
    """Tests for configuration."""

    def test_defaults(self):
        settings = Settings()

        assert settings.default_max_attempts == 3
        assert settings.worker_execution_timeout_seconds is None
        assert settings.tracker_queue_size == 0

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("WORKER_POLL_INTERVAL_SECONDS", "0.25")

        assert Settings().worker_poll_interval_seconds == 0.25

    def test_get_settings_cached(self):
        assert get_settings() is get_settings()
