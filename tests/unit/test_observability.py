"""Unit tests for observability module."""

import io
import json
import logging
import sys

from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode
import pytest

from stargazer_search.observability import (
    HISTORY_WRITE_ERRORS,
    SEARCH_LATENCY,
    JsonFormatter,
    bind_search_context,
    configure_logging,
    create_span,
    get_metrics,
    get_metrics_content_type,
    get_trace_context,
    init_metrics,
    init_tracing,
    set_trace_context,
    track_latency,
)
from stargazer_search.observability.context import update_span_id
from stargazer_search.observability.metrics import MetricBridge


def _record(msg: str = "test message", level: int = logging.INFO, name: str = "test") -> logging.LogRecord:
    return logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    logging.getLogger("stargazer_search.search").setLevel(logging.NOTSET)


@pytest.mark.unit
class TestJsonFormatter:
    """Tests for structured JSON logging."""

    def test_format_includes_trace_context(self):
        data = json.loads(JsonFormatter().format(_record()))

        assert data["message"] == "test message"
        assert data["level"] == "INFO"
        assert "timestamp" in data
        assert "trace_id" in data
        assert "span_id" in data

    def test_component_from_dotted_logger_name(self):
        data = json.loads(JsonFormatter().format(_record(name="stargazer_search.search.keyword_engine")))
        assert data["component"] == "keyword_engine"

    def test_format_includes_extra_fields(self):
        record = _record(level=logging.ERROR)
        record.repository_id = 42
        record.query_summary = {"clauses": 2}

        data = json.loads(JsonFormatter().format(record))

        assert data["repository_id"] == 42
        assert data["query_summary"] == {"clauses": 2}

    def test_format_truncates_and_redacts(self):
        record = _record(msg="x" * 5000)
        record.api_key = "secret"
        record.note = "y" * 600

        data = json.loads(JsonFormatter().format(record))

        assert data["message"].endswith("...")
        assert len(data["message"]) == JsonFormatter.MAX_MESSAGE_LEN + 3
        assert data["api_key"] == "[REDACTED]"
        assert len(data["note"]) == JsonFormatter.MAX_VALUE_LEN + 3

    def test_bound_search_fields_are_included(self):
        set_trace_context("11" * 16, "22" * 8)
        with bind_search_context(search_type="keyword", token="abc"):
            data = json.loads(JsonFormatter().format(_record()))

        assert data["search_type"] == "keyword"
        assert data["token"] == "[REDACTED]"
        assert "search_type" not in get_trace_context()

    def test_exception_is_formatted(self):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.LogRecord("test", logging.ERROR, "test.py", 1, "failed", (), exc_info=sys.exc_info())

        data = json.loads(JsonFormatter().format(record))

        assert "RuntimeError: boom" in data["exception"]

    def test_json_default_handles_set_and_bytes(self):
        formatter = JsonFormatter()
        assert formatter._json_default({3, 1, 2}) == [1, 2, 3]
        assert formatter._json_default(b"ok") == "ok"

    def test_json_default_handles_unorderable_set(self):
        value = JsonFormatter()._json_default({1, "a"})
        assert isinstance(value, list)
        assert len(value) == 2


@pytest.mark.unit
class TestTraceContext:
    """Tests for trace context propagation."""

    def test_get_trace_context_generates_ids(self):
        ctx = get_trace_context()
        assert len(ctx["trace_id"]) == 32
        assert len(ctx["span_id"]) == 16

    def test_set_trace_context_preserves_values(self):
        set_trace_context("ab" * 16, "cd" * 8, search_type="hybrid")
        ctx = get_trace_context()
        assert ctx["trace_id"] == "ab" * 16
        assert ctx["span_id"] == "cd" * 8
        assert ctx.get("search_type") == "hybrid"

    def test_update_span_id_preserves_trace_id(self):
        set_trace_context("aa" * 16, "bb" * 8, search_type="keyword")
        update_span_id("cc" * 8)
        ctx = get_trace_context()
        assert ctx["trace_id"] == "aa" * 16
        assert ctx["span_id"] == "cc" * 8
        assert ctx["search_type"] == "keyword"

    def test_bind_search_context_keeps_trace_id(self):
        set_trace_context("ee" * 16, "ff" * 8)
        with bind_search_context(operation="suggest") as ctx:
            assert ctx["trace_id"] == "ee" * 16
            assert ctx["operation"] == "suggest"
        assert get_trace_context() == {"trace_id": "ee" * 16, "span_id": "ff" * 8}


@pytest.mark.unit
class TestTracing:
    """Tests for OpenTelemetry spans."""

    @staticmethod
    def _exporter() -> InMemorySpanExporter:
        exporter = InMemorySpanExporter()
        init_tracing("test-service", span_processors=[SimpleSpanProcessor(exporter)])
        return exporter

    def test_init_tracing_returns_sdk_provider(self):
        provider = init_tracing("test-service")
        assert isinstance(provider, TracerProvider)
        assert init_tracing("test-service") is provider

    def test_create_span_sets_attributes(self):
        exporter = self._exporter()

        with create_span("keyword.search", attributes={"search.query_length": 4, "skipped": None}):
            pass

        span = exporter.get_finished_spans()[-1]
        assert span.name == "keyword.search"
        assert span.attributes["search.query_length"] == 4
        assert "skipped" not in span.attributes

    def test_create_span_records_and_reraises(self):
        exporter = self._exporter()

        with pytest.raises(ValueError, match="bad clause"), create_span("keyword.parse"):
            raise ValueError("bad clause")

        span = exporter.get_finished_spans()[-1]
        assert span.status.status_code is StatusCode.ERROR
        assert span.events[0].name == "exception"

    def test_span_id_flows_into_log_context(self):
        self._exporter()

        with create_span("keyword.build_index") as span:
            expected = format(span.get_span_context().span_id, "016x")
            assert get_trace_context()["span_id"] == expected


@pytest.mark.unit
class TestMetrics:
    """Tests for Prometheus metrics."""

    def test_init_metrics_is_idempotent(self):
        provider = init_metrics("test-service")
        assert isinstance(provider, MeterProvider)
        assert init_metrics("other-service") is provider

    def test_track_latency_records_histogram(self):
        with track_latency(SEARCH_LATENCY, engine="observability-test"):
            pass

        assert b'stargazer_search_latency_seconds_count{engine="observability-test"} 1.0' in get_metrics()

    def test_track_latency_records_on_error(self):
        with pytest.raises(RuntimeError), track_latency(SEARCH_LATENCY, engine="observability-error"):
            raise RuntimeError("boom")

        assert b'stargazer_search_latency_seconds_count{engine="observability-error"} 1.0' in get_metrics()

    def test_counter_exposition(self):
        HISTORY_WRITE_ERRORS.labels(operation="observability-test").inc()
        assert b'stargazer_history_write_errors_total{operation="observability-test"} 1.0' in get_metrics()

    def test_metric_bridge_unknown_kind_raises(self):
        bridge = MetricBridge(
            HISTORY_WRITE_ERRORS._prom_metric,
            otel_name="broken",
            otel_description="broken",
            otel_kind="summary",
        )
        with pytest.raises(ValueError, match="Unknown metric kind"):
            bridge.labels(operation="broken").inc()

    def test_get_metrics_content_type(self):
        assert get_metrics_content_type().startswith("text/plain")


@pytest.mark.unit
class TestConfigureLogging:
    """Tests for logging configuration."""

    def test_sets_level_and_single_handler(self, restore_root_logger):
        configure_logging(level="DEBUG")
        configure_logging(level="DEBUG")

        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1

    def test_json_lines_to_stream(self, restore_root_logger):
        stream = io.StringIO()
        configure_logging(level="INFO", json_output=True, stream=stream)

        logging.getLogger("stargazer_search.unit").info("indexed", extra={"documents": 3})

        data = json.loads(stream.getvalue().strip())
        assert data["message"] == "indexed"
        assert data["documents"] == 3
        assert data["component"] == "unit"

    def test_plain_text_formatter(self, restore_root_logger):
        configure_logging(level="INFO", json_output=False)

        formatter = restore_root_logger.handlers[0].formatter
        assert not isinstance(formatter, JsonFormatter)
        assert "%(asctime)s" in formatter._style._fmt

    def test_logger_level_overrides(self, restore_root_logger):
        configure_logging(level="INFO", logger_levels={"stargazer_search.search": "ERROR"})

        assert logging.getLogger("stargazer_search.search").level == logging.ERROR
        assert logging.getLogger("opentelemetry").level == logging.WARNING
