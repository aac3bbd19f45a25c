"""Observability: structured logging, OpenTelemetry tracing and Prometheus metrics."""

from stargazer_search.observability.context import bind_search_context, get_trace_context, set_trace_context
from stargazer_search.observability.logging import JsonFormatter, configure_logging
from stargazer_search.observability.metrics import (
    HISTORY_WRITE_ERRORS,
    INDEX_DOC_COUNT,
    SEARCH_LATENCY,
    SEARCH_REQUESTS,
    get_metrics,
    get_metrics_content_type,
    init_metrics,
    track_latency,
)
from stargazer_search.observability.tracing import create_span, get_tracer, init_tracing


__all__ = [
    "HISTORY_WRITE_ERRORS",
    "INDEX_DOC_COUNT",
    "SEARCH_LATENCY",
    "SEARCH_REQUESTS",
    "JsonFormatter",
    "bind_search_context",
    "configure_logging",
    "create_span",
    "get_metrics",
    "get_metrics_content_type",
    "get_trace_context",
    "get_tracer",
    "init_metrics",
    "init_tracing",
    "set_trace_context",
    "track_latency",
]
