"""Context propagation so log lines from one search share a trace id."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from uuid import uuid4


trace_context: ContextVar[dict | None] = ContextVar("trace_context", default=None)


def get_trace_context() -> dict:
    """Get current trace context, starting a new trace when none is active."""
    ctx = trace_context.get()
    if ctx is None or not ctx.get("trace_id"):
        ctx = {"trace_id": uuid4().hex, "span_id": uuid4().hex[:16]}
        trace_context.set(ctx)
    return ctx


def set_trace_context(trace_id: str, span_id: str, **extra: object) -> None:
    trace_context.set({"trace_id": trace_id, "span_id": span_id, **extra})


def update_span_id(span_id: str) -> None:
    """Update span_id while preserving trace_id and bound fields."""
    ctx = trace_context.get() or {}
    trace_context.set({**ctx, "span_id": span_id})


@contextmanager
def bind_search_context(**fields: object) -> Iterator[dict]:
    """Attach fields (query type, operation) to every log line emitted inside the block."""
    token = trace_context.set({**get_trace_context(), **fields})
    try:
        yield trace_context.get() or {}
    finally:
        trace_context.reset(token)
