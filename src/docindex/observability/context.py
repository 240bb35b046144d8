"""Log correlation state for the current execution context.

A ``LogContext`` carries the ids of the active span plus index attributes
bound with ``bind_log_fields`` (command, index directory, generation).
``JsonFormatter`` writes all of them onto every record and ``create_span``
copies the bound attributes onto each new span as ``docindex.*`` attributes,
so a log line and the span it was emitted under can be joined on either.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass, field, replace
from uuid import uuid4


@dataclass(frozen=True)
class LogContext:
    trace_id: str = ""
    span_id: str = ""
    fields: Mapping[str, object] = field(default_factory=dict)


log_context: ContextVar[LogContext | None] = ContextVar("docindex_log_context", default=None)


def current_log_context() -> LogContext:
    """Return the active context, minting correlation ids on first use."""
    ctx = log_context.get()
    if ctx is None or not ctx.trace_id:
        ctx = replace(ctx or LogContext(), trace_id=uuid4().hex, span_id=uuid4().hex[:16])
        log_context.set(ctx)
    return ctx


def bound_fields() -> Mapping[str, object]:
    ctx = log_context.get()
    return ctx.fields if ctx is not None else {}


def enter_span(trace_id: str, span_id: str) -> Token[LogContext | None]:
    """Point the context at a started span; reset the returned token when it ends.

    An existing trace id is kept so every record of one command shares it.
    """
    ctx = log_context.get() or LogContext()
    if ctx.trace_id:
        updated = replace(ctx, span_id=span_id)
    else:
        updated = replace(ctx, trace_id=trace_id, span_id=span_id)
    return log_context.set(updated)


@contextmanager
def bind_log_fields(**fields: object) -> Iterator[LogContext]:
    """Attach ``fields`` to log records and spans created inside the block."""
    ctx = log_context.get() or LogContext()
    bound = replace(ctx, fields={**ctx.fields, **fields})
    token = log_context.set(bound)
    try:
        yield bound
    finally:
        log_context.reset(token)
