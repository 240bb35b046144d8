"""Observability helpers: tracing, metrics and structured logging."""

from docindex.observability.context import LogContext, bind_log_fields, current_log_context, log_context
from docindex.observability.logging import JsonFormatter, configure_logging
from docindex.observability.metrics import (
    COMMITS,
    DOCUMENTS_INDEXED,
    INDEX_DOC_COUNT,
    SEARCH_LATENCY,
    get_metrics,
    track_latency,
)
from docindex.observability.tracing import create_span, get_tracer, init_tracing


__all__ = [
    "COMMITS",
    "DOCUMENTS_INDEXED",
    "INDEX_DOC_COUNT",
    "SEARCH_LATENCY",
    "JsonFormatter",
    "LogContext",
    "bind_log_fields",
    "configure_logging",
    "create_span",
    "current_log_context",
    "get_metrics",
    "get_tracer",
    "init_tracing",
    "log_context",
    "track_latency",
]
