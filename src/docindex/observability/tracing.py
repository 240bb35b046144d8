"""OpenTelemetry tracing for index and search operations."""

from __future__ import annotations

from contextlib import contextmanager
import logging
import sys
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.trace import SpanKind, Status, StatusCode

from docindex.observability.context import bound_fields, enter_span, log_context


if TYPE_CHECKING:
    from collections.abc import Generator

    from opentelemetry.trace import Span, Tracer

logger = logging.getLogger(__name__)

_tracer_holder: dict[str, Tracer | None] = {"tracer": None}


def init_tracing(
    service_name: str = "docindex",
    resource_attributes: dict[str, str] | None = None,
    *,
    console_export: bool = False,
) -> TracerProvider:
    """Initialize OpenTelemetry tracing.

    With ``console_export`` finished spans are written to stderr, keeping
    stdout free for command output. It is the only exporter this package
    wires up.
    """
    attributes = {"service.name": service_name}
    if resource_attributes:
        attributes.update(resource_attributes)
    provider = TracerProvider(resource=Resource.create(attributes))
    if console_export:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter(out=sys.stderr)))
    trace.set_tracer_provider(provider)
    # the global provider can only be set once per process
    _tracer_holder["tracer"] = provider.get_tracer(__name__)
    logger.debug("Tracing initialized for service: %s", service_name)
    return provider


def get_tracer() -> Tracer:
    """Get the configured tracer."""
    if _tracer_holder["tracer"] is None:
        init_tracing()
    return _tracer_holder["tracer"]  # type: ignore[return-value]


def _span_value(value: Any) -> Any:
    return value if isinstance(value, (str, bool, int, float)) else str(value)


@contextmanager
def create_span(
    name: str,
    kind: SpanKind = SpanKind.INTERNAL,
    attributes: dict[str, Any] | None = None,
) -> Generator[Span, None, None]:
    """Create a traced span and mirror its ids into the log context.

    Fields bound with ``bind_log_fields`` become ``docindex.<key>`` span
    attributes; explicit ``attributes`` win on a name clash.
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(name, kind=kind) as span:
        for key, value in bound_fields().items():
            span.set_attribute(f"docindex.{key}", _span_value(value))
        if attributes:
            for key, value in attributes.items():
                span.set_attribute(key, value)

        ctx = span.get_span_context()
        token = enter_span(format(ctx.trace_id, "032x"), format(ctx.span_id, "016x")) if ctx.is_valid else None

        try:
            yield span
        except Exception as exc:
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            span.record_exception(exc)
            raise
        finally:
            if token is not None:
                log_context.reset(token)
