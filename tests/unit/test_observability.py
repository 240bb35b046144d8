"""Unit tests for observability module."""

import io
import json
import logging
import sys

from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode
from prometheus_client import REGISTRY
import pytest

from docindex.observability import (
    SEARCH_LATENCY,
    JsonFormatter,
    configure_logging,
    create_span,
    bind_log_fields,
    current_log_context,
    get_metrics,
    log_context,
    track_latency,
    tracing as tracing_module,
)
from docindex.observability.context import bound_fields, enter_span


def _record(msg: str, level: int = logging.INFO, name: str = "docindex.search.indexer") -> logging.LogRecord:
    return logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


@pytest.fixture(autouse=True)
def reset_log_context():
    token = log_context.set(None)
    yield
    log_context.reset(token)


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.mark.unit
class TestJsonFormatter:
    """Tests for structured JSON logging."""

    def test_format_includes_trace_context(self):
        data = json.loads(JsonFormatter().format(_record("indexed 3 documents")))

        assert data["message"] == "indexed 3 documents"
        assert data["level"] == "INFO"
        assert data["logger"] == "docindex.search.indexer"
        assert data["component"] == "indexer"
        assert "timestamp" in data
        assert len(data["trace_id"]) == 32
        assert len(data["span_id"]) == 16

    def test_format_includes_extra_fields(self):
        record = _record("commit")
        record.document_id = "doc1"
        record.generation = 4

        data = json.loads(JsonFormatter().format(record))

        assert data["document_id"] == "doc1"
        assert data["generation"] == 4

    def test_format_truncates_long_values(self):
        record = _record("x" * 5000)
        record.query = "q" * 900

        data = json.loads(JsonFormatter().format(record))

        assert data["message"].endswith("...")
        assert len(data["message"]) == JsonFormatter.MAX_MESSAGE_LEN + 3
        assert len(data["query"]) == JsonFormatter.MAX_EXTRA_LEN + 3

    def test_format_includes_bound_fields(self):
        with bind_log_fields(index="/data/index", generation=7):
            data = json.loads(JsonFormatter().format(_record("searched")))

        assert data["index"] == "/data/index"
        assert data["generation"] == 7
        assert "generation" not in json.loads(JsonFormatter().format(_record("after")))

    def test_record_extras_override_bound_fields(self):
        record = _record("commit")
        record.generation = 9

        with bind_log_fields(generation=3):
            data = json.loads(JsonFormatter().format(record))

        assert data["generation"] == 9

    def test_format_includes_exception(self):
        try:
            raise ValueError("bad record")
        except ValueError:
            record = logging.LogRecord("docindex", logging.ERROR, "test.py", 1, "failed", (), exc_info=None)
            record.exc_info = sys.exc_info()

        data = json.loads(JsonFormatter().format(record))

        assert "ValueError: bad record" in data["exception"]

    def test_json_default_handles_set_and_bytes(self):
        formatter = JsonFormatter()
        assert formatter._json_default({3, 1, 2}) == [1, 2, 3]
        assert formatter._json_default(b"ok") == "ok"

    def test_json_default_handles_unorderable_set(self):
        value = JsonFormatter()._json_default({1, "a"})
        assert isinstance(value, list)
        assert len(value) == 2


@pytest.mark.unit
class TestLogContext:
    """Tests for log context propagation."""

    def test_current_log_context_mints_ids_once(self):
        ctx = current_log_context()
        assert len(ctx.trace_id) == 32
        assert len(ctx.span_id) == 16
        assert current_log_context() is ctx

    def test_enter_span_keeps_existing_trace_id(self):
        first = enter_span("a" * 32, "b" * 16)
        second = enter_span("c" * 32, "d" * 16)

        ctx = current_log_context()
        assert (ctx.trace_id, ctx.span_id) == ("a" * 32, "d" * 16)

        log_context.reset(second)
        assert current_log_context().span_id == "b" * 16
        log_context.reset(first)

    def test_bind_log_fields_nests_and_restores(self):
        with bind_log_fields(command="search"):
            with bind_log_fields(generation=2) as ctx:
                assert dict(ctx.fields) == {"command": "search", "generation": 2}
            assert dict(bound_fields()) == {"command": "search"}
        assert dict(bound_fields()) == {}

    def test_bind_log_fields_keeps_span_ids(self):
        token = enter_span("a" * 32, "b" * 16)
        with bind_log_fields(index="primary") as ctx:
            assert (ctx.trace_id, ctx.span_id) == ("a" * 32, "b" * 16)
        log_context.reset(token)


@pytest.mark.unit
class TestTracing:
    """Tests for span creation."""

    @pytest.fixture
    def exporter(self, monkeypatch):
        exporter = InMemorySpanExporter()
        provider = TracerProvider()
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        monkeypatch.setitem(tracing_module._tracer_holder, "tracer", provider.get_tracer("test"))
        return exporter

    def test_create_span_sets_attributes_and_log_context(self, exporter):
        with create_span("docindex.search", attributes={"search.max_results": 5}) as span:
            span_ctx = span.get_span_context()
            ctx = current_log_context()
            logged = (ctx.trace_id, ctx.span_id)

        (finished,) = exporter.get_finished_spans()
        assert finished.name == "docindex.search"
        assert finished.attributes["search.max_results"] == 5
        assert logged == (format(span_ctx.trace_id, "032x"), format(span_ctx.span_id, "016x"))
        assert log_context.get() is None

    def test_create_span_copies_bound_fields(self, exporter, tmp_path):
        with (
            bind_log_fields(command="index", index=tmp_path),
            create_span("docindex.commit", attributes={"docindex.command": "override"}),
        ):
            pass

        (finished,) = exporter.get_finished_spans()
        assert finished.attributes["docindex.index"] == str(tmp_path)
        assert finished.attributes["docindex.command"] == "override"

    def test_search_span_carries_generation(self, exporter, make_record, index_records, search_index):
        index_records(make_record("a", "alpha"))

        search_index.search("alpha")

        (span,) = [span for span in exporter.get_finished_spans() if span.name == "docindex.search"]
        assert span.attributes["docindex.generation"] == 1
        assert span.attributes["docindex.index"] == str(search_index.store.index_dir)

    def test_create_span_marks_error_and_reraises(self, exporter):
        with pytest.raises(RuntimeError, match="boom"), create_span("docindex.commit"):
            raise RuntimeError("boom")

        (finished,) = exporter.get_finished_spans()
        assert finished.status.status_code == StatusCode.ERROR
        assert finished.events[0].name == "exception"

    def test_get_tracer_initializes_when_missing(self, monkeypatch):
        monkeypatch.setitem(tracing_module._tracer_holder, "tracer", None)
        assert tracing_module.get_tracer() is not None


@pytest.mark.unit
class TestMetrics:
    """Tests for Prometheus metrics."""

    def test_get_metrics_returns_bytes(self):
        output = get_metrics()
        assert isinstance(output, bytes)
        assert b"docindex_search_latency_seconds" in output
        assert b"docindex_documents_indexed_total" in output

    def test_track_latency_records_histogram(self):
        labels = {"operation": "unit-test"}
        before = REGISTRY.get_sample_value("docindex_search_latency_seconds_count", labels) or 0.0

        with track_latency(SEARCH_LATENCY, **labels):
            pass

        assert REGISTRY.get_sample_value("docindex_search_latency_seconds_count", labels) == before + 1

    def test_track_latency_observes_on_error(self):
        labels = {"operation": "unit-test-error"}
        before = REGISTRY.get_sample_value("docindex_search_latency_seconds_count", labels) or 0.0

        with pytest.raises(ValueError), track_latency(SEARCH_LATENCY, **labels):
            raise ValueError("fail")

        assert REGISTRY.get_sample_value("docindex_search_latency_seconds_count", labels) == before + 1

    def test_commit_counter_increments(self, store, make_record, index_records):
        labels = {"operation": "commit"}
        before = REGISTRY.get_sample_value("docindex_commits_total", labels) or 0.0

        index_records(make_record("a", "alpha"))

        assert REGISTRY.get_sample_value("docindex_commits_total", labels) == before + 1


@pytest.mark.unit
class TestConfigureLogging:
    """Tests for logging configuration."""

    def test_configure_logging_sets_level(self, restore_root_logging):
        configure_logging(level="DEBUG")
        assert restore_root_logging.level == logging.DEBUG

    def test_configure_logging_replaces_handlers(self, restore_root_logging):
        configure_logging(level="INFO")
        configure_logging(level="INFO")
        assert len(restore_root_logging.handlers) == 1

    def test_configure_logging_non_json_formatter(self, restore_root_logging):
        stream = io.StringIO()
        configure_logging(level="INFO", json_output=False, stream=stream)

        logging.getLogger("docindex.test").info("plain line")

        assert "INFO [docindex.test] plain line" in stream.getvalue()

    def test_configure_logging_json_output(self, restore_root_logging):
        stream = io.StringIO()
        configure_logging(level="warning", json_output=True, stream=stream)

        logging.getLogger("docindex.test").info("hidden")
        logging.getLogger("docindex.test").warning("shown", extra={"document_id": "doc9"})

        lines = stream.getvalue().splitlines()
        assert len(lines) == 1
        data = json.loads(lines[0])
        assert data["message"] == "shown"
        assert data["document_id"] == "doc9"

    def test_configure_logging_overrides(self, restore_root_logging):
        configure_logging(level="INFO", logger_levels={"docindex.search": "ERROR"})
        assert logging.getLogger("docindex.search").level == logging.ERROR
        logging.getLogger("docindex.search").setLevel(logging.NOTSET)
