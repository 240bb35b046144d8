"""Prometheus metrics for indexing and search."""

from __future__ import annotations

from contextlib import contextmanager
import time
from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge, Histogram, generate_latest


if TYPE_CHECKING:
    from collections.abc import Generator


SEARCH_LATENCY = Histogram(
    "docindex_search_latency_seconds",
    "Search query latency",
    ["operation"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

DOCUMENTS_INDEXED = Counter(
    "docindex_documents_indexed_total",
    "Documents handed to the indexer, by outcome",
    ["outcome"],
)

COMMITS = Counter(
    "docindex_commits_total",
    "Index commits applied",
    ["operation"],
)

INDEX_DOC_COUNT = Gauge(
    "docindex_index_documents",
    "Live documents in the index as of the last snapshot",
)


@contextmanager
def track_latency(histogram: Histogram, **labels: str) -> Generator[None, None, None]:
    """Context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        metric = histogram.labels(**labels) if labels else histogram
        metric.observe(time.perf_counter() - start)


def get_metrics() -> bytes:
    """Render the default registry in the Prometheus text exposition format."""
    return generate_latest()
