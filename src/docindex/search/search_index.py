"""Read-side facade: search, listing and statistics over committed state.

``DocumentSearchIndex`` hides parsing, scoring and enrichment behind three
calls. Every call reads from one ``IndexSnapshot``; callers may pass their own
snapshot to make several calls observe the same committed generation.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
import logging
from typing import Any

from docindex.extraction import load_source_text
from docindex.models import IndexStats, SearchResult
from docindex.observability.context import bind_log_fields
from docindex.observability.metrics import INDEX_DOC_COUNT, SEARCH_LATENCY, track_latency
from docindex.observability.tracing import create_span
from docindex.search.analyzers import get_analyzer
from docindex.search.bm25_engine import BM25SearchEngine
from docindex.search.pages import clean_terms, find_matched_pages
from docindex.search.query_parser import parse_query, positive_terms
from docindex.search.schema import (
    FIELD_CONTENT,
    FIELD_CONTENT_TYPE,
    FIELD_FILE_NAME,
    FIELD_FILE_PATH,
    FIELD_FILE_SIZE,
    FIELD_ID,
    FIELD_INDEXED_AT,
    FIELD_LAST_MODIFIED,
    FIELD_PAGE_CONTENTS,
    FIELD_PAGE_COUNT,
)
from docindex.search.snippet import DEFAULT_SNIPPET_CHARS, build_context_snippet
from docindex.search.sqlite_storage import IndexSnapshot, IndexStore


logger = logging.getLogger(__name__)

ContentLoader = Callable[[str], str | None]


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class DocumentSearchIndex:
    """Query an ``IndexStore`` and enrich hits for display.

    Args:
        store: The opened index.
        snippet_chars: Snippet window length.
        content_loader: Re-reads a document's source text by file path for
            snippets; the stored content copy is used when it returns None.
            Pass None to rely on stored content only.
    """

    def __init__(
        self,
        store: IndexStore,
        *,
        snippet_chars: int = DEFAULT_SNIPPET_CHARS,
        content_loader: ContentLoader | None = load_source_text,
    ) -> None:
        self.store = store
        self.snippet_chars = snippet_chars
        self.content_loader = content_loader
        self.engine = BM25SearchEngine(store.schema, get_analyzer(store.tokenizer))

    @contextmanager
    def _reading(self, snapshot: IndexSnapshot | None) -> Iterator[IndexSnapshot]:
        if snapshot is not None:
            yield snapshot
            return
        with self.store.snapshot() as owned:
            yield owned

    def search(
        self,
        query: str,
        max_results: int = 30,
        *,
        min_score: float = 0.0,
        snapshot: IndexSnapshot | None = None,
    ) -> list[SearchResult]:
        """Return up to ``max_results`` hits for ``query``, best first.

        Raises:
            QueryParseError: The query does not follow the query grammar.
        """
        if not query or not query.strip() or max_results <= 0:
            return []

        with (
            track_latency(SEARCH_LATENCY, operation="search"),
            self._reading(snapshot) as snap,
            bind_log_fields(index=str(self.store.index_dir), generation=snap.generation),
            create_span("docindex.search", attributes={"docindex.query": query}) as span,
        ):
            parsed = parse_query(query, self.store.schema)
            ranked = [hit for hit in self.engine.score(snap, parsed, max_results) if hit.score >= min_score]
            stored = snap.stored_fields(hit.ordinal for hit in ranked)

            term_texts = positive_terms(parsed)
            snippet_terms = clean_terms(term_texts)
            results = [
                self._to_result(stored[hit.ordinal], hit.score, term_texts, snippet_terms)
                for hit in ranked
                if hit.ordinal in stored
            ]
            span.set_attribute("docindex.results", len(results))

        logger.debug("Query %r returned %d results", query, len(results))
        return results

    def _to_result(
        self,
        stored: dict[str, Any],
        score: float,
        term_texts: list[str],
        snippet_terms: list[str],
    ) -> SearchResult:
        file_path = stored.get(FIELD_FILE_PATH) or ""
        return SearchResult(
            document_id=stored.get(FIELD_ID, ""),
            file_path=file_path,
            file_name=stored.get(FIELD_FILE_NAME) or "",
            content_type=stored.get(FIELD_CONTENT_TYPE),
            score=score,
            file_size=_as_int(stored.get(FIELD_FILE_SIZE)),
            last_modified=stored.get(FIELD_LAST_MODIFIED),
            indexed_at=stored.get(FIELD_INDEXED_AT),
            page_count=_as_int(stored.get(FIELD_PAGE_COUNT)),
            matched_pages=find_matched_pages(stored.get(FIELD_PAGE_CONTENTS), term_texts),
            snippet=build_context_snippet(
                self._snippet_source(file_path, stored), snippet_terms, max_chars=self.snippet_chars
            ),
        )

    def _snippet_source(self, file_path: str, stored: dict[str, Any]) -> str | None:
        if file_path and self.content_loader is not None:
            text = self.content_loader(file_path)
            if text is not None:
                return text
        return stored.get(FIELD_CONTENT)

    def list_all_documents(
        self,
        max_results: int = 100,
        *,
        snapshot: IndexSnapshot | None = None,
    ) -> list[SearchResult]:
        """Return live documents in indexing order, unscored."""
        if max_results <= 0:
            return []
        with track_latency(SEARCH_LATENCY, operation="list"), self._reading(snapshot) as snap:
            documents = list(snap.iter_documents(limit=max_results))
        return [
            SearchResult(
                document_id=stored.get(FIELD_ID, ""),
                file_path=stored.get(FIELD_FILE_PATH) or "",
                file_name=stored.get(FIELD_FILE_NAME) or "",
                content_type=stored.get(FIELD_CONTENT_TYPE),
                score=1.0,
                file_size=_as_int(stored.get(FIELD_FILE_SIZE)),
                last_modified=stored.get(FIELD_LAST_MODIFIED),
                indexed_at=stored.get(FIELD_INDEXED_AT),
                page_count=_as_int(stored.get(FIELD_PAGE_COUNT)),
            )
            for _ordinal, stored in documents
        ]

    def get_stats(self, *, snapshot: IndexSnapshot | None = None) -> IndexStats:
        with track_latency(SEARCH_LATENCY, operation="stats"), self._reading(snapshot) as snap:
            stats = IndexStats(
                total_documents=snap.live_count(),
                deleted_documents=snap.deleted_count(),
                max_document=snap.max_document(),
                generation=snap.generation,
                tokenizer=snap.tokenizer,
            )
        INDEX_DOC_COUNT.set(stats.total_documents)
        return stats
