"""Write sessions for the document index.

``IndexWriter`` is the only way to mutate an index. A session is scoped: it
claims the store's single write slot when opened, buffers upserts and deletes
in memory, applies them atomically on ``commit()``, and releases the slot on
``close()``. Changes never committed are discarded on close, mirroring a unit
of work that rolls back unless explicitly committed.
"""

from __future__ import annotations

from array import array
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
import logging
from typing import Any

from pydantic import ValidationError

from docindex.models import BatchIndexSummary, DocumentRecord, IndexOutcome
from docindex.observability.context import bind_log_fields
from docindex.observability.metrics import COMMITS, DOCUMENTS_INDEXED
from docindex.observability.tracing import create_span
from docindex.search.analyzers import Analyzer, KeywordAnalyzer, get_analyzer
from docindex.search.errors import IndexUnavailableError, MalformedRecordError
from docindex.search.models import PreparedDocument
from docindex.search.pages import DEFAULT_PAGE_TEXT_MAX_CHARS, encode_page_contents
from docindex.search.schema import (
    FIELD_CONTENT,
    FIELD_CONTENT_TYPE,
    FIELD_FILE_NAME,
    FIELD_FILE_PATH,
    FIELD_FILE_SIZE,
    FIELD_ID,
    FIELD_INDEXED_AT,
    FIELD_LAST_MODIFIED,
    FIELD_METADATA,
    FIELD_PAGE_CONTENTS,
    FIELD_PAGE_COUNT,
    METADATA_PREFIX,
    FieldKind,
    IndexableField,
    KeywordField,
    NumericField,
    Schema,
    TextField,
)
from docindex.search.sqlite_storage import IndexStore


logger = logging.getLogger(__name__)

_DELETE = None


def _epoch_millis(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def build_index_fields(
    record: DocumentRecord,
    *,
    page_text_max_chars: int | None = DEFAULT_PAGE_TEXT_MAX_CHARS,
    store_content: bool = True,
    indexed_at: datetime | None = None,
) -> list[IndexableField]:
    """Convert a record into its tagged field list.

    ``content`` is always indexed in full. With ``store_content`` a verbatim
    copy is also stored so snippets can be cut when the source file is gone.
    Every metadata entry is stored under ``metadata_<key>`` and its value fed
    into the unified ``metadata`` text field.
    """
    fields = [
        IndexableField(FIELD_ID, FieldKind.STORED, record.id),
        IndexableField(FIELD_FILE_PATH, FieldKind.STORED, record.file_path),
        IndexableField(FIELD_FILE_NAME, FieldKind.BOTH, record.file_name),
        IndexableField(FIELD_CONTENT, FieldKind.BOTH if store_content else FieldKind.INDEXED, record.content),
        IndexableField(FIELD_FILE_SIZE, FieldKind.BOTH, record.file_size),
    ]
    if record.content_type:
        fields.append(IndexableField(FIELD_CONTENT_TYPE, FieldKind.STORED, record.content_type))
    if record.last_modified is not None:
        fields.append(IndexableField(FIELD_LAST_MODIFIED, FieldKind.STORED, record.last_modified.isoformat()))
        fields.append(IndexableField(FIELD_LAST_MODIFIED, FieldKind.INDEXED, _epoch_millis(record.last_modified)))
    stamp = record.indexed_at or indexed_at or datetime.now(timezone.utc)
    fields.append(IndexableField(FIELD_INDEXED_AT, FieldKind.STORED, stamp.isoformat()))

    for key, value in record.metadata.items():
        fields.append(IndexableField(f"{METADATA_PREFIX}{key}", FieldKind.STORED, value))
        fields.append(IndexableField(FIELD_METADATA, FieldKind.INDEXED, value))

    if record.page_contents:
        blob = encode_page_contents(record.page_contents, page_text_max_chars)
        fields.append(IndexableField(FIELD_PAGE_CONTENTS, FieldKind.STORED, blob))
    page_count = record.page_count
    if page_count is not None:
        fields.append(IndexableField(FIELD_PAGE_COUNT, FieldKind.BOTH, page_count))
    return fields


class DocumentPreparer:
    """Analyze tagged fields into postings, lengths, stored values and points."""

    def __init__(self, schema: Schema, analyzer: Analyzer) -> None:
        self.schema = schema
        self.analyzer = analyzer
        self._keyword = KeywordAnalyzer()
        self._field_analyzers: dict[str, Analyzer] = {}

    def _analyzer_for(self, schema_field: TextField) -> Analyzer:
        if schema_field.analyzer_name is None:
            return self.analyzer
        cached = self._field_analyzers.get(schema_field.name)
        if cached is None:
            cached = get_analyzer(schema_field.analyzer_name)
            self._field_analyzers[schema_field.name] = cached
        return cached

    def prepare(self, doc_id: str, fields: Iterable[IndexableField]) -> PreparedDocument:
        prepared = PreparedDocument(doc_id=doc_id)
        # next free position per multi-valued text field
        offsets: dict[str, int] = {}

        for entry in fields:
            if entry.kind.is_stored:
                prepared.stored[entry.name] = entry.value
            if not entry.kind.is_indexed:
                continue

            schema_field = self.schema.resolve(entry.name)
            if schema_field is None or not schema_field.indexed:
                raise MalformedRecordError(f"Field '{entry.name}' is not indexable", document_id=doc_id)

            if isinstance(schema_field, NumericField):
                try:
                    prepared.numerics[schema_field.name] = int(entry.value)
                except (TypeError, ValueError) as exc:
                    raise MalformedRecordError(
                        f"Field '{entry.name}' expects an integer, got {entry.value!r}", document_id=doc_id
                    ) from exc
                continue

            if not isinstance(entry.value, str):
                raise MalformedRecordError(f"Field '{entry.name}' expects text", document_id=doc_id)
            if isinstance(schema_field, KeywordField):
                tokens = self._keyword(entry.value)
            else:
                tokens = self._analyzer_for(schema_field)(entry.value)
            if not tokens:
                continue

            base = offsets.get(schema_field.name, 0)
            terms = prepared.postings.setdefault(schema_field.name, {})
            for token in tokens:
                terms.setdefault(token.text, array("I")).append(base + token.position)
            # gap of one keeps phrases from matching across value boundaries
            offsets[schema_field.name] = base + tokens[-1].position + 2
            prepared.lengths[schema_field.name] = prepared.lengths.get(schema_field.name, 0) + len(tokens)
        return prepared


class IndexWriter:
    """Scoped single-writer session over an ``IndexStore``.

    Usage:
        with IndexWriter(store) as writer:
            writer.index_document(record)
            writer.commit()

    Opening a second session for the same index while one is open raises
    ``IndexUnavailableError``.
    """

    def __init__(
        self,
        store: IndexStore,
        *,
        page_text_max_chars: int | None = DEFAULT_PAGE_TEXT_MAX_CHARS,
        store_content: bool = True,
    ) -> None:
        store.acquire_writer()
        self.store = store
        self.page_text_max_chars = page_text_max_chars
        self.store_content = store_content
        self._preparer = DocumentPreparer(store.schema, get_analyzer(store.tokenizer))
        self._pending: dict[str, PreparedDocument | None] = {}
        self._closed = False

    def __enter__(self) -> IndexWriter:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise IndexUnavailableError("Write session is closed")

    def index_document(self, record: DocumentRecord | Mapping[str, Any]) -> str:
        """Buffer an upsert of ``record``; return its document id.

        The previous live document with the same id is replaced when the
        session commits.
        """
        self._ensure_open()
        document = self._coerce_record(record)
        try:
            fields = build_index_fields(
                document,
                page_text_max_chars=self.page_text_max_chars,
                store_content=self.store_content,
            )
            prepared = self._preparer.prepare(document.id, fields)
        except MalformedRecordError:
            raise
        except (TypeError, ValueError, AttributeError) as exc:
            raise MalformedRecordError(f"Cannot convert record: {exc}", document_id=document.id) from exc
        self._pending[document.id] = prepared
        return document.id

    @staticmethod
    def _coerce_record(record: DocumentRecord | Mapping[str, Any]) -> DocumentRecord:
        if isinstance(record, DocumentRecord):
            return record
        if isinstance(record, Mapping):
            try:
                return DocumentRecord.model_validate(dict(record))
            except ValidationError as exc:
                document_id = record.get("id")
                raise MalformedRecordError(
                    f"Invalid document record: {exc.error_count()} validation error(s): {exc.errors()[0]['msg']}",
                    document_id=document_id if isinstance(document_id, str) and document_id else None,
                ) from exc
        raise MalformedRecordError(f"Unsupported record type: {type(record).__name__}")

    def index_documents(self, records: Iterable[DocumentRecord | Mapping[str, Any]]) -> BatchIndexSummary:
        """Index a batch, skipping malformed records, then commit once."""
        self._ensure_open()
        outcomes: list[IndexOutcome] = []
        with bind_log_fields(index=str(self.store.index_dir)), create_span("docindex.index_documents") as span:
            for record in records:
                try:
                    doc_id = self.index_document(record)
                except MalformedRecordError as exc:
                    logger.warning("Skipping malformed record %s: %s", exc.document_id or "<unknown>", exc)
                    DOCUMENTS_INDEXED.labels(outcome="failed").inc()
                    outcomes.append(IndexOutcome(document_id=exc.document_id, success=False, reason=str(exc)))
                    continue
                DOCUMENTS_INDEXED.labels(outcome="indexed").inc()
                outcomes.append(IndexOutcome(document_id=doc_id, success=True))
            generation = self.commit()
            summary = BatchIndexSummary(outcomes=outcomes, generation=generation)
            span.set_attribute("docindex.batch.succeeded", summary.succeeded)
            span.set_attribute("docindex.batch.failed", summary.failed)
        logger.info("Indexed %d documents (%d failed)", summary.succeeded, summary.failed)
        return summary

    def delete_document(self, doc_id: str) -> None:
        """Schedule deletion by exact id; visible to readers after commit."""
        self._ensure_open()
        if not doc_id:
            raise ValueError("Document id must not be empty")
        self._pending[doc_id] = _DELETE

    def commit(self) -> int:
        """Apply pending changes atomically; return the resulting generation.

        With nothing pending this is a no-op. On failure the committed state
        is untouched and pending changes are kept.
        """
        self._ensure_open()
        if not self._pending:
            return self.store.current_generation()
        with (
            bind_log_fields(index=str(self.store.index_dir)),
            create_span("docindex.commit", attributes={"docindex.pending": len(self._pending)}),
        ):
            generation = self.store.apply_changes(self._pending)
        COMMITS.labels(operation="commit").inc()
        logger.debug("Committed %d pending changes (generation %d)", len(self._pending), generation)
        self._pending.clear()
        return generation

    def rollback(self) -> int:
        """Discard pending changes; return how many were dropped."""
        dropped = len(self._pending)
        self._pending.clear()
        return dropped

    def clear_index(self) -> int:
        """Delete every document immediately, dropping pending changes."""
        self._ensure_open()
        self._pending.clear()
        with create_span("docindex.clear_index"):
            generation = self.store.clear()
        COMMITS.labels(operation="clear").inc()
        return generation

    def purge_deleted(self) -> int:
        """Physically remove tombstoned documents; return how many were purged."""
        self._ensure_open()
        purged = self.store.purge_deleted()
        if purged:
            COMMITS.labels(operation="purge").inc()
        return purged

    def close(self) -> None:
        if self._closed:
            return
        dropped = self.rollback()
        if dropped:
            logger.warning("Closing write session with %d uncommitted changes; they were discarded", dropped)
        self._closed = True
        self.store.release_writer()
