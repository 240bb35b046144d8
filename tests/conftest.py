"""Shared test fixtures and configuration."""

from datetime import datetime, timezone
import os

import pytest

from docindex.models import DocumentRecord
from docindex.search.indexer import IndexWriter
from docindex.search.search_index import DocumentSearchIndex
from docindex.search.sqlite_storage import IndexStore


# Test defaults that override any DOCINDEX_* values from the developer's shell
TEST_ENV = {
    "DOCINDEX_TOKENIZER": "standard",
    "DOCINDEX_LOG_LEVEL": "warning",
    "DOCINDEX_JSON_LOGS": "false",
}


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Drop inherited DOCINDEX_* variables and set test defaults."""
    for key in list(os.environ):
        if key.upper().startswith("DOCINDEX_"):
            monkeypatch.delenv(key, raising=False)
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)


@pytest.fixture
def store(tmp_path):
    """A fresh index with the default schema and tokenizer."""
    return IndexStore(tmp_path / "index")


@pytest.fixture
def search_index(store):
    """Search facade that reads snippets from stored content only."""
    return DocumentSearchIndex(store, content_loader=None)


@pytest.fixture
def make_record():
    """Factory for document records with sensible defaults."""

    def _make(doc_id: str, content: str = "", **overrides):
        data = {
            "id": doc_id,
            "file_path": f"/docs/{doc_id}.txt",
            "file_name": f"{doc_id}.txt",
            "content": content,
            "content_type": "text/plain",
            "file_size": len(content),
            "last_modified": datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc),
        }
        data.update(overrides)
        return DocumentRecord(**data)

    return _make


@pytest.fixture
def index_records(store):
    """Index records in one committed write session."""

    def _index(*records):
        with IndexWriter(store) as writer:
            return writer.index_documents(records)

    return _index
