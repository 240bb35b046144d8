"""Unit tests for domain models."""

from __future__ import annotations

from pydantic import ValidationError
import pytest

from docindex.models import BatchIndexSummary, DocumentRecord, IndexOutcome, IndexStats, SearchResult


class TestDocumentRecord:
    def test_accepts_camel_case_keys(self):
        record = DocumentRecord.model_validate(
            {"id": "doc1", "fileName": "report.pdf", "filePath": "/docs/report.pdf", "pageContents": ["a", "b"]}
        )

        assert record.file_name == "report.pdf"
        assert record.file_path == "/docs/report.pdf"
        assert record.page_count == 2

    def test_requires_non_empty_id(self):
        with pytest.raises(ValidationError):
            DocumentRecord(id="")

    def test_rejects_negative_file_size(self):
        with pytest.raises(ValidationError):
            DocumentRecord(id="a", file_size=-1)

    def test_metadata_scalars_are_stringified_and_none_dropped(self):
        record = DocumentRecord(id="a", metadata={"pages": 3, "draft": True, "owner": None})

        assert record.metadata == {"pages": "3", "draft": "True"}

    def test_metadata_rejects_nested_values_and_blank_keys(self):
        with pytest.raises(ValidationError):
            DocumentRecord(id="a", metadata={"nested": {"x": 1}})
        with pytest.raises(ValidationError):
            DocumentRecord(id="a", metadata={" ": "x"})

    def test_page_count_prefers_metadata(self):
        assert DocumentRecord(id="a", metadata={"pageCount": "12"}, page_contents=["x"]).page_count == 12
        assert DocumentRecord(id="a", metadata={"pageCount": "many"}, page_contents=["x"]).page_count == 1
        assert DocumentRecord(id="a").page_count is None

    def test_is_frozen(self):
        record = DocumentRecord(id="a")

        with pytest.raises(ValidationError):
            record.content = "changed"


class TestSearchResult:
    @pytest.mark.parametrize(
        ("size", "expected"),
        [(0, "0 B"), (1023, "1023 B"), (1536, "1.5 KB"), (5 * 1024 * 1024, "5.0 MB"), (3 * 1024**3, "3.0 GB")],
    )
    def test_formatted_file_size(self, size, expected):
        assert SearchResult(document_id="a", file_size=size).formatted_file_size == expected

    def test_formatted_matched_pages(self):
        assert SearchResult(document_id="a").formatted_matched_pages == "N/A"
        assert SearchResult(document_id="a", matched_pages=[1, 3]).formatted_matched_pages == "1, 3"

    def test_dumps_camel_case(self):
        dumped = SearchResult(document_id="a", matched_pages=[2]).model_dump(by_alias=True)

        assert dumped["documentId"] == "a"
        assert dumped["matchedPages"] == [2]


def test_batch_summary_counts():
    summary = BatchIndexSummary(
        outcomes=[
            IndexOutcome(document_id="a", success=True),
            IndexOutcome(document_id=None, success=False, reason="missing id"),
        ],
        generation=4,
    )

    assert summary.succeeded == 1
    assert summary.failed == 1
    assert [outcome.reason for outcome in summary.failures] == ["missing id"]


def test_index_stats_aliases():
    stats = IndexStats(total_documents=2, deleted_documents=1, max_document=3)

    assert stats.model_dump(by_alias=True)["maxDocument"] == 3
