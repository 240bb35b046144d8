"""Domain models for indexing and search.

Value objects are immutable (frozen=True). Records and results accept both
snake_case attribute names and the camelCase keys used in exported JSON.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


_MODEL_CONFIG = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class DocumentRecord(BaseModel):
    """Extracted document handed to the indexer.

    ``id`` is the caller-supplied key for replace-or-insert. ``content`` is
    indexed in full; ``page_contents`` holds per-page text in physical page
    order for paginated sources.
    """

    model_config = _MODEL_CONFIG

    id: str = Field(min_length=1)
    file_path: str = ""
    file_name: str = ""
    content: str = ""
    page_contents: list[str] | None = None
    content_type: str | None = None
    file_size: int = Field(default=0, ge=0)
    last_modified: datetime | None = None
    indexed_at: datetime | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def _stringify_metadata(cls, value: object) -> object:
        if not isinstance(value, dict):
            return value
        cleaned: dict[str, str] = {}
        for key, item in value.items():
            if not isinstance(key, str) or not key.strip():
                raise ValueError(f"metadata keys must be non-empty strings, got {key!r}")
            if item is None:
                continue
            if isinstance(item, (str, int, float, bool)):
                cleaned[key] = str(item)
                continue
            raise ValueError(f"metadata value for {key!r} is not a scalar: {type(item).__name__}")
        return cleaned

    @property
    def page_count(self) -> int | None:
        """Page count from metadata, falling back to the number of pages."""
        raw = self.metadata.get("pageCount")
        if raw is not None:
            try:
                return int(raw)
            except ValueError:
                pass
        if self.page_contents:
            return len(self.page_contents)
        return None


class SearchResult(BaseModel):
    """A ranked hit enriched with stored fields, matched pages and a snippet."""

    model_config = _MODEL_CONFIG

    document_id: str
    file_path: str = ""
    file_name: str = ""
    content_type: str | None = None
    score: float = 0.0
    file_size: int = 0
    last_modified: str | None = None
    indexed_at: str | None = None
    page_count: int = 0
    matched_pages: list[int] = Field(default_factory=list)
    snippet: str = ""

    @property
    def formatted_file_size(self) -> str:
        size = float(self.file_size)
        for unit in ("B", "KB", "MB"):
            if size < 1024:
                return f"{int(size)} B" if unit == "B" else f"{size:.1f} {unit}"
            size /= 1024
        return f"{size:.1f} GB"

    @property
    def formatted_matched_pages(self) -> str:
        if not self.matched_pages:
            return "N/A"
        return ", ".join(str(page) for page in self.matched_pages)


class IndexStats(BaseModel):
    """Snapshot-level index statistics."""

    model_config = _MODEL_CONFIG

    total_documents: int
    deleted_documents: int
    max_document: int
    generation: int = 0
    tokenizer: str = ""


class IndexOutcome(BaseModel):
    """Result of indexing a single record within a batch."""

    model_config = _MODEL_CONFIG

    document_id: str | None
    success: bool
    reason: str | None = None


class BatchIndexSummary(BaseModel):
    """Aggregated outcomes of a batch indexing run."""

    model_config = _MODEL_CONFIG

    outcomes: list[IndexOutcome] = Field(default_factory=list)
    generation: int = 0

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.succeeded

    @property
    def failures(self) -> list[IndexOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]
