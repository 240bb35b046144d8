"""
Schema definition for document indexing.

Defines field types and schema structure for indexed documents, inspired by
Whoosh's schema module. Supports:
- TextField: Analyzed text fields (content, fileName, metadata)
- KeywordField: Exact values kept as a single token
- NumericField: Integer fields for range queries (fileSize, pageCount, ...)
- StoredField: Fields stored but not indexed

A record is turned into a tagged list of ``IndexableField`` entries whose
``kind`` says whether the value is searchable, retrievable, or both. The schema
decides how searchable values are analyzed and how much each field weighs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


FIELD_ID = "id"
FIELD_FILE_PATH = "filePath"
FIELD_FILE_NAME = "fileName"
FIELD_CONTENT = "content"
FIELD_CONTENT_TYPE = "contentType"
FIELD_FILE_SIZE = "fileSize"
FIELD_LAST_MODIFIED = "lastModified"
FIELD_INDEXED_AT = "indexedAt"
FIELD_METADATA = "metadata"
FIELD_PAGE_COUNT = "pageCount"
FIELD_PAGE_CONTENTS = "pageContents"
METADATA_PREFIX = "metadata_"


class FieldType(str, Enum):
    """Types of fields supported in the schema."""

    TEXT = "text"
    KEYWORD = "keyword"
    NUMERIC = "numeric"
    STORED = "stored"


class FieldKind(str, Enum):
    """How a single field value participates in the index."""

    INDEXED = "indexed"
    STORED = "stored"
    BOTH = "both"

    @property
    def is_indexed(self) -> bool:
        return self is not FieldKind.STORED

    @property
    def is_stored(self) -> bool:
        return self is not FieldKind.INDEXED


@dataclass(frozen=True)
class IndexableField:
    """One entry of a document's tagged field list."""

    name: str
    kind: FieldKind
    value: str | int


@dataclass(frozen=True)
class SchemaField(ABC):
    """Base class for all schema fields."""

    name: str
    stored: bool = True
    indexed: bool = True
    boost: float = 1.0

    @property
    @abstractmethod
    def field_type(self) -> FieldType:
        """Return the field type."""

    def to_dict(self) -> dict[str, Any]:
        """Serialize field definition to dict."""
        return {
            "name": self.name,
            "type": self.field_type.value,
            "stored": self.stored,
            "indexed": self.indexed,
            "boost": self.boost,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SchemaField:
        """Deserialize field definition from dict."""
        field_type = FieldType(data["type"])
        common = {
            "name": data["name"],
            "stored": data.get("stored", True),
            "indexed": data.get("indexed", True),
            "boost": data.get("boost", 1.0),
        }

        if field_type == FieldType.TEXT:
            return TextField(**common, analyzer_name=data.get("analyzer_name"))
        if field_type == FieldType.KEYWORD:
            return KeywordField(**common)
        if field_type == FieldType.NUMERIC:
            return NumericField(**common)
        if field_type == FieldType.STORED:
            return StoredField(name=data["name"])
        msg = f"Unknown field type: {field_type}"
        raise ValueError(msg)


@dataclass(frozen=True)
class TextField(SchemaField):
    """
    Analyzed text field for full-text search.

    Args:
        name: Field name (e.g., "content", "fileName")
        stored: Store raw value for retrieval (default: True)
        indexed: Index for searching (default: True)
        boost: Field weight in scoring (default: 1.0)
        analyzer_name: Analyzer override; None uses the index tokenizer
    """

    analyzer_name: str | None = None

    @property
    def field_type(self) -> FieldType:
        return FieldType.TEXT

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.analyzer_name:
            data["analyzer_name"] = self.analyzer_name
        return data


@dataclass(frozen=True)
class KeywordField(SchemaField):
    """Exact-match keyword field, indexed as a single unanalyzed token."""

    @property
    def field_type(self) -> FieldType:
        return FieldType.KEYWORD


@dataclass(frozen=True)
class NumericField(SchemaField):
    """
    Integer field for range queries.

    Use for sizes, counts and timestamps (epoch milliseconds). Values are
    indexed as points, not terms, so they only take part in range matching and
    never contribute to relevance beyond a constant score.
    """

    @property
    def field_type(self) -> FieldType:
        return FieldType.NUMERIC


@dataclass(frozen=True)
class StoredField(SchemaField):
    """Stored-only field (not indexed)."""

    stored: bool = field(default=True, init=False)
    indexed: bool = field(default=False, init=False)
    boost: float = field(default=0.0, init=False)

    @property
    def field_type(self) -> FieldType:
        return FieldType.STORED


@dataclass
class Schema:
    """
    Schema definition for a document index.

    Example:
        schema = Schema(
            fields=[
                KeywordField("id", indexed=False),
                TextField("fileName", boost=3.0),
                TextField("content"),
                NumericField("fileSize"),
            ],
            unique_field="id",
        )
    """

    fields: list[SchemaField]
    unique_field: str = FIELD_ID
    name: str = "default"

    def __post_init__(self) -> None:
        """Validate schema after initialization."""
        self._field_map: dict[str, SchemaField] = {f.name: f for f in self.fields}

        if self.unique_field not in self._field_map:
            msg = f"Unique field '{self.unique_field}' not found in schema"
            raise ValueError(msg)

    def __getitem__(self, name: str) -> SchemaField:
        """Get field by name."""
        return self._field_map[name]

    def __contains__(self, name: str) -> bool:
        """Check if field exists."""
        return name in self._field_map

    def __iter__(self):
        """Iterate over fields."""
        return iter(self.fields)

    def __len__(self) -> int:
        """Return number of fields."""
        return len(self.fields)

    @property
    def text_fields(self) -> list[TextField]:
        """Return all text fields."""
        return [f for f in self.fields if isinstance(f, TextField)]

    @property
    def searchable_fields(self) -> list[TextField]:
        """Text fields that an unscoped query term is expanded over."""
        return [f for f in self.text_fields if f.indexed]

    @property
    def numeric_fields(self) -> list[NumericField]:
        return [f for f in self.fields if isinstance(f, NumericField) and f.indexed]

    def resolve(self, name: str) -> SchemaField | None:
        """Look a field up by name, ignoring case."""
        if name in self._field_map:
            return self._field_map[name]
        lowered = name.lower()
        for candidate in self.fields:
            if candidate.name.lower() == lowered:
                return candidate
        return None

    def get_boost(self, field_name: str) -> float:
        """Get boost factor for a field."""
        if field_name in self._field_map:
            return self._field_map[field_name].boost
        return 1.0

    def to_dict(self) -> dict[str, Any]:
        """Serialize schema to dict."""
        return {
            "name": self.name,
            "unique_field": self.unique_field,
            "fields": [f.to_dict() for f in self.fields],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Schema:
        """Deserialize schema from dict."""
        fields = [SchemaField.from_dict(f) for f in data["fields"]]
        return cls(
            fields=fields,
            unique_field=data.get("unique_field", FIELD_ID),
            name=data.get("name", "default"),
        )


def create_default_schema() -> Schema:
    """
    Create the default schema for document indexing.

    Searchable text fields and their boosts:
    - fileName: 3.0
    - metadata: 1.5 (all metadata values, unified)
    - content: 1.0 (full extracted text)

    Numeric fields fileSize, lastModified and pageCount support range
    queries. Everything else is stored for retrieval only.
    """
    return Schema(
        name="documents",
        unique_field=FIELD_ID,
        fields=[
            KeywordField(FIELD_ID, indexed=False, boost=0.0),
            KeywordField(FIELD_FILE_PATH, indexed=False, boost=0.0),
            TextField(FIELD_FILE_NAME, boost=3.0),
            TextField(FIELD_CONTENT, boost=1.0),
            TextField(FIELD_METADATA, stored=False, boost=1.5),
            KeywordField(FIELD_CONTENT_TYPE, indexed=False, boost=0.0),
            NumericField(FIELD_FILE_SIZE),
            NumericField(FIELD_LAST_MODIFIED),
            NumericField(FIELD_PAGE_COUNT),
            StoredField(FIELD_INDEXED_AT),
            StoredField(FIELD_PAGE_CONTENTS),
        ],
    )
