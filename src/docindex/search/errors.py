"""Error taxonomy for the indexing and search core."""

from __future__ import annotations


class DocIndexError(Exception):
    """Base class for all docindex failures."""


class MalformedRecordError(DocIndexError, ValueError):
    """A document record cannot be converted into index fields."""

    def __init__(self, message: str, *, document_id: str | None = None) -> None:
        super().__init__(message)
        self.document_id = document_id


class QueryParseError(DocIndexError, ValueError):
    """The query string is not valid under the query grammar."""

    def __init__(self, message: str, *, position: int | None = None) -> None:
        if position is not None:
            message = f"{message} (at position {position})"
        super().__init__(message)
        self.position = position


class IndexUnavailableError(DocIndexError):
    """The index cannot be opened or locked for the requested operation."""


class StoreCorruptionError(DocIndexError):
    """On-disk index structures failed an integrity check."""


class TokenizerMismatchError(StoreCorruptionError):
    """The index was created with a different tokenizer than requested."""


class ExtractionError(DocIndexError):
    """A source file could not be turned into a document record."""
