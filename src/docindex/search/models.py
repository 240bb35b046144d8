"""Search data models shared by the writer, the store and the engine."""

from __future__ import annotations

from array import array
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Posting:
    """A term occurrence list for one document in one field."""

    ordinal: int
    frequency: int = 0
    positions: array = field(default_factory=lambda: array("I"))

    @classmethod
    def from_blob(cls, ordinal: int, frequency: int, blob: bytes | None) -> Posting:
        positions = array("I")
        if blob:
            positions.frombytes(blob)
        return cls(ordinal=ordinal, frequency=frequency, positions=positions)


@dataclass
class PreparedDocument:
    """A record analyzed into everything the store persists at commit.

    ``postings`` maps field -> term -> positions; ``lengths`` holds the token
    count per indexed text field; ``numerics`` holds range-queryable values.
    """

    doc_id: str
    stored: dict[str, Any] = field(default_factory=dict)
    postings: dict[str, dict[str, array]] = field(default_factory=dict)
    lengths: dict[str, int] = field(default_factory=dict)
    numerics: dict[str, int] = field(default_factory=dict)

    def posting_rows(self) -> list[tuple[str, str, int, bytes]]:
        """Return ``(field, term, tf, positions_blob)`` rows for insertion."""
        rows: list[tuple[str, str, int, bytes]] = []
        for field_name, terms in self.postings.items():
            for term, positions in terms.items():
                rows.append((field_name, term, len(positions), positions.tobytes()))
        return rows


@dataclass(frozen=True)
class RankedDocument:
    """A scored hit identified by its internal ordinal."""

    ordinal: int
    score: float
