"""Statistical helpers for BM25 style scoring.

The functions here stay independent of the storage backend; the store only
supplies per-field aggregates (``FieldLengthStats``) and raw term counts.
"""

from __future__ import annotations

from dataclasses import dataclass
import math


DEFAULT_K1 = 1.2
DEFAULT_B = 0.75
MAX_LENGTH_RATIO = 4.0


@dataclass(frozen=True)
class FieldLengthStats:
    """Aggregated term statistics for a field across live documents."""

    field: str
    total_terms: int
    document_count: int

    @property
    def average_length(self) -> float:
        if self.document_count == 0:
            return 0.0
        return self.total_terms / self.document_count


def calculate_idf(doc_freq: int, total_docs: int, *, floor: float = 1e-6) -> float:
    """Return inverse document frequency with small-sample smoothing.

    The ratio is floored so common terms in tiny corpora receive a small
    positive weight rather than a negative one.
    """

    if total_docs <= 0:
        return 0.0
    df = max(0, min(doc_freq, total_docs))
    numerator = total_docs - df + 0.5
    denominator = df + 0.5
    ratio = max(numerator / denominator, floor)
    raw_idf = math.log(ratio + floor) + 1.0
    return max(raw_idf, floor)


def bm25(tf: int, doc_length: int, avg_doc_length: float, *, k1: float = DEFAULT_K1, b: float = DEFAULT_B) -> float:
    """Compute the BM25 term weight without IDF.

    The dl/avgdl ratio is capped at ``MAX_LENGTH_RATIO`` so very long
    documents (whole books indexed without truncation) are not pushed to
    near-zero weight.
    """

    if tf <= 0:
        return 0.0
    raw_ratio = doc_length / max(avg_doc_length, 1e-9)
    normalized_length = min(raw_ratio, MAX_LENGTH_RATIO)
    denominator = tf + k1 * (1 - b + b * normalized_length)
    return (tf * (k1 + 1)) / denominator
