"""Page-match locator for paginated sources.

Per-page text is kept in a single stored blob of the form
``|PAGE:1|first page text|PAGE:2|second page text``. Page matching is a plain
substring heuristic over that blob and runs independently of relevance
scoring; it only ever sees the (possibly capped) stored page copies.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
import re


PAGE_MARKER = "|PAGE:"
DEFAULT_PAGE_TEXT_MAX_CHARS = 2000

_OPERATOR_WORDS = frozenset({"AND", "OR", "NOT"})
_FIELD_PREFIX = re.compile(r"^[A-Za-z_][\w]*:")


def encode_page_contents(pages: Iterable[str], max_chars: int | None = DEFAULT_PAGE_TEXT_MAX_CHARS) -> str:
    """Serialize pages (1-based, in order) into the stored blob."""
    parts: list[str] = []
    for number, text in enumerate(pages, start=1):
        page_text = text or ""
        if max_chars is not None and len(page_text) > max_chars:
            page_text = page_text[:max_chars]
        parts.append(f"{PAGE_MARKER}{number}|{page_text}")
    return "".join(parts)


def decode_page_contents(blob: str | None) -> list[tuple[int, str]]:
    """Split a stored blob back into ``(page_number, text)`` pairs.

    Segments whose page number does not parse are skipped.
    """
    if not blob:
        return []
    pages: list[tuple[int, str]] = []
    for segment in blob.split(PAGE_MARKER):
        if not segment:
            continue
        number, sep, text = segment.partition("|")
        if not sep:
            continue
        try:
            pages.append((int(number), text))
        except ValueError:
            continue
    return pages


def clean_term(term: str) -> str:
    """Lowercase a term and strip every non-alphanumeric character."""
    return "".join(ch for ch in term.lower() if ch.isalnum())


def clean_query_terms(query: str) -> list[str]:
    """Return the cleaned, de-duplicated terms of a raw query string.

    Boolean operator words are skipped and ``field:`` prefixes removed before
    cleaning, so ``fileName:report AND revenue`` yields ``["report", "revenue"]``.
    """
    terms: list[str] = []
    for raw in query.split():
        if raw in _OPERATOR_WORDS:
            continue
        cleaned = clean_term(_FIELD_PREFIX.sub("", raw))
        if cleaned and cleaned not in terms:
            terms.append(cleaned)
    return terms


def clean_terms(texts: Iterable[str]) -> list[str]:
    """Split each text on whitespace and return the cleaned, de-duplicated words."""
    terms: list[str] = []
    for text in texts:
        for word in text.split():
            cleaned = clean_term(word)
            if cleaned and cleaned not in terms:
                terms.append(cleaned)
    return terms


def find_matched_pages(blob: str | None, query: str | Sequence[str]) -> list[int]:
    """Return the ascending page numbers whose text contains any query term.

    ``query`` is either a raw query string or a list of term texts.
    """
    terms = clean_query_terms(query) if isinstance(query, str) else clean_terms(query)
    if not blob or not terms:
        return []
    matched: set[int] = set()
    for number, text in decode_page_contents(blob):
        lowered = text.lower()
        if any(term in lowered for term in terms):
            matched.add(number)
    return sorted(matched)
