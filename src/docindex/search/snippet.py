"""Context snippets for search results.

Snippets are cut from the original document text at query time: the window
opens a little before the first occurrence of any cleaned query term and
spans a fixed number of characters. The window never influences ranking.
"""

from __future__ import annotations

from collections.abc import Sequence
import re


DEFAULT_SNIPPET_CHARS = 300
DEFAULT_LEAD_CHARS = 50
ELLIPSIS = "..."

_WHITESPACE = re.compile(r"\s+")

_HIGHLIGHT_STYLES = {
    "plain": ("[[", "]]"),
    "html": ("<mark>", "</mark>"),
    "ansi": ("\033[1;33m", "\033[0m"),
}


def find_first_match(text: str, terms: Sequence[str]) -> int:
    """Return the earliest case-insensitive offset of any term, or -1."""
    best = -1
    for term in terms:
        if not term:
            continue
        match = re.search(re.escape(term), text, re.IGNORECASE)
        if match and (best == -1 or match.start() < best):
            best = match.start()
    return best


def build_context_snippet(
    text: str | None,
    terms: Sequence[str],
    *,
    max_chars: int = DEFAULT_SNIPPET_CHARS,
    lead_chars: int = DEFAULT_LEAD_CHARS,
) -> str:
    """Build a whitespace-collapsed window of ``text`` around the first match.

    The window starts ``lead_chars`` before the match (or at the beginning when
    nothing matches) and is ``max_chars`` long. An ellipsis marks each side that
    does not reach a content boundary.
    """
    if not text:
        return ""

    match_pos = find_first_match(text, terms)
    start = max(0, match_pos - lead_chars) if match_pos > 0 else 0
    end = min(len(text), start + max_chars)

    snippet = _WHITESPACE.sub(" ", text[start:end]).strip()
    if not snippet:
        return ""
    if start > 0:
        snippet = ELLIPSIS + snippet
    if end < len(text):
        snippet = snippet + ELLIPSIS
    return snippet


def highlight_terms(snippet: str, terms: Sequence[str], style: str = "plain", max_highlights: int = 5) -> str:
    """Wrap up to ``max_highlights`` non-overlapping term occurrences.

    Args:
        snippet: The snippet text to highlight.
        terms: Terms to highlight (case-insensitive).
        style: "plain" for [[term]], "html" for <mark>term</mark>, "ansi" for
            terminal bold yellow.
        max_highlights: Maximum number of occurrences to wrap.
    """
    if not snippet or not terms:
        return snippet
    if style not in _HIGHLIGHT_STYLES:
        raise ValueError(f"Unknown highlight style '{style}'. Available: {sorted(_HIGHLIGHT_STYLES)}")

    matches: list[tuple[int, int]] = []
    for term in terms:
        if not term or len(term) < 2:
            continue
        pattern = re.compile(re.escape(term), re.IGNORECASE)
        matches.extend((match.start(), match.end()) for match in pattern.finditer(snippet))
    if not matches:
        return snippet

    # Longer matches win at the same offset
    matches.sort(key=lambda span: (span[0], -(span[1] - span[0])))
    selected: list[tuple[int, int]] = []
    for start, end in matches:
        if any(start < chosen_end and end > chosen_start for chosen_start, chosen_end in selected):
            continue
        selected.append((start, end))
        if len(selected) >= max_highlights:
            break

    opener, closer = _HIGHLIGHT_STYLES[style]
    result = snippet
    for start, end in sorted(selected, reverse=True):
        result = result[:start] + opener + result[start:end] + closer + result[end:]
    return result
