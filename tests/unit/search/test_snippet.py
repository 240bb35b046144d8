"""Unit tests for snippet windows and highlighting."""

from __future__ import annotations

import pytest

from docindex.search.snippet import build_context_snippet, find_first_match, highlight_terms


def test_find_first_match_is_case_insensitive_and_earliest():
    assert find_first_match("Alpha beta Gamma", ["gamma", "BETA"]) == 6
    assert find_first_match("Alpha", ["zeta"]) == -1
    assert find_first_match("Alpha", [""]) == -1


def test_snippet_starts_fifty_chars_before_match():
    text = "x" * 200 + " revenue " + "y" * 500
    snippet = build_context_snippet(text, ["revenue"])

    assert snippet.startswith("...")
    assert snippet.endswith("...")
    body = snippet[3:-3]
    assert len(body) == 300
    assert body.index("revenue") == 50


def test_snippet_without_match_starts_at_beginning():
    text = "word " * 100
    snippet = build_context_snippet(text, ["missing"])

    assert not snippet.startswith("...")
    assert snippet.endswith("...")


def test_snippet_short_text_has_no_markers_and_collapses_whitespace():
    snippet = build_context_snippet("Annual   report\n\ndiscusses\trevenue", ["revenue"])

    assert snippet == "Annual report discusses revenue"


def test_snippet_empty_text():
    assert build_context_snippet("", ["x"]) == ""
    assert build_context_snippet(None, ["x"]) == ""


def test_snippet_respects_custom_length():
    snippet = build_context_snippet("a" * 1000, [], max_chars=100)

    assert snippet == "a" * 100 + "..."


def test_highlight_terms_styles():
    assert highlight_terms("Revenue grew", ["revenue"]) == "[[Revenue]] grew"
    assert highlight_terms("Revenue grew", ["revenue"], style="html") == "<mark>Revenue</mark> grew"
    assert highlight_terms("Revenue grew", ["revenue"], style="ansi") == "\033[1;33mRevenue\033[0m grew"


def test_highlight_terms_limit_and_short_terms():
    result = highlight_terms("ab ab ab", ["ab", "a"], max_highlights=2)

    assert result == "[[ab]] [[ab]] ab"


def test_highlight_terms_prefers_longer_non_overlapping_matches():
    assert highlight_terms("ab ab ab", ["ab", "ab a"]) == "[[ab a]]b [[ab]]"


def test_highlight_terms_unknown_style():
    with pytest.raises(ValueError, match="Unknown highlight style"):
        highlight_terms("text", ["text"], style="neon")
