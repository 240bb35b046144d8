"""Unit tests for the query language parser."""

from __future__ import annotations

import pytest

from docindex.search.errors import QueryParseError
from docindex.search.query_parser import (
    BooleanQuery,
    Clause,
    Occur,
    PhraseQuery,
    RangeQuery,
    TermQuery,
    WildcardQuery,
    parse_query,
    positive_terms,
)
from docindex.search.schema import create_default_schema


@pytest.fixture
def parse():
    schema = create_default_schema()
    return lambda text: parse_query(text, schema)


def test_blank_query_parses_to_none(parse):
    assert parse("") is None
    assert parse("   ") is None


def test_single_term(parse):
    assert parse("revenue") == TermQuery("revenue")


def test_adjacent_terms_default_to_or(parse):
    assert parse("revenue growth") == BooleanQuery(
        (Clause(Occur.SHOULD, TermQuery("revenue")), Clause(Occur.SHOULD, TermQuery("growth")))
    )


def test_and_binds_tighter_than_or(parse):
    query = parse("a OR b AND c")

    assert query == BooleanQuery(
        (
            Clause(Occur.SHOULD, TermQuery("a")),
            Clause(
                Occur.SHOULD,
                BooleanQuery((Clause(Occur.MUST, TermQuery("b")), Clause(Occur.MUST, TermQuery("c")))),
            ),
        )
    )


def test_not_and_minus_exclude(parse):
    expected = BooleanQuery((Clause(Occur.MUST, TermQuery("apple")), Clause(Occur.MUST_NOT, TermQuery("pie"))))

    assert parse("apple AND NOT pie") == expected
    assert parse("apple && !pie") == expected
    assert parse("apple -pie") == BooleanQuery(
        (Clause(Occur.SHOULD, TermQuery("apple")), Clause(Occur.MUST_NOT, TermQuery("pie")))
    )


def test_plus_marks_required(parse):
    assert parse("+apple pie") == BooleanQuery(
        (Clause(Occur.MUST, TermQuery("apple")), Clause(Occur.SHOULD, TermQuery("pie")))
    )


def test_lowercase_operators_are_plain_terms(parse):
    query = parse("apple and pie")

    assert isinstance(query, BooleanQuery)
    assert [clause.query for clause in query.clauses] == [TermQuery("apple"), TermQuery("and"), TermQuery("pie")]


def test_phrase_and_escaped_quote(parse):
    assert parse('"revenue growth"') == PhraseQuery("revenue growth")
    assert parse('"say \\"hi\\""') == PhraseQuery('say "hi"')


def test_wildcards_become_glob_patterns(parse):
    assert parse("rep*") == WildcardQuery("rep*", "rep*")
    assert parse("te?t") == WildcardQuery("te?t", "te?t")


def test_escaped_wildcard_is_literal(parse):
    assert parse("c\\*") == TermQuery("c*")


def test_field_scope_resolves_case_insensitively(parse):
    assert parse("filename:report") == TermQuery("report", "fileName")
    assert parse("metadata:finance") == TermQuery("finance", "metadata")


def test_field_scope_applies_to_group(parse):
    assert parse("fileName:(report OR summary)") == BooleanQuery(
        (Clause(Occur.SHOULD, TermQuery("report", "fileName")), Clause(Occur.SHOULD, TermQuery("summary", "fileName")))
    )


def test_field_scope_on_phrase_and_wildcard(parse):
    assert parse('content:"annual report"') == PhraseQuery("annual report", "content")
    assert parse("fileName:rep*") == WildcardQuery("rep*", "rep*", "fileName")


def test_numeric_field_values_and_ranges(parse):
    assert parse("pageCount:3") == RangeQuery("pageCount", 3, 3)
    assert parse("fileSize:[100 TO 2000}") == RangeQuery("fileSize", 100, 2000, True, False)
    assert parse("fileSize:{* TO 50]") == RangeQuery("fileSize", None, 50, False, True)


def test_purely_negative_query_is_wrapped(parse):
    assert parse("NOT apple") == BooleanQuery((Clause(Occur.MUST_NOT, TermQuery("apple")),))


@pytest.mark.parametrize(
    "query",
    [
        '"unterminated',
        "(apple OR pie",
        "apple)",
        "apple AND",
        "OR apple",
        "()",
        "unknown:value",
        "id:doc1",
        "fileSize:big",
        "content:[1 TO 5]",
        "fileName:(content:x)",
        "[1 TO 2]",
        "fileSize:[1 2]",
    ],
)
def test_invalid_queries_raise(parse, query):
    with pytest.raises(QueryParseError):
        parse(query)


def test_parse_error_reports_position(parse):
    with pytest.raises(QueryParseError) as excinfo:
        parse("apple AND")

    assert excinfo.value.position == 6
    assert "position 6" in str(excinfo.value)


def test_positive_terms_skip_negated_clauses(parse):
    query = parse('revenue "annual report" rep* -draft fileSize:[1 TO 5]')

    assert positive_terms(query) == ["revenue", "annual report", "rep "]
    assert positive_terms(None) == []
