"""Unit tests for BM25 statistics."""

from __future__ import annotations

import math

import pytest

from docindex.search.stats import MAX_LENGTH_RATIO, FieldLengthStats, bm25, calculate_idf


def test_average_length_handles_empty_field():
    assert FieldLengthStats("content", total_terms=0, document_count=0).average_length == 0.0
    assert FieldLengthStats("content", total_terms=30, document_count=3).average_length == 10.0


def test_idf_rarer_terms_weigh_more():
    assert calculate_idf(1, 100) > calculate_idf(50, 100)


def test_idf_is_positive_for_terms_in_every_document():
    assert calculate_idf(2, 2) > 0


def test_idf_of_empty_index_is_zero():
    assert calculate_idf(0, 0) == 0.0


def test_idf_single_match_in_two_documents():
    assert calculate_idf(1, 2) == pytest.approx(1.0, abs=1e-5)


def test_bm25_average_length_single_occurrence_is_one():
    assert bm25(1, 10, 10.0) == pytest.approx(1.0)


def test_bm25_saturates_with_term_frequency():
    assert bm25(1, 10, 10.0) < bm25(5, 10, 10.0) < 2.2


def test_bm25_length_ratio_is_capped():
    capped = bm25(1, int(10 * MAX_LENGTH_RATIO), 10.0)

    assert bm25(1, 100_000, 10.0) == pytest.approx(capped)
    assert capped > 0


def test_bm25_zero_frequency():
    assert bm25(0, 10, 10.0) == 0.0


def test_idf_matches_formula():
    expected = math.log((10 - 3 + 0.5) / (3 + 0.5)) + 1.0

    assert calculate_idf(3, 10) == pytest.approx(expected, rel=1e-4)
