"""BM25F scoring over a parsed query tree.

Each leaf is scored per field and multiplied by that field's boost; an
unscoped leaf is expanded over every searchable text field and the field
contributions are summed. Postings are streamed from the snapshot cursor into
a per-document score map, so memory grows with the number of matching
documents rather than with the size of posting lists.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
import heapq

from docindex.search.analyzers import Analyzer, get_analyzer
from docindex.search.models import RankedDocument
from docindex.search.query_parser import (
    BooleanQuery,
    Occur,
    PhraseQuery,
    Query,
    RangeQuery,
    TermQuery,
    WildcardQuery,
)
from docindex.search.schema import Schema, TextField
from docindex.search.sqlite_storage import IndexSnapshot
from docindex.search.stats import DEFAULT_B, DEFAULT_K1, bm25, calculate_idf


ScoreMap = dict[int, float]


@dataclass
class _ScoringContext:
    snapshot: IndexSnapshot
    _total_docs: int | None = None
    _idf: dict[tuple[str, str], tuple[float, int]] = field(default_factory=dict)

    @property
    def total_docs(self) -> int:
        if self._total_docs is None:
            self._total_docs = self.snapshot.live_count()
        return self._total_docs

    def idf(self, field_name: str, term: str) -> tuple[float, int]:
        key = (field_name, term)
        cached = self._idf.get(key)
        if cached is None:
            doc_freq = self.snapshot.doc_frequency(field_name, term)
            value = calculate_idf(doc_freq, self.total_docs) if doc_freq else 0.0
            cached = self._idf[key] = (value, doc_freq)
        return cached


class BM25SearchEngine:
    """Score a ``Query`` tree against an ``IndexSnapshot``."""

    def __init__(
        self,
        schema: Schema,
        analyzer: Analyzer,
        *,
        k1: float = DEFAULT_K1,
        b: float = DEFAULT_B,
    ) -> None:
        self.schema = schema
        self.analyzer = analyzer
        self.k1 = k1
        self.b = b
        self._field_analyzers: dict[str, Analyzer] = {}

    def _analyzer_for(self, schema_field: TextField) -> Analyzer:
        if schema_field.analyzer_name is None:
            return self.analyzer
        cached = self._field_analyzers.get(schema_field.name)
        if cached is None:
            cached = get_analyzer(schema_field.analyzer_name)
            self._field_analyzers[schema_field.name] = cached
        return cached

    def _fields_for(self, field_name: str | None) -> list[TextField]:
        if field_name is None:
            return self.schema.searchable_fields
        return [f for f in self.schema.searchable_fields if f.name == field_name]

    def score(self, snapshot: IndexSnapshot, query: Query | None, limit: int) -> list[RankedDocument]:
        """Return the top ``limit`` documents, best first; ties go to the older ordinal."""
        if query is None or limit <= 0:
            return []
        scores = self.evaluate(query, _ScoringContext(snapshot))
        if not scores:
            return []
        top = heapq.nsmallest(limit, scores.items(), key=lambda item: (-item[1], item[0]))
        return [RankedDocument(ordinal=ordinal, score=score) for ordinal, score in top]

    def evaluate(self, query: Query, ctx: _ScoringContext) -> ScoreMap | None:
        """Return matching ordinals with scores, or None when the clause vanishes.

        A clause vanishes when analysis leaves no terms (for example a query
        made only of stopwords); enclosing boolean clauses ignore it.
        """
        if isinstance(query, TermQuery):
            return self._term(query, ctx)
        if isinstance(query, PhraseQuery):
            return self._phrase(query, ctx)
        if isinstance(query, WildcardQuery):
            return self._wildcard(query, ctx)
        if isinstance(query, RangeQuery):
            return self._range(query, ctx)
        if isinstance(query, BooleanQuery):
            return self._boolean(query, ctx)
        raise TypeError(f"Unsupported query node: {type(query).__name__}")

    def _unique_terms(self, schema_field: TextField, text: str) -> list[str]:
        return list(dict.fromkeys(token.text for token in self._analyzer_for(schema_field)(text)))

    def _term(self, query: TermQuery, ctx: _ScoringContext) -> ScoreMap | None:
        scores: defaultdict[int, float] = defaultdict(float)
        analyzed = False
        for schema_field in self._fields_for(query.field):
            terms = self._unique_terms(schema_field, query.text)
            if not terms:
                continue
            analyzed = True
            self._score_terms(schema_field, terms, ctx, scores)
        return dict(scores) if analyzed else None

    def _score_terms(
        self,
        schema_field: TextField,
        terms: list[str],
        ctx: _ScoringContext,
        scores: defaultdict[int, float],
    ) -> None:
        stats = ctx.snapshot.field_stats(schema_field.name)
        for term in terms:
            idf, doc_freq = ctx.idf(schema_field.name, term)
            if doc_freq == 0:
                continue
            weight = schema_field.boost * idf
            for ordinal, tf, length in ctx.snapshot.iter_term_postings(schema_field.name, term):
                scores[ordinal] += weight * bm25(tf, length, stats.average_length, k1=self.k1, b=self.b)

    def _phrase(self, query: PhraseQuery, ctx: _ScoringContext) -> ScoreMap | None:
        scores: defaultdict[int, float] = defaultdict(float)
        analyzed = False
        for schema_field in self._fields_for(query.field):
            tokens = self._analyzer_for(schema_field)(query.text)
            if not tokens:
                continue
            analyzed = True
            if len(tokens) == 1:
                self._score_terms(schema_field, [tokens[0].text], ctx, scores)
                continue
            # offsets come from analyzed positions, so a dropped stopword still occupies its slot
            first = tokens[0].position
            self._score_phrase(schema_field, [(token.position - first, token.text) for token in tokens], ctx, scores)
        return dict(scores) if analyzed else None

    def _score_phrase(
        self,
        schema_field: TextField,
        terms: list[tuple[int, str]],
        ctx: _ScoringContext,
        scores: defaultdict[int, float],
    ) -> None:
        """Score documents containing ``terms`` at exactly the given relative offsets."""
        name = schema_field.name
        idf_sum = 0.0
        frequencies: dict[str, int] = {}
        for term in dict.fromkeys(text for _offset, text in terms):
            idf, doc_freq = ctx.idf(name, term)
            if doc_freq == 0:
                return
            idf_sum += idf
            frequencies[term] = doc_freq

        # Visit the rarest term first so the candidate set starts small
        ordered = sorted(terms, key=lambda item: frequencies[item[1]])
        starts: dict[int, set[int]] | None = None
        for offset, term in ordered:
            narrowed: dict[int, set[int]] = {}
            for posting in ctx.snapshot.iter_term_positions(name, term):
                shifted = {position - offset for position in posting.positions}
                if starts is None:
                    narrowed[posting.ordinal] = shifted
                    continue
                previous = starts.get(posting.ordinal)
                if previous:
                    common = previous & shifted
                    if common:
                        narrowed[posting.ordinal] = common
            starts = narrowed
            if not starts:
                return

        stats = ctx.snapshot.field_stats(name)
        weight = schema_field.boost * idf_sum
        for ordinal, matches in (starts or {}).items():
            length = ctx.snapshot.field_length(name, ordinal)
            scores[ordinal] += weight * bm25(len(matches), length, stats.average_length, k1=self.k1, b=self.b)

    def _wildcard(self, query: WildcardQuery, ctx: _ScoringContext) -> ScoreMap:
        scores: defaultdict[int, float] = defaultdict(float)
        pattern = query.pattern.lower()
        for schema_field in self._fields_for(query.field):
            for ordinal in ctx.snapshot.iter_wildcard_matches(schema_field.name, pattern):
                scores[ordinal] += schema_field.boost
        return dict(scores)

    def _range(self, query: RangeQuery, ctx: _ScoringContext) -> ScoreMap:
        return {
            ordinal: 1.0
            for ordinal in ctx.snapshot.iter_numeric_range(
                query.field,
                query.lower,
                query.upper,
                include_lower=query.include_lower,
                include_upper=query.include_upper,
            )
        }

    def _boolean(self, query: BooleanQuery, ctx: _ScoringContext) -> ScoreMap | None:
        must: list[ScoreMap] = []
        should: list[ScoreMap] = []
        must_not: list[ScoreMap] = []
        for clause in query.clauses:
            result = self.evaluate(clause.query, ctx)
            if result is None:
                continue
            if clause.occur is Occur.MUST:
                must.append(result)
            elif clause.occur is Occur.MUST_NOT:
                must_not.append(result)
            else:
                should.append(result)

        if not must and not should:
            return {} if must_not else None

        if must:
            must.sort(key=len)
            candidates = set(must[0])
            for required in must[1:]:
                candidates.intersection_update(required)
        else:
            candidates = set().union(*should)
        for excluded in must_not:
            candidates.difference_update(excluded)

        return {
            ordinal: sum(required[ordinal] for required in must)
            + sum(optional.get(ordinal, 0.0) for optional in should)
            for ordinal in candidates
        }
