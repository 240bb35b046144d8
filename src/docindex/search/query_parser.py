"""Query language parser.

Grammar (tightest binding first: unary NOT/-/+/!, then AND, then OR)::

    query    := or_expr EOF
    or_expr  := and_expr ( ["OR" | "||"] and_expr )*      # adjacency means OR
    and_expr := unary ( ("AND" | "&&") unary )*
    unary    := ("NOT" | "!" | "-") unary | "+" unary | primary
    primary  := "(" or_expr ")" | FIELD ":" value | PHRASE | TERM
    value    := "(" or_expr ")" | PHRASE | TERM | RANGE
    RANGE    := ("[" | "{") bound "TO" bound ("]" | "}")

Operators are recognised in upper case only. A backslash escapes the next
character. Unescaped ``*`` and ``?`` make a term a wildcard. Field names
resolve against the schema case-insensitively; text fields accept terms,
phrases and wildcards, numeric fields accept integers and ranges.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from docindex.search.errors import QueryParseError
from docindex.search.schema import NumericField, Schema, TextField


class Occur(str, Enum):
    MUST = "must"
    SHOULD = "should"
    MUST_NOT = "must_not"


@dataclass(frozen=True)
class TermQuery:
    text: str
    field: str | None = None


@dataclass(frozen=True)
class PhraseQuery:
    text: str
    field: str | None = None


@dataclass(frozen=True)
class WildcardQuery:
    """``text`` is the user-facing term; ``pattern`` is its SQLite GLOB form."""

    text: str
    pattern: str
    field: str | None = None


@dataclass(frozen=True)
class RangeQuery:
    field: str
    lower: int | None
    upper: int | None
    include_lower: bool = True
    include_upper: bool = True


@dataclass(frozen=True)
class Clause:
    occur: Occur
    query: Query


@dataclass(frozen=True)
class BooleanQuery:
    clauses: tuple[Clause, ...]


Query = TermQuery | PhraseQuery | WildcardQuery | RangeQuery | BooleanQuery


class _Kind(str, Enum):
    TERM = "term"
    PHRASE = "phrase"
    FIELD = "field"
    RANGE = "range"
    LPAREN = "("
    RPAREN = ")"
    AND = "AND"
    OR = "OR"
    NOT = "NOT"
    PLUS = "+"
    EOF = "eof"


@dataclass(frozen=True)
class _Token:
    kind: _Kind
    position: int
    text: str = ""
    pattern: str | None = None
    wildcard: bool = False
    range_bounds: tuple[str, str, bool, bool] | None = None


_SPECIAL = set('()"')
_OPERATORS = {"AND": _Kind.AND, "OR": _Kind.OR, "NOT": _Kind.NOT, "&&": _Kind.AND, "||": _Kind.OR}
_GLOB_LITERALS = {"*": "[*]", "?": "[?]", "[": "[[]"}


class _Lexer:
    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def tokens(self) -> list[_Token]:
        out: list[_Token] = []
        while True:
            token = self._next()
            out.append(token)
            if token.kind is _Kind.EOF:
                return out

    def _next(self) -> _Token:
        text = self.text
        while self.pos < len(text) and text[self.pos].isspace():
            self.pos += 1
        if self.pos >= len(text):
            return _Token(_Kind.EOF, self.pos)

        start = self.pos
        char = text[start]
        if char == "(":
            self.pos += 1
            return _Token(_Kind.LPAREN, start)
        if char == ")":
            self.pos += 1
            return _Token(_Kind.RPAREN, start)
        if char == '"':
            return self._phrase()
        if char in "[{":
            return self._range()
        if char in "+-!" and self._prefix_operator_follows(start):
            self.pos += 1
            return _Token(_Kind.PLUS if char == "+" else _Kind.NOT, start)
        if text.startswith("&&", start) or text.startswith("||", start):
            self.pos += 2
            return _Token(_OPERATORS[text[start : start + 2]], start)
        return self._word()

    def _prefix_operator_follows(self, index: int) -> bool:
        nxt = index + 1
        return nxt < len(self.text) and not self.text[nxt].isspace() and self.text[nxt] != ")"

    def _phrase(self) -> _Token:
        start = self.pos
        self.pos += 1
        chars: list[str] = []
        while self.pos < len(self.text):
            char = self.text[self.pos]
            if char == "\\" and self.pos + 1 < len(self.text):
                chars.append(self.text[self.pos + 1])
                self.pos += 2
                continue
            if char == '"':
                self.pos += 1
                return _Token(_Kind.PHRASE, start, text="".join(chars))
            chars.append(char)
            self.pos += 1
        raise QueryParseError("Unterminated quoted phrase", position=start)

    def _range(self) -> _Token:
        start = self.pos
        include_lower = self.text[start] == "["
        end = start + 1
        while end < len(self.text) and self.text[end] not in "]}":
            end += 1
        if end >= len(self.text):
            raise QueryParseError("Unterminated range", position=start)
        include_upper = self.text[end] == "]"
        parts = self.text[start + 1 : end].split()
        self.pos = end + 1
        if len(parts) != 3 or parts[1] != "TO":
            raise QueryParseError("Range must look like [lower TO upper]", position=start)
        return _Token(_Kind.RANGE, start, range_bounds=(parts[0], parts[2], include_lower, include_upper))

    def _word(self) -> _Token:
        start = self.pos
        text_chars: list[str] = []
        glob_chars: list[str] = []
        wildcard = False
        while self.pos < len(self.text):
            char = self.text[self.pos]
            if char.isspace() or char in _SPECIAL:
                break
            if char == "\\":
                if self.pos + 1 >= len(self.text):
                    raise QueryParseError("Dangling escape character", position=self.pos)
                literal = self.text[self.pos + 1]
                text_chars.append(literal)
                glob_chars.append(_GLOB_LITERALS.get(literal, literal))
                self.pos += 2
                continue
            if char == ":" and text_chars and not wildcard:
                self.pos += 1
                return _Token(_Kind.FIELD, start, text="".join(text_chars))
            if char in "*?":
                wildcard = True
                glob_chars.append(char)
            else:
                glob_chars.append(_GLOB_LITERALS.get(char, char))
            text_chars.append(char)
            self.pos += 1

        word = "".join(text_chars)
        raw = self.text[start : self.pos]
        if raw in _OPERATORS:
            return _Token(_OPERATORS[raw], start)
        if not word:
            raise QueryParseError(f"Unexpected character {self.text[start]!r}", position=start)
        return _Token(_Kind.TERM, start, text=word, pattern="".join(glob_chars), wildcard=wildcard)


_PRIMARY_START = {_Kind.TERM, _Kind.PHRASE, _Kind.FIELD, _Kind.RANGE, _Kind.LPAREN, _Kind.NOT, _Kind.PLUS}


class QueryParser:
    """Recursive-descent parser producing a ``Query`` tree."""

    def __init__(self, schema: Schema) -> None:
        self.schema = schema
        self._tokens: list[_Token] = []
        self._index = 0

    def parse(self, query: str) -> Query | None:
        """Parse ``query``; return None for a blank query."""
        self._tokens = _Lexer(query).tokens()
        self._index = 0
        if self._peek().kind is _Kind.EOF:
            return None
        clause = self._or_expr(None)
        token = self._peek()
        if token.kind is not _Kind.EOF:
            if token.kind is _Kind.RPAREN:
                raise QueryParseError("Unbalanced closing parenthesis", position=token.position)
            raise QueryParseError(f"Unexpected token {token.kind.value!r}", position=token.position)
        return _finalize(clause)

    def _peek(self) -> _Token:
        return self._tokens[self._index]

    def _advance(self) -> _Token:
        token = self._tokens[self._index]
        self._index += 1
        return token

    def _or_expr(self, field: str | None) -> Clause:
        clauses = [self._and_expr(field)]
        while True:
            token = self._peek()
            if token.kind is _Kind.OR:
                self._advance()
                if self._peek().kind not in _PRIMARY_START:
                    raise QueryParseError("OR must be followed by a clause", position=token.position)
            elif token.kind not in _PRIMARY_START:
                break
            clauses.append(self._and_expr(field))
        if len(clauses) == 1:
            return clauses[0]
        return Clause(Occur.SHOULD, BooleanQuery(tuple(clauses)))

    def _and_expr(self, field: str | None) -> Clause:
        clauses = [self._unary(field)]
        while self._peek().kind is _Kind.AND:
            operator = self._advance()
            if self._peek().kind not in _PRIMARY_START:
                raise QueryParseError("AND must be followed by a clause", position=operator.position)
            clauses.append(self._unary(field))
        if len(clauses) == 1:
            return clauses[0]
        required = tuple(
            clause if clause.occur is Occur.MUST_NOT else Clause(Occur.MUST, clause.query) for clause in clauses
        )
        return Clause(Occur.SHOULD, BooleanQuery(required))

    def _unary(self, field: str | None) -> Clause:
        token = self._peek()
        if token.kind in (_Kind.NOT, _Kind.PLUS):
            self._advance()
            if self._peek().kind not in _PRIMARY_START:
                raise QueryParseError(f"{token.kind.value} must be followed by a clause", position=token.position)
            inner = self._unary(field)
            if token.kind is _Kind.NOT:
                return Clause(Occur.MUST_NOT, inner.query)
            return Clause(Occur.MUST, inner.query)
        return Clause(Occur.SHOULD, self._primary(field))

    def _primary(self, field: str | None) -> Query:
        token = self._advance()
        if token.kind is _Kind.LPAREN:
            return self._group(token, field)
        if token.kind is _Kind.FIELD:
            if field is not None:
                raise QueryParseError("Nested field scopes are not supported", position=token.position)
            return self._field_value(token)
        if token.kind is _Kind.PHRASE:
            return PhraseQuery(token.text, field)
        if token.kind is _Kind.TERM:
            if token.wildcard:
                return WildcardQuery(token.text, token.pattern or token.text, field)
            return TermQuery(token.text, field)
        if token.kind is _Kind.RANGE:
            raise QueryParseError("Ranges require a numeric field prefix", position=token.position)
        if token.kind is _Kind.RPAREN:
            raise QueryParseError("Unbalanced closing parenthesis", position=token.position)
        if token.kind is _Kind.EOF:
            raise QueryParseError("Unexpected end of query", position=token.position)
        raise QueryParseError(f"Unexpected operator {token.kind.value!r}", position=token.position)

    def _group(self, opener: _Token, field: str | None) -> Query:
        if self._peek().kind is _Kind.RPAREN:
            raise QueryParseError("Empty parentheses", position=opener.position)
        clause = self._or_expr(field)
        closer = self._advance()
        if closer.kind is not _Kind.RPAREN:
            raise QueryParseError("Missing closing parenthesis", position=opener.position)
        if clause.occur is Occur.SHOULD:
            return clause.query
        return BooleanQuery((clause,))

    def _field_value(self, field_token: _Token) -> Query:
        schema_field = self.schema.resolve(field_token.text)
        if schema_field is None or not schema_field.indexed or not isinstance(schema_field, (TextField, NumericField)):
            allowed = ", ".join(f.name for f in (*self.schema.searchable_fields, *self.schema.numeric_fields))
            raise QueryParseError(
                f"Unknown field '{field_token.text}'. Searchable fields: {allowed}", position=field_token.position
            )
        name = schema_field.name
        value = self._peek()
        if value.kind not in (_Kind.TERM, _Kind.PHRASE, _Kind.LPAREN, _Kind.RANGE):
            raise QueryParseError(f"Field '{name}' has no value", position=field_token.position)

        if isinstance(schema_field, NumericField):
            return self._numeric_value(name, self._advance())

        if value.kind is _Kind.RANGE:
            raise QueryParseError(f"Ranges are only supported on numeric fields, not '{name}'", position=value.position)
        return self._primary(name)

    def _numeric_value(self, name: str, token: _Token) -> Query:
        if token.kind is _Kind.TERM and not token.wildcard:
            number = _parse_bound(token.text, token.position, allow_open=False)
            return RangeQuery(name, number, number)
        if token.kind is _Kind.RANGE and token.range_bounds is not None:
            lower_raw, upper_raw, include_lower, include_upper = token.range_bounds
            lower = _parse_bound(lower_raw, token.position)
            upper = _parse_bound(upper_raw, token.position)
            return RangeQuery(name, lower, upper, include_lower, include_upper)
        raise QueryParseError(f"Numeric field '{name}' accepts only integers or ranges", position=token.position)


def _parse_bound(raw: str, position: int, *, allow_open: bool = True) -> int | None:
    if raw == "*" and allow_open:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise QueryParseError(f"Expected an integer, got {raw!r}", position=position) from exc


def _finalize(clause: Clause) -> Query:
    if clause.occur is Occur.MUST_NOT:
        # A purely negative query; evaluates to no matches
        return BooleanQuery((clause,))
    return clause.query


def parse_query(query: str, schema: Schema) -> Query | None:
    """Parse ``query`` against ``schema``; raises ``QueryParseError`` when invalid."""
    return QueryParser(schema).parse(query)


def positive_terms(query: Query | None) -> list[str]:
    """Return the texts of term, phrase and wildcard leaves not under NOT.

    These drive snippet windows and page matching; numeric ranges are skipped.
    """
    texts: list[str] = []

    def walk(node: Query) -> None:
        if isinstance(node, (TermQuery, PhraseQuery)):
            texts.append(node.text)
        elif isinstance(node, WildcardQuery):
            texts.append(node.text.replace("*", " ").replace("?", " "))
        elif isinstance(node, BooleanQuery):
            for clause in node.clauses:
                if clause.occur is not Occur.MUST_NOT:
                    walk(clause.query)

    if query is not None:
        walk(query)
    return texts
