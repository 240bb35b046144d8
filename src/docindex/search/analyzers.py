"""Analyzer utilities for the indexing core.

Analyzers follow Whoosh's composable tokenizer/filter design: a tokenizer
yields positioned tokens and filters transform the stream. The analyzer used
for text fields is chosen when an index is created and persisted alongside it,
so the same pipeline runs at index time and at query time.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, MutableMapping, Sequence
from dataclasses import dataclass, field
import re
from typing import Any, Protocol


@dataclass
class Token:
    """Represents a token emitted by analyzers."""

    text: str
    position: int
    start_char: int
    end_char: int
    attributes: MutableMapping[str, Any] = field(default_factory=dict)

    def copy_with(self, **updates: Any) -> Token:
        data = {
            "text": self.text,
            "position": self.position,
            "start_char": self.start_char,
            "end_char": self.end_char,
            "attributes": dict(self.attributes),
        }
        data.update(updates)
        return Token(**data)


class Analyzer(Protocol):
    """Protocol implemented by analyzers."""

    def __call__(self, text: str) -> list[Token]:  # pragma: no cover - interface definition
        ...


class Tokenizer(Protocol):
    """Protocol implemented by tokenizers."""

    def __call__(self, text: str) -> Iterator[Token]:  # pragma: no cover - interface definition
        ...


class TokenFilter(Protocol):
    """Protocol implemented by token filters."""

    def __call__(self, tokens: Iterable[Token]) -> Iterator[Token]:  # pragma: no cover - interface definition
        ...


class RegexTokenizer:
    """Regex-based tokenizer that yields word tokens."""

    def __init__(self, pattern: str = r"[\w']+", flags: int = re.UNICODE | re.MULTILINE) -> None:
        self.pattern = re.compile(pattern, flags)

    def __call__(self, text: str) -> Iterator[Token]:
        for position, match in enumerate(self.pattern.finditer(text)):
            yield Token(
                text=match.group(0),
                position=position,
                start_char=match.start(),
                end_char=match.end(),
            )


# Han, Hiragana, Katakana, Hangul syllables and CJK compatibility ideographs
_CJK_RANGES = "\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uac00-\ud7af\uf900-\ufaff"
_CJK_PATTERN = re.compile(rf"(?P<cjk>[{_CJK_RANGES}]+)|(?P<word>(?:(?![{_CJK_RANGES}])[\w'])+)", re.UNICODE)


class CJKBigramTokenizer:
    """Tokenizer that segments CJK runs into overlapping bigrams.

    Runs of CJK characters carry no whitespace word boundaries, so each run is
    indexed as the sequence of its overlapping character pairs ("中文分詞" ->
    "中文", "文分", "分詞"). A run of a single character is emitted as-is.
    Non-CJK text is split into word tokens like ``RegexTokenizer``.
    """

    def __call__(self, text: str) -> Iterator[Token]:
        position = 0
        for match in _CJK_PATTERN.finditer(text):
            if match.group("word") is not None:
                yield Token(text=match.group(0), position=position, start_char=match.start(), end_char=match.end())
                position += 1
                continue

            run = match.group(0)
            base = match.start()
            if len(run) == 1:
                yield Token(text=run, position=position, start_char=base, end_char=base + 1)
                position += 1
                continue
            for offset in range(len(run) - 1):
                yield Token(
                    text=run[offset : offset + 2],
                    position=position,
                    start_char=base + offset,
                    end_char=base + offset + 2,
                    attributes={"cjk": True},
                )
                position += 1


class LowercaseFilter:
    """Filter that lowercases token text."""

    def __call__(self, tokens: Iterable[Token]) -> Iterator[Token]:
        for token in tokens:
            if token.text.islower():
                yield token
            else:
                yield token.copy_with(text=token.text.lower())


DEFAULT_STOPWORDS = [
    "a",
    "an",
    "and",
    "are",
    "as",
    "at",
    "be",
    "but",
    "by",
    "for",
    "if",
    "in",
    "into",
    "is",
    "it",
    "no",
    "not",
    "of",
    "on",
    "or",
    "such",
    "that",
    "the",
    "their",
    "then",
    "there",
    "these",
    "they",
    "this",
    "to",
    "was",
    "will",
    "with",
]

_SUFFIX_RULES: tuple[tuple[str, str], ...] = (
    ("ization", "ize"),
    ("ational", "ate"),
    ("fulness", "ful"),
    ("ousness", "ous"),
    ("iveness", "ive"),
    ("tional", "tion"),
    ("biliti", "ble"),
    ("entli", "ent"),
    ("izer", "ize"),
    ("ator", "ate"),
    ("alism", "al"),
    ("aliti", "al"),
    ("ousli", "ous"),
    ("ation", "ate"),
    ("ness", ""),
    ("ment", ""),
)

_SIMPLE_SUFFIXES: tuple[str, ...] = ("ingly", "edly", "ing", "ed", "ly", "es", "s")


class StopFilter:
    """Removes stopwords from the stream."""

    def __init__(self, stopwords: Sequence[str] | None = None) -> None:
        vocab = stopwords if stopwords is not None else DEFAULT_STOPWORDS
        self.stopwords = {word.lower() for word in vocab}

    def __call__(self, tokens: Iterable[Token]) -> Iterator[Token]:
        for token in tokens:
            if token.text.lower() not in self.stopwords:
                yield token


class PorterStemFilter:
    """Applies a minimal Porter-style stemming routine."""

    def __call__(self, tokens: Iterable[Token]) -> Iterator[Token]:
        for token in tokens:
            stemmed = stem(token.text)
            yield token if stemmed == token.text else token.copy_with(text=stemmed)


def stem(word: str) -> str:
    """Return a light Porter-style stem of ``word``."""
    lower = word.lower()
    for suffix, replacement in _SUFFIX_RULES:
        if lower.endswith(suffix) and len(lower) - len(suffix) >= 2:
            return lower[: -len(suffix)] + replacement
    for suffix in _SIMPLE_SUFFIXES:
        if lower.endswith(suffix) and len(lower) - len(suffix) >= 2:
            return lower[: -len(suffix)]
    return lower


class AnalyzerPipeline:
    """Composable analyzer pipeline (tokenizer + filters)."""

    def __init__(self, tokenizer: Tokenizer, filters: Sequence[TokenFilter] | None = None) -> None:
        self.tokenizer = tokenizer
        self.filters = list(filters or [])

    def __call__(self, text: str) -> list[Token]:
        """Run the chain; tokenizer positions are kept, so removed tokens leave gaps."""
        stream: Iterable[Token] = self.tokenizer(text)
        for token_filter in self.filters:
            stream = token_filter(stream)
        return list(stream)


class KeywordAnalyzer:
    """Analyzer that treats the entire input as a single token."""

    def __call__(self, text: str) -> list[Token]:
        if not text:
            return []
        return [Token(text=text, position=0, start_char=0, end_char=len(text))]


class StandardAnalyzer:
    """Default word-boundary analyzer."""

    def __init__(
        self,
        *,
        stopwords: Sequence[str] | None = None,
        apply_stemming: bool = True,
    ) -> None:
        filters: list[TokenFilter] = [LowercaseFilter(), StopFilter(stopwords)]
        if apply_stemming:
            filters.append(PorterStemFilter())
        self.pipeline = AnalyzerPipeline(RegexTokenizer(), filters)

    def __call__(self, text: str) -> list[Token]:
        return self.pipeline(text)


class CJKAnalyzer:
    """Analyzer for mixed CJK and Latin text.

    CJK runs become overlapping bigrams; everything else is lowercased and
    stopword-filtered without stemming so bigram and word tokens stay literal.
    """

    def __init__(self, *, stopwords: Sequence[str] | None = None) -> None:
        self.pipeline = AnalyzerPipeline(CJKBigramTokenizer(), [LowercaseFilter(), StopFilter(stopwords)])

    def __call__(self, text: str) -> list[Token]:
        return self.pipeline(text)


DEFAULT_ANALYZER = "standard"

_ANALYZER_FACTORIES: dict[str, Callable[[], Analyzer]] = {
    "standard": lambda: StandardAnalyzer(),
    "default": lambda: StandardAnalyzer(),
    "english": lambda: StandardAnalyzer(),
    "english-nostem": lambda: StandardAnalyzer(apply_stemming=False),
    "cjk": lambda: CJKAnalyzer(),
    "keyword": lambda: KeywordAnalyzer(),
}


def register_analyzer(name: str, factory: Callable[[], Analyzer]) -> None:
    """Register an analyzer factory under ``name`` (case-insensitive)."""
    normalized = name.strip().lower()
    if not normalized:
        raise ValueError("Analyzer name must not be empty")
    _ANALYZER_FACTORIES[normalized] = factory


def available_analyzers() -> list[str]:
    return sorted(_ANALYZER_FACTORIES)


def is_known_analyzer(name: str) -> bool:
    return name.lower() in _ANALYZER_FACTORIES


def get_analyzer(name: str | None) -> Analyzer:
    """Return analyzer by name, defaulting to the standard analyzer."""

    if name is None:
        return _ANALYZER_FACTORIES[DEFAULT_ANALYZER]()
    normalized = name.lower()
    if normalized not in _ANALYZER_FACTORIES:
        msg = f"Unknown analyzer '{name}'. Available: {available_analyzers()}"
        raise ValueError(msg)
    return _ANALYZER_FACTORIES[normalized]()
