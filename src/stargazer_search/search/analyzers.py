"""Text analysis for repository metadata.

The analyzer turns raw field text into typed tokens, normalizes them onto a
shared vocabulary (language aliases and abbreviations collapse to one form),
filters stop words and applies a light suffix stemmer. The same analyzer is
used at index time and query time so that both sides agree on term keys.
"""

from __future__ import annotations

from collections import Counter, OrderedDict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from enum import Enum
import math
import re
from typing import Any

from stargazer_search.search.fuzzy import rank_fuzzy_candidates
from stargazer_search.search.synonyms import canonical_term


class TokenKind(str, Enum):
    WORD = "word"
    NUMBER = "number"
    SYMBOL = "symbol"
    WHITESPACE = "whitespace"


@dataclass(frozen=True, slots=True)
class Token:
    """A token emitted by :meth:`TextAnalyzer.tokenize`."""

    text: str
    normalized: str
    position: int
    field: str
    kind: TokenKind

    def copy_with(self, **updates: Any) -> Token:
        return replace(self, **updates)


ENGLISH_STOPWORDS = frozenset(
    [
        "a", "an", "and", "are", "as", "at", "be", "by", "for", "from",
        "has", "he", "in", "is", "it", "its", "of", "on", "that", "the",
        "to", "was", "will", "with", "this", "but", "they", "have",
        "had", "what", "said", "each", "which", "she", "do", "how", "their",
        "if", "up", "out", "many", "then", "them", "these", "so", "some",
        "her", "would", "make", "like", "into", "him", "time", "two", "more",
        "go", "no", "way", "could", "my", "than", "first", "been", "call",
        "who", "oil", "sit", "now", "find", "down", "day", "did", "get",
        "come", "made", "may", "part",
    ]
)  # fmt: skip

PROGRAMMING_STOPWORDS = frozenset(
    [
        "api", "lib", "framework", "tool", "utils", "util",
        "helper", "helpers", "common", "core", "base", "main", "index",
        "src", "source", "code", "app", "application", "project", "repo",
        "repository", "package", "module", "component", "service", "client",
    ]
)  # fmt: skip

DEFAULT_STOPWORDS = ENGLISH_STOPWORDS | PROGRAMMING_STOPWORDS

# Checked in order; the first applicable suffix wins.
_STEM_SUFFIXES: tuple[str, ...] = (
    "tion",
    "sion",
    "ness",
    "ment",
    "able",
    "ible",
    "ous",
    "ive",
    "ize",
    "ise",
    "ing",
    "ed",
    "er",
    "est",
    "ly",
    "ful",
    "less",
)

# Doubled consonants kept after stripping "ing" (call, pass, buzz).
_KEEP_DOUBLED = frozenset("lsz")
_VOWELS = frozenset("aeiou")

_TOKEN_PATTERN = re.compile(r"\b\w+\b|\d+|\S", re.ASCII)
_NUMBER_PATTERN = re.compile(r"^\d+$", re.ASCII)
_WORD_PATTERN = re.compile(r"^\w+$", re.ASCII)
_WHITESPACE_PATTERN = re.compile(r"^\s+$")
_NON_TERM_CHARS = re.compile(r"[^\w-]", re.ASCII)

DEFAULT_STEM_CACHE_SIZE = 10_000


@dataclass(frozen=True, slots=True)
class Keyword:
    term: str
    score: float


class TextAnalyzer:
    """Tokenizer, normalizer and stemmer shared by indexing and querying."""

    def __init__(
        self,
        stopwords: Iterable[str] | None = None,
        stem_cache_size: int = DEFAULT_STEM_CACHE_SIZE,
    ) -> None:
        self.stopwords = frozenset(stopwords) if stopwords is not None else DEFAULT_STOPWORDS
        self._stem_cache: OrderedDict[str, str] = OrderedDict()
        self._stem_cache_size = max(1, stem_cache_size)
        self._cache_hits = 0
        self._cache_misses = 0

    def tokenize(self, text: str, field: str = "content") -> list[Token]:
        if not text or not isinstance(text, str):
            return []

        return [
            Token(
                text=match.group(0),
                normalized=self.normalize(match.group(0)),
                position=position,
                field=field,
                kind=self._token_kind(match.group(0)),
            )
            for position, match in enumerate(_TOKEN_PATTERN.finditer(text))
        ]

    def normalize(self, token: str) -> str:
        if not token:
            return ""
        return canonical_term(_NON_TERM_CHARS.sub("", token.lower()))

    def stem(self, token: str) -> str:
        cached = self._stem_cache.get(token)
        if cached is not None:
            self._stem_cache.move_to_end(token)
            self._cache_hits += 1
            return cached

        self._cache_misses += 1
        stemmed = _stem(token)
        self._stem_cache[token] = stemmed
        if len(self._stem_cache) > self._stem_cache_size:
            self._stem_cache.popitem(last=False)
        return stemmed

    def term_key(self, token: Token) -> str:
        """Index key for a token: its normalized text, stemmed."""
        return self.stem(token.normalized)

    def remove_stop_words(self, tokens: Iterable[Token]) -> list[Token]:
        return [
            token
            for token in tokens
            if token.kind is TokenKind.WORD and len(token.normalized) > 1 and token.normalized not in self.stopwords
        ]

    def analyze(self, text: str, field: str = "content") -> list[Token]:
        """Tokenize then drop stop words and non-word tokens."""
        return self.remove_stop_words(self.tokenize(text, field))

    def extract_ngrams(self, tokens: Sequence[Token], n: int = 2) -> list[str]:
        if n <= 0 or len(tokens) < n:
            return []
        return [" ".join(token.normalized for token in tokens[i : i + n]) for i in range(len(tokens) - n + 1)]

    def calculate_similarity(self, text1: str, text2: str) -> float:
        """Jaccard similarity of the normalized token sets of both texts."""
        tokens1 = {token.normalized for token in self.tokenize(text1) if token.normalized}
        tokens2 = {token.normalized for token in self.tokenize(text2) if token.normalized}
        union = tokens1 | tokens2
        if not union:
            return 0.0
        return len(tokens1 & tokens2) / len(union)

    def generate_fuzzy_suggestions(
        self,
        word: str,
        vocabulary: Iterable[str],
        max_distance: int = 2,
        limit: int = 5,
    ) -> list[dict[str, int | str]]:
        if not word:
            return []
        return [candidate.to_dict() for candidate in rank_fuzzy_candidates(word, vocabulary, max_distance, limit)]

    def extract_keywords(self, text: str, max_keywords: int = 10) -> list[Keyword]:
        frequencies = Counter(self.term_key(token) for token in self.analyze(text))
        keywords = [Keyword(term, freq * math.log(len(term) + 1)) for term, freq in frequencies.items()]
        keywords.sort(key=lambda keyword: keyword.score, reverse=True)
        return keywords[:max_keywords]

    def clear_cache(self) -> None:
        self._stem_cache.clear()
        self._cache_hits = 0
        self._cache_misses = 0

    def cache_stats(self) -> dict[str, float]:
        lookups = self._cache_hits + self._cache_misses
        return {
            "size": len(self._stem_cache),
            "max_size": self._stem_cache_size,
            "hits": self._cache_hits,
            "misses": self._cache_misses,
            "hit_rate": self._cache_hits / lookups if lookups else 0.0,
        }

    @staticmethod
    def _token_kind(text: str) -> TokenKind:
        if _NUMBER_PATTERN.match(text):
            return TokenKind.NUMBER
        if _WORD_PATTERN.match(text):
            return TokenKind.WORD
        if _WHITESPACE_PATTERN.match(text):
            return TokenKind.WHITESPACE
        return TokenKind.SYMBOL


def _stem(token: str) -> str:
    if len(token) <= 3:
        return token

    stemmed = token
    for suffix in _STEM_SUFFIXES:
        if token.endswith(suffix) and len(token) > len(suffix) + 2:
            stemmed = token[: -len(suffix)]
            if suffix == "ing" and len(stemmed) > 3 and _ends_with_double_consonant(stemmed):
                stemmed = stemmed[:-1]
            break

    if stemmed.endswith("s") and not stemmed.endswith("ss") and len(stemmed) > 3:
        stemmed = stemmed[:-1]
    return stemmed


def _ends_with_double_consonant(word: str) -> bool:
    last = word[-1]
    return word[-2] == last and last.isalpha() and last not in _VOWELS and last not in _KEEP_DOUBLED
