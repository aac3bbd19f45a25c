"""Highlight spans for matched query terms.

Spans are character offsets into the original field value so the UI can
mark them without re-running any analysis. Matching is case-insensitive.
"""

from __future__ import annotations

from collections.abc import Callable
import re

from stargazer_search.domain.search import HighlightType, TextHighlight
from stargazer_search.search.query import ClauseKind


FUZZY_WORD_SIMILARITY = 0.6

# Per-highlight weight, scaled by clause kind
HIGHLIGHT_WEIGHT = 0.1
_KIND_MULTIPLIERS = {
    ClauseKind.PHRASE: 1.5,
    ClauseKind.FIELD: 1.8,
    ClauseKind.FUZZY: 0.7,
}

_WORD_PATTERN = re.compile(r"\S+")
_TERM_PATTERN = re.compile(r"\w+")
_WORD_CHAR = re.compile(r"\w")


def find_highlights(
    text: str,
    term: str,
    *,
    fuzzy: bool = False,
    similarity: Callable[[str, str], float] | None = None,
    whole_word: bool = False,
) -> list[TextHighlight]:
    """Every non-overlapping occurrence of ``term`` in ``text``.

    With ``fuzzy`` set and no exact occurrence, whitespace-separated words
    whose similarity to ``term`` exceeds 0.6 are highlighted instead. With
    ``whole_word`` set, occurrences inside a longer word are skipped.
    """
    if not text or not term:
        return []

    highlight_type: HighlightType = "fuzzy" if fuzzy else "exact"
    highlights = _occurrences(text, term, highlight_type, whole_word=whole_word)
    if highlights or not fuzzy or similarity is None:
        return highlights

    return [
        TextHighlight(start=match.start(), end=match.end(), text=match.group(0), type="fuzzy")
        for match in _WORD_PATTERN.finditer(text)
        if similarity(term, match.group(0)) > FUZZY_WORD_SIMILARITY
    ]


def find_phrase_highlights(text: str, phrase: str, *, whole_word: bool = False) -> list[TextHighlight]:
    if not text or not phrase:
        return []
    return _occurrences(text, phrase, "exact", whole_word=whole_word)


def find_pattern_highlights(text: str, pattern: re.Pattern[str]) -> list[TextHighlight]:
    """Words in ``text`` fully matched by a compiled wildcard pattern."""
    return [
        TextHighlight(start=match.start(), end=match.end(), text=match.group(0), type="exact")
        for match in _TERM_PATTERN.finditer(text)
        if pattern.fullmatch(match.group(0))
    ]


def match_score(kind: ClauseKind, highlight_count: int, boost: float = 1.0) -> float:
    return highlight_count * HIGHLIGHT_WEIGHT * _KIND_MULTIPLIERS.get(kind, 1.0) * boost


def _occurrences(
    text: str, needle: str, highlight_type: HighlightType, *, whole_word: bool = False
) -> list[TextHighlight]:
    haystack = text.lower()
    target = needle.lower()
    highlights: list[TextHighlight] = []
    index = haystack.find(target)
    while index != -1:
        end = index + len(target)
        if whole_word and not _on_word_boundaries(text, index, end):
            index = haystack.find(target, index + 1)
            continue
        highlights.append(TextHighlight(start=index, end=end, text=text[index:end], type=highlight_type))
        index = haystack.find(target, end)
    return highlights


def _on_word_boundaries(text: str, start: int, end: int) -> bool:
    before = text[start - 1] if start > 0 else ""
    after = text[end] if end < len(text) else ""
    return not _WORD_CHAR.match(before) and not _WORD_CHAR.match(after)
