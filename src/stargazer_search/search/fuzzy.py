"""Fuzzy matching for typo-tolerant suggestions.

Edit distance plus a small ranking helper used by the analyzer to turn a
partial or misspelled input into vocabulary candidates.

Ranking rules:
- Prefix matches rank first (distance 0, quality 1.0)
- Substring matches follow (distance 0, quality 0.9)
- Everything else is ranked by edit distance, bounded by max_distance
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass


def levenshtein_distance(s1: str, s2: str, max_distance: int | None = None) -> int:
    """Calculate the Levenshtein (edit) distance between two strings.

    Uses two rolling rows, with optional early termination when the
    distance is guaranteed to exceed ``max_distance``.

    Returns:
        The minimum number of single-character insertions, deletions and
        substitutions needed to turn s1 into s2. If max_distance is set and
        exceeded, returns max_distance+1.

    Examples:
        >>> levenshtein_distance("kitten", "sitting")
        3
        >>> levenshtein_distance("jsn", "json")
        1
    """
    if not s1:
        return len(s2)
    if not s2:
        return len(s1)

    if len(s1) > len(s2):
        s1, s2 = s2, s1

    m, n = len(s1), len(s2)

    if max_distance is not None and n - m > max_distance:
        return max_distance + 1

    prev_row = list(range(m + 1))
    curr_row = [0] * (m + 1)

    for j in range(1, n + 1):
        curr_row[0] = j
        row_min = j
        for i in range(1, m + 1):
            cost = 0 if s1[i - 1] == s2[j - 1] else 1
            curr_row[i] = min(
                prev_row[i] + 1,  # deletion
                curr_row[i - 1] + 1,  # insertion
                prev_row[i - 1] + cost,  # substitution
            )
            row_min = min(row_min, curr_row[i])

        if max_distance is not None and row_min > max_distance:
            return max_distance + 1

        prev_row, curr_row = curr_row, prev_row

    return prev_row[m]


@dataclass(frozen=True, slots=True)
class FuzzyCandidate:
    """A vocabulary term that is close to the user's input."""

    text: str
    distance: int
    quality: float

    def to_dict(self) -> dict[str, int | str]:
        return {"text": self.text, "distance": self.distance}


def rank_fuzzy_candidates(
    word: str,
    vocabulary: Iterable[str],
    max_distance: int = 2,
    limit: int = 5,
) -> list[FuzzyCandidate]:
    """Rank vocabulary terms against ``word``.

    Comparison is case-insensitive. Inputs shorter than two characters never
    produce candidates.
    """
    if len(word) < 2 or limit <= 0:
        return []

    needle = word.lower()
    candidates: list[FuzzyCandidate] = []
    for term in vocabulary:
        lowered = term.lower()
        if lowered.startswith(needle):
            candidates.append(FuzzyCandidate(term, 0, 1.0))
            continue
        if needle in lowered:
            candidates.append(FuzzyCandidate(term, 0, 0.9))
            continue

        distance = levenshtein_distance(needle, lowered, max_distance=max_distance)
        if distance <= max_distance:
            longest = max(len(needle), len(lowered))
            candidates.append(FuzzyCandidate(term, distance, 1 - distance / longest))

    candidates.sort(key=lambda c: (c.distance, -c.quality))
    return candidates[:limit]
