"""Search history and popularity tracking.

History is a newest-first list of executed queries capped at
``MAX_HISTORY_ITEMS``. Alongside it the service keeps a popular-terms table
fed by every recorded query. Both are persisted as separate keys in the
injected key/value store.

Storage problems never reach the caller: writes are logged and dropped, reads
fall back to empty defaults.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
import logging
import math
from typing import ClassVar
from uuid import uuid4

from pydantic import ValidationError

from stargazer_search.adapters.key_value_store import AbstractKeyValueStore
from stargazer_search.domain.search import (
    SearchAnalyticsStats,
    SearchFilters,
    SearchHistoryItem,
    SearchSuggestion,
    SearchType,
)
from stargazer_search.observability.metrics import HISTORY_WRITE_ERRORS


logger = logging.getLogger(__name__)

SEARCH_HISTORY_KEY = "search_history"
SEARCH_STATS_KEY = "search_stats"
MAX_HISTORY_ITEMS = 100
MAX_POPULAR_TERMS = 100
SUGGESTION_LIMIT = 10
SOURCE_SUGGESTION_LIMIT = 5
DECAY_HOURS = 168.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SearchHistoryService:
    """Records searches and derives history/popular suggestions."""

    OPERATOR_WORDS: ClassVar[frozenset[str]] = frozenset({"and", "or", "not"})

    def __init__(
        self,
        store: AbstractKeyValueStore,
        *,
        clock: Callable[[], datetime] = _utcnow,
        max_items: int = MAX_HISTORY_ITEMS,
    ) -> None:
        self.store = store
        self._clock = clock
        self.max_items = max_items
        self._write_lock = asyncio.Lock()

    async def add_to_history(
        self,
        query: str,
        *,
        type: SearchType = SearchType.KEYWORD,
        result_count: int = 0,
        execution_time_ms: float = 0.0,
        filters: SearchFilters | None = None,
        error: str | None = None,
    ) -> SearchHistoryItem | None:
        """Prepend a history entry and update term statistics.

        Returns the stored item, or None if persisting failed.
        """
        now = self._clock()
        item = SearchHistoryItem(
            id=f"search-{int(now.timestamp() * 1000)}-{uuid4().hex[:9]}",
            query=query,
            type=type,
            timestamp=now,
            result_count=result_count,
            execution_time_ms=execution_time_ms,
            filters=filters if filters is not None and not filters.is_empty() else None,
            error=error,
        )

        async with self._write_lock:
            try:
                history = await self.get_history()
                history.insert(0, item)
                await self.store.set(
                    SEARCH_HISTORY_KEY,
                    [entry.model_dump(mode="json") for entry in history[: self.max_items]],
                )
            except Exception as exc:
                logger.error("Failed to save search history: %s", exc)
                HISTORY_WRITE_ERRORS.labels(operation="add").inc()
                return None

            await self._update_search_stats(query)
        return item

    async def get_history(self) -> list[SearchHistoryItem]:
        try:
            raw = await self.store.get(SEARCH_HISTORY_KEY)
        except Exception as exc:
            logger.error("Failed to read search history: %s", exc)
            return []
        if not raw:
            return []

        history: list[SearchHistoryItem] = []
        for entry in raw:
            try:
                history.append(SearchHistoryItem.model_validate(entry))
            except ValidationError as exc:
                logger.warning("Skipping malformed history entry: %s", exc)
        return history

    async def clear_history(self) -> None:
        async with self._write_lock:
            try:
                await self.store.remove(SEARCH_HISTORY_KEY)
                await self.store.remove(SEARCH_STATS_KEY)
            except Exception as exc:
                logger.error("Failed to clear search history: %s", exc)
                HISTORY_WRITE_ERRORS.labels(operation="clear").inc()

    async def get_search_stats(self) -> SearchAnalyticsStats:
        try:
            raw = await self.store.get(SEARCH_STATS_KEY)
            return SearchAnalyticsStats.model_validate(raw) if raw else SearchAnalyticsStats()
        except Exception as exc:
            logger.error("Failed to read search stats: %s", exc)
            return SearchAnalyticsStats()

    async def get_recent_searches(self, limit: int = 10) -> list[SearchHistoryItem]:
        return (await self.get_history())[:limit]

    async def get_popular_searches(self, limit: int = 10) -> list[SearchSuggestion]:
        stats = await self.get_search_stats()
        now = self._clock()
        return [
            SearchSuggestion(text=term, type="popular", frequency=frequency, last_used=now, score=float(frequency))
            for term, frequency in _by_frequency(stats.popular_terms.items())[:limit]
        ]

    async def get_suggestions(self, text: str) -> list[SearchSuggestion]:
        if not text or len(text) < 2:
            return []

        history = await self.get_history()
        stats = await self.get_search_stats()
        suggestions = self._history_suggestions(text, history) + self._popular_suggestions(text, stats)
        return dedupe_suggestions(suggestions)[:SUGGESTION_LIMIT]

    def _history_suggestions(self, text: str, history: Iterable[SearchHistoryItem]) -> list[SearchSuggestion]:
        needle = text.lower()
        matching = [item for item in history if needle in item.query.lower() and item.query.lower() != needle]
        return [
            SearchSuggestion(
                text=item.query,
                type="history",
                frequency=self._recency_frequency(item.timestamp),
                last_used=item.timestamp,
                score=self._history_score(item, needle),
            )
            for item in matching[:SOURCE_SUGGESTION_LIMIT]
        ]

    def _popular_suggestions(self, text: str, stats: SearchAnalyticsStats) -> list[SearchSuggestion]:
        needle = text.lower()
        matching = [(term, frequency) for term, frequency in stats.popular_terms.items() if needle in term.lower()]
        now = self._clock()
        return [
            SearchSuggestion(
                text=term,
                type="popular",
                frequency=frequency,
                last_used=now,
                score=frequency * term_relevance(term, needle),
            )
            for term, frequency in _by_frequency(matching)[:SOURCE_SUGGESTION_LIMIT]
        ]

    def _hours_ago(self, timestamp: datetime) -> float:
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return max((self._clock() - timestamp).total_seconds() / 3600, 0.0)

    def _recency_frequency(self, timestamp: datetime) -> int:
        hours = self._hours_ago(timestamp)
        if hours < 24:
            return 5
        if hours < DECAY_HOURS:
            return 3
        return 1

    def _history_score(self, item: SearchHistoryItem, needle: str) -> float:
        query = item.query.lower()
        score = 0.0
        if query.startswith(needle):
            score += 10
        if needle in query:
            score += 5
        if item.result_count > 0:
            score += min(item.result_count / 10, 5)
        return score * math.exp(-self._hours_ago(item.timestamp) / DECAY_HOURS)

    async def _update_search_stats(self, query: str) -> None:
        try:
            stats = await self.get_search_stats()
            stats.total_searches += 1
            for term in self.extract_search_terms(query):
                stats.popular_terms[term] = stats.popular_terms.get(term, 0) + 1
            stats.popular_terms = dict(_by_frequency(stats.popular_terms.items())[:MAX_POPULAR_TERMS])
            await self.store.set(SEARCH_STATS_KEY, stats.model_dump(mode="json"))
        except Exception as exc:
            logger.error("Failed to update search stats: %s", exc)
            HISTORY_WRITE_ERRORS.labels(operation="stats").inc()

    @classmethod
    def extract_search_terms(cls, query: str) -> list[str]:
        return [
            term
            for term in query.lower().split()
            if len(term) > 2 and term not in cls.OPERATOR_WORDS and ":" not in term
        ]


def term_relevance(term: str, needle: str) -> float:
    lowered = term.lower()
    needle = needle.lower()
    if lowered == needle:
        return 1.0
    if lowered.startswith(needle):
        return 0.8
    if needle in lowered:
        return 0.5
    return 0.2


def dedupe_suggestions(suggestions: Iterable[SearchSuggestion]) -> list[SearchSuggestion]:
    """Keep the first suggestion per exact text, then sort by score descending."""
    unique: dict[str, SearchSuggestion] = {}
    for suggestion in suggestions:
        unique.setdefault(suggestion.text, suggestion)
    return sorted(unique.values(), key=lambda suggestion: suggestion.score, reverse=True)


def _by_frequency(items: Iterable[tuple[str, int]]) -> list[tuple[str, int]]:
    return sorted(items, key=lambda item: item[1], reverse=True)
