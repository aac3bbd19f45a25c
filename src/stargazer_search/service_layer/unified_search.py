"""Unified search orchestration.

Front door used by the application: validates queries, routes them to the
engine that handles their type, records every search in the history service
and exposes index maintenance, snapshots and configuration.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
import logging
import time
from typing import Any

import orjson

from stargazer_search.adapters.key_value_store import AbstractKeyValueStore, InMemoryKeyValueStore
from stargazer_search.domain.errors import SearchError, SearchErrorCode
from stargazer_search.domain.search import (
    SearchExplanation,
    SearchHistoryItem,
    SearchPerformanceStats,
    SearchQuery,
    SearchResult,
    SearchSuggestion,
    SearchType,
)
from stargazer_search.observability.context import bind_search_context
from stargazer_search.search.index import ProgressCallback, RepositoryInput
from stargazer_search.search.keyword_engine import KeywordSearchEngine
from stargazer_search.search_config import SearchEngineConfig, create_search_config
from stargazer_search.services.history_service import SearchHistoryService, dedupe_suggestions


logger = logging.getLogger(__name__)

SEARCH_INDEX_KEY = "search_index"
MAX_QUERY_LENGTH = 1000
MAX_SUGGESTION_LIMIT = 20
KEYWORD_ROUTED_TYPES = frozenset({SearchType.KEYWORD, SearchType.HYBRID})


class UnifiedSearchEngine:
    """Coordinates the keyword engine, search history and index persistence.

    All collaborators are injectable; anything omitted is built from ``config``
    with an in-memory store. Snapshots go to ``snapshot_store`` when given,
    otherwise to ``store``.
    """

    def __init__(
        self,
        config: SearchEngineConfig | None = None,
        *,
        store: AbstractKeyValueStore | None = None,
        snapshot_store: AbstractKeyValueStore | None = None,
        keyword_engine: KeywordSearchEngine | None = None,
        history: SearchHistoryService | None = None,
    ) -> None:
        self.config = config or SearchEngineConfig()
        self.store = store or InMemoryKeyValueStore()
        self.snapshot_store = snapshot_store or self.store
        self.keyword_engine = keyword_engine or KeywordSearchEngine(self.config)
        self.history = history or SearchHistoryService(self.store)
        self._initialized = False
        self._history_tasks: set[asyncio.Task[Any]] = set()

    @property
    def is_ready(self) -> bool:
        return self._initialized and self.keyword_engine.is_ready

    async def initialize(
        self,
        records: Sequence[RepositoryInput],
        progress: ProgressCallback | None = None,
    ) -> None:
        max_documents = self.config.indexing.max_documents
        if len(records) > max_documents:
            logger.warning(
                "Repository count %d exceeds max_documents %d; indexing the first %d",
                len(records),
                max_documents,
                max_documents,
            )
            records = records[:max_documents]

        started = time.perf_counter()
        try:
            await self.keyword_engine.build_index(records, progress)
        except SearchError:
            self._initialized = False
            raise
        except Exception as exc:
            self._initialized = False
            raise SearchError.internal("Failed to initialize search engine", exc) from exc

        self._initialized = True
        logger.info(
            "Search engine initialized with %d repositories in %.1fms",
            len(records),
            (time.perf_counter() - started) * 1000,
        )

    async def search(self, query: SearchQuery) -> list[SearchResult]:
        started = time.perf_counter()
        with bind_search_context(search_type=query.type.value):
            try:
                self._require_ready()
                self._validate(query)
                query = self._apply_limits(query)
                results = await self._route(query)
            except SearchError as exc:
                self._record(query, 0, _elapsed_ms(started), error=exc.message)
                raise
            except Exception as exc:
                self._record(query, 0, _elapsed_ms(started), error=str(exc))
                raise

        self._record(query, len(results), _elapsed_ms(started))
        return results

    def _apply_limits(self, query: SearchQuery) -> SearchQuery:
        options = query.options
        limit = min(options.limit or self.config.search.default_limit, self.config.search.max_limit)
        return query.model_copy(
            update={"options": options.model_copy(update={"limit": limit, "offset": options.offset or 0})}
        )

    async def _route(self, query: SearchQuery) -> list[SearchResult]:
        if query.type in KEYWORD_ROUTED_TYPES:
            return await self.keyword_engine.search(query)
        raise SearchError(
            f"Search type '{query.type.value}' is not supported",
            SearchErrorCode.INVALID_QUERY,
            {"type": query.type.value, "supported_types": sorted(t.value for t in KEYWORD_ROUTED_TYPES)},
        )

    def _validate(self, query: SearchQuery) -> None:
        # SearchQuery already guarantees text is a str
        if len(query.text) > MAX_QUERY_LENGTH:
            raise SearchError(
                "Query text is too long",
                SearchErrorCode.INVALID_QUERY,
                {"max_length": MAX_QUERY_LENGTH, "actual_length": len(query.text)},
            )

    def _require_ready(self) -> None:
        if not self.is_ready:
            raise SearchError("Search engine is not initialized", SearchErrorCode.INDEX_NOT_READY)

    def _record(self, query: SearchQuery, result_count: int, execution_time_ms: float, error: str | None = None) -> None:
        if not query.text.strip():
            return
        task = asyncio.create_task(
            self.history.add_to_history(
                query.text,
                type=query.type,
                result_count=result_count,
                execution_time_ms=execution_time_ms,
                filters=query.options.filters,
                error=error,
            )
        )
        self._history_tasks.add(task)
        task.add_done_callback(self._on_history_done)

    def _on_history_done(self, task: asyncio.Task[Any]) -> None:
        self._history_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Failed to record search history: %s", exc)

    async def flush_history(self) -> None:
        """Wait for every scheduled history write to finish."""
        while self._history_tasks:
            await asyncio.gather(*list(self._history_tasks), return_exceptions=True)

    async def suggest(self, text: str, limit: int = 5) -> list[SearchSuggestion]:
        if not self.is_ready:
            return []
        limit = min(limit, MAX_SUGGESTION_LIMIT)

        completions = await self.keyword_engine.suggest(text, limit)
        from_history = await self.history.get_suggestions(text)
        return dedupe_suggestions([*completions, *from_history])[:limit]

    async def update_index(self, record: RepositoryInput) -> None:
        self._require_ready()
        await self.keyword_engine.update_index(record)

    async def remove_from_index(self, repository_id: str | int) -> None:
        self._require_ready()
        await self.keyword_engine.remove_from_index(repository_id)

    async def explain(self, query: SearchQuery) -> SearchExplanation:
        self._require_ready()
        self._validate(query)
        return await self.keyword_engine.explain(query)

    async def get_stats(self) -> SearchPerformanceStats:
        return await self.keyword_engine.get_stats()

    async def get_search_history(self, limit: int = 10) -> list[SearchHistoryItem]:
        return await self.history.get_recent_searches(limit)

    async def get_popular_searches(self, limit: int = 10) -> list[SearchSuggestion]:
        return await self.history.get_popular_searches(limit)

    async def clear_search_history(self) -> None:
        await self.flush_history()
        await self.history.clear_history()

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------
    async def save_snapshot(self) -> None:
        self._require_ready()
        blob = await self.keyword_engine.snapshot()
        await self.snapshot_store.set(SEARCH_INDEX_KEY, orjson.loads(blob))
        logger.info("Saved search index snapshot (%d bytes)", len(blob))

    async def load_snapshot(self) -> bool:
        """Restore the index from the store; returns False when no usable snapshot exists."""
        payload = await self.snapshot_store.get(SEARCH_INDEX_KEY)
        if payload is None:
            return False
        loaded = await self.keyword_engine.load_snapshot(orjson.dumps(payload))
        self._initialized = loaded
        if loaded:
            logger.info("Restored search index snapshot")
        return loaded

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def get_config(self) -> SearchEngineConfig:
        return self.config.model_copy(deep=True)

    def update_config(self, overrides: Mapping[str, Any]) -> SearchEngineConfig:
        """Merge section overrides into the active config.

        Field weight changes apply to documents indexed afterwards.
        """
        self.config = create_search_config(overrides, base=self.config)
        self.keyword_engine.config = self.config
        self.keyword_engine.index.config = self.config.indexing
        logger.info("Search configuration updated: %s", sorted(overrides))
        return self.get_config()

    async def dispose(self) -> None:
        await self.flush_history()
        self._initialized = False
        logger.info("Search engine disposed")


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
