"""Domain layer - value objects and errors with no infrastructure dependencies."""

from stargazer_search.domain.errors import SearchError, SearchErrorCode
from stargazer_search.domain.repository import RepositoryOwner, RepositoryRecord
from stargazer_search.domain.search import (
    DateRange,
    ExplanationStep,
    RelevanceFactor,
    SearchAnalyticsStats,
    SearchExplanation,
    SearchFilters,
    SearchHistoryItem,
    SearchMatch,
    SearchOptions,
    SearchPerformanceStats,
    SearchQuery,
    SearchResult,
    SearchResultMetadata,
    SearchSuggestion,
    SearchType,
    SortField,
    TextHighlight,
)


__all__ = [
    "DateRange",
    "ExplanationStep",
    "RelevanceFactor",
    "RepositoryOwner",
    "RepositoryRecord",
    "SearchAnalyticsStats",
    "SearchError",
    "SearchErrorCode",
    "SearchExplanation",
    "SearchFilters",
    "SearchHistoryItem",
    "SearchMatch",
    "SearchOptions",
    "SearchPerformanceStats",
    "SearchQuery",
    "SearchResult",
    "SearchResultMetadata",
    "SearchSuggestion",
    "SearchType",
    "SortField",
    "TextHighlight",
]
