"""Value objects exchanged between the search engines and their callers.

Requests (queries, filters, options) and responses (results, suggestions,
history entries, explanations) are immutable pydantic models so they can be
handed to the UI layer as-is or dumped with ``model_dump(mode="json")``.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from stargazer_search.domain.repository import RepositoryRecord


class SearchType(str, Enum):
    KEYWORD = "keyword"
    SEMANTIC = "semantic"
    CONVERSATIONAL = "conversational"
    HYBRID = "hybrid"


class SortField(str, Enum):
    RELEVANCE = "relevance"
    NAME = "name"
    STARS = "stars"
    UPDATED = "updated"
    CREATED = "created"


SortOrder = Literal["asc", "desc"]
SuggestionType = Literal["history", "popular", "completion", "correction"]
HighlightType = Literal["exact", "fuzzy", "semantic"]


class DateRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: Literal["created", "updated"]
    start: datetime | None = None
    end: datetime | None = None


class SearchFilters(BaseModel):
    """Post-scoring constraints; a document failing any of them is dropped."""

    model_config = ConfigDict(frozen=True)

    language: str | None = None
    topic: str | None = None
    min_stars: int | None = Field(default=None, ge=0)
    max_stars: int | None = Field(default=None, ge=0)
    show_archived: bool | None = None
    show_forks: bool | None = None
    date_range: DateRange | None = None

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class SearchOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    limit: int | None = Field(default=None, ge=0)
    offset: int | None = Field(default=None, ge=0)
    fuzzy: bool = False
    case_sensitive: bool = False
    whole_word: bool = False
    filters: SearchFilters | None = None
    sort_by: SortField = SortField.RELEVANCE
    sort_order: SortOrder = "desc"


class SearchQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    type: SearchType = SearchType.KEYWORD
    options: SearchOptions = Field(default_factory=SearchOptions)


class TextHighlight(BaseModel):
    """Character span ``[start, end)`` inside a field value."""

    model_config = ConfigDict(frozen=True)

    start: int
    end: int
    text: str
    type: HighlightType = "exact"


class SearchMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    value: str
    highlights: list[TextHighlight] = Field(default_factory=list)
    score: float = 0.0


class RelevanceFactor(BaseModel):
    model_config = ConfigDict(frozen=True)

    factor: str
    weight: float
    contribution: float
    description: str


class SearchResultMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    matched_fields: list[str] = Field(default_factory=list)
    relevance_factors: list[RelevanceFactor] = Field(default_factory=list)
    search_time_ms: float = 0.0
    confidence: float = 0.0


class SearchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    repository: RepositoryRecord
    score: float
    type: SearchType = SearchType.KEYWORD
    matches: list[SearchMatch] = Field(default_factory=list)
    metadata: SearchResultMetadata = Field(default_factory=SearchResultMetadata)


class SearchSuggestion(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    type: SuggestionType
    score: float
    frequency: int | None = None
    last_used: datetime | None = None


class SearchHistoryItem(BaseModel):
    """A persisted record of one executed query."""

    model_config = ConfigDict(frozen=True)

    id: str
    query: str
    type: SearchType = SearchType.KEYWORD
    timestamp: datetime
    result_count: int = 0
    execution_time_ms: float = 0.0
    filters: SearchFilters | None = None
    error: str | None = None


class SearchAnalyticsStats(BaseModel):
    total_searches: int = 0
    popular_terms: dict[str, int] = Field(default_factory=dict)


class SearchPerformanceStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_results: int
    search_time_ms: float
    index_size: int
    cache_hit_rate: float | None = None


class ExplanationStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    step: str
    description: str
    time_ms: float
    results: int | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class SearchExplanation(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: dict[str, Any]
    strategy: str
    steps: list[ExplanationStep] = Field(default_factory=list)
    total_time_ms: float
