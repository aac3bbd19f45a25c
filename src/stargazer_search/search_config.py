"""Search engine configuration using Pydantic.

Four sections (indexing, search, cache, performance) with safe defaults,
named presets for common deployments, and helpers to merge overrides and
report validation problems as plain messages.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, ValidationError, model_validator


DEFAULT_FIELD_WEIGHTS: dict[str, float] = {
    "name": 2.0,
    "description": 1.5,
    "topics": 1.8,
    "owner": 1.2,
    "readme": 1.0,
}


class IndexingConfig(BaseModel):
    """Batching and sizing for index builds."""

    model_config = {"extra": "forbid"}

    batch_size: Annotated[
        int,
        Field(gt=0, description="Records processed per batch before yielding to the event loop", examples=[100]),
    ] = 100

    max_documents: Annotated[
        int,
        Field(gt=0, description="Upper bound on indexed repositories; extra records are dropped", examples=[10000]),
    ] = 10000

    field_weights: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_FIELD_WEIGHTS),
        description="Per-field boost applied to postings (unlisted fields weigh 1.0)",
    )


class QueryLimitsConfig(BaseModel):
    """Result limits and deadlines for query execution."""

    model_config = {"extra": "forbid"}

    default_limit: Annotated[int, Field(gt=0, description="Results returned when the query sets no limit")] = 20
    max_limit: Annotated[int, Field(gt=0, description="Hard cap applied to any requested limit")] = 100
    timeout_ms: Annotated[
        int,
        Field(gt=0, description="Deadline for one keyword search in milliseconds", examples=[5000]),
    ] = 5000
    fuzzy_threshold: Annotated[
        float,
        Field(ge=0.0, le=1.0, description="Minimum similarity for fuzzy corrections"),
    ] = 0.7

    @model_validator(mode="after")
    def validate_limits(self) -> QueryLimitsConfig:
        if self.max_limit < self.default_limit:
            raise ValueError("search.max_limit must be greater than or equal to search.default_limit")
        return self


class CacheConfig(BaseModel):
    model_config = {"extra": "forbid"}

    enabled: bool = True
    max_size: Annotated[int, Field(gt=0, description="Maximum cached entries")] = 1000
    ttl_ms: Annotated[int, Field(gt=0, description="Entry lifetime in milliseconds")] = 300000


class PerformanceConfig(BaseModel):
    model_config = {"extra": "forbid"}

    enable_parallel_search: bool = True
    index_update_throttle_ms: Annotated[int, Field(ge=0)] = 100
    search_throttle_ms: Annotated[int, Field(ge=0)] = 50


class SearchEngineConfig(BaseModel):
    """Complete configuration for the keyword and unified search engines."""

    model_config = {"extra": "forbid"}

    indexing: IndexingConfig = Field(default_factory=IndexingConfig)
    search: QueryLimitsConfig = Field(default_factory=QueryLimitsConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)


PresetName = Literal["default", "performance", "memory", "development"]


def _section_merge(base: Mapping[str, Any], overrides: Mapping[str, Any] | None) -> dict[str, Any]:
    """Merge overrides one section deep; a section override replaces only its own keys."""
    merged = {key: dict(value) if isinstance(value, Mapping) else value for key, value in base.items()}
    for section, values in (overrides or {}).items():
        if isinstance(values, BaseModel):
            values = values.model_dump(exclude_unset=True)
        if isinstance(values, Mapping) and isinstance(merged.get(section), dict):
            merged[section].update(values)
        else:
            merged[section] = values
    return merged


def create_search_config(
    overrides: Mapping[str, Any] | None = None,
    base: SearchEngineConfig | None = None,
) -> SearchEngineConfig:
    """Build a config from ``base`` (defaults when omitted) plus section overrides.

    Raises:
        pydantic.ValidationError: when the merged values are invalid.
    """
    base_data = (base or SearchEngineConfig()).model_dump()
    return SearchEngineConfig.model_validate(_section_merge(base_data, overrides))


def validate_search_config(config: SearchEngineConfig | Mapping[str, Any]) -> list[str]:
    """Return human-readable problems with ``config``; an empty list means valid."""
    data = config.model_dump() if isinstance(config, SearchEngineConfig) else config
    try:
        SearchEngineConfig.model_validate(data)
    except ValidationError as exc:
        return [_format_error(error) for error in exc.errors()]
    return []


def _format_error(error: Mapping[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()))
    message = str(error.get("msg", "invalid value"))
    return f"{location}: {message}" if location else message


SEARCH_PRESETS: dict[str, SearchEngineConfig] = {
    "default": SearchEngineConfig(),
    "performance": create_search_config(
        {
            "indexing": {"batch_size": 200, "max_documents": 20000},
            "search": {"default_limit": 50, "max_limit": 200, "timeout_ms": 10000},
            "cache": {"max_size": 2000, "ttl_ms": 600000},
            "performance": {
                "enable_parallel_search": True,
                "index_update_throttle_ms": 50,
                "search_throttle_ms": 25,
            },
        }
    ),
    "memory": create_search_config(
        {
            "indexing": {"batch_size": 50, "max_documents": 5000},
            "search": {"default_limit": 10, "max_limit": 50, "timeout_ms": 3000},
            "cache": {"max_size": 500, "ttl_ms": 180000},
            "performance": {
                "enable_parallel_search": False,
                "index_update_throttle_ms": 200,
                "search_throttle_ms": 100,
            },
        }
    ),
    "development": create_search_config(
        {
            "indexing": {"batch_size": 20, "max_documents": 1000},
            "search": {"default_limit": 10, "max_limit": 50, "timeout_ms": 1000},
            "cache": {"enabled": False, "max_size": 100, "ttl_ms": 60000},
            "performance": {
                "enable_parallel_search": False,
                "index_update_throttle_ms": 500,
                "search_throttle_ms": 300,
            },
        }
    ),
}


def get_preset(name: str) -> SearchEngineConfig:
    """Return a copy of a named preset so callers cannot mutate the shared one."""
    try:
        return SEARCH_PRESETS[name].model_copy(deep=True)
    except KeyError:
        raise ValueError(f"Unknown search preset '{name}'. Expected one of: {', '.join(SEARCH_PRESETS)}") from None
