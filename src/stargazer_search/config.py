"""Runtime configuration for stargazer-search using Pydantic Settings."""

import logging
import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from stargazer_search.search_config import SearchEngineConfig, get_preset


logger = logging.getLogger(__name__)

HIGH_PERFORMANCE_MEMORY_GB = 8.0
FALLBACK_MEMORY_GB = 4.0


class Settings(BaseSettings):
    """Environment-driven settings; every field reads ``STARGAZER_<NAME>``."""

    model_config = SettingsConfigDict(
        env_prefix="STARGAZER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_default=True,
        extra="ignore",
    )

    environment: Literal["production", "development"] = Field(
        default="production", description="Deployment environment; development selects the development preset"
    )
    search_preset: Literal["auto", "default", "performance", "memory", "development"] = Field(
        default="auto",
        description="Named search config preset; 'auto' picks one from environment and available memory",
    )
    memory_gb: float | None = Field(
        default=None, gt=0, description="Override detected system memory when choosing the auto preset"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    log_json: bool = Field(default=False, description="Emit JSON log lines instead of plain text")

    # Storage
    history_path: Path | None = Field(
        default=None, description="Directory for persisted search history; in-memory when unset"
    )
    snapshot_path: Path | None = Field(
        default=None, description="Directory for persisted index snapshots; in-memory when unset"
    )

    stem_cache_size: int = Field(default=10_000, ge=1, description="Maximum entries in the stemmer LRU cache")

    def resolved_memory_gb(self) -> float:
        if self.memory_gb is not None:
            return self.memory_gb
        return detect_memory_gb()


def detect_memory_gb() -> float:
    """Physical memory in GiB, or ``FALLBACK_MEMORY_GB`` when the platform cannot report it."""
    try:
        return os.sysconf("SC_PAGE_SIZE") * os.sysconf("SC_PHYS_PAGES") / 1024**3
    except (AttributeError, ValueError, OSError):
        return FALLBACK_MEMORY_GB


def get_recommended_config(settings: Settings | None = None) -> SearchEngineConfig:
    """Resolve the search config preset for the current environment."""
    settings = settings or Settings()
    if settings.search_preset != "auto":
        return get_preset(settings.search_preset)
    if settings.environment == "development":
        return get_preset("development")

    memory_gb = settings.resolved_memory_gb()
    preset = "performance" if memory_gb >= HIGH_PERFORMANCE_MEMORY_GB else "memory"
    logger.debug("Auto-selected %s search preset (%.1f GiB memory)", preset, memory_gb)
    return get_preset(preset)
