"""Service layer - orchestration of search, history and index persistence."""

from .unified_search import UnifiedSearchEngine


__all__ = [
    "UnifiedSearchEngine",
]
