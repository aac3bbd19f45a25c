"""Services backing the search engines."""

from .history_service import SearchHistoryService


__all__ = [
    "SearchHistoryService",
]
