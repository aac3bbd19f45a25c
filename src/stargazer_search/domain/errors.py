"""Error taxonomy shared by every search component."""

from __future__ import annotations

from enum import Enum
from typing import Any


class SearchErrorCode(str, Enum):
    """Machine-readable reason attached to every :class:`SearchError`."""

    INVALID_QUERY = "INVALID_QUERY"
    INDEX_NOT_READY = "INDEX_NOT_READY"
    SEARCH_TIMEOUT = "SEARCH_TIMEOUT"
    INVALID_SYNTAX = "INVALID_SYNTAX"
    FIELD_NOT_FOUND = "FIELD_NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class SearchError(Exception):
    """Raised by the engines for every failure surfaced to callers."""

    def __init__(
        self,
        message: str,
        code: SearchErrorCode,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def __repr__(self) -> str:
        return f"SearchError(code={self.code.value!r}, message={self.message!r})"

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code.value, "message": self.message, "details": self.details}

    @classmethod
    def internal(cls, message: str, exc: BaseException, **details: Any) -> SearchError:
        """Describe an unexpected exception as ``INTERNAL_ERROR``; chain it with ``raise ... from exc``."""
        return cls(message, SearchErrorCode.INTERNAL_ERROR, {**details, "original_error": str(exc)})
