"""Index data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from stargazer_search.domain.repository import RepositoryRecord
from stargazer_search.search.analyzers import Token, TokenKind


@dataclass
class DocumentPosting:
    """Occurrences of one term in one document."""

    document_id: str
    term_frequency: int = 0
    positions: list[int] = field(default_factory=list)
    field_boosts: dict[str, float] = field(default_factory=dict)

    @property
    def max_field_boost(self) -> float:
        """Strongest field boost, never below 1.0."""
        return max(1.0, max(self.field_boosts.values(), default=1.0))

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "term_frequency": self.term_frequency,
            "positions": list(self.positions),
            "field_boosts": dict(self.field_boosts),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DocumentPosting:
        return cls(
            document_id=str(data["document_id"]),
            term_frequency=int(data.get("term_frequency", 0)),
            positions=[int(p) for p in data.get("positions", [])],
            field_boosts={str(k): float(v) for k, v in data.get("field_boosts", {}).items()},
        )


@dataclass
class PostingList:
    """All postings for a term, keyed by document id.

    ``document_frequency`` is derived from the postings so it cannot drift.
    """

    term: str
    postings: dict[str, DocumentPosting] = field(default_factory=dict)

    @property
    def document_frequency(self) -> int:
        return len(self.postings)

    def get(self, document_id: str) -> DocumentPosting | None:
        return self.postings.get(document_id)

    def add(self, posting: DocumentPosting) -> None:
        self.postings[posting.document_id] = posting

    def discard(self, document_id: str) -> None:
        self.postings.pop(document_id, None)

    def __bool__(self) -> bool:
        return bool(self.postings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "term": self.term,
            "document_frequency": self.document_frequency,
            "postings": [posting.to_dict() for posting in self.postings.values()],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PostingList:
        postings = [DocumentPosting.from_dict(item) for item in data.get("postings", [])]
        return cls(term=str(data["term"]), postings={p.document_id: p for p in postings})


@dataclass
class IndexedDocument:
    id: str
    repository: RepositoryRecord
    fields: dict[str, str] = field(default_factory=dict)
    tokens: list[Token] = field(default_factory=list)
    searchable_text: str = ""
    field_lengths: dict[str, int] = field(default_factory=dict)
    term_frequencies: dict[str, int] = field(default_factory=dict)
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "repository": self.repository.model_dump(mode="json"),
            "fields": dict(self.fields),
            "tokens": [
                {
                    "text": token.text,
                    "normalized": token.normalized,
                    "position": token.position,
                    "field": token.field,
                    "kind": token.kind.value,
                }
                for token in self.tokens
            ],
            "searchable_text": self.searchable_text,
            "field_lengths": dict(self.field_lengths),
            "term_frequencies": dict(self.term_frequencies),
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexedDocument:
        return cls(
            id=str(data["id"]),
            repository=RepositoryRecord.model_validate(data["repository"]),
            fields=dict(data.get("fields", {})),
            tokens=[
                Token(
                    text=item["text"],
                    normalized=item["normalized"],
                    position=int(item["position"]),
                    field=item["field"],
                    kind=TokenKind(item["kind"]),
                )
                for item in data.get("tokens", [])
            ],
            searchable_text=data.get("searchable_text", ""),
            field_lengths={k: int(v) for k, v in data.get("field_lengths", {}).items()},
            term_frequencies={k: int(v) for k, v in data.get("term_frequencies", {}).items()},
            last_updated=datetime.fromisoformat(data["last_updated"]),
        )


@dataclass(frozen=True, slots=True)
class FieldStatistics:
    total_length: int = 0
    average_length: float = 0.0
    unique_terms: int = 0
    max_term_frequency: int = 0

    def to_dict(self) -> dict[str, float]:
        return {
            "total_length": self.total_length,
            "average_length": self.average_length,
            "unique_terms": self.unique_terms,
            "max_term_frequency": self.max_term_frequency,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldStatistics:
        return cls(
            total_length=int(data.get("total_length", 0)),
            average_length=float(data.get("average_length", 0.0)),
            unique_terms=int(data.get("unique_terms", 0)),
            max_term_frequency=int(data.get("max_term_frequency", 0)),
        )


@dataclass
class IndexMetadata:
    total_documents: int = 0
    total_terms: int = 0
    average_document_length: float = 0.0
    field_statistics: dict[str, FieldStatistics] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_documents": self.total_documents,
            "total_terms": self.total_terms,
            "average_document_length": self.average_document_length,
            "field_statistics": {name: stats.to_dict() for name, stats in self.field_statistics.items()},
            "created_at": self.created_at.isoformat(),
            "last_updated": self.last_updated.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IndexMetadata:
        return cls(
            total_documents=int(data.get("total_documents", 0)),
            total_terms=int(data.get("total_terms", 0)),
            average_document_length=float(data.get("average_document_length", 0.0)),
            field_statistics={
                name: FieldStatistics.from_dict(stats) for name, stats in data.get("field_statistics", {}).items()
            },
            created_at=datetime.fromisoformat(data["created_at"]),
            last_updated=datetime.fromisoformat(data["last_updated"]),
        )
