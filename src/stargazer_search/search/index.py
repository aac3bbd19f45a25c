"""In-memory inverted index over starred repositories.

The index keeps three structures in step:

- ``documents``: one :class:`IndexedDocument` per repository id
- the global inverted index: term key -> :class:`PostingList`
- the field index: field -> term key -> :class:`PostingList`, used only by
  ``field:value`` query clauses

Term keys are ``stem(normalize(token))`` and are produced by the shared
:class:`TextAnalyzer`, so lookups must go through :meth:`get_posting_list`
(which analyzes its input) or :meth:`lookup_term` (which takes a key as-is).

Mutation methods are synchronous and not safe to interleave with reads; the
keyword engine serializes access with a readers/writer lock.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime, timezone
import logging
import math
import time
from typing import Any

import orjson

from stargazer_search.domain.repository import RepositoryRecord
from stargazer_search.search.analyzers import TextAnalyzer, Token
from stargazer_search.search.models import (
    DocumentPosting,
    FieldStatistics,
    IndexedDocument,
    IndexMetadata,
    PostingList,
)
from stargazer_search.search_config import IndexingConfig


logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
PROGRESS_LOG_EVERY_BATCHES = 5

ProgressCallback = Callable[[int, int], None]
RepositoryInput = RepositoryRecord | Mapping[str, Any]


def coerce_repository(record: RepositoryInput) -> RepositoryRecord:
    if isinstance(record, RepositoryRecord):
        return record
    return RepositoryRecord.model_validate(record)


def extract_searchable_fields(repository: RepositoryRecord) -> dict[str, str]:
    """Ordered field -> text mapping; absent or empty values are skipped."""
    topics = " ".join(repository.topics) if repository.topics else ""
    values = {
        "name": repository.name,
        "description": repository.description or "",
        "topics": topics,
        "owner": repository.owner.login if repository.owner else "",
        "language": repository.language or "",
    }
    fields = {name: text for name, text in values.items() if text}
    fields["all"] = " ".join(fields.values())
    return fields


class SearchIndexManager:
    """Owns the index structures and their statistics."""

    def __init__(
        self,
        config: IndexingConfig | None = None,
        analyzer: TextAnalyzer | None = None,
    ) -> None:
        self.config = config or IndexingConfig()
        self.analyzer = analyzer or TextAnalyzer()
        self._documents: dict[str, IndexedDocument] = {}
        self._inverted: dict[str, PostingList] = {}
        self._field_index: dict[str, dict[str, PostingList]] = {}
        self._metadata = IndexMetadata()

    @property
    def field_weights(self) -> Mapping[str, float]:
        return self.config.field_weights

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._documents

    # ------------------------------------------------------------------
    # Building and mutation
    # ------------------------------------------------------------------
    async def build_index(
        self,
        records: Sequence[RepositoryInput],
        progress: ProgressCallback | None = None,
    ) -> None:
        """Replace the whole index with ``records``, batch by batch."""
        started = time.perf_counter()
        self.clear()

        total = len(records)
        batch_size = self.config.batch_size
        for batch_number, start in enumerate(range(0, total, batch_size)):
            batch = records[start : start + batch_size]
            for record in batch:
                self._add(coerce_repository(record))

            done = start + len(batch)
            if progress is not None:
                progress(done, total)
            if batch_number % PROGRESS_LOG_EVERY_BATCHES == 0:
                logger.info("Indexing progress: %d/%d", done, total)
            await asyncio.sleep(0)

        self._refresh_metadata()
        logger.info(
            "Index built: %d documents, %d terms in %.1fms",
            self._metadata.total_documents,
            self._metadata.total_terms,
            (time.perf_counter() - started) * 1000,
        )

    def add_document(self, record: RepositoryInput) -> IndexedDocument:
        """Index ``record``, replacing any document with the same id."""
        repository = coerce_repository(record)
        if repository.document_id in self._documents:
            self._remove(repository.document_id)
        document = self._add(repository)
        self._refresh_metadata()
        return document

    def update_document(self, record: RepositoryInput) -> IndexedDocument:
        repository = coerce_repository(record)
        self._remove(repository.document_id)
        document = self._add(repository)
        self._refresh_metadata()
        return document

    def remove_document(self, document_id: str) -> bool:
        """Remove a document. Returns False when the id is unknown."""
        removed = self._remove(str(document_id))
        if removed:
            self._refresh_metadata()
        return removed

    def clear(self) -> None:
        self._documents.clear()
        self._inverted.clear()
        self._field_index.clear()
        self._metadata = IndexMetadata()

    def _add(self, repository: RepositoryRecord) -> IndexedDocument:
        document_id = repository.document_id
        fields = extract_searchable_fields(repository)

        all_tokens: list[Token] = []
        field_lengths: dict[str, int] = {}
        term_frequencies: dict[str, int] = defaultdict(int)
        for field_name, text in fields.items():
            field_tokens = self.analyzer.analyze(text, field_name)
            all_tokens.extend(field_tokens)
            field_lengths[field_name] = len(field_tokens)
            for token in field_tokens:
                term_frequencies[self.analyzer.term_key(token)] += 1

        document = IndexedDocument(
            id=document_id,
            repository=repository,
            fields=fields,
            tokens=all_tokens,
            searchable_text=" ".join(fields.values()),
            field_lengths=field_lengths,
            term_frequencies=dict(term_frequencies),
            last_updated=datetime.now(timezone.utc),
        )
        self._documents[document_id] = document
        self._index_terms(document_id, all_tokens)
        return document

    def _index_terms(self, document_id: str, tokens: Iterable[Token]) -> None:
        global_postings: dict[str, DocumentPosting] = {}
        field_postings: dict[tuple[str, str], DocumentPosting] = {}

        for token in tokens:
            key = self.analyzer.term_key(token)
            weight = self.field_weights.get(token.field, 1.0)

            posting = global_postings.get(key)
            if posting is None:
                posting = global_postings[key] = DocumentPosting(document_id)
            posting.term_frequency += 1
            posting.positions.append(token.position)
            posting.field_boosts[token.field] = posting.field_boosts.get(token.field, 0.0) + weight

            field_posting = field_postings.get((token.field, key))
            if field_posting is None:
                field_posting = field_postings[(token.field, key)] = DocumentPosting(document_id)
            field_posting.term_frequency += 1
            field_posting.positions.append(token.position)

        for key, posting in global_postings.items():
            self._inverted.setdefault(key, PostingList(key)).add(posting)
        for (field_name, key), posting in field_postings.items():
            self._field_index.setdefault(field_name, {}).setdefault(key, PostingList(key)).add(posting)

    def _remove(self, document_id: str) -> bool:
        document = self._documents.pop(document_id, None)
        if document is None:
            return False

        for key in document.term_frequencies:
            _discard_posting(self._inverted, key, document_id)

        for token in document.tokens:
            field_terms = self._field_index.get(token.field)
            if field_terms is None:
                continue
            _discard_posting(field_terms, self.analyzer.term_key(token), document_id)
            if not field_terms:
                del self._field_index[token.field]
        return True

    def _refresh_metadata(self) -> None:
        total_documents = len(self._documents)
        total_tokens = sum(len(document.tokens) for document in self._documents.values())

        field_statistics: dict[str, FieldStatistics] = {}
        for field_name, terms in self._field_index.items():
            total_length = 0
            max_term_frequency = 0
            for posting_list in terms.values():
                for posting in posting_list.postings.values():
                    total_length += posting.term_frequency
                    max_term_frequency = max(max_term_frequency, posting.term_frequency)
            field_statistics[field_name] = FieldStatistics(
                total_length=total_length,
                average_length=total_length / max(1, len(terms)),
                unique_terms=len(terms),
                max_term_frequency=max_term_frequency,
            )

        self._metadata = IndexMetadata(
            total_documents=total_documents,
            total_terms=len(self._inverted),
            average_document_length=total_tokens / total_documents if total_documents else 0.0,
            field_statistics=field_statistics,
            created_at=self._metadata.created_at,
            last_updated=datetime.now(timezone.utc),
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def term_key(self, term: str) -> str:
        """Analyze a raw query term into the key used by the index."""
        return self.analyzer.stem(self.analyzer.normalize(term.lower()))

    def get_posting_list(self, term: str) -> PostingList | None:
        return self._inverted.get(self.term_key(term))

    def get_field_posting_list(self, field_name: str, term: str) -> PostingList | None:
        terms = self._field_index.get(field_name)
        if terms is None:
            return None
        return terms.get(self.term_key(term))

    def lookup_term(self, key: str) -> PostingList | None:
        """Posting list for an index key taken from the vocabulary (no analysis)."""
        return self._inverted.get(key)

    def get_document(self, document_id: str) -> IndexedDocument | None:
        return self._documents.get(str(document_id))

    def documents(self) -> list[IndexedDocument]:
        return list(self._documents.values())

    def document_ids(self) -> list[str]:
        return list(self._documents)

    def get_all_terms(self) -> list[str]:
        return list(self._inverted)

    def get_field_terms(self, field_name: str) -> list[str]:
        return list(self._field_index.get(field_name, {}))

    def get_fields(self) -> list[str]:
        return list(self._field_index)

    def calculate_tf_idf(self, term: str, document_id: str) -> float:
        """``(1 + ln tf) * ln(N / df)`` for an analyzed query term."""
        return self.tf_idf(self.get_posting_list(term), document_id)

    def tf_idf(self, posting_list: PostingList | None, document_id: str) -> float:
        if posting_list is None:
            return 0.0
        posting = posting_list.get(document_id)
        if posting is None or posting.term_frequency <= 0:
            return 0.0
        total_documents = len(self._documents)
        return (1 + math.log(posting.term_frequency)) * math.log(total_documents / posting_list.document_frequency)

    def get_index_stats(self) -> IndexMetadata:
        """Copy of the current metadata."""
        return IndexMetadata(
            total_documents=self._metadata.total_documents,
            total_terms=self._metadata.total_terms,
            average_document_length=self._metadata.average_document_length,
            field_statistics=dict(self._metadata.field_statistics),
            created_at=self._metadata.created_at,
            last_updated=self._metadata.last_updated,
        )

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------
    def serialize(self) -> bytes:
        payload = {
            "version": SNAPSHOT_VERSION,
            "documents": [document.to_dict() for document in self._documents.values()],
            "inverted_index": [posting_list.to_dict() for posting_list in self._inverted.values()],
            "field_index": {
                field_name: [posting_list.to_dict() for posting_list in terms.values()]
                for field_name, terms in self._field_index.items()
            },
            "metadata": self._metadata.to_dict(),
        }
        return orjson.dumps(payload)

    def deserialize(self, blob: bytes | str) -> bool:
        """Load a snapshot. On any failure the index is left empty and False is returned."""
        try:
            payload = orjson.loads(blob)
            documents = {
                document.id: document
                for document in (IndexedDocument.from_dict(item) for item in payload["documents"])
            }
            inverted = _load_posting_lists(payload["inverted_index"], documents)
            field_index = {
                field_name: terms
                for field_name, terms in (
                    (name, _load_posting_lists(items, documents)) for name, items in payload["field_index"].items()
                )
                if terms
            }
            metadata = IndexMetadata.from_dict(payload["metadata"])
        except Exception as exc:
            logger.error("Failed to deserialize search index snapshot: %s", exc)
            self.clear()
            return False

        self._documents = documents
        self._inverted = inverted
        self._field_index = field_index
        self._metadata = metadata
        self._refresh_metadata()
        return True


def _discard_posting(index: dict[str, PostingList], key: str, document_id: str) -> None:
    posting_list = index.get(key)
    if posting_list is None:
        return
    posting_list.discard(document_id)
    if not posting_list:
        del index[key]


def _load_posting_lists(items: Iterable[dict[str, Any]], documents: Mapping[str, IndexedDocument]) -> dict[str, PostingList]:
    loaded: dict[str, PostingList] = {}
    for item in items:
        posting_list = PostingList.from_dict(item)
        for document_id in [doc_id for doc_id in posting_list.postings if doc_id not in documents]:
            posting_list.discard(document_id)
        if posting_list:
            loaded[posting_list.term] = posting_list
    return loaded
