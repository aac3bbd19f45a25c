"""Keyword search over the repository index.

Query text is parsed into clauses (see :mod:`stargazer_search.search.query`),
each scoring clause is evaluated against the inverted index into a
``document id -> partial score`` map, and the maps are joined left to right:

- ``OR`` (default) unions the candidates and sums scores
- ``AND`` keeps documents present on both sides and sums scores
- ``NOT`` drops the documents matched by the next clause

Range clauses (``stars:>100``) never score; they constrain the candidate set.
Filters from the query options are applied last, then results are sorted,
sliced and decorated with highlights, relevance factors and a confidence value.

Index mutations take the write side of an :class:`AsyncReadWriteLock`; search,
suggest and explain take the read side.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import re
import time
from typing import Any

from stargazer_search.domain.errors import SearchError, SearchErrorCode
from stargazer_search.domain.repository import RepositoryRecord
from stargazer_search.domain.search import (
    ExplanationStep,
    RelevanceFactor,
    SearchExplanation,
    SearchFilters,
    SearchMatch,
    SearchOptions,
    SearchPerformanceStats,
    SearchQuery,
    SearchResult,
    SearchResultMetadata,
    SearchSuggestion,
    SearchType,
    SortField,
)
from stargazer_search.observability.metrics import INDEX_DOC_COUNT, SEARCH_LATENCY, SEARCH_REQUESTS, track_latency
from stargazer_search.observability.tracing import create_span
from stargazer_search.search.analyzers import TextAnalyzer
from stargazer_search.search.highlight import (
    find_highlights,
    find_pattern_highlights,
    find_phrase_highlights,
    match_score,
)
from stargazer_search.search.index import ProgressCallback, RepositoryInput, SearchIndexManager
from stargazer_search.search.locking import AsyncReadWriteLock
from stargazer_search.search.models import IndexedDocument
from stargazer_search.search.query import ClauseKind, ParsedQuery, QueryClause, QueryOperator, parse_query
from stargazer_search.search_config import SearchEngineConfig


logger = logging.getLogger(__name__)

DEFAULT_RESULT_LIMIT = 50
PHRASE_MULTIPLIER = 1.5
FIELD_MATCH_MULTIPLIER = 2.0
WILDCARD_MULTIPLIER = 0.8
FUZZY_MULTIPLIER = 0.6
FUZZY_MIN_SIMILARITY = 0.1
FUZZY_SUGGESTION_LIMIT = 5
SUGGESTION_MAX_DISTANCE = 2
# Deadline checks inside vocabulary scans happen every this many terms
DEADLINE_CHECK_INTERVAL = 256

# (document field, factor name, weight, contribution, description)
_RELEVANCE_FACTORS: tuple[tuple[str, str, float, float, str], ...] = (
    ("name", "name_match", 2.0, 0.3, "Repository name matches the query"),
    ("description", "description_match", 1.5, 0.2, "Description matches the query"),
    ("topics", "topic_match", 1.8, 0.25, "Topics match the query"),
)

_RANGE_FIELDS: dict[str, Callable[[RepositoryRecord], int | None]] = {
    "stars": lambda repo: repo.stargazers_count,
    "forks": lambda repo: repo.forks_count,
    "issues": lambda repo: repo.open_issues_count,
    "created": lambda repo: repo.created_at.year if repo.created_at else None,
    "updated": lambda repo: repo.updated_at.year if repo.updated_at else None,
    "pushed": lambda repo: repo.pushed_at.year if repo.pushed_at else None,
}

_COMPARATORS: dict[str, Callable[[int, int], bool]] = {
    ">": lambda value, bound: value > bound,
    ">=": lambda value, bound: value >= bound,
    "<": lambda value, bound: value < bound,
    "<=": lambda value, bound: value <= bound,
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

ClauseScores = dict[str, float]


class _Deadline:
    """Cooperative timeout for one query execution."""

    def __init__(self, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        self._expires_at = time.perf_counter() + timeout_ms / 1000

    def check(self) -> None:
        if time.perf_counter() > self._expires_at:
            raise SearchError(
                f"Search exceeded {self.timeout_ms}ms",
                SearchErrorCode.SEARCH_TIMEOUT,
                {"timeout_ms": self.timeout_ms},
            )


@dataclass
class _Candidate:
    document: IndexedDocument
    score: float
    matches: list[SearchMatch] = field(default_factory=list)

    @property
    def repository(self) -> RepositoryRecord:
        return self.document.repository


class KeywordSearchEngine:
    """TF-IDF keyword search with field boosts, filters and highlights."""

    def __init__(
        self,
        config: SearchEngineConfig | None = None,
        analyzer: TextAnalyzer | None = None,
        index: SearchIndexManager | None = None,
    ) -> None:
        self.config = config or SearchEngineConfig()
        self.analyzer = analyzer or TextAnalyzer()
        self.index = index or SearchIndexManager(self.config.indexing, self.analyzer)
        self._lock = AsyncReadWriteLock()
        self._ready = False
        self._last_search_time_ms = 0.0

    @property
    def is_ready(self) -> bool:
        return self._ready

    # ------------------------------------------------------------------
    # Index lifecycle
    # ------------------------------------------------------------------
    async def build_index(
        self,
        records: Sequence[RepositoryInput],
        progress: ProgressCallback | None = None,
    ) -> None:
        async with self._lock.write():
            with create_span("keyword.build_index", attributes={"index.records": len(records)}):
                try:
                    await self.index.build_index(records, progress)
                except Exception as exc:
                    self._ready = False
                    self.index.clear()
                    logger.error("Failed to build search index: %s", exc, exc_info=True)
                    raise SearchError.internal("Failed to build search index", exc) from exc
            self._ready = True
            self._publish_index_size()

    async def update_index(self, record: RepositoryInput) -> None:
        async with self._lock.write():
            try:
                self.index.update_document(record)
            except Exception as exc:
                repository_id = record.id if isinstance(record, RepositoryRecord) else record.get("id")
                raise SearchError.internal("Failed to update search index", exc, repository_id=repository_id) from exc
            self._publish_index_size()

    async def remove_from_index(self, repository_id: str | int) -> None:
        async with self._lock.write():
            try:
                self.index.remove_document(str(repository_id))
            except Exception as exc:
                raise SearchError.internal(
                    "Failed to remove document from search index", exc, repository_id=str(repository_id)
                ) from exc
            self._publish_index_size()

    async def snapshot(self) -> bytes:
        async with self._lock.read():
            return self.index.serialize()

    async def load_snapshot(self, blob: bytes | str) -> bool:
        """Replace the index with a serialized snapshot; the engine is ready only if it loaded."""
        async with self._lock.write():
            loaded = self.index.deserialize(blob)
            self._ready = loaded
            self._publish_index_size()
            return loaded

    def _publish_index_size(self) -> None:
        INDEX_DOC_COUNT.labels(engine="keyword").set(len(self.index))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def parse(self, text: str, options: SearchOptions | None = None) -> ParsedQuery:
        return parse_query(text, options)

    async def search(self, query: SearchQuery) -> list[SearchResult]:
        if not self._ready:
            raise SearchError("Search index is not ready", SearchErrorCode.INDEX_NOT_READY)

        async with self._lock.read():
            started = time.perf_counter()
            status = "error"
            try:
                with (
                    create_span("keyword.search", attributes={"search.query_length": len(query.text)}) as span,
                    track_latency(SEARCH_LATENCY, engine="keyword"),
                ):
                    parsed = self.parse(query.text, query.options)
                    deadline = _Deadline(self.config.search.timeout_ms)
                    candidates = self._execute(parsed, deadline)
                    elapsed_ms = (time.perf_counter() - started) * 1000
                    results = [self._to_result(candidate, parsed, elapsed_ms) for candidate in candidates]
                    span.set_attribute("search.results", len(results))
                status = "ok"
            except SearchError as exc:
                status = exc.code.value.lower()
                raise
            except Exception as exc:
                logger.error("Keyword search failed for %r: %s", query.text, exc, exc_info=True)
                raise SearchError.internal("Search execution failed", exc, query=query.text) from exc
            finally:
                SEARCH_REQUESTS.labels(engine="keyword", status=status).inc()

        self._last_search_time_ms = elapsed_ms
        logger.debug(
            "Keyword search returned %d results in %.2fms",
            len(results),
            elapsed_ms,
            extra={"query_summary": describe_query(parsed)},
        )
        return results

    async def suggest(self, text: str, limit: int = 5) -> list[SearchSuggestion]:
        if not text or len(text) < 2:
            return []

        async with self._lock.read():
            vocabulary = self.index.get_all_terms()
            candidates = self.analyzer.generate_fuzzy_suggestions(text, vocabulary, SUGGESTION_MAX_DISTANCE, limit)

        return [
            SearchSuggestion(
                text=str(candidate["text"]),
                type="completion",
                score=self._suggestion_score(str(candidate["text"]), text),
            )
            for candidate in candidates
        ]

    async def get_stats(self) -> SearchPerformanceStats:
        stats = self.index.get_index_stats()
        return SearchPerformanceStats(
            total_results=stats.total_documents,
            search_time_ms=self._last_search_time_ms,
            index_size=stats.total_terms,
            cache_hit_rate=self.analyzer.cache_stats()["hit_rate"],
        )

    async def explain(self, query: SearchQuery) -> SearchExplanation:
        started = time.perf_counter()
        steps: list[ExplanationStep] = []

        step_started = time.perf_counter()
        parsed = self.parse(query.text, query.options)
        steps.append(
            ExplanationStep(
                step="query_parsing",
                description="Parse the query into clauses",
                time_ms=_elapsed_ms(step_started),
                details={"parsed_query": parsed.to_dict()},
            )
        )

        async with self._lock.read():
            step_started = time.perf_counter()
            term_results: dict[str, int] = {}
            for clause in parsed.clauses:
                if clause.kind is ClauseKind.TERM:
                    posting_list = self.index.get_posting_list(clause.value)
                    term_results[clause.value] = posting_list.document_frequency if posting_list else 0
            steps.append(
                ExplanationStep(
                    step="term_lookup",
                    description="Look up document frequency for each term",
                    time_ms=_elapsed_ms(step_started),
                    results=len(term_results),
                    details={"term_results": term_results},
                )
            )

            step_started = time.perf_counter()
            scores = self._candidate_scores(parsed, _Deadline(self.config.search.timeout_ms))[0]
            steps.append(
                ExplanationStep(
                    step="scoring",
                    description="Join clause scores, apply range constraints and filters",
                    time_ms=_elapsed_ms(step_started),
                    results=len(scores),
                    details={
                        "candidates": len(scores),
                        "top_scores": dict(sorted(scores.items(), key=lambda item: item[1], reverse=True)[:10]),
                    },
                )
            )

        return SearchExplanation(
            query=parsed.to_dict(),
            strategy="keyword_search",
            steps=steps,
            total_time_ms=_elapsed_ms(started),
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def _execute(self, parsed: ParsedQuery, deadline: _Deadline) -> list[_Candidate]:
        scores, partials = self._candidate_scores(parsed, deadline)

        whole_word = parsed.options.whole_word
        candidates: list[_Candidate] = []
        for document_id, score in scores.items():
            document = self.index.get_document(document_id)
            if document is None:
                continue
            matches: list[SearchMatch] = []
            for clause, partial in partials:
                if document_id in partial:
                    matches.extend(self._generate_matches(document, clause, whole_word=whole_word))
            candidates.append(_Candidate(document, score, matches))

        self._sort(candidates, parsed)
        offset = parsed.options.offset or 0
        limit = parsed.options.limit or DEFAULT_RESULT_LIMIT
        return candidates[offset : offset + limit]

    def _candidate_scores(
        self,
        parsed: ParsedQuery,
        deadline: _Deadline,
    ) -> tuple[ClauseScores, list[tuple[QueryClause, ClauseScores]]]:
        """Joined scores for documents passing range clauses and filters, plus per-clause partials."""
        partials: list[tuple[QueryClause, ClauseScores]] = []
        scoring_clauses = parsed.scoring_clauses

        if scoring_clauses:
            scores: ClauseScores | None = None
            join = QueryOperator.OR
            for clause in scoring_clauses:
                deadline.check()
                partial = self._score_clause(clause, deadline)
                partials.append((clause, partial))
                if scores is None:
                    scores = self._negate(partial) if clause.negated else dict(partial)
                else:
                    scores = _join(scores, partial, join)
                join = clause.operator
            scores = scores or {}
        else:
            scores = {document_id: 1.0 for document_id in self.index.document_ids()}

        range_clauses = parsed.range_clauses
        filtered: ClauseScores = {}
        for document_id, score in scores.items():
            document = self.index.get_document(document_id)
            if document is None:
                continue
            if not self._satisfies_ranges(document.repository, range_clauses):
                continue
            if not passes_filters(document.repository, parsed.filters):
                continue
            filtered[document_id] = score
        return filtered, partials

    def _negate(self, partial: ClauseScores) -> ClauseScores:
        return {document_id: 1.0 for document_id in self.index.document_ids() if document_id not in partial}

    def _score_clause(self, clause: QueryClause, deadline: _Deadline) -> ClauseScores:
        match clause.kind:
            case ClauseKind.TERM:
                return self._score_term(clause.value, clause.boost)
            case ClauseKind.PHRASE:
                return self._score_phrase(clause)
            case ClauseKind.FIELD:
                return self._score_field(clause)
            case ClauseKind.WILDCARD:
                return self._score_wildcard(clause, deadline)
            case ClauseKind.FUZZY:
                return self._score_fuzzy(clause, deadline)
            case ClauseKind.RANGE:
                return {}

    def _score_term(self, term: str, boost: float) -> ClauseScores:
        return self._score_posting_key(self.index.term_key(term), boost)

    def _score_posting_key(self, key: str, boost: float) -> ClauseScores:
        posting_list = self.index.lookup_term(key)
        if posting_list is None:
            return {}
        return {
            document_id: self.index.tf_idf(posting_list, document_id) * posting.max_field_boost * boost
            for document_id, posting in posting_list.postings.items()
        }

    def _score_phrase(self, clause: QueryClause) -> ClauseScores:
        keys = [self.analyzer.term_key(token) for token in self.analyzer.analyze(clause.value)]
        if not keys:
            return {}

        per_word = [self._score_posting_key(key, clause.boost) for key in keys]
        common = set(per_word[0])
        for word_scores in per_word[1:]:
            common &= word_scores.keys()

        return {
            document_id: sum(word_scores[document_id] for word_scores in per_word) * PHRASE_MULTIPLIER * clause.boost
            for document_id in common
        }

    def _score_field(self, clause: QueryClause) -> ClauseScores:
        if not clause.field:
            return {}
        posting_list = self.index.get_field_posting_list(clause.field, clause.value)
        if posting_list is None:
            return {}
        return {
            document_id: self.index.calculate_tf_idf(clause.value, document_id) * FIELD_MATCH_MULTIPLIER * clause.boost
            for document_id in posting_list.postings
        }

    def _score_wildcard(self, clause: QueryClause, deadline: _Deadline) -> ClauseScores:
        pattern = wildcard_pattern(clause.value)
        scores: ClauseScores = {}
        for position, key in enumerate(self.index.get_all_terms()):
            if position % DEADLINE_CHECK_INTERVAL == 0:
                deadline.check()
            if not pattern.fullmatch(key):
                continue
            for document_id, score in self._score_posting_key(key, clause.boost).items():
                scores[document_id] = scores.get(document_id, 0.0) + score * WILDCARD_MULTIPLIER
        return scores

    def _score_fuzzy(self, clause: QueryClause, deadline: _Deadline) -> ClauseScores:
        suggestions = self.analyzer.generate_fuzzy_suggestions(
            clause.value,
            self.index.get_all_terms(),
            clause.fuzzy_distance or 2,
            FUZZY_SUGGESTION_LIMIT,
        )
        deadline.check()

        scores: ClauseScores = {}
        for suggestion in suggestions:
            key = str(suggestion["text"])
            weight = max(FUZZY_MIN_SIMILARITY, self.analyzer.calculate_similarity(clause.value, key))
            for document_id, score in self._score_posting_key(key, clause.boost).items():
                scores[document_id] = scores.get(document_id, 0.0) + score * weight * FUZZY_MULTIPLIER
        return scores

    def _satisfies_ranges(self, repository: RepositoryRecord, range_clauses: Sequence[QueryClause]) -> bool:
        for clause in range_clauses:
            getter = _RANGE_FIELDS.get(clause.field or "")
            if getter is None:
                logger.debug("Ignoring range on unsupported field %r", clause.field)
                continue
            value = getter(repository)
            if value is None:
                return False
            comparator, bound = clause.range_bound()
            if _COMPARATORS[comparator](value, bound) == clause.negated:
                return False
        return True

    # ------------------------------------------------------------------
    # Result assembly
    # ------------------------------------------------------------------
    def _generate_matches(
        self, document: IndexedDocument, clause: QueryClause, *, whole_word: bool = False
    ) -> list[SearchMatch]:
        if clause.kind is ClauseKind.FIELD:
            text = document.fields.get(clause.field or "")
            fields = {clause.field: text} if text else {}
        else:
            fields = {name: text for name, text in document.fields.items() if name != "all"}

        pattern = wildcard_pattern(clause.value) if clause.kind is ClauseKind.WILDCARD else None
        matches: list[SearchMatch] = []
        for field_name, text in fields.items():
            if clause.kind is ClauseKind.PHRASE:
                highlights = find_phrase_highlights(text, clause.value, whole_word=whole_word)
            elif clause.kind is ClauseKind.FUZZY:
                highlights = find_highlights(
                    text,
                    clause.value,
                    fuzzy=True,
                    similarity=self.analyzer.calculate_similarity,
                    whole_word=whole_word,
                )
            elif pattern is not None:
                highlights = find_pattern_highlights(text, pattern)
            else:
                highlights = find_highlights(text, clause.value, whole_word=whole_word)

            if highlights:
                matches.append(
                    SearchMatch(
                        field=field_name,
                        value=text,
                        highlights=highlights,
                        score=match_score(clause.kind, len(highlights), clause.boost),
                    )
                )
        return matches

    def _to_result(self, candidate: _Candidate, parsed: ParsedQuery, elapsed_ms: float) -> SearchResult:
        matched_fields = list(dict.fromkeys(match.field for match in candidate.matches))
        return SearchResult(
            repository=candidate.repository,
            score=candidate.score,
            type=SearchType.KEYWORD,
            matches=candidate.matches,
            metadata=SearchResultMetadata(
                matched_fields=matched_fields,
                relevance_factors=relevance_factors(candidate.document, parsed),
                search_time_ms=elapsed_ms,
                confidence=confidence(candidate.score, len(candidate.matches)),
            ),
        )

    def _sort(self, candidates: list[_Candidate], parsed: ParsedQuery) -> None:
        options = parsed.options
        descending = options.sort_order == "desc"

        # Sorts are stable: order by name first so it breaks remaining ties
        candidates.sort(key=lambda candidate: candidate.repository.name.lower())
        match options.sort_by:
            case SortField.RELEVANCE:
                prefixes = [
                    clause.value
                    for clause in parsed.scoring_clauses
                    if clause.kind is not ClauseKind.PHRASE and not clause.negated
                ]
                candidates.sort(
                    key=lambda candidate: (candidate.score, _name_starts_with(candidate.repository, prefixes)),
                    reverse=descending,
                )
            case SortField.NAME:
                candidates.sort(key=lambda candidate: candidate.repository.name.lower(), reverse=descending)
            case SortField.STARS:
                candidates.sort(key=lambda candidate: candidate.repository.stargazers_count, reverse=descending)
            case SortField.UPDATED:
                candidates.sort(key=lambda candidate: _as_utc(candidate.repository.updated_at), reverse=descending)
            case SortField.CREATED:
                candidates.sort(key=lambda candidate: _as_utc(candidate.repository.created_at), reverse=descending)

    def _suggestion_score(self, suggestion: str, text: str) -> float:
        needle = text.lower()
        candidate = suggestion.lower()
        if candidate.startswith(needle):
            return 1.0
        if needle in candidate:
            return 0.8
        return self.analyzer.calculate_similarity(text, suggestion)


def passes_filters(repository: RepositoryRecord, filters: SearchFilters) -> bool:
    """True when ``repository`` satisfies every active filter."""
    if filters.language and (repository.language or "").lower() != filters.language.lower():
        return False
    if filters.topic and filters.topic.lower() not in {topic.lower() for topic in repository.topics}:
        return False
    if filters.min_stars is not None and repository.stargazers_count < filters.min_stars:
        return False
    if filters.max_stars is not None and repository.stargazers_count > filters.max_stars:
        return False
    if filters.show_archived is False and repository.archived:
        return False
    if filters.show_forks is False and repository.fork:
        return False

    date_range = filters.date_range
    if date_range is not None and (date_range.start is not None or date_range.end is not None):
        target = repository.created_at if date_range.field == "created" else repository.updated_at
        if target is None:
            return False
        target = _as_utc(target)
        if date_range.start is not None and target < _as_utc(date_range.start):
            return False
        if date_range.end is not None and target > _as_utc(date_range.end):
            return False
    return True


def relevance_factors(document: IndexedDocument, parsed: ParsedQuery) -> list[RelevanceFactor]:
    values = [clause.value.lower() for clause in parsed.scoring_clauses if not clause.negated]
    factors: list[RelevanceFactor] = []
    for field_name, factor, weight, contribution, description in _RELEVANCE_FACTORS:
        text = document.fields.get(field_name, "").lower()
        if text and any(value in text for value in values):
            factors.append(
                RelevanceFactor(factor=factor, weight=weight, contribution=contribution, description=description)
            )
    return factors


def confidence(score: float, match_count: int) -> float:
    base = min(score / 10, 1.0)
    bonus = min(match_count * 0.1, 0.3)
    return min(base + bonus, 1.0)


def wildcard_pattern(value: str) -> re.Pattern[str]:
    """Compile ``*`` wildcards to a case-insensitive regex; everything else is literal."""
    return re.compile(".*".join(re.escape(part) for part in value.split("*")), re.IGNORECASE)


def _join(left: ClauseScores, right: ClauseScores, operator: QueryOperator) -> ClauseScores:
    match operator:
        case QueryOperator.AND:
            return {document_id: score + right[document_id] for document_id, score in left.items() if document_id in right}
        case QueryOperator.NOT:
            return {document_id: score for document_id, score in left.items() if document_id not in right}
        case QueryOperator.OR:
            joined = dict(left)
            for document_id, score in right.items():
                joined[document_id] = joined.get(document_id, 0.0) + score
            return joined


def _name_starts_with(repository: RepositoryRecord, prefixes: Sequence[str]) -> bool:
    name = repository.name.lower()
    return any(prefix and name.startswith(prefix.lower()) for prefix in prefixes)


def _as_utc(value: datetime | None) -> datetime:
    if value is None:
        return _EPOCH
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _elapsed_ms(started: float) -> float:
    return max((time.perf_counter() - started) * 1000, 1.0)


def describe_query(parsed: ParsedQuery) -> dict[str, Any]:
    """Compact summary used in log records."""
    return {
        "clauses": len(parsed.clauses),
        "kinds": sorted({clause.kind.value for clause in parsed.clauses}),
        "filtered": not parsed.filters.is_empty(),
    }
