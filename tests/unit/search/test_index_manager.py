"""Unit tests for the in-memory inverted index."""

import math

import orjson
import pytest

from stargazer_search.domain.repository import RepositoryRecord
from stargazer_search.search.index import SearchIndexManager, extract_searchable_fields
from stargazer_search.search_config import IndexingConfig


def _posting_snapshot(index: SearchIndexManager) -> dict:
    return {term: index.lookup_term(term).to_dict() for term in index.get_all_terms()}


@pytest.fixture
def index() -> SearchIndexManager:
    return SearchIndexManager()


@pytest.mark.unit
class TestSearchableFields:
    def test_fields_skip_empty_values_and_add_all(self, repository_factory):
        repository = RepositoryRecord.model_validate(
            repository_factory(1, "fast-json", language="rust", topics=["json", "serde"], owner="alice")
        )

        fields = extract_searchable_fields(repository)

        assert list(fields) == ["name", "topics", "owner", "language", "all"]
        assert fields["topics"] == "json serde"
        assert fields["all"] == "fast-json json serde alice rust"


@pytest.mark.unit
class TestBuildIndex:
    @pytest.mark.asyncio
    async def test_build_reports_progress_per_batch(self, repository_factory):
        index = SearchIndexManager(IndexingConfig(batch_size=2))
        records = [repository_factory(i, f"repo-{i}") for i in range(1, 6)]
        progress: list[tuple[int, int]] = []

        await index.build_index(records, lambda done, total: progress.append((done, total)))

        assert progress == [(2, 5), (4, 5), (5, 5)]
        assert len(index) == 5
        assert index.get_index_stats().total_documents == 5

    @pytest.mark.asyncio
    async def test_build_replaces_previous_contents(self, index, scenario_repositories, repository_factory):
        await index.build_index(scenario_repositories)
        await index.build_index([repository_factory(9, "solo")])

        assert index.document_ids() == ["9"]
        assert index.get_posting_list("json") is None

    def test_accepts_records_and_mappings(self, index, repository_record):
        index.add_document(repository_record)
        assert "42" in index
        assert index.get_document("42").repository == repository_record


@pytest.mark.unit
class TestPostings:
    @pytest.mark.asyncio
    async def test_field_boost_uses_max_over_fields(self, index, scenario_repositories):
        await index.build_index(scenario_repositories)

        posting = index.get_posting_list("json").get("1")

        assert posting.term_frequency == 2
        assert posting.field_boosts == {"name": 2.0, "all": 1.0}
        assert posting.max_field_boost == 2.0

    @pytest.mark.asyncio
    async def test_field_index_is_scoped(self, index, scenario_repositories):
        await index.build_index(scenario_repositories)

        language = index.get_field_posting_list("language", "rust")
        assert set(language.postings) == {"1", "3"}
        assert index.get_field_posting_list("name", "rust") is None
        assert index.get_field_posting_list("missing", "rust") is None

    @pytest.mark.asyncio
    async def test_lookups_analyze_terms(self, index, repository_factory):
        await index.build_index([repository_factory(1, "runner", description="Running JS tasks")])

        assert index.get_posting_list("RUNNING") is not None
        assert index.get_posting_list("javascript") is not None
        assert "javascript" in index.get_field_terms("description")

    @pytest.mark.asyncio
    async def test_document_frequency_matches_postings(self, index, scenario_repositories):
        await index.build_index(scenario_repositories)

        for term in index.get_all_terms():
            posting_list = index.lookup_term(term)
            assert posting_list.document_frequency == len(posting_list.postings)
            assert posting_list.document_frequency > 0


@pytest.mark.unit
class TestMutation:
    @pytest.mark.asyncio
    async def test_update_is_idempotent(self, index, scenario_repositories, repository_factory):
        await index.build_index(scenario_repositories)
        updated = repository_factory(2, "json-tools", language="go", stars=11, description="json helpers", owner="bob")

        index.update_document(updated)
        once = _posting_snapshot(index)
        index.update_document(updated)

        assert _posting_snapshot(index) == once
        assert index.get_posting_list("json").document_frequency == 2

    @pytest.mark.asyncio
    async def test_add_document_replaces_same_id(self, index, scenario_repositories, repository_factory):
        await index.build_index(scenario_repositories)

        index.add_document(repository_factory(3, "slow-yaml", language="rust", owner="carol"))

        assert len(index) == 3
        assert index.get_posting_list("xml") is None
        assert set(index.get_posting_list("yaml").postings) == {"3"}

    @pytest.mark.asyncio
    async def test_remove_decrements_document_frequency(self, index, scenario_repositories):
        await index.build_index(scenario_repositories)
        before = index.get_posting_list("json").document_frequency

        assert index.remove_document("2") is True

        assert index.get_posting_list("json").document_frequency == before - 1
        assert index.get_document("2") is None

    @pytest.mark.asyncio
    async def test_remove_drops_empty_posting_lists(self, index, scenario_repositories):
        await index.build_index(scenario_repositories)

        index.remove_document("3")

        assert "xml" not in index.get_all_terms()
        assert "xml" not in index.get_field_terms("name")
        assert "carol" not in index.get_field_terms("owner")
        assert index.get_index_stats().total_documents == 2

    def test_remove_unknown_id_is_noop(self, index):
        assert index.remove_document("404") is False

    @pytest.mark.asyncio
    async def test_stats_are_copies(self, index, scenario_repositories):
        await index.build_index(scenario_repositories)

        stats = index.get_index_stats()
        stats.field_statistics.clear()

        assert index.get_index_stats().field_statistics


@pytest.mark.unit
class TestTfIdf:
    @pytest.mark.asyncio
    async def test_formula(self, index, scenario_repositories):
        await index.build_index(scenario_repositories)

        assert index.calculate_tf_idf("json", "1") == pytest.approx((1 + math.log(2)) * math.log(3 / 2))

    @pytest.mark.asyncio
    async def test_missing_posting_scores_zero(self, index, scenario_repositories):
        await index.build_index(scenario_repositories)

        assert index.calculate_tf_idf("json", "3") == 0.0
        assert index.calculate_tf_idf("nothing", "1") == 0.0

    @pytest.mark.asyncio
    async def test_higher_term_frequency_never_scores_lower(self, index, repository_factory):
        await index.build_index(
            [
                repository_factory(1, "alpha", description="json"),
                repository_factory(2, "beta", description="json"),
                repository_factory(3, "gamma", description="yaml"),
            ]
        )
        previous = index.calculate_tf_idf("json", "1")

        for repeats in (2, 3, 5):
            index.update_document(repository_factory(1, "alpha", description=" ".join(["json"] * repeats)))
            current = index.calculate_tf_idf("json", "1")
            assert current >= previous
            previous = current


@pytest.mark.unit
class TestSnapshots:
    @pytest.mark.asyncio
    async def test_round_trip(self, index, scenario_repositories):
        await index.build_index(scenario_repositories)

        restored = SearchIndexManager()
        assert restored.deserialize(index.serialize()) is True

        assert restored.document_ids() == index.document_ids()
        assert _posting_snapshot(restored) == _posting_snapshot(index)
        assert restored.get_field_terms("language") == index.get_field_terms("language")
        assert restored.get_document("1").repository == index.get_document("1").repository
        assert restored.get_index_stats().total_terms == index.get_index_stats().total_terms

    def test_corrupt_snapshot_leaves_empty_index(self, index, repository_record):
        index.add_document(repository_record)

        assert index.deserialize(b"{not json") is False
        assert len(index) == 0
        assert index.get_all_terms() == []

    def test_missing_sections_fail_cleanly(self, index):
        assert index.deserialize(b'{"documents": []}') is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"documents": [], "inverted_index": ["x"], "field_index": {}, "metadata": {}},
            {"documents": [], "inverted_index": {}, "field_index": {}, "metadata": None},
            {"documents": [], "inverted_index": {}, "field_index": ["language"], "metadata": {}},
            {"documents": ["x"], "inverted_index": {}, "field_index": {}, "metadata": {}},
        ],
    )
    async def test_wrong_shaped_snapshot_clears_index(self, index, scenario_repositories, payload):
        await index.build_index(scenario_repositories)

        assert index.deserialize(orjson.dumps(payload)) is False
        assert len(index) == 0
        assert index.get_all_terms() == []
