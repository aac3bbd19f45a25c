"""Unit tests for the command line entry point."""

import json
import logging

import orjson
import pytest

from stargazer_search.cli import build_argument_parser, build_query, load_repositories, main
from stargazer_search.domain.search import SortField


@pytest.fixture(autouse=True)
def isolated_cli(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


@pytest.fixture
def stars_file(tmp_path, scenario_repositories):
    path = tmp_path / "stars.json"
    path.write_bytes(orjson.dumps(scenario_repositories))
    return path


def _run(capsys, *argv: str) -> tuple[int, object]:
    exit_code = main(list(argv))
    out = capsys.readouterr().out
    return exit_code, json.loads(out) if out.strip() else None


@pytest.mark.unit
class TestArguments:
    def test_query_options(self):
        args = build_argument_parser().parse_args(
            ["query", "stars.json", "json", "--limit", "5", "--offset", "2", "--sort-by", "stars", "--language", "rust"]
        )

        query = build_query(args)

        assert query.text == "json"
        assert query.options.limit == 5
        assert query.options.offset == 2
        assert query.options.sort_by is SortField.STARS
        assert query.options.filters.language == "rust"

    def test_match_flags(self):
        args = build_argument_parser().parse_args(["explain", "stars.json", "jsn", "--fuzzy", "--whole-word"])

        options = build_query(args).options

        assert options.fuzzy is True
        assert options.whole_word is True

    def test_no_filters_when_none_given(self):
        args = build_argument_parser().parse_args(["query", "stars.json", "json"])
        assert build_query(args).options.filters is None

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            build_argument_parser().parse_args([])

    def test_load_repositories_requires_array(self, tmp_path):
        path = tmp_path / "object.json"
        path.write_bytes(b'{"id": 1}')

        with pytest.raises(ValueError, match="JSON array"):
            load_repositories(path)


@pytest.mark.unit
class TestCommands:
    def test_query(self, capsys, stars_file):
        exit_code, payload = _run(capsys, "query", str(stars_file), "json")

        assert exit_code == 0
        assert [result["repository"]["id"] for result in payload] == [2, 1]
        assert payload[0]["metadata"]["matched_fields"] == ["name"]

    def test_query_with_fuzzy_flag(self, capsys, stars_file):
        exit_code, payload = _run(capsys, "query", str(stars_file), "jsn", "--fuzzy")

        assert exit_code == 0
        assert sorted(result["repository"]["id"] for result in payload) == [1, 2]

    def test_query_with_filter_and_sort(self, capsys, stars_file):
        exit_code, payload = _run(
            capsys, "query", str(stars_file), "", "--language", "RUST", "--sort-by", "stars", "--sort-order", "asc"
        )

        assert exit_code == 0
        assert [result["repository"]["id"] for result in payload] == [1, 3]

    def test_suggest(self, capsys, stars_file):
        exit_code, payload = _run(capsys, "suggest", str(stars_file), "js")

        assert exit_code == 0
        assert payload[0] == {"text": "json", "type": "completion", "score": 1.0, "frequency": None, "last_used": None}

    def test_explain(self, capsys, stars_file):
        exit_code, payload = _run(capsys, "explain", str(stars_file), "json AND rust")

        assert exit_code == 0
        assert payload["strategy"] == "keyword_search"
        assert payload["steps"][-1]["results"] == 1

    def test_stats(self, capsys, stars_file):
        exit_code, payload = _run(capsys, "stats", str(stars_file))

        assert exit_code == 0
        assert payload["total_results"] == 3

    def test_index_writes_snapshot(self, capsys, monkeypatch, stars_file, tmp_path):
        monkeypatch.setenv("STARGAZER_SNAPSHOT_PATH", str(tmp_path / "snapshots"))

        exit_code, payload = _run(capsys, "index", str(stars_file))

        assert exit_code == 0
        assert payload["total_results"] == 3
        snapshot = orjson.loads((tmp_path / "snapshots" / "search_index.json").read_bytes())
        assert len(snapshot["documents"]) == 3

    def test_history_persists_between_runs(self, capsys, monkeypatch, stars_file, tmp_path):
        monkeypatch.setenv("STARGAZER_HISTORY_PATH", str(tmp_path / "history"))

        _run(capsys, "query", str(stars_file), "json tools")
        exit_code, payload = _run(capsys, "suggest", str(stars_file), "js")

        assert exit_code == 0
        assert ("json tools", "history") in [(item["text"], item["type"]) for item in payload]


@pytest.mark.unit
class TestFailures:
    def test_missing_file(self, capsys, tmp_path):
        exit_code, payload = _run(capsys, "stats", str(tmp_path / "missing.json"))

        assert exit_code == 1
        assert payload is None

    def test_invalid_json(self, capsys, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("[{", encoding="utf-8")

        assert _run(capsys, "stats", str(path))[0] == 1

    def test_search_error_is_reported(self, capsys, stars_file):
        exit_code, payload = _run(capsys, "query", str(stars_file), "x" * 1001)

        assert exit_code == 1
        assert payload["error"]["code"] == "INVALID_QUERY"
        assert payload["error"]["details"]["max_length"] == 1000

    @pytest.mark.parametrize("option", ["--limit", "--offset"])
    def test_invalid_search_options(self, capsys, stars_file, option):
        exit_code = main(["query", str(stars_file), "json", option, "-1"])
        captured = capsys.readouterr()

        assert exit_code == 1
        assert captured.out == ""
        assert "Invalid search options" in captured.err
        assert "Invalid repository file" not in captured.err
