"""Command line entry point: index a repository dump and query it.

Usage::

    stargazer-search query stars.json "language:rust cli" --limit 5
    stargazer-search suggest stars.json reac
    stargazer-search explain stars.json "json AND parser"
    stargazer-search stats stars.json
    stargazer-search index stars.json

Every command writes one JSON document to stdout; logs go to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
import logging
from pathlib import Path
import sys
from typing import Any

import orjson
from pydantic import BaseModel, ValidationError

from stargazer_search.adapters.key_value_store import (
    AbstractKeyValueStore,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
)
from stargazer_search.config import Settings, get_recommended_config
from stargazer_search.domain.errors import SearchError
from stargazer_search.domain.search import SearchFilters, SearchOptions, SearchQuery, SortField
from stargazer_search.observability.logging import configure_logging
from stargazer_search.observability.metrics import init_metrics
from stargazer_search.observability.tracing import init_tracing
from stargazer_search.search.analyzers import TextAnalyzer
from stargazer_search.search.keyword_engine import KeywordSearchEngine
from stargazer_search.service_layer.unified_search import UnifiedSearchEngine


logger = logging.getLogger(__name__)

COMMANDS = ("query", "suggest", "explain", "stats", "index")
QUERY_COMMANDS = ("query", "explain")


def build_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stargazer-search",
        description="Keyword search over a JSON dump of starred GitHub repositories",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    query = subparsers.add_parser("query", help="Run a search and print the results")
    _add_repositories_argument(query)
    query.add_argument("text", help="Query text, e.g. 'language:python \"web framework\"'")
    _add_query_options(query)

    suggest = subparsers.add_parser("suggest", help="Print completion and history suggestions")
    _add_repositories_argument(suggest)
    suggest.add_argument("text", help="Partial input to complete")
    suggest.add_argument("--limit", type=int, default=5, help="Maximum suggestions (capped at 20)")

    explain = subparsers.add_parser("explain", help="Show how a query is parsed and scored")
    _add_repositories_argument(explain)
    explain.add_argument("text", help="Query text to explain")
    _add_query_options(explain)

    stats = subparsers.add_parser("stats", help="Print index statistics")
    _add_repositories_argument(stats)

    index = subparsers.add_parser("index", help="Build the index and save a snapshot")
    _add_repositories_argument(index)

    return parser


def _add_repositories_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("repositories", type=Path, help="JSON file holding a list of repository objects")


def _add_query_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--limit", type=int, help="Maximum results to return")
    parser.add_argument("--offset", type=int, default=0, help="Number of results to skip")
    parser.add_argument(
        "--sort-by",
        choices=[field.value for field in SortField],
        default=SortField.RELEVANCE.value,
        help="Sort key (default: relevance)",
    )
    parser.add_argument("--sort-order", choices=["asc", "desc"], default="desc", help="Sort direction")
    parser.add_argument("--language", help="Only repositories written in this language")
    parser.add_argument("--min-stars", type=int, help="Minimum stargazer count")
    parser.add_argument("--max-stars", type=int, help="Maximum stargazer count")
    parser.add_argument("--case-sensitive", action="store_true", help="Do not case-fold query terms")
    parser.add_argument("--fuzzy", action="store_true", help="Treat every plain term as a fuzzy term")
    parser.add_argument("--whole-word", action="store_true", help="Only highlight whole-word occurrences")


def build_query(args: argparse.Namespace) -> SearchQuery:
    filters = SearchFilters(language=args.language, min_stars=args.min_stars, max_stars=args.max_stars)
    options = SearchOptions(
        limit=args.limit,
        offset=args.offset,
        sort_by=SortField(args.sort_by),
        sort_order=args.sort_order,
        case_sensitive=args.case_sensitive,
        fuzzy=args.fuzzy,
        whole_word=args.whole_word,
        filters=None if filters.is_empty() else filters,
    )
    return SearchQuery(text=args.text, options=options)


def load_repositories(path: Path) -> list[dict[str, Any]]:
    """Read a JSON array of repository objects.

    Raises:
        FileNotFoundError: when ``path`` does not exist.
        ValueError: when the file is not a JSON array.
    """
    payload = orjson.loads(path.expanduser().read_bytes())
    if not isinstance(payload, list):
        raise ValueError(f"{path} must contain a JSON array of repositories")
    return payload


def build_engine(settings: Settings) -> UnifiedSearchEngine:
    config = get_recommended_config(settings)
    analyzer = TextAnalyzer(stem_cache_size=settings.stem_cache_size)
    return UnifiedSearchEngine(
        config,
        store=_store_for(settings.history_path),
        snapshot_store=_store_for(settings.snapshot_path),
        keyword_engine=KeywordSearchEngine(config, analyzer=analyzer),
    )


def _store_for(path: Path | None) -> AbstractKeyValueStore:
    return JsonFileKeyValueStore(path.expanduser()) if path else InMemoryKeyValueStore()


async def run_command(
    args: argparse.Namespace, engine: UnifiedSearchEngine, query: SearchQuery | None = None
) -> Any:
    if query is None and args.command in QUERY_COMMANDS:
        query = build_query(args)
    repositories = load_repositories(args.repositories)
    await engine.initialize(repositories)
    try:
        match args.command:
            case "query":
                return await engine.search(query)
            case "suggest":
                return await engine.suggest(args.text, args.limit)
            case "explain":
                return await engine.explain(query)
            case "stats":
                return await engine.get_stats()
            case "index":
                await engine.save_snapshot()
                return await engine.get_stats()
            case _:
                raise ValueError(f"Unknown command: {args.command}")
    finally:
        await engine.dispose()


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_to_jsonable(item) for item in value]
    return value


def _write_json(payload: Any) -> None:
    sys.stdout.write(orjson.dumps(_to_jsonable(payload), option=orjson.OPT_INDENT_2).decode("utf-8") + "\n")


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_argument_parser()
    args = parser.parse_args(argv)

    settings = Settings()
    configure_logging(level=settings.log_level, json_output=settings.log_json)
    init_tracing()
    init_metrics()

    query = None
    if args.command in QUERY_COMMANDS:
        try:
            query = build_query(args)
        except ValidationError as exc:
            logger.error("Invalid search options: %s", exc)
            return 1

    try:
        result = asyncio.run(run_command(args, build_engine(settings), query))
    except SearchError as exc:
        logger.error("Search failed: %s", exc.message)
        _write_json({"error": exc.to_dict()})
        return 1
    except FileNotFoundError as exc:
        logger.error("Repository file not found: %s", exc)
        return 1
    except (ValueError, orjson.JSONDecodeError) as exc:
        logger.error("Invalid repository file: %s", exc)
        return 1

    _write_json(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
