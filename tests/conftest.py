"""Shared test fixtures and configuration."""

from datetime import datetime, timezone
import os

import pytest

from stargazer_search.domain.repository import RepositoryRecord


# Keep settings deterministic regardless of the developer's shell or .env
TEST_ENV = {
    "STARGAZER_ENVIRONMENT": "production",
    "STARGAZER_SEARCH_PRESET": "default",
    "STARGAZER_LOG_LEVEL": "INFO",
    "STARGAZER_LOG_JSON": "false",
}

for key, value in TEST_ENV.items():
    os.environ[key] = value


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Reset STARGAZER_* variables before each test."""
    for key in list(os.environ):
        if key.startswith("STARGAZER_") and key not in TEST_ENV:
            monkeypatch.delenv(key, raising=False)
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)


def make_repository(
    repo_id: int,
    name: str,
    *,
    language: str | None = None,
    stars: int = 0,
    description: str | None = None,
    topics: list[str] | None = None,
    owner: str = "octocat",
    **extra,
) -> dict:
    """Build a GitHub-shaped repository payload."""
    return {
        "id": repo_id,
        "name": name,
        "full_name": f"{owner}/{name}",
        "description": description,
        "topics": topics or [],
        "owner": {"login": owner, "id": repo_id * 100},
        "language": language,
        "stargazers_count": stars,
        "forks_count": extra.pop("forks", 0),
        "open_issues_count": extra.pop("issues", 0),
        "created_at": extra.pop("created_at", "2020-01-01T00:00:00Z"),
        "updated_at": extra.pop("updated_at", "2024-01-01T00:00:00Z"),
        "html_url": f"https://github.com/{owner}/{name}",
        **extra,
    }


@pytest.fixture
def repository_factory():
    return make_repository


@pytest.fixture
def scenario_repositories() -> list[dict]:
    """fast-json / json-tools / slow-xml corpus used across engine tests."""
    return [
        make_repository(1, "fast-json", language="rust", stars=500, owner="alice"),
        make_repository(2, "json-tools", language="go", stars=10, owner="bob"),
        make_repository(3, "slow-xml", language="rust", stars=5000, owner="carol"),
    ]


@pytest.fixture
def rich_repositories() -> list[dict]:
    """Repositories with descriptions, topics and flags for filter and sort tests."""
    return [
        make_repository(
            10,
            "fastapi",
            language="Python",
            stars=70000,
            description="Modern web framework for building APIs with Python",
            topics=["python", "web", "async"],
            owner="tiangolo",
            created_at="2018-12-08T00:00:00Z",
            updated_at="2024-06-01T00:00:00Z",
        ),
        make_repository(
            11,
            "ripgrep",
            language="Rust",
            stars=45000,
            description="Recursively search directories for a regex pattern",
            topics=["cli", "search", "regex"],
            owner="BurntSushi",
            created_at="2016-03-11T00:00:00Z",
            updated_at="2024-05-01T00:00:00Z",
        ),
        make_repository(
            12,
            "old-parser",
            language="JavaScript",
            stars=120,
            description="Streaming JSON parser for node",
            topics=["json", "parser"],
            owner="someone",
            archived=True,
            created_at="2012-01-01T00:00:00Z",
            updated_at="2015-01-01T00:00:00Z",
        ),
        make_repository(
            13,
            "parser-fork",
            language="JavaScript",
            stars=3,
            description="Fork of a streaming JSON parser",
            topics=["json"],
            owner="forker",
            fork=True,
            created_at="2021-01-01T00:00:00Z",
            updated_at=None,
        ),
    ]


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def repository_record() -> RepositoryRecord:
    return RepositoryRecord.model_validate(
        make_repository(42, "stargazer", language="Python", stars=7, description="Search your stars")
    )
