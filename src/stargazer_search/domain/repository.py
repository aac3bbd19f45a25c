"""Repository records as delivered by the GitHub data source.

Only the attributes the search engine reads are modelled. The GitHub payload
carries many more keys; they are ignored on validation.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class RepositoryOwner(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    login: str
    id: int | None = None
    avatar_url: str | None = None


class RepositoryRecord(BaseModel):
    """A starred repository. Immutable; updates arrive as a new record."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int
    name: str
    full_name: str = ""
    description: str | None = None
    topics: list[str] = Field(default_factory=list)
    owner: RepositoryOwner
    language: str | None = None
    stargazers_count: int = Field(default=0, ge=0)
    forks_count: int = Field(default=0, ge=0)
    open_issues_count: int = Field(default=0, ge=0)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    pushed_at: datetime | None = None
    archived: bool = False
    fork: bool = False
    html_url: str | None = None

    @property
    def document_id(self) -> str:
        return str(self.id)
