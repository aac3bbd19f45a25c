"""Canonical forms for programming-language names and common abbreviations.

Normalization replaces a whole token with its canonical form so that
``js`` and ``javascript`` land on the same index term. Partial tokens are
never rewritten.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType


LANGUAGE_ALIASES: Mapping[str, str] = MappingProxyType(
    {
        "js": "javascript",
        "ts": "typescript",
        "py": "python",
        "cpp": "c++",
        "csharp": "c#",
        "cs": "c#",
        "golang": "go",
        "nodejs": "nodejs",
        "reactjs": "reactjs",
        "vuejs": "vue",
        "angularjs": "angular",
    }
)

ABBREVIATIONS: Mapping[str, str] = MappingProxyType(
    {
        "ui": "user-interface",
        "ux": "user-experience",
        "api": "application-programming-interface",
        "cli": "command-line-interface",
        "gui": "graphical-user-interface",
        "db": "database",
        "ai": "artificial-intelligence",
        "ml": "machine-learning",
        "dl": "deep-learning",
        "nlp": "natural-language-processing",
    }
)


def canonical_term(term: str) -> str:
    """Return the canonical spelling for ``term`` (already lowercased)."""
    return LANGUAGE_ALIASES.get(term) or ABBREVIATIONS.get(term) or term
