"""Query language parsing.

Supported syntax::

    json                 term
    "json parser"        phrase (quotes may be left unterminated)
    language:rust        field-scoped term
    stars:>=100          numeric range (also forks, issues, created, updated, pushed)
    pars*                wildcard over the index vocabulary
    jsn~1                fuzzy term with an explicit edit distance (default 2)
    a AND b / a OR b / a NOT b

An operator word attaches to the clause before it and decides how the next
clause joins the results accumulated so far. A leading ``NOT`` negates the
first clause, so ``NOT archived json`` starts from every document without a
match for ``archived``.

With the ``fuzzy`` search option set, bare terms parse as fuzzy terms.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
import re
from typing import Any

from stargazer_search.domain.search import SearchFilters, SearchOptions


DEFAULT_FUZZY_DISTANCE = 2

_RANGE_VALUE = re.compile(r"^[><]=?\d+$")
_RANGE_PARTS = re.compile(r"^(?P<op>[><]=?)(?P<bound>\d+)$")


class ClauseKind(str, Enum):
    TERM = "term"
    PHRASE = "phrase"
    FIELD = "field"
    RANGE = "range"
    WILDCARD = "wildcard"
    FUZZY = "fuzzy"


class QueryOperator(str, Enum):
    AND = "AND"
    OR = "OR"
    NOT = "NOT"


@dataclass(slots=True)
class QueryClause:
    kind: ClauseKind
    value: str
    field: str | None = None
    operator: QueryOperator = QueryOperator.OR
    boost: float = 1.0
    fuzzy_distance: int | None = None
    negated: bool = False

    @property
    def is_constraint(self) -> bool:
        """Range clauses restrict candidates instead of scoring them."""
        return self.kind is ClauseKind.RANGE

    def range_bound(self) -> tuple[str, int]:
        """Split a range value such as ``>=100`` into ``(">=", 100)``."""
        match = _RANGE_PARTS.match(self.value)
        if match is None:
            raise ValueError(f"Not a range value: {self.value!r}")
        return match.group("op"), int(match.group("bound"))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.kind.value,
            "value": self.value,
            "operator": self.operator.value,
            "boost": self.boost,
        }
        if self.field is not None:
            data["field"] = self.field
        if self.fuzzy_distance is not None:
            data["fuzzy_distance"] = self.fuzzy_distance
        if self.negated:
            data["negated"] = True
        return data


@dataclass(slots=True)
class ParsedQuery:
    original_text: str
    clauses: list[QueryClause] = field(default_factory=list)
    filters: SearchFilters = field(default_factory=SearchFilters)
    options: SearchOptions = field(default_factory=SearchOptions)

    @property
    def scoring_clauses(self) -> list[QueryClause]:
        return [clause for clause in self.clauses if not clause.is_constraint]

    @property
    def range_clauses(self) -> list[QueryClause]:
        return [clause for clause in self.clauses if clause.is_constraint]

    def to_dict(self) -> dict[str, Any]:
        return {
            "original_query": self.original_text,
            "clauses": [clause.to_dict() for clause in self.clauses],
            "filters": self.filters.model_dump(mode="json", exclude_none=True),
            "options": self.options.model_dump(mode="json", exclude_none=True, exclude={"filters"}),
        }


def tokenize_query(text: str) -> list[str]:
    """Split on spaces outside double quotes; quoted spans keep their quotes."""
    tokens: list[str] = []
    current: list[str] = []
    in_quotes = False

    for char in text:
        if char == '"':
            if in_quotes:
                tokens.append('"' + "".join(current) + '"')
                current = []
                in_quotes = False
            else:
                if current:
                    tokens.append("".join(current))
                    current = []
                in_quotes = True
        elif char.isspace() and not in_quotes:
            if current:
                tokens.append("".join(current))
                current = []
        else:
            current.append(char)

    if current:
        tokens.append('"' + "".join(current) + '"' if in_quotes else "".join(current))
    return tokens


def parse_query(text: str, options: SearchOptions | None = None) -> ParsedQuery:
    options = options or SearchOptions()
    fold = _identity if options.case_sensitive else str.lower
    clauses: list[QueryClause] = []
    negate_next = False

    for token in tokenize_query(text):
        if token in ("AND", "OR", "NOT"):
            if clauses:
                clauses[-1].operator = QueryOperator(token)
            elif token == "NOT":
                negate_next = True
            continue

        clause = _parse_clause(token, fold, fuzzy=options.fuzzy)
        if clause is not None:
            clause.negated = negate_next
            negate_next = False
            clauses.append(clause)

    return ParsedQuery(
        original_text=text,
        clauses=clauses,
        filters=options.filters or SearchFilters(),
        options=options,
    )


def _parse_clause(token: str, fold: Callable[[str], str], *, fuzzy: bool) -> QueryClause | None:
    if len(token) >= 2 and token.startswith('"') and token.endswith('"'):
        phrase = token[1:-1].strip()
        return QueryClause(ClauseKind.PHRASE, fold(phrase)) if phrase else None
    if ":" in token:
        field_name, _, value = token.partition(":")
        if _RANGE_VALUE.match(value):
            return QueryClause(ClauseKind.RANGE, value, field=field_name.lower())
        if field_name and value:
            return QueryClause(ClauseKind.FIELD, fold(value), field=field_name.lower())
        return None
    if "*" in token:
        return QueryClause(ClauseKind.WILDCARD, fold(token))
    if "~" in token:
        value, _, distance = token.partition("~")
        if not value:
            return None
        return QueryClause(ClauseKind.FUZZY, fold(value), fuzzy_distance=_parse_distance(distance))
    if fuzzy:
        return QueryClause(ClauseKind.FUZZY, fold(token), fuzzy_distance=DEFAULT_FUZZY_DISTANCE)
    return QueryClause(ClauseKind.TERM, fold(token))


def _identity(value: str) -> str:
    return value


def _parse_distance(raw: str) -> int:
    digits = re.match(r"\d+", raw)
    if digits is None or int(digits.group(0)) == 0:
        return DEFAULT_FUZZY_DISTANCE
    return int(digits.group(0))
