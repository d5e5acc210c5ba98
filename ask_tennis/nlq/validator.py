# ask_tennis/nlq/validator.py
"""
Static guard for candidate SQL statements.

Every statement, whether it came from a query template or from the LLM,
passes through SQLValidator before it can reach the database. This is a
rule-based filter, not a SQL parser: anything ambiguous is rejected rather
than repaired.

Rules (all must pass):
- A single surrounding code fence is stripped
- Starts with SELECT
- No mutating keyword as a whole word
- Has a FROM clause
- At most one semicolon, and only at the very end
- Every table after FROM/JOIN is in the allowlist
- No comment markers, no UNION, no OR/AND tautologies
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional

from ..store.schema import ALLOWED_TABLES

logger = logging.getLogger(__name__)

DENIED_KEYWORDS = (
    "drop",
    "delete",
    "update",
    "insert",
    "alter",
    "create",
    "truncate",
    # DuckDB statements that touch files, extensions or other databases
    "attach",
    "detach",
    "copy",
    "pragma",
    "install",
    "export",
    "import",
    "grant",
)

_CODE_FENCE = re.compile(r"^\s*```[a-zA-Z]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)
_STARTS_WITH_SELECT = re.compile(r"^select\b", re.IGNORECASE)
_DENIED = re.compile(r"\b(" + "|".join(DENIED_KEYWORDS) + r")\b", re.IGNORECASE)
_FROM = re.compile(r"\bfrom\b", re.IGNORECASE)
_UNION = re.compile(r"\bunion\b", re.IGNORECASE)
_TAUTOLOGY = re.compile(r"\b(?:or|and)\s+(['\"]?)(\w+)\1\s*=\s*\1\2\1(?!\w)", re.IGNORECASE)
_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")
_QUOTED_IDENTIFIER = re.compile(r'"([^"]*)"')
_TOKEN = re.compile(r"[A-Za-z_][\w.]*|\(|\)|,|[^\s\w(),]+|\d+")
_IDENTIFIER = re.compile(r"^[A-Za-z_][\w.]*$")

# Functions whose argument syntax uses FROM (EXTRACT(YEAR FROM d), ...)
_FROM_FUNCTIONS = frozenset({"extract", "substring", "trim", "overlay", "position"})

# Tokens allowed right after "FROM (" / "JOIN ("
_SUBQUERY_STARTS = frozenset({"select", "from", "("})

# Words that can follow a table reference and are not an alias
_CLAUSE_WORDS = frozenset(
    {
        "where", "join", "inner", "left", "right", "full", "outer", "cross",
        "natural", "on", "using", "group", "order", "limit", "having", "window",
        "qualify", "offset", "as", "lateral", "positional", "asof", "semi",
        "anti", "select", "from", "union", "except", "intersect", "sample",
    }
)


def strip_code_fence(text: str) -> str:
    """
    Remove one surrounding markdown code fence, if present.

    Examples:
        >>> strip_code_fence("```sql\\nSELECT name FROM players\\n```")
        'SELECT name FROM players'
    """
    match = _CODE_FENCE.match(text)
    if match:
        return match.group(1).strip()
    return text.strip()


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one candidate statement."""

    ok: bool
    cleaned: str = ""
    reason: str = ""

    def to_dict(self) -> Dict[str, object]:
        if self.ok:
            return {"ok": True, "cleaned": self.cleaned}
        return {"ok": False, "reason": self.reason}


class SQLValidator:
    """Pure, deterministic statement guard."""

    def __init__(self, allowed_tables: Iterable[str] = ALLOWED_TABLES):
        self.allowed_tables: FrozenSet[str] = frozenset(t.lower() for t in allowed_tables)

    def validate(self, candidate: Optional[str]) -> ValidationResult:
        """
        Accept or reject a candidate statement.

        Args:
            candidate: Raw statement text (may be fenced)

        Returns:
            ValidationResult with the cleaned statement (no fence, no trailing
            semicolon) when accepted, or the first failed rule when rejected
        """
        if not isinstance(candidate, str) or not candidate.strip():
            return _reject("empty statement")

        statement = strip_code_fence(candidate)

        if "--" in statement or "/*" in statement or "*/" in statement:
            return _reject("comment markers are not allowed")

        if not _STARTS_WITH_SELECT.match(statement):
            return _reject("statement must start with SELECT")

        denied = _DENIED.search(statement)
        if denied:
            return _reject(f"mutating keyword not allowed: {denied.group(1).upper()}")

        if _UNION.search(statement):
            return _reject("UNION is not allowed")

        if _TAUTOLOGY.search(statement):
            return _reject("tautological condition not allowed")

        body = statement.rstrip()
        if body.endswith(";"):
            body = body[:-1].rstrip()
        if ";" in body:
            return _reject("multiple statements are not allowed")

        if not _FROM.search(body):
            return _reject("statement must have a FROM clause")

        unknown = [t for t in referenced_tables(body) if t.lower() not in self.allowed_tables]
        if unknown:
            if not _IDENTIFIER.match(unknown[0]):
                # FROM 'file.csv', FROM ('file.csv'): DuckDB would read the file
                return _reject(f"table reference must be a table name, got: {unknown[0]}")
            return _reject(f"unknown table: {unknown[0]}")

        return ValidationResult(ok=True, cleaned=body)


def referenced_tables(statement: str) -> List[str]:
    """
    Table names that follow FROM or JOIN, including comma-separated lists.

    FROM inside EXTRACT()/SUBSTRING()/TRIM() is ignored, and a FROM followed
    by "(SELECT" or "(FROM" (derived table) contributes nothing itself: the
    inner query is scanned on its own. Anything else in table position, such
    as a string literal, is returned as-is so the allowlist rejects it.

    Examples:
        >>> referenced_tables("SELECT p.name FROM rankings r JOIN players p ON r.player_id = p.id")
        ['rankings', 'players']
    """
    text = _STRING_LITERAL.sub("''", statement)
    text = _QUOTED_IDENTIFIER.sub(r"\1", text)
    tokens = _TOKEN.findall(text)

    tables: List[str] = []
    stack: List[Optional[str]] = []
    previous: Optional[str] = None
    for index, token in enumerate(tokens):
        lowered = token.lower()
        if token == "(":
            stack.append(previous.lower() if previous and _IDENTIFIER.match(previous) else None)
        elif token == ")":
            if stack:
                stack.pop()
        elif lowered in ("from", "join"):
            if not (stack and stack[-1] in _FROM_FUNCTIONS):
                tables.extend(_table_list(tokens, index + 1))
        previous = token
    return tables


def _table_list(tokens: List[str], start: int) -> List[str]:
    names: List[str] = []
    position = start
    while position < len(tokens):
        token = tokens[position]
        if token == "(":
            following = tokens[position + 1] if position + 1 < len(tokens) else ""
            if following.lower() not in _SUBQUERY_STARTS:
                names.append(following or token)
            break
        if not _IDENTIFIER.match(token):
            names.append(token)
            break
        names.append(token)
        position += 1

        # optional alias, with or without AS
        if position < len(tokens) and tokens[position].lower() == "as":
            position += 1
        if (
            position < len(tokens)
            and _IDENTIFIER.match(tokens[position])
            and tokens[position].lower() not in _CLAUSE_WORDS
        ):
            position += 1

        if position < len(tokens) and tokens[position] == ",":
            position += 1
            continue
        break
    return names


def _reject(reason: str) -> ValidationResult:
    logger.debug(f"SQL rejected: {reason}")
    return ValidationResult(ok=False, reason=reason)


_default_validator = SQLValidator()


def validate_sql(candidate: Optional[str]) -> ValidationResult:
    """Validate against the default table allowlist."""
    return _default_validator.validate(candidate)
