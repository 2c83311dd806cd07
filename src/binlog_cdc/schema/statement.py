"""SQL statement normalization and DDL target extraction.

The binlog carries DDL as raw query text.  Before matching keywords the text
is normalized: comments (``/* */``, ``-- ``, ``#``) are removed, every run of
whitespace (including ``\\r\\n``) becomes a single space, and the result is
upper-cased.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT = re.compile(r"(?:--|#)[^\n]*")
_WHITESPACE = re.compile(r"\s+")


def strip_statement(sql: str) -> str:
    """Remove comments and collapse whitespace, preserving case."""
    sql = _BLOCK_COMMENT.sub(" ", sql)
    sql = _LINE_COMMENT.sub(" ", sql)
    return _WHITESPACE.sub(" ", sql).strip()


def normalize_statement(sql: str) -> str:
    """Canonical, upper-cased form of *sql*; idempotent."""
    return strip_statement(sql).upper()


class DDLKind(StrEnum):
    CREATE = "create"
    ALTER = "alter"
    DROP = "drop"
    RENAME = "rename"
    TRUNCATE = "truncate"


@dataclass(frozen=True, slots=True)
class DDLTarget:
    """A table named by a DDL statement."""

    kind: DDLKind
    schema: str
    table: str

    def __str__(self) -> str:
        return f"{self.kind} {self.schema}.{self.table}"


_IDENT = r"(?:`(?:[^`]|``)+`|[\w$]+)"
_QUALIFIED = rf"{_IDENT}(?:\s?\.\s?{_IDENT})?"
_NAME = re.compile(rf"(?P<first>{_IDENT})(?:\s?\.\s?(?P<second>{_IDENT}))?")

_DDL_PATTERNS: tuple[tuple[DDLKind, re.Pattern[str]], ...] = (
    (
        DDLKind.ALTER,
        re.compile(
            rf"^ALTER (?:ONLINE |OFFLINE )?(?:IGNORE )?TABLE (?P<names>{_QUALIFIED})",
            re.IGNORECASE,
        ),
    ),
    (
        DDLKind.CREATE,
        re.compile(
            rf"^CREATE (?:OR REPLACE )?(?:TEMPORARY )?TABLE (?:IF NOT EXISTS )?"
            rf"(?P<names>{_QUALIFIED})",
            re.IGNORECASE,
        ),
    ),
    (
        DDLKind.DROP,
        re.compile(
            rf"^DROP (?:TEMPORARY )?TABLES? (?:IF EXISTS )?"
            rf"(?P<names>{_QUALIFIED}(?: ?, ?{_QUALIFIED})*)",
            re.IGNORECASE,
        ),
    ),
    (
        DDLKind.RENAME,
        re.compile(
            rf"^RENAME TABLES? (?P<names>{_QUALIFIED} TO {_QUALIFIED}"
            rf"(?: ?, ?{_QUALIFIED} TO {_QUALIFIED})*)",
            re.IGNORECASE,
        ),
    ),
    (
        DDLKind.TRUNCATE,
        re.compile(rf"^TRUNCATE (?:TABLE )?(?P<names>{_QUALIFIED})", re.IGNORECASE),
    ),
)

_ALTER_RENAME = re.compile(
    rf"\bRENAME (?:TO |AS )?(?P<names>{_QUALIFIED})\s*(?:,|$)", re.IGNORECASE
)
_KEYWORDS = frozenset({"TO", "AS", "IF", "EXISTS"})


def _unquote(identifier: str) -> str:
    if identifier.startswith("`") and identifier.endswith("`"):
        return identifier[1:-1].replace("``", "`")
    return identifier


def _names(text: str, default_schema: str) -> list[tuple[str, str]]:
    names = []
    for match in _NAME.finditer(text):
        first, second = match.group("first"), match.group("second")
        if second is None:
            if first.upper() in _KEYWORDS:
                continue
            names.append((default_schema, _unquote(first)))
        else:
            names.append((_unquote(first), _unquote(second)))
    return names


def parse_ddl(sql: str, default_schema: str = "") -> list[DDLTarget]:
    """Return the tables a DDL statement touches; ``[]`` for anything else.

    Unqualified names resolve against *default_schema* (the binlog query's
    current database).  ``ALTER TABLE a RENAME TO b`` reports both tables.
    """
    stripped = strip_statement(sql)
    for kind, pattern in _DDL_PATTERNS:
        match = pattern.match(stripped)
        if match is None:
            continue
        targets = [
            DDLTarget(kind, schema, table)
            for schema, table in _names(match.group("names"), default_schema)
        ]
        if kind is DDLKind.ALTER:
            rename = _ALTER_RENAME.search(stripped, match.end())
            if rename is not None:
                targets.extend(
                    DDLTarget(DDLKind.RENAME, schema, table)
                    for schema, table in _names(rename.group("names"), default_schema)
                )
        return targets
    return []
