"""Keyword and meta-command catalogs powering deterministic completions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence, Tuple

from .models import Candidate, CandidateKind

META_PREFIX = "\\"


@dataclass(frozen=True, slots=True)
class MetaCommandEntry:
    """Client-side command understood by the session."""

    name: str
    usage: str
    description: str
    aliases: Tuple[str, ...] = ()

    @property
    def tokens(self) -> Tuple[str, ...]:
        return (self.name, *self.aliases)


class MetaCommandCatalog:
    """Static meta-command table shared by help, dispatch and completion."""

    def __init__(self, entries: Sequence[MetaCommandEntry]) -> None:
        self._entries = tuple(entries)
        self._by_token = {
            token: entry
            for entry in self._entries
            for token in entry.tokens
        }

    @classmethod
    def default(cls) -> "MetaCommandCatalog":
        return cls(_DEFAULT_META_COMMANDS)

    @property
    def entries(self) -> Tuple[MetaCommandEntry, ...]:
        return self._entries

    def resolve(self, token: str) -> MetaCommandEntry | None:
        """Map a typed command token (with or without the prefix) to its entry."""

        name = token[len(META_PREFIX):] if token.startswith(META_PREFIX) else token
        return self._by_token.get(name.lower())

    def candidates(self, word: str) -> list[Candidate]:
        """Return every prefixed command spelling that starts with ``word``."""

        lowered = word.lower()
        matches: list[Candidate] = []
        for entry in self._entries:
            for token in entry.tokens:
                text = f"{META_PREFIX}{token}"
                if text.startswith(lowered):
                    matches.append(
                        Candidate(text=text, kind=CandidateKind.META_COMMAND, detail=entry.description)
                    )
        return matches


class KeywordCatalog:
    """In-memory catalog of SQL keywords."""

    def __init__(self, keywords: Iterable[str]) -> None:
        self._keywords = tuple(keywords)
        self._reserved = frozenset(keyword.lower() for keyword in self._keywords)

    @classmethod
    def default(cls) -> "KeywordCatalog":
        return cls(SQL_KEYWORDS)

    def is_keyword(self, word: str) -> bool:
        return word.lower() in self._reserved

    def candidates(self, prefix: str) -> list[Candidate]:
        lowered = prefix.lower()
        return [
            Candidate(text=keyword, kind=CandidateKind.KEYWORD)
            for keyword in self._keywords
            if keyword.lower().startswith(lowered)
        ]


SQL_KEYWORDS: Tuple[str, ...] = (
    "SELECT", "FROM", "WHERE", "INSERT", "UPDATE", "DELETE", "CREATE", "DROP", "ALTER",
    "TABLE", "DATABASE", "INDEX", "VIEW", "TRIGGER", "FUNCTION", "PROCEDURE", "SCHEMA",
    "GRANT", "REVOKE", "COMMIT", "ROLLBACK", "BEGIN", "END", "TRANSACTION", "SAVEPOINT",
    "RELEASE", "JOIN", "LEFT", "RIGHT", "INNER", "OUTER", "FULL", "CROSS", "ON", "USING",
    "GROUP", "BY", "ORDER", "HAVING", "UNION", "INTERSECT", "EXCEPT", "DISTINCT", "ALL",
    "AS", "IN", "EXISTS", "BETWEEN", "LIKE", "ILIKE", "IS", "NULL", "NOT", "AND", "OR",
    "COUNT", "SUM", "AVG", "MIN", "MAX", "LIMIT", "OFFSET", "CASE", "WHEN", "THEN", "ELSE",
    "CAST", "COALESCE", "NULLIF", "CURRENT_DATE", "CURRENT_TIME", "CURRENT_TIMESTAMP",
    "NOW", "EXTRACT", "DATE_PART", "TO_CHAR", "TO_DATE", "INTO", "VALUES", "SET",
    "PRIMARY", "KEY", "FOREIGN", "REFERENCES", "CONSTRAINT", "UNIQUE", "CHECK",
    "DEFAULT", "CASCADE", "RESTRICT", "RETURNING", "WITH", "ASC", "DESC",
)


_DEFAULT_META_COMMANDS: Tuple[MetaCommandEntry, ...] = (
    MetaCommandEntry("connect", "\\connect [dbname|host/dbname|host:port/dbname]", "Connect to a database", ("c",)),
    MetaCommandEntry("list", "\\list", "List all databases", ("l",)),
    MetaCommandEntry("dt", "\\dt [schema]", "List tables"),
    MetaCommandEntry("d", "\\d [table]", "Describe a table"),
    MetaCommandEntry("timing", "\\timing [on|off]", "Toggle timing of commands"),
    MetaCommandEntry("begin", "\\begin", "Start a transaction"),
    MetaCommandEntry("commit", "\\commit", "Commit the current transaction"),
    MetaCommandEntry("rollback", "\\rollback", "Roll back the current transaction"),
    MetaCommandEntry("savepoint", "\\savepoint <name>", "Create a savepoint"),
    MetaCommandEntry("release", "\\release <name>", "Release a savepoint"),
    MetaCommandEntry("mode", "\\mode", "Show the current query mode"),
    MetaCommandEntry("help", "\\help", "Show this help", ("h",)),
    MetaCommandEntry("quit", "\\quit", "Quit psqlshell", ("q",)),
)


__all__ = [
    "KeywordCatalog",
    "META_PREFIX",
    "MetaCommandCatalog",
    "MetaCommandEntry",
    "SQL_KEYWORDS",
]
