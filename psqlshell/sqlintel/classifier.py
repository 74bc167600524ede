"""Regex-level heuristics that work out what the cursor is pointing at."""

from __future__ import annotations

import re

from .catalog import META_PREFIX, KeywordCatalog
from .models import (
    ColumnReferenceContext,
    CompletionContext,
    DefaultKeywordContext,
    FunctionCallContext,
    InsertColumnListContext,
    MetaCommandContext,
    TableReferenceContext,
    UpdateSetListContext,
)

_TABLE_POSITION = re.compile(r"\b(?:FROM|JOIN|INTO|UPDATE|DELETE\s+FROM)\s+([\w.]*)$", re.IGNORECASE)
_INSERT_COLUMNS = re.compile(r"\bINSERT\s+INTO\s+([\w.]+)\s*\(([\w\s,]*)$", re.IGNORECASE)
_UPDATE_SET = re.compile(r"\bUPDATE\s+([\w.]+)\s+SET\s+([\w\s,=.'\"-]*)$", re.IGNORECASE)
_SELECT_LIST = re.compile(r"\bSELECT\s+([\w\s,.*]*?)\s*$", re.IGNORECASE)
_PREDICATE = re.compile(r"\b(?:WHERE|AND|OR|ON)\s+([\w.]*)$", re.IGNORECASE)
_TABLE_BINDING = re.compile(r"\b(FROM|JOIN|INTO|UPDATE)\s+([\w.]+)", re.IGNORECASE)
_FROM_LIST_ITEM = re.compile(r"\s*,\s*([\w.]+)")
_ALIAS = re.compile(r"\s+(?:AS\s+)?(\w+)", re.IGNORECASE)
_IDENTIFIER_TAIL = re.compile(r"[\w.]*$")


def current_word(text_before_cursor: str) -> str:
    """Return the whitespace-delimited word that ends at the cursor."""

    if not text_before_cursor or text_before_cursor[-1].isspace():
        return ""
    return text_before_cursor.split()[-1]


def identifier_tail(word: str) -> str:
    """Trailing ``[\\w.]`` run of ``word`` (drops leading ``(`` or ``,``)."""

    match = _IDENTIFIER_TAIL.search(word)
    return match.group(0) if match else ""


class ContextClassifier:
    """Maps the text before the cursor onto a completion context.

    Rules are checked in a fixed order and the first hit wins: meta-command,
    table position, INSERT column list, UPDATE SET list, column position,
    function call, keyword. Only ``text_before_cursor`` drives the decision;
    ``full_text`` (the whole buffer) is consulted solely to collect table
    references and aliases that may sit after the cursor.
    """

    def __init__(self, keywords: KeywordCatalog | None = None) -> None:
        self._keywords = keywords or KeywordCatalog.default()

    def classify(self, text_before_cursor: str, full_text: str | None = None) -> CompletionContext:
        word = current_word(text_before_cursor)
        if word.startswith(META_PREFIX):
            return MetaCommandContext()

        match = _TABLE_POSITION.search(text_before_cursor)
        if match:
            schema, table = split_qualified(match.group(1))
            return TableReferenceContext(schema_prefix=schema, table_prefix=table)

        match = _INSERT_COLUMNS.search(text_before_cursor)
        if match:
            return InsertColumnListContext(target_table=match.group(1))

        match = _UPDATE_SET.search(text_before_cursor)
        if match:
            return UpdateSetListContext(target_table=match.group(1))

        if _SELECT_LIST.search(text_before_cursor) or _PREDICATE.search(text_before_cursor):
            qualifier, prefix = split_qualified(identifier_tail(word))
            statement = full_text if full_text is not None else text_before_cursor
            tables, aliases = self.table_bindings(statement)
            return ColumnReferenceContext(
                qualifier=qualifier,
                column_prefix=prefix,
                referenced_tables=tables,
                aliases=aliases,
            )

        if "(" in word:
            return FunctionCallContext(name_prefix=word[: word.index("(")])

        return DefaultKeywordContext()

    def table_bindings(self, statement: str) -> tuple[tuple[str, ...], dict[str, str]]:
        """Collect referenced tables and ``alias -> table`` bindings.

        Comma-separated ``FROM`` lists (``FROM users u, orders o``) bind
        every item.
        """

        tables: list[str] = []
        aliases: dict[str, str] = {}
        for match in _TABLE_BINDING.finditer(statement):
            end = self._bind(statement, match.group(2), match.end(), tables, aliases)
            if match.group(1).upper() != "FROM":
                continue
            item = _FROM_LIST_ITEM.match(statement, end)
            while item is not None:
                end = self._bind(statement, item.group(1), item.end(), tables, aliases)
                item = _FROM_LIST_ITEM.match(statement, end)
        return tuple(tables), aliases

    def _bind(self, statement: str, table: str, end: int, tables: list[str], aliases: dict[str, str]) -> int:
        if self._keywords.is_keyword(table):
            return end
        if table.lower() not in {name.lower() for name in tables}:
            tables.append(table)
        # Peek only, so a following JOIN keyword is still scanned.
        alias = _ALIAS.match(statement, end)
        if alias is None or self._keywords.is_keyword(alias.group(1)):
            return end
        aliases.setdefault(alias.group(1).lower(), table)
        return alias.end()


def split_qualified(name: str) -> tuple[str | None, str]:
    """Split ``schema.table`` (or ``alias.column``) at the last dot."""

    if "." not in name:
        return None, name
    head, _, tail = name.rpartition(".")
    return head, tail


__all__ = ["ContextClassifier", "current_word", "identifier_tail", "split_qualified"]
