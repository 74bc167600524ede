"""Core dataclasses shared by the SQL intelligence services."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Tuple


class CandidateKind(str, Enum):
    """Types of candidates surfaced to the line editor."""

    KEYWORD = "keyword"
    IDENTIFIER = "identifier"
    FUNCTION = "function"
    META_COMMAND = "meta-command"


class ContextKind(str, Enum):
    """Syntactic role occupied by the cursor."""

    META_COMMAND = "meta-command"
    TABLE_REFERENCE = "table-reference"
    COLUMN_REFERENCE = "column-reference"
    INSERT_COLUMN_LIST = "insert-column-list"
    UPDATE_SET_LIST = "update-set-list"
    FUNCTION_CALL = "function-call"
    DEFAULT_KEYWORD = "default-keyword"


@dataclass(frozen=True, slots=True)
class Candidate:
    """Single completion entry."""

    text: str
    kind: CandidateKind
    detail: str | None = None


@dataclass(frozen=True, slots=True)
class MetaCommandContext:
    kind: ContextKind = field(default=ContextKind.META_COMMAND, init=False)


@dataclass(frozen=True, slots=True)
class TableReferenceContext:
    """Cursor sits where a table name is expected (FROM, JOIN, INTO, ...)."""

    schema_prefix: str | None = None
    table_prefix: str = ""
    kind: ContextKind = field(default=ContextKind.TABLE_REFERENCE, init=False)


@dataclass(frozen=True, slots=True)
class ColumnReferenceContext:
    """Cursor sits in a SELECT list or a WHERE/ON predicate.

    ``aliases`` maps lower-cased alias names to the table they bind.
    """

    qualifier: str | None = None
    column_prefix: str = ""
    referenced_tables: Tuple[str, ...] = ()
    aliases: Mapping[str, str] = field(default_factory=dict)
    kind: ContextKind = field(default=ContextKind.COLUMN_REFERENCE, init=False)


@dataclass(frozen=True, slots=True)
class InsertColumnListContext:
    target_table: str
    kind: ContextKind = field(default=ContextKind.INSERT_COLUMN_LIST, init=False)


@dataclass(frozen=True, slots=True)
class UpdateSetListContext:
    target_table: str
    kind: ContextKind = field(default=ContextKind.UPDATE_SET_LIST, init=False)


@dataclass(frozen=True, slots=True)
class FunctionCallContext:
    name_prefix: str = ""
    kind: ContextKind = field(default=ContextKind.FUNCTION_CALL, init=False)


@dataclass(frozen=True, slots=True)
class DefaultKeywordContext:
    kind: ContextKind = field(default=ContextKind.DEFAULT_KEYWORD, init=False)


CompletionContext = (
    MetaCommandContext
    | TableReferenceContext
    | ColumnReferenceContext
    | InsertColumnListContext
    | UpdateSetListContext
    | FunctionCallContext
    | DefaultKeywordContext
)


__all__ = [
    "Candidate",
    "CandidateKind",
    "ColumnReferenceContext",
    "CompletionContext",
    "ContextKind",
    "DefaultKeywordContext",
    "FunctionCallContext",
    "InsertColumnListContext",
    "MetaCommandContext",
    "TableReferenceContext",
    "UpdateSetListContext",
]
