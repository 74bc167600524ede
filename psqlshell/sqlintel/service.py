"""Main SQL intelligence service coordinating classification and completion."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence

from .catalog import KeywordCatalog, MetaCommandCatalog
from .classifier import ContextClassifier, current_word, identifier_tail
from .functions import FunctionCatalog, function_candidates
from .metadata import MetadataCache, MetadataKind, MetadataSnapshot
from .models import (
    Candidate,
    CandidateKind,
    ColumnReferenceContext,
    CompletionContext,
    ContextKind,
    InsertColumnListContext,
    TableReferenceContext,
    UpdateSetListContext,
)

MAX_CANDIDATES = 200


class CompletionStrategy(Protocol):
    """Turns a classified context into candidates."""

    def complete(self, word: str, context: CompletionContext) -> list[Candidate]: ...


@dataclass(frozen=True, slots=True)
class CompletionResult:
    """Candidates for one request plus the span of text they replace."""

    context: CompletionContext
    word: str
    candidates: tuple[Candidate, ...]
    replace_length: int


class KeywordCompletionStrategy:
    """Static completions: meta-commands, SQL keywords and system functions.

    Used while disconnected. Identifier contexts degrade to keywords because
    there is no catalog to resolve them against.
    """

    def __init__(
        self,
        keywords: KeywordCatalog | None = None,
        functions: FunctionCatalog | None = None,
        meta_commands: MetaCommandCatalog | None = None,
    ) -> None:
        self._keywords = keywords or KeywordCatalog.default()
        self._functions = functions or FunctionCatalog.default()
        self._meta_commands = meta_commands or MetaCommandCatalog.default()

    def complete(self, word: str, context: CompletionContext) -> list[Candidate]:
        kind = context.kind
        if kind is ContextKind.META_COMMAND:
            candidates = self._meta_commands.candidates(word)
        elif kind is ContextKind.FUNCTION_CALL:
            candidates = self._function_call(context.name_prefix)  # type: ignore[union-attr]
        elif kind is ContextKind.DEFAULT_KEYWORD:
            candidates = self._keywords_and_functions(identifier_tail(word))
        else:
            candidates = self._identifiers(word, context)
        return _unique(candidates)[:MAX_CANDIDATES]

    def _keywords_and_functions(self, prefix: str) -> list[Candidate]:
        return self._keywords.candidates(prefix) + self._functions.candidates(prefix)

    def _function_call(self, prefix: str) -> list[Candidate]:
        return self._functions.candidates(prefix)

    def _identifiers(self, word: str, context: CompletionContext) -> list[Candidate]:
        return self._keywords_and_functions(identifier_tail(word))


class MetadataCompletionStrategy(KeywordCompletionStrategy):
    """Resolves table, column and function positions against the metadata cache."""

    def __init__(
        self,
        cache: MetadataCache,
        keywords: KeywordCatalog | None = None,
        functions: FunctionCatalog | None = None,
        meta_commands: MetaCommandCatalog | None = None,
    ) -> None:
        super().__init__(keywords, functions, meta_commands)
        self._cache = cache

    def _function_call(self, prefix: str) -> list[Candidate]:
        snapshot = self._cache.snapshot
        user_functions = (
            (name, f"{schema} function")
            for schema, names in snapshot.functions_by_schema.items()
            for name in names
        )
        return super()._function_call(prefix) + function_candidates(user_functions, prefix)

    def _identifiers(self, word: str, context: CompletionContext) -> list[Candidate]:
        # One snapshot reference per request.
        snapshot = self._cache.snapshot
        if isinstance(context, TableReferenceContext):
            return self._tables(snapshot, context)
        if isinstance(context, ColumnReferenceContext):
            return self._columns(snapshot, context)
        if isinstance(context, (InsertColumnListContext, UpdateSetListContext)):
            columns = _columns_for(snapshot, context.target_table)
            return _identifier_candidates(columns, identifier_tail(word), detail=f"{context.target_table} column")
        return super()._identifiers(word, context)

    def _tables(self, snapshot: MetadataSnapshot, context: TableReferenceContext) -> list[Candidate]:
        prefix = context.table_prefix.lower()
        candidates: list[Candidate] = []
        if context.schema_prefix is not None:
            schema = _match_name(snapshot.tables_by_schema, context.schema_prefix)
            for table in snapshot.tables_by_schema.get(schema or "", ()):
                if table.lower().startswith(prefix):
                    candidates.append(_identifier(f"{schema}.{table}", "table"))
            return candidates
        default_schema = self._cache.default_schema
        for schema, tables in snapshot.tables_by_schema.items():
            for table in tables:
                if not table.lower().startswith(prefix):
                    continue
                if schema == default_schema:
                    candidates.append(_identifier(table, "table"))
                candidates.append(_identifier(f"{schema}.{table}", "table"))
        return candidates

    def _columns(self, snapshot: MetadataSnapshot, context: ColumnReferenceContext) -> list[Candidate]:
        prefix = context.column_prefix
        if context.qualifier is not None:
            qualifier = context.qualifier
            table = context.aliases.get(qualifier.lower(), qualifier)
            return [
                _identifier(f"{qualifier}.{column}", f"{table} column")
                for column in _columns_for(snapshot, table)
                if column.lower().startswith(prefix.lower())
            ]
        candidates: list[Candidate] = []
        for table in context.referenced_tables:
            candidates.extend(
                _identifier_candidates(_columns_for(snapshot, table), prefix, detail=f"{table} column")
            )
        return candidates


class SqlIntelService:
    """Facade that classifies the buffer and dispatches to a completion strategy."""

    def __init__(
        self,
        cache: MetadataCache | None = None,
        *,
        classifier: ContextClassifier | None = None,
        keywords: KeywordCatalog | None = None,
        functions: FunctionCatalog | None = None,
        meta_commands: MetaCommandCatalog | None = None,
    ) -> None:
        keywords = keywords or KeywordCatalog.default()
        self._cache = cache or MetadataCache()
        self._classifier = classifier or ContextClassifier(keywords)
        self._keyword_strategy = KeywordCompletionStrategy(keywords, functions, meta_commands)
        self._metadata_strategy = MetadataCompletionStrategy(self._cache, keywords, functions, meta_commands)
        self._connected = False

    @property
    def cache(self) -> MetadataCache:
        return self._cache

    @property
    def strategy(self) -> CompletionStrategy:
        """Strategy matching the current session state."""

        return self._metadata_strategy if self._connected else self._keyword_strategy

    def set_connected(self, connected: bool) -> None:
        self._connected = connected

    def suggest(self, buffer: str, cursor: int) -> CompletionResult:
        """Return candidates for the cursor location in ``buffer``."""

        before = buffer[:cursor]
        context = self._classifier.classify(before, buffer)
        word = current_word(before)
        if self._connected and context.kind is not ContextKind.META_COMMAND:
            self._cache.schedule_refresh_if_stale()
        candidates = self.strategy.complete(word, context)
        return CompletionResult(
            context=context,
            word=word,
            candidates=tuple(candidates),
            replace_length=_replace_length(word, context),
        )


def _replace_length(word: str, context: CompletionContext) -> int:
    if context.kind in {ContextKind.META_COMMAND, ContextKind.FUNCTION_CALL}:
        return len(word)
    return len(identifier_tail(word))


def _columns_for(snapshot: MetadataSnapshot, table: str) -> Sequence[str]:
    columns = snapshot.lookup(MetadataKind.COLUMNS, table)
    if not columns and "." in table:
        columns = snapshot.lookup(MetadataKind.COLUMNS, table.rsplit(".", 1)[-1])
    return columns


def _match_name(names: Iterable[str], typed: str) -> str | None:
    lowered = typed.replace('"', "").lower()
    for name in names:
        if name.lower() == lowered:
            return name
    return None


def _identifier(text: str, detail: str) -> Candidate:
    return Candidate(text=text, kind=CandidateKind.IDENTIFIER, detail=detail)


def _identifier_candidates(names: Iterable[str], prefix: str, *, detail: str) -> list[Candidate]:
    lowered = prefix.lower()
    return [_identifier(name, detail) for name in names if name.lower().startswith(lowered)]


def _unique(candidates: Iterable[Candidate]) -> list[Candidate]:
    seen: set[str] = set()
    unique: list[Candidate] = []
    for candidate in candidates:
        key = candidate.text.lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return unique


__all__ = [
    "CompletionResult",
    "CompletionStrategy",
    "KeywordCompletionStrategy",
    "MAX_CANDIDATES",
    "MetadataCompletionStrategy",
    "SqlIntelService",
]
