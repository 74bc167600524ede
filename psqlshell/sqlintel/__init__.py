"""SQL intelligence services and helpers."""

from __future__ import annotations

from .catalog import META_PREFIX, KeywordCatalog, MetaCommandCatalog, MetaCommandEntry
from .classifier import ContextClassifier, current_word
from .completer import SqlCompleter
from .functions import FunctionCatalog
from .metadata import (
    DEFAULT_SCHEMA,
    DEFAULT_TTL,
    MetadataCache,
    MetadataFetchError,
    MetadataKind,
    MetadataSnapshot,
    MetadataSource,
)
from .models import (
    Candidate,
    CandidateKind,
    ColumnReferenceContext,
    CompletionContext,
    ContextKind,
    DefaultKeywordContext,
    FunctionCallContext,
    InsertColumnListContext,
    MetaCommandContext,
    TableReferenceContext,
    UpdateSetListContext,
)
from .service import (
    CompletionResult,
    KeywordCompletionStrategy,
    MetadataCompletionStrategy,
    SqlIntelService,
)

__all__ = [
    "Candidate",
    "CandidateKind",
    "ColumnReferenceContext",
    "CompletionContext",
    "CompletionResult",
    "ContextClassifier",
    "ContextKind",
    "DEFAULT_SCHEMA",
    "DEFAULT_TTL",
    "DefaultKeywordContext",
    "FunctionCallContext",
    "FunctionCatalog",
    "InsertColumnListContext",
    "KeywordCatalog",
    "KeywordCompletionStrategy",
    "META_PREFIX",
    "MetaCommandCatalog",
    "MetaCommandContext",
    "MetaCommandEntry",
    "MetadataCache",
    "MetadataCompletionStrategy",
    "MetadataFetchError",
    "MetadataKind",
    "MetadataSnapshot",
    "MetadataSource",
    "SqlCompleter",
    "SqlIntelService",
    "TableReferenceContext",
    "UpdateSetListContext",
    "current_word",
]
