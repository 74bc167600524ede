"""Function catalog powering helper suggestions for common Postgres routines."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence, Tuple

from .models import Candidate, CandidateKind


@dataclass(frozen=True, slots=True)
class FunctionEntry:
    """Description of a SQL function surfaced to the editor."""

    name: str
    detail: str = "system function"


class FunctionCatalog:
    """Returns function candidates whose name starts with a prefix."""

    def __init__(self, entries: Sequence[FunctionEntry]) -> None:
        self._entries = tuple(entries)

    @classmethod
    def default(cls) -> "FunctionCatalog":
        return cls(_DEFAULT_FUNCTIONS)

    def candidates(self, prefix: str) -> list[Candidate]:
        return function_candidates(((entry.name, entry.detail) for entry in self._entries), prefix)


def function_candidates(names: Iterable[tuple[str, str]], prefix: str) -> list[Candidate]:
    """Render ``(name, detail)`` pairs matching ``prefix`` as callable candidates."""

    lowered = prefix.lower()
    return [
        Candidate(text=f"{name}(", kind=CandidateKind.FUNCTION, detail=detail)
        for name, detail in names
        if name.lower().startswith(lowered)
    ]


_SYSTEM_FUNCTION_NAMES: Tuple[str, ...] = (
    "pg_database_size", "pg_relation_size", "pg_total_relation_size",
    "pg_size_pretty", "current_database", "current_schema", "current_schemas",
    "current_user", "session_user", "version", "pg_backend_pid",
    "pg_is_in_recovery", "pg_last_wal_receive_lsn", "pg_last_wal_replay_lsn",
    "pg_last_xact_replay_timestamp", "age", "clock_timestamp", "timeofday",
    "array_agg", "string_agg", "json_agg", "jsonb_agg", "row_number",
    "rank", "dense_rank", "percent_rank", "cume_dist", "ntile",
    "lag", "lead", "first_value", "last_value", "nth_value",
)

_DEFAULT_FUNCTIONS: Tuple[FunctionEntry, ...] = tuple(
    FunctionEntry(name) for name in _SYSTEM_FUNCTION_NAMES
)


__all__ = ["FunctionCatalog", "FunctionEntry", "function_candidates"]
