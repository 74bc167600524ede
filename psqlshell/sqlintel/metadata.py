"""Time-bounded cache of database metadata feeding identifier completions."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Callable, Mapping, Protocol, Sequence, Tuple

LOG = logging.getLogger(__name__)

DEFAULT_TTL = 60.0
DEFAULT_SCHEMA = "public"


class MetadataFetchError(RuntimeError):
    """Raised by a metadata source when the catalog cannot be read."""


class MetadataKind(str, Enum):
    """Families of names held by the cache."""

    SCHEMAS = "schemas"
    TABLES = "tables"
    COLUMNS = "columns"
    FUNCTIONS = "functions"


class MetadataSource(Protocol):
    """Catalog reader bound to a live connection."""

    def list_schemas(self) -> Sequence[str]: ...

    def list_tables(self, schema: str) -> Sequence[str]: ...

    def list_columns(self, schema: str, table: str) -> Sequence[str]: ...

    def list_functions(self) -> Mapping[str, Sequence[str]]: ...


@dataclass(frozen=True, slots=True)
class MetadataSnapshot:
    """Immutable view of cached names; replaced wholesale on refresh."""

    schemas: Tuple[str, ...] = ()
    tables_by_schema: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    columns_by_table: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    functions_by_schema: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    refreshed_at: float | None = None

    def lookup(self, kind: MetadataKind, key: str | None = None) -> Tuple[str, ...]:
        if kind is MetadataKind.SCHEMAS:
            return self.schemas
        if kind is MetadataKind.TABLES:
            if key is None:
                return tuple(name for names in self.tables_by_schema.values() for name in names)
            return self.tables_by_schema.get(key, ())
        if kind is MetadataKind.COLUMNS:
            if key is None:
                return ()
            return self.columns_by_table.get(normalize_identifier(key), ())
        if key is None:
            return tuple(name for names in self.functions_by_schema.values() for name in names)
        return self.functions_by_schema.get(key, ())


def fetch_snapshot(
    source: MetadataSource,
    *,
    refreshed_at: float,
    default_schema: str = DEFAULT_SCHEMA,
) -> MetadataSnapshot:
    """Read every catalog family from ``source`` into a new snapshot."""

    schemas = tuple(source.list_schemas())
    tables: dict[str, Tuple[str, ...]] = {}
    for schema in schemas:
        names = tuple(source.list_tables(schema))
        if names:
            tables[schema] = names

    columns: dict[str, Tuple[str, ...]] = {}
    # Default schema first so its tables own the bare keys.
    for schema in sorted(tables, key=lambda name: name != default_schema):
        for table in tables[schema]:
            names = tuple(source.list_columns(schema, table))
            if not names:
                continue
            columns[f"{schema}.{table}".lower()] = names
            columns.setdefault(table.lower(), names)

    functions = {
        schema: tuple(names)
        for schema, names in source.list_functions().items()
    }
    return MetadataSnapshot(
        schemas=schemas,
        tables_by_schema=MappingProxyType(tables),
        columns_by_table=MappingProxyType(columns),
        functions_by_schema=MappingProxyType(functions),
        refreshed_at=refreshed_at,
    )


class MetadataCache:
    """Holds the latest published snapshot and refreshes it on a TTL.

    Readers grab ``snapshot`` once and work from that reference, so a refresh
    running on another thread never hands them a mix of two cycles. Failed
    refreshes keep the previous snapshot.
    """

    def __init__(
        self,
        source: MetadataSource | None = None,
        *,
        ttl: float = DEFAULT_TTL,
        default_schema: str = DEFAULT_SCHEMA,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._ttl = ttl
        self._default_schema = default_schema
        self._clock = clock
        self._snapshot = MetadataSnapshot()
        self._lock = threading.Lock()
        self._generation = 0
        self._last_attempt: float | None = None
        self._refresh_thread: threading.Thread | None = None

    @property
    def snapshot(self) -> MetadataSnapshot:
        return self._snapshot

    @property
    def default_schema(self) -> str:
        return self._default_schema

    def bind(self, source: MetadataSource | None) -> None:
        """Point the cache at a new source; the current snapshot is kept."""

        with self._lock:
            self._source = source
            self._generation += 1

    def get(self, kind: MetadataKind, key: str | None = None) -> Tuple[str, ...]:
        return self._snapshot.lookup(kind, key)

    def is_stale(self, ttl: float | None = None) -> bool:
        limit = self._ttl if ttl is None else ttl
        last = self._last_attempt
        if last is None:
            return True
        return self._clock() - last > limit

    def refresh(self) -> bool:
        """Fetch and publish a new snapshot; returns whether one was published."""

        with self._lock:
            source = self._source
            generation = self._generation
        if source is None:
            return False
        started = self._clock()
        try:
            snapshot = fetch_snapshot(source, refreshed_at=started, default_schema=self._default_schema)
        except MetadataFetchError as exc:
            LOG.warning("Metadata refresh failed; keeping previous snapshot", extra={"error": str(exc)})
            with self._lock:
                if generation == self._generation:
                    self._last_attempt = started
            return False
        with self._lock:
            if generation != self._generation:
                LOG.debug("Discarding superseded metadata snapshot")
                return False
            self._snapshot = snapshot
            self._last_attempt = started
        LOG.debug(
            "Metadata snapshot published",
            extra={"schemas": len(snapshot.schemas), "tables": len(snapshot.columns_by_table)},
        )
        return True

    def refresh_if_stale(self, ttl: float | None = None) -> bool:
        if not self.is_stale(ttl):
            return False
        return self.refresh()

    def schedule_refresh_if_stale(self, ttl: float | None = None) -> bool:
        """Start a background refresh when stale; never waits for it."""

        if self._source is None or not self.is_stale(ttl):
            return False
        with self._lock:
            if self._refresh_thread is not None and self._refresh_thread.is_alive():
                return False
            thread = threading.Thread(
                target=self.refresh,
                name="psqlshell-metadata-refresh",
                daemon=True,
            )
            self._refresh_thread = thread
        thread.start()
        return True

    def invalidate(self) -> None:
        """Drop all cached names and force the next refresh."""

        with self._lock:
            self._generation += 1
            self._snapshot = MetadataSnapshot()
            self._last_attempt = None


def normalize_identifier(value: str) -> str:
    return value.replace('"', "").lower()


__all__ = [
    "DEFAULT_SCHEMA",
    "DEFAULT_TTL",
    "MetadataCache",
    "MetadataFetchError",
    "MetadataKind",
    "MetadataSnapshot",
    "MetadataSource",
    "fetch_snapshot",
    "normalize_identifier",
]
