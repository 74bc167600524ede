"""Query executors: the only code that talks to a database."""

from __future__ import annotations

import asyncio
import logging
import random
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Coroutine, Iterable, Mapping, Protocol, Sequence

import asyncpg

from .connections import ConnectionBackendError
from .models import ConnectionIdentity

LOG = logging.getLogger(__name__)


class QueryExecutionError(RuntimeError):
    """Raised when a statement or transaction command fails to execute."""


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Normalized statement output handed to the renderer."""

    columns: tuple[str, ...]
    rows: tuple[tuple[object, ...], ...]
    status: str
    elapsed_ms: int
    row_count: int | None = None
    affected_rows: int | None = None

    @property
    def returns_rows(self) -> bool:
        return bool(self.columns)


class QueryExecutor(Protocol):
    """Interface implemented by query executors.

    ``handle`` is whatever ``connect`` returned; callers treat it as opaque.
    """

    label: str

    def connect(self, host: str, port: int, database: str, username: str, password: str | None) -> Any: ...

    def set_autocommit(self, handle: Any, enabled: bool, *, modes: str = "") -> None:
        """Switch autocommit; ``modes`` apply to the transaction opened when disabling it."""

    def commit(self, handle: Any) -> None: ...

    def rollback(self, handle: Any) -> None: ...

    def create_savepoint(self, handle: Any, name: str) -> None: ...

    def release_savepoint(self, handle: Any, name: str) -> None: ...

    def list_schemas(self, handle: Any) -> Sequence[str]: ...

    def list_tables(self, handle: Any, schema: str) -> Sequence[str]: ...

    def list_columns(self, handle: Any, schema: str, table: str) -> Sequence[str]: ...

    def list_functions(self, handle: Any) -> Mapping[str, Sequence[str]]: ...

    def list_databases(self, handle: Any) -> QueryResult: ...

    def describe_table(self, handle: Any, schema: str, table: str) -> QueryResult: ...

    def execute(self, handle: Any, sql: str) -> QueryResult: ...

    def close(self, handle: Any) -> None: ...


@dataclass(slots=True)
class AsyncpgHandle:
    """Live asyncpg connection plus the client-side autocommit flag."""

    connection: Any
    identity: ConnectionIdentity
    autocommit: bool = True


class AsyncpgQueryExecutor:
    """Runs statements against PostgreSQL via asyncpg on a private event loop.

    asyncpg connections cannot run two operations at once, so every call is
    serialized; a background metadata refresh waits for a running statement.
    """

    label = "asyncpg"

    _SCHEMA_QUERY = """
        SELECT schema_name
        FROM information_schema.schemata
        WHERE schema_name NOT IN ('pg_catalog', 'information_schema')
          AND schema_name NOT LIKE 'pg\\_toast%'
          AND schema_name NOT LIKE 'pg\\_temp\\_%'
        ORDER BY schema_name
    """

    _TABLE_QUERY = """
        SELECT table_name
        FROM information_schema.tables
        WHERE table_schema = $1 AND table_type IN ('BASE TABLE', 'VIEW')
        ORDER BY table_name
    """

    _COLUMN_QUERY = """
        SELECT column_name
        FROM information_schema.columns
        WHERE table_schema = $1 AND table_name = $2
        ORDER BY ordinal_position
    """

    _DESCRIBE_QUERY = """
        SELECT column_name, data_type, is_nullable, column_default
        FROM information_schema.columns
        WHERE table_schema = $1 AND table_name = $2
        ORDER BY ordinal_position
    """

    _FUNCTION_QUERY = """
        SELECT n.nspname AS schema, p.proname AS function
        FROM pg_proc p
        JOIN pg_namespace n ON p.pronamespace = n.oid
        WHERE n.nspname NOT IN ('pg_catalog', 'information_schema')
        ORDER BY schema, function
    """

    _DATABASE_QUERY = "SELECT datname AS name FROM pg_database WHERE datistemplate = false ORDER BY datname"

    def __init__(self, *, connect_timeout: float = 5.0) -> None:
        self._connect_timeout = connect_timeout
        self._lock = threading.RLock()
        self._loop = asyncio.new_event_loop()
        self._loop_thread = threading.Thread(
            target=self._loop.run_forever,
            name="psqlshell-asyncpg-executor",
            daemon=True,
        )
        self._loop_thread.start()

    def connect(self, host: str, port: int, database: str, username: str, password: str | None) -> AsyncpgHandle:
        kwargs: dict[str, object] = {
            "host": host,
            "port": port,
            "database": database,
            "user": username,
            "timeout": self._connect_timeout,
        }
        if password:
            kwargs["password"] = password
        LOG.info("Connecting to PostgreSQL", extra={"host": host, "port": port, "database": database})
        try:
            connection = self._run(asyncpg.connect(**kwargs))
        except Exception as exc:
            raise ConnectionBackendError(f"Failed to connect to {host}:{port}/{database}: {exc}") from exc
        LOG.info("Connected to PostgreSQL", extra={"host": host, "database": database})
        return AsyncpgHandle(
            connection=connection,
            identity=ConnectionIdentity(host=host, port=port, database=database, username=username),
        )

    def set_autocommit(self, handle: AsyncpgHandle, enabled: bool, *, modes: str = "") -> None:
        if handle.autocommit == enabled:
            return
        if not enabled:
            self._statement(handle, f"BEGIN {modes}" if modes else "BEGIN")
        elif handle.connection.is_in_transaction():
            self._statement(handle, "COMMIT")
        handle.autocommit = enabled

    def commit(self, handle: AsyncpgHandle) -> None:
        self._statement(handle, "COMMIT")

    def rollback(self, handle: AsyncpgHandle) -> None:
        self._statement(handle, "ROLLBACK")

    def create_savepoint(self, handle: AsyncpgHandle, name: str) -> None:
        self._statement(handle, f"SAVEPOINT {quote_identifier(name)}")

    def release_savepoint(self, handle: AsyncpgHandle, name: str) -> None:
        self._statement(handle, f"RELEASE SAVEPOINT {quote_identifier(name)}")

    def list_schemas(self, handle: AsyncpgHandle) -> tuple[str, ...]:
        rows = self._fetch(handle, self._SCHEMA_QUERY)
        return tuple(str(row["schema_name"]) for row in rows)

    def list_tables(self, handle: AsyncpgHandle, schema: str) -> tuple[str, ...]:
        rows = self._fetch(handle, self._TABLE_QUERY, schema)
        return tuple(str(row["table_name"]) for row in rows)

    def list_columns(self, handle: AsyncpgHandle, schema: str, table: str) -> tuple[str, ...]:
        rows = self._fetch(handle, self._COLUMN_QUERY, schema, table)
        return tuple(str(row["column_name"]) for row in rows)

    def list_functions(self, handle: AsyncpgHandle) -> dict[str, tuple[str, ...]]:
        functions: dict[str, list[str]] = {}
        for row in self._fetch(handle, self._FUNCTION_QUERY):
            names = functions.setdefault(str(row["schema"]), [])
            name = str(row["function"])
            if name not in names:
                names.append(name)
        return {schema: tuple(names) for schema, names in functions.items()}

    def list_databases(self, handle: AsyncpgHandle) -> QueryResult:
        started = time.perf_counter()
        records = self._fetch(handle, self._DATABASE_QUERY)
        return _build_result(records, started)

    def describe_table(self, handle: AsyncpgHandle, schema: str, table: str) -> QueryResult:
        started = time.perf_counter()
        records = self._fetch(handle, self._DESCRIBE_QUERY, schema, table)
        return _build_result(records, started)

    def execute(self, handle: AsyncpgHandle, sql: str) -> QueryResult:
        statement = sql.strip()
        if not statement:
            raise QueryExecutionError("Provide SQL to execute.")
        started = time.perf_counter()
        if returns_rows(statement):
            return _build_result(self._fetch(handle, statement), started)
        status = self._statement(handle, statement)
        return QueryResult(
            columns=(),
            rows=(),
            status=status,
            elapsed_ms=_elapsed_ms(started),
            affected_rows=affected_rows(status),
        )

    def close(self, handle: AsyncpgHandle) -> None:
        try:
            self._run(handle.connection.close())
        except Exception as exc:
            raise ConnectionBackendError(f"Failed to close connection to {handle.identity}: {exc}") from exc
        LOG.info("Database connection closed", extra={"database": handle.identity.database})

    def shutdown(self) -> None:
        """Stop the background event loop."""

        if not self._loop.is_running():  # pragma: no cover - defensive
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._loop_thread.join(timeout=1)

    def _fetch(self, handle: AsyncpgHandle, sql: str, *args: object) -> list[Any]:
        try:
            return list(self._run(handle.connection.fetch(sql, *args)))
        except Exception as exc:
            raise QueryExecutionError(str(exc)) from exc

    def _statement(self, handle: AsyncpgHandle, sql: str) -> str:
        try:
            return str(self._run(handle.connection.execute(sql)))
        except Exception as exc:
            raise QueryExecutionError(str(exc)) from exc

    def _run(self, coro: Coroutine[Any, Any, Any]) -> Any:
        with self._lock:
            future = asyncio.run_coroutine_threadsafe(coro, self._loop)
            return future.result()


DEMO_CATALOG: Mapping[str, Mapping[str, tuple[str, ...]]] = {
    "public": {
        "users": ("id", "name", "email", "created_at"),
        "orders": ("id", "user_id", "total", "status"),
        "payments": ("id", "order_id", "amount"),
    },
    "analytics": {
        "sessions": ("id", "user_id", "started_at", "device"),
        "events": ("id", "session_id", "name", "payload"),
    },
}

DEMO_FUNCTIONS: Mapping[str, tuple[str, ...]] = {
    "public": ("order_total", "user_display_name"),
    "analytics": ("sessionize",),
}


@dataclass(slots=True)
class DemoHandle:
    """Connection stand-in tracked by ``DemoQueryExecutor``."""

    identity: ConnectionIdentity
    autocommit: bool = True
    savepoints: list[str] = field(default_factory=list)
    transaction_modes: str = ""
    closed: bool = False


class DemoQueryExecutor:
    """In-memory executor that fakes a small catalog and result sets."""

    label = "demo"

    def __init__(
        self,
        catalog: Mapping[str, Mapping[str, Sequence[str]]] | None = None,
        functions: Mapping[str, Sequence[str]] | None = None,
        *,
        databases: Sequence[str] = ("postgres", "demo"),
        row_count: int = 5,
    ) -> None:
        source = DEMO_CATALOG if catalog is None else catalog
        self._catalog = {
            schema: {table: tuple(columns) for table, columns in tables.items()}
            for schema, tables in source.items()
        }
        self._functions = {
            schema: tuple(names)
            for schema, names in (DEMO_FUNCTIONS if functions is None else functions).items()
        }
        self._databases = tuple(databases)
        self._row_count = row_count

    def connect(self, host: str, port: int, database: str, username: str, password: str | None) -> DemoHandle:
        if database not in self._databases:
            raise ConnectionBackendError(f'database "{database}" does not exist')
        return DemoHandle(identity=ConnectionIdentity(host=host, port=port, database=database, username=username))

    def set_autocommit(self, handle: DemoHandle, enabled: bool, *, modes: str = "") -> None:
        self._check_open(handle)
        if enabled:
            handle.savepoints.clear()
        handle.transaction_modes = "" if enabled else modes
        handle.autocommit = enabled

    def commit(self, handle: DemoHandle) -> None:
        self._check_open(handle)
        handle.savepoints.clear()

    def rollback(self, handle: DemoHandle) -> None:
        self._check_open(handle)
        handle.savepoints.clear()

    def create_savepoint(self, handle: DemoHandle, name: str) -> None:
        self._check_open(handle)
        if handle.autocommit:
            raise QueryExecutionError("SAVEPOINT can only be used in transaction blocks")
        handle.savepoints.append(name)

    def release_savepoint(self, handle: DemoHandle, name: str) -> None:
        self._check_open(handle)
        if name not in handle.savepoints:
            raise QueryExecutionError(f'savepoint "{name}" does not exist')
        del handle.savepoints[handle.savepoints.index(name):]

    def list_schemas(self, handle: DemoHandle) -> tuple[str, ...]:
        self._check_open(handle)
        return tuple(self._catalog)

    def list_tables(self, handle: DemoHandle, schema: str) -> tuple[str, ...]:
        self._check_open(handle)
        return tuple(self._catalog.get(schema, {}))

    def list_columns(self, handle: DemoHandle, schema: str, table: str) -> tuple[str, ...]:
        self._check_open(handle)
        return self._catalog.get(schema, {}).get(table, ())

    def list_functions(self, handle: DemoHandle) -> dict[str, tuple[str, ...]]:
        self._check_open(handle)
        return dict(self._functions)

    def list_databases(self, handle: DemoHandle) -> QueryResult:
        self._check_open(handle)
        rows = tuple((name,) for name in self._databases)
        return QueryResult(columns=("name",), rows=rows, status=f"{len(rows)} row(s)", elapsed_ms=0, row_count=len(rows))

    def describe_table(self, handle: DemoHandle, schema: str, table: str) -> QueryResult:
        columns = self.list_columns(handle, schema, table)
        rows = tuple(
            (column, "integer" if column == "id" or column.endswith("_id") else "text", "YES", None)
            for column in columns
        )
        return QueryResult(
            columns=("column_name", "data_type", "is_nullable", "column_default"),
            rows=rows,
            status=f"{len(rows)} row(s)",
            elapsed_ms=0,
            row_count=len(rows),
        )

    def execute(self, handle: DemoHandle, sql: str) -> QueryResult:
        self._check_open(handle)
        statement = sql.strip().rstrip(";").strip()
        if not statement:
            raise QueryExecutionError("Provide SQL to execute.")
        head = statement.split(None, 1)[0].upper()
        if head not in _DEMO_STATEMENTS:
            raise QueryExecutionError(f'syntax error at or near "{statement.split(None, 1)[0]}"')
        elapsed = random.randint(1, 15)
        if not returns_rows(statement):
            count = 0 if head in {"CREATE", "DROP", "ALTER"} else 1
            status = f"{head} 0 {count}" if head == "INSERT" else f"{head} {count}"
            return QueryResult(columns=(), rows=(), status=status, elapsed_ms=elapsed, affected_rows=count)
        table, columns = self._table_for(statement)
        rows = tuple(
            tuple(f"{column}_{idx}" for column in columns)
            for idx in range(self._row_count)
        )
        return QueryResult(
            columns=columns,
            rows=rows,
            status=f"Demo result for {table}",
            elapsed_ms=elapsed,
            row_count=len(rows),
        )

    def close(self, handle: DemoHandle) -> None:
        handle.closed = True

    def _table_for(self, statement: str) -> tuple[str, tuple[str, ...]]:
        match = re.search(r"\bFROM\s+([\w.]+)", statement, re.IGNORECASE)
        if match:
            schema, _, table = match.group(1).lower().rpartition(".")
            for candidate_schema, tables in self._catalog.items():
                if schema and schema != candidate_schema:
                    continue
                if table in tables:
                    return f"{candidate_schema}.{table}", tables[table]
        return "demo", ("value",)

    @staticmethod
    def _check_open(handle: DemoHandle) -> None:
        if handle.closed:
            raise QueryExecutionError("connection is closed")


_DEMO_STATEMENTS = frozenset(
    {"SELECT", "WITH", "SHOW", "VALUES", "TABLE", "EXPLAIN", "INSERT", "UPDATE", "DELETE",
     "CREATE", "DROP", "ALTER", "TRUNCATE", "GRANT", "REVOKE", "SET", "SAVEPOINT", "RELEASE"}
)


def returns_rows(statement: str) -> bool:
    token = statement.lstrip().split(None, 1)
    if not token:
        return False
    head = token[0].lower()
    if head in {"select", "with", "show", "values", "table", "explain"}:
        return True
    return head in {"insert", "update", "delete"} and re.search(r"\breturning\b", statement, re.IGNORECASE) is not None


def affected_rows(status: str) -> int | None:
    """Extract the row count from a command tag such as ``INSERT 0 3``."""

    parts = status.split()
    if len(parts) >= 2 and parts[-1].isdigit():
        return int(parts[-1])
    return None


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _build_result(records: Iterable[Any], started: float) -> QueryResult:
    rows: list[tuple[object, ...]] = []
    keys: tuple[Any, ...] = ()
    for record in records:
        if not keys:
            keys = tuple(record.keys())
        rows.append(tuple(record[key] for key in keys))
    return QueryResult(
        columns=tuple(str(key) for key in keys),
        rows=tuple(rows),
        status=f"{len(rows)} row(s)",
        elapsed_ms=_elapsed_ms(started),
        row_count=len(rows),
    )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


__all__ = [
    "AsyncpgHandle",
    "AsyncpgQueryExecutor",
    "DEMO_CATALOG",
    "DEMO_FUNCTIONS",
    "DemoHandle",
    "DemoQueryExecutor",
    "QueryExecutionError",
    "QueryExecutor",
    "QueryResult",
    "affected_rows",
    "quote_identifier",
    "returns_rows",
]
