"""Tests for the session manager state machine."""

from __future__ import annotations

import pytest

from psqlshell.models import ConnectionConfig
from psqlshell.query import DEMO_CATALOG, DemoQueryExecutor, QueryExecutionError
from psqlshell.session import (
    CommandOutcome,
    SessionManager,
    SessionState,
    SessionStatus,
    Severity,
    TransactionCommand,
    TransactionStatement,
    TransactionStateError,
    transaction_statement,
)
from psqlshell.sqlintel import MetadataCache, MetadataKind, SqlIntelService

DEMO = ConnectionConfig(host="localhost", port=5432, database="demo", username="alice", password="secret")


class _RecordingExecutor(DemoQueryExecutor):
    def __init__(self) -> None:
        super().__init__()
        self.calls: list[str] = []
        self.fail_on: set[str] = set()

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise QueryExecutionError(f"{name} failed")

    def set_autocommit(self, handle, enabled, *, modes=""):  # type: ignore[no-untyped-def]
        self._record(f"autocommit:{enabled}:{modes}" if modes else f"autocommit:{enabled}")
        super().set_autocommit(handle, enabled, modes=modes)

    def commit(self, handle):  # type: ignore[no-untyped-def]
        self._record("commit")
        super().commit(handle)

    def rollback(self, handle):  # type: ignore[no-untyped-def]
        self._record("rollback")
        super().rollback(handle)

    def execute(self, handle, sql):  # type: ignore[no-untyped-def]
        self._record(f"execute:{sql}")
        return super().execute(handle, sql)

    def close(self, handle):  # type: ignore[no-untyped-def]
        self._record("close")
        super().close(handle)


def _session(executor: DemoQueryExecutor | None = None) -> SessionManager:
    cache = MetadataCache(clock=lambda: 0.0)
    return SessionManager(executor or _RecordingExecutor(), sql_intel=SqlIntelService(cache))


def _connected(executor: DemoQueryExecutor | None = None) -> SessionManager:
    session = _session(executor)
    session.connect(DEMO)
    return session


def _severities(outcome: CommandOutcome) -> list[Severity]:
    return [notice.severity for notice in outcome.notices]


def test_new_session_is_disconnected() -> None:
    session = _session()

    assert session.state.status is SessionStatus.DISCONNECTED
    assert session.prompt == "psql=> "


def test_connect_installs_identity_and_loads_metadata() -> None:
    session = _session()

    outcome = session.connect(DEMO)

    assert session.state.status is SessionStatus.CONNECTED
    assert session.state.identity is not None
    assert session.state.identity.database == "demo"
    assert session.prompt == "demo=> "
    assert outcome.notices[0].message == 'You are now connected to database "demo" as user "alice".'
    assert "users" in session.sql_intel.cache.get(MetadataKind.TABLES, "public")


def test_begin_enters_transaction_and_marks_prompt() -> None:
    executor = _RecordingExecutor()
    session = _connected(executor)

    outcome = session.handle_line("\\begin")

    assert outcome.notices[0].message == "BEGIN"
    assert session.state.in_transaction is True
    assert session.prompt == "demo*=> "
    assert executor.calls == ["autocommit:False"]


def test_begin_twice_warns_without_touching_executor() -> None:
    executor = _RecordingExecutor()
    session = _connected(executor)
    session.begin()

    outcome = session.handle_line("\\begin")

    assert _severities(outcome) == [Severity.WARNING]
    assert session.state.in_transaction is True
    assert executor.calls == ["autocommit:False"]


@pytest.mark.parametrize("line", ["\\commit", "\\rollback", "COMMIT", "rollback;"])
def test_commit_and_rollback_outside_transaction_warn(line: str) -> None:
    executor = _RecordingExecutor()
    session = _connected(executor)

    outcome = session.handle_line(line)

    assert _severities(outcome) == [Severity.WARNING]
    assert session.state.status is SessionStatus.CONNECTED
    assert executor.calls == []


def test_commit_while_disconnected_warns() -> None:
    outcome = _session().handle_line("\\commit")

    assert _severities(outcome) == [Severity.WARNING]


@pytest.mark.parametrize(
    "sql",
    ["BEGIN", "begin;", "BEGIN WORK", "begin transaction", "START TRANSACTION", "/* go */ begin ;"],
)
def test_sql_begin_matches_meta_begin(sql: str) -> None:
    via_meta_executor = _RecordingExecutor()
    via_meta = _connected(via_meta_executor)
    via_sql_executor = _RecordingExecutor()
    via_sql = _connected(via_sql_executor)

    assert via_sql.handle_line(sql) == via_meta.handle_line("\\begin")
    assert via_sql.state == via_meta.state
    assert via_sql_executor.calls == via_meta_executor.calls


@pytest.mark.parametrize(
    ("sql", "modes"),
    [
        ("START TRANSACTION ISOLATION LEVEL SERIALIZABLE", "ISOLATION LEVEL SERIALIZABLE"),
        ("begin read only;", "READ ONLY"),
        ("BEGIN WORK ISOLATION LEVEL REPEATABLE READ, READ WRITE", "ISOLATION LEVEL REPEATABLE READ, READ WRITE"),
        ("start transaction read only, not deferrable", "READ ONLY, NOT DEFERRABLE"),
    ],
)
def test_sql_begin_with_modes_is_tracked(sql: str, modes: str) -> None:
    executor = _RecordingExecutor()
    session = _connected(executor)

    outcome = session.handle_line(sql)

    assert outcome == CommandOutcome.info("BEGIN")
    assert session.state.in_transaction is True
    assert session.prompt == "demo*=> "
    assert executor.calls == [f"autocommit:False:{modes}"]

    assert session.handle_line("COMMIT") == CommandOutcome.info("COMMIT")
    assert executor.calls[1:] == ["commit", "autocommit:True"]


@pytest.mark.parametrize(
    "sql",
    [
        "BEGIN ISOLATION LEVEL CHAOTIC",
        "START TRANSACTION READ ONLY,",
        "COMMIT AND CHAIN",
        "rollback and chain",
        "BEGIN; INSERT INTO users VALUES (1)",
        "SELECT 1; COMMIT",
    ],
)
def test_untrackable_transaction_sql_is_rejected(sql: str) -> None:
    executor = _RecordingExecutor()
    session = _connected(executor)
    session.begin()
    executor.calls.clear()

    outcome = session.handle_line(sql)

    assert _severities(outcome) == [Severity.ERROR]
    assert session.state.in_transaction is True
    assert executor.calls == []


@pytest.mark.parametrize(
    ("sql", "meta", "method"),
    [
        ("COMMIT", "\\commit", "commit"),
        ("end", "\\commit", "commit"),
        ("commit work;", "\\commit", "commit"),
        ("ROLLBACK", "\\rollback", "rollback"),
        ("abort transaction", "\\rollback", "rollback"),
    ],
)
def test_sql_transaction_end_matches_meta_command(sql: str, meta: str, method: str) -> None:
    via_meta_executor = _RecordingExecutor()
    via_meta = _connected(via_meta_executor)
    via_meta.begin()
    via_sql_executor = _RecordingExecutor()
    via_sql = _connected(via_sql_executor)
    via_sql.begin()

    assert via_sql.handle_line(sql) == via_meta.handle_line(meta)
    assert via_sql.state.in_transaction is False
    assert method in via_sql_executor.calls
    assert not any(call.startswith("execute:") for call in via_sql_executor.calls)


@pytest.mark.parametrize(
    ("sql", "expected"),
    [
        ("BEGIN", TransactionStatement(TransactionCommand.BEGIN)),
        ("  Start   Transaction ; ", TransactionStatement(TransactionCommand.BEGIN)),
        ("-- note\nCOMMIT", TransactionStatement(TransactionCommand.COMMIT)),
        ("ABORT WORK", TransactionStatement(TransactionCommand.ROLLBACK)),
        ("COMMIT AND NO CHAIN", TransactionStatement(TransactionCommand.COMMIT)),
        ("BEGIN READ ONLY", TransactionStatement(TransactionCommand.BEGIN, "READ ONLY")),
        ("ROLLBACK TO SAVEPOINT s1", None),
        ("rollback work to s1", None),
        ("START", None),
        ("SELECT 'BEGIN'", None),
        ("COMMIT PREPARED 'x'", None),
        ("SELECT 1; SELECT 2", None),
    ],
)
def test_transaction_statement_recognition(sql: str, expected: TransactionStatement | None) -> None:
    assert transaction_statement(sql) == expected


def test_transaction_statement_in_batch_raises() -> None:
    with pytest.raises(TransactionStateError):
        transaction_statement("BEGIN; SELECT 1")


def test_failed_commit_stays_in_transaction() -> None:
    executor = _RecordingExecutor()
    session = _connected(executor)
    session.begin()
    executor.fail_on.add("commit")

    outcome = session.handle_line("COMMIT")

    assert _severities(outcome) == [Severity.ERROR]
    assert outcome.notices[0].message == "commit failed"
    assert session.state.in_transaction is True


def test_failed_begin_leaves_state_unchanged() -> None:
    executor = _RecordingExecutor()
    executor.fail_on.add("autocommit:False")
    session = _connected(executor)

    outcome = session.handle_line("BEGIN")

    assert _severities(outcome) == [Severity.ERROR]
    assert session.state.status is SessionStatus.CONNECTED


def test_execution_error_keeps_transaction_open() -> None:
    session = _connected()
    session.begin()

    outcome = session.handle_line("SELEC 1")

    assert _severities(outcome) == [Severity.ERROR]
    assert 'syntax error at or near "SELEC"' in outcome.notices[0].message
    assert session.state.in_transaction is True


def test_sql_is_forwarded_to_executor() -> None:
    executor = _RecordingExecutor()
    session = _connected(executor)

    outcome = session.handle_line("SELECT * FROM users")

    assert executor.calls == ["execute:SELECT * FROM users"]
    assert outcome.result is not None
    assert outcome.result.columns == ("id", "name", "email", "created_at")
    assert outcome.elapsed_ms is None


def test_sql_while_disconnected_reports_not_connected() -> None:
    outcome = _session().handle_line("SELECT 1")

    assert _severities(outcome) == [Severity.ERROR]
    assert outcome.notices[0].message.startswith("Not connected to any database.")


def test_savepoint_requires_transaction_and_name() -> None:
    session = _connected()

    outside = session.handle_line("\\savepoint s1")
    session.begin()
    unnamed = session.handle_line("\\savepoint")
    created = session.handle_line("\\savepoint s1")
    released = session.handle_line("\\release s1")
    unknown = session.handle_line("\\release s2")

    assert _severities(outside) == [Severity.ERROR]
    assert _severities(unnamed) == [Severity.ERROR]
    assert created.notices[0].message == "SAVEPOINT"
    assert released.notices[0].message == "RELEASE"
    assert _severities(unknown) == [Severity.ERROR]
    assert session.state.in_transaction is True


def test_release_outside_transaction_is_an_error() -> None:
    outcome = _connected().handle_line("\\release s1")

    assert _severities(outcome) == [Severity.ERROR]


def test_reconnect_resets_transaction_and_closes_old_handle() -> None:
    executor = _RecordingExecutor()
    session = _connected(executor)
    session.begin()

    session.handle_line("\\c postgres")

    assert session.state.status is SessionStatus.CONNECTED
    assert session.state.identity is not None
    assert session.state.identity.database == "postgres"
    assert session.state.identity.username == "alice"
    assert "close" in executor.calls


def test_failed_reconnect_leaves_session_disconnected() -> None:
    session = _connected()

    outcome = session.handle_line("\\connect nosuchdb")

    assert _severities(outcome) == [Severity.ERROR]
    assert session.state.status is SessionStatus.DISCONNECTED
    assert session.prompt == "psql=> "
    assert session.sql_intel.cache.get(MetadataKind.SCHEMAS) == ()


def test_connect_without_target_reconnects_current_database() -> None:
    session = _connected()

    session.handle_line("\\c")

    assert session.state.identity is not None
    assert session.state.identity.database == "demo"


def test_describe_matches_catalog_columns() -> None:
    executor = _RecordingExecutor()
    session = _connected(executor)

    outcome = session.handle_line("\\d users")

    assert outcome.result is not None
    names = [row[0] for row in outcome.result.rows]
    assert tuple(names) == DEMO_CATALOG["public"]["users"]
    assert outcome.title == 'Table "public.users"'


def test_describe_unknown_table_is_an_error() -> None:
    outcome = _connected().handle_line("\\d missing")

    assert _severities(outcome) == [Severity.ERROR]


def test_list_relations_and_databases() -> None:
    session = _connected()

    tables = session.handle_line("\\dt")
    databases = session.handle_line("\\l")

    assert tables.result is not None
    assert [row[1] for row in tables.result.rows] == ["users", "orders", "payments"]
    assert databases.result is not None
    assert ("demo",) in databases.result.rows


def test_timing_toggles_elapsed_reporting() -> None:
    session = _connected()

    assert session.handle_line("\\timing").notices[0].message == "Timing is on."
    timed = session.handle_line("SELECT 1")
    assert session.handle_line("\\timing off").notices[0].message == "Timing is off."
    untimed = session.handle_line("SELECT 1")

    assert timed.elapsed_ms is not None
    assert untimed.elapsed_ms is None


def test_timing_rejects_unknown_value() -> None:
    outcome = _session().handle_line("\\timing maybe")

    assert _severities(outcome) == [Severity.ERROR]


def test_mode_reports_query_mode() -> None:
    session = _connected()

    assert session.mode().notices[0].message == "Current query mode: autocommit"
    session.begin()
    assert "explicit transaction" in session.mode().notices[0].message


def test_help_lists_meta_commands() -> None:
    messages = [notice.message for notice in _session().handle_line("\\help").notices]

    assert any(message.startswith("\\savepoint <name>") for message in messages)


def test_unknown_meta_command_is_an_error() -> None:
    outcome = _session().handle_line("\\frobnicate")

    assert _severities(outcome)[0] is Severity.ERROR
    assert outcome.notices[0].message == "Unknown command: \\frobnicate"


def test_quit_requests_exit() -> None:
    outcome = _session().handle_line("\\q")

    assert outcome.quit is True
    assert outcome.notices[0].message == "Goodbye!"


def test_close_rolls_back_open_transaction() -> None:
    executor = _RecordingExecutor()
    session = _connected(executor)
    session.begin()

    session.close()

    assert executor.calls[-2:] == ["rollback", "close"]
    assert session.state.status is SessionStatus.DISCONNECTED
    session.close()
    assert executor.calls.count("close") == 1


def test_close_survives_rollback_failure() -> None:
    executor = _RecordingExecutor()
    session = _connected(executor)
    session.begin()
    executor.fail_on.add("rollback")

    session.close()

    assert "close" in executor.calls
    assert session.state.status is SessionStatus.DISCONNECTED


def test_state_rejects_transaction_without_connection() -> None:
    with pytest.raises(ValueError):
        SessionState(in_transaction=True)
