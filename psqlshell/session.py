"""Session state machine wiring meta-commands, transactions and metadata."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Mapping, Sequence

import sqlglot
from sqlglot.errors import TokenError
from sqlglot.tokens import Token, TokenType

from .connections import ConnectionBackendError, parse_connect_target
from .models import ConnectionConfig, ConnectionIdentity
from .query import QueryExecutionError, QueryExecutor, QueryResult
from .sqlintel import (
    DEFAULT_SCHEMA,
    META_PREFIX,
    MetaCommandCatalog,
    MetadataFetchError,
    SqlIntelService,
)
from .sqlintel.classifier import split_qualified

LOG = logging.getLogger(__name__)

class NotConnectedError(RuntimeError):
    """Raised when a command needs a connection and the session has none."""


class TransactionStateError(RuntimeError):
    """Raised when a transaction command cannot be applied to the session."""


class SessionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    IN_TRANSACTION = "in-transaction"


@dataclass(frozen=True, slots=True)
class SessionState:
    """Current session snapshot; replaced on every transition."""

    identity: ConnectionIdentity | None = None
    in_transaction: bool = False
    timing_enabled: bool = False

    def __post_init__(self) -> None:
        if self.in_transaction and self.identity is None:
            raise ValueError("A disconnected session cannot be inside a transaction.")

    @property
    def connected(self) -> bool:
        return self.identity is not None

    @property
    def status(self) -> SessionStatus:
        if self.identity is None:
            return SessionStatus.DISCONNECTED
        if self.in_transaction:
            return SessionStatus.IN_TRANSACTION
        return SessionStatus.CONNECTED


def prompt_for(state: SessionState) -> str:
    """Prompt text for a state; ``*`` marks an open transaction."""

    if state.identity is None:
        return "psql=> "
    marker = "*" if state.in_transaction else ""
    return f"{state.identity.database}{marker}=> "


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Notice:
    message: str
    severity: Severity = Severity.INFO


@dataclass(frozen=True, slots=True)
class CommandOutcome:
    """User-visible output of one handled line."""

    notices: tuple[Notice, ...] = ()
    result: QueryResult | None = None
    title: str | None = None
    elapsed_ms: int | None = None
    quit: bool = False

    @classmethod
    def info(cls, *messages: str) -> "CommandOutcome":
        return cls(notices=tuple(Notice(message) for message in messages))

    @classmethod
    def warning(cls, message: str) -> "CommandOutcome":
        return cls(notices=(Notice(message, Severity.WARNING),))

    @classmethod
    def error(cls, *messages: str) -> "CommandOutcome":
        return cls(notices=tuple(Notice(message, Severity.ERROR) for message in messages))


class TransactionCommand(str, Enum):
    BEGIN = "begin"
    COMMIT = "commit"
    ROLLBACK = "rollback"


@dataclass(frozen=True, slots=True)
class TransactionStatement:
    command: TransactionCommand
    modes: str = ""


_TRANSACTION_VERBS = {
    "BEGIN": TransactionCommand.BEGIN,
    "START": TransactionCommand.BEGIN,
    "COMMIT": TransactionCommand.COMMIT,
    "END": TransactionCommand.COMMIT,
    "ROLLBACK": TransactionCommand.ROLLBACK,
    "ABORT": TransactionCommand.ROLLBACK,
}

_TRANSACTION_MODES = (
    ("ISOLATION", "LEVEL", "SERIALIZABLE"),
    ("ISOLATION", "LEVEL", "REPEATABLE", "READ"),
    ("ISOLATION", "LEVEL", "READ", "COMMITTED"),
    ("ISOLATION", "LEVEL", "READ", "UNCOMMITTED"),
    ("READ", "WRITE"),
    ("READ", "ONLY"),
    ("NOT", "DEFERRABLE"),
    ("DEFERRABLE",),
)


def transaction_statement(sql: str) -> TransactionStatement | None:
    """Recognise transaction statements typed as SQL.

    Matches ``BEGIN``/``START TRANSACTION`` with optional transaction modes,
    ``COMMIT``/``END`` and ``ROLLBACK``/``ABORT`` (optionally ``AND NO
    CHAIN``), each with an optional ``WORK`` or ``TRANSACTION`` and trailing
    semicolons. Comments are ignored. ``ROLLBACK TO SAVEPOINT`` and the
    two-phase ``PREPARED`` forms are left for the executor.

    Transaction control that the session could not track raises
    ``TransactionStateError``: unknown options, ``AND CHAIN``, or a
    transaction statement inside a multi-statement line.
    """

    try:
        tokens = sqlglot.tokenize(sql, read="postgres")
    except TokenError:
        return None
    statements: list[list[Token]] = [[]]
    for token in tokens:
        if token.token_type == TokenType.SEMICOLON:
            statements.append([])
        else:
            statements[-1].append(token)
    statements = [statement for statement in statements if statement]
    if not statements:
        return None
    parsed = [_parse_transaction(statement) for statement in statements]
    if len(parsed) == 1:
        return parsed[0]
    if any(statement is not None for statement in parsed):
        raise TransactionStateError("Transaction statements must be entered on their own.")
    return None


def _parse_transaction(tokens: list[Token]) -> TransactionStatement | None:
    text = " ".join(token.text for token in tokens)
    words = text.replace(",", " , ").upper().split()
    verb, rest = words[0], words[1:]
    command = _TRANSACTION_VERBS.get(verb)
    if command is None:
        return None
    if verb == "START":
        if rest[:1] != ["TRANSACTION"]:
            return None
        rest = rest[1:]
    elif rest[:1] == ["PREPARED"]:
        return None
    elif rest[:1] in (["WORK"], ["TRANSACTION"]):
        rest = rest[1:]
    if verb == "ROLLBACK" and rest[:1] == ["TO"]:
        return None
    if any(_is_quoted(tokens, index) for index in range(len(tokens))):
        raise TransactionStateError(f"Unsupported transaction statement: {text}")
    if command is TransactionCommand.BEGIN:
        modes = _transaction_modes(rest)
        if modes is None:
            raise TransactionStateError(f"Unsupported transaction options: {' '.join(rest)}")
        return TransactionStatement(command, modes)
    if rest and rest != ["AND", "NO", "CHAIN"]:
        raise TransactionStateError(f"Unsupported transaction statement: {text}")
    return TransactionStatement(command)


def _transaction_modes(words: list[str]) -> str | None:
    modes: list[str] = []
    index = 0
    while index < len(words):
        if modes and words[index] == ",":
            index += 1
        for mode in _TRANSACTION_MODES:
            if tuple(words[index : index + len(mode)]) == mode:
                modes.append(" ".join(mode))
                index += len(mode)
                break
        else:
            return None
    return ", ".join(modes)


def _is_quoted(tokens: list[Token], index: int) -> bool:
    # The postgres tokenizer hands back the text after a bare BEGIN as one
    # STRING token; only that one is not a literal.
    token = tokens[index]
    if token.token_type == TokenType.IDENTIFIER:
        return True
    if token.token_type != TokenType.STRING:
        return False
    return index == 0 or tokens[index - 1].token_type != TokenType.COMMAND


class ExecutorMetadataSource:
    """Metadata source bound to one executor handle."""

    def __init__(self, executor: QueryExecutor, handle: Any) -> None:
        self._executor = executor
        self._handle = handle

    def list_schemas(self) -> Sequence[str]:
        return self._call(self._executor.list_schemas)

    def list_tables(self, schema: str) -> Sequence[str]:
        return self._call(self._executor.list_tables, schema)

    def list_columns(self, schema: str, table: str) -> Sequence[str]:
        return self._call(self._executor.list_columns, schema, table)

    def list_functions(self) -> Mapping[str, Sequence[str]]:
        return self._call(self._executor.list_functions)

    def _call(self, method: Callable[..., Any], *args: Any) -> Any:
        try:
            return method(self._handle, *args)
        except (QueryExecutionError, ConnectionBackendError) as exc:
            raise MetadataFetchError(str(exc)) from exc


_SURFACED_ERRORS = (
    ConnectionBackendError,
    NotConnectedError,
    QueryExecutionError,
    TransactionStateError,
    ValueError,
)


class SessionManager:
    """Owns the connection handle and the transaction state machine.

    States: disconnected, connected, in-transaction. Every executor call that
    backs a transition happens before the state is replaced, so a failing
    executor leaves the state untouched.
    """

    def __init__(
        self,
        executor: QueryExecutor,
        *,
        sql_intel: SqlIntelService | None = None,
        meta_commands: MetaCommandCatalog | None = None,
        default_schema: str = DEFAULT_SCHEMA,
        timing_enabled: bool = False,
    ) -> None:
        self._executor = executor
        self._sql_intel = sql_intel or SqlIntelService()
        self._meta_commands = meta_commands or MetaCommandCatalog.default()
        self._default_schema = default_schema
        self._state = SessionState(timing_enabled=timing_enabled)
        self._handle: Any = None
        self._config: ConnectionConfig | None = None
        self._meta_handlers: dict[str, Callable[[str], CommandOutcome]] = {
            "connect": self._meta_connect,
            "list": self._meta_list,
            "dt": self._meta_dt,
            "d": self._meta_describe,
            "timing": self.set_timing,
            "begin": lambda _args: self.begin(),
            "commit": lambda _args: self.commit(),
            "rollback": lambda _args: self.rollback(),
            "savepoint": self.savepoint,
            "release": self.release,
            "mode": lambda _args: self.mode(),
            "help": lambda _args: self.help(),
            "quit": lambda _args: CommandOutcome(notices=(Notice("Goodbye!"),), quit=True),
        }

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def prompt(self) -> str:
        return prompt_for(self._state)

    @property
    def sql_intel(self) -> SqlIntelService:
        return self._sql_intel

    def handle_line(self, line: str) -> CommandOutcome:
        """Run one line of user input and report what the user should see."""

        text = line.strip()
        if not text:
            return CommandOutcome()
        try:
            if text.startswith(META_PREFIX):
                return self.run_meta_command(text)
            return self.execute(text)
        except _SURFACED_ERRORS as exc:
            LOG.info("Command failed", extra={"error": str(exc), "kind": type(exc).__name__})
            return CommandOutcome.error(str(exc))

    def run_meta_command(self, text: str) -> CommandOutcome:
        token, _, args = text.strip().partition(" ")
        entry = self._meta_commands.resolve(token)
        if entry is None:
            return CommandOutcome.error(
                f"Unknown command: {token}",
                f"Type {META_PREFIX}help for available commands",
            )
        LOG.debug("Meta-command", extra={"command": entry.name})
        return self._meta_handlers[entry.name](args.strip())

    def execute(self, sql: str) -> CommandOutcome:
        """Run SQL, routing transaction statements through the state machine."""

        statement = transaction_statement(sql)
        if statement is not None:
            if statement.command is TransactionCommand.BEGIN:
                return self.begin(statement.modes)
            if statement.command is TransactionCommand.COMMIT:
                return self.commit()
            return self.rollback()
        handle = self._require_handle()
        LOG.info("Executing SQL", extra={"in_transaction": self._state.in_transaction})
        try:
            result = self._executor.execute(handle, sql)
        except QueryExecutionError:
            LOG.exception("SQL execution error")
            raise
        elapsed = result.elapsed_ms if self._state.timing_enabled else None
        return CommandOutcome(result=result, elapsed_ms=elapsed)

    def connect(self, config: ConnectionConfig) -> CommandOutcome:
        """Open a new connection, replacing any current one."""

        if not config.database:
            raise ValueError("A database name is required to connect.")
        previous = self._state.identity
        if self._handle is not None:
            self._release_handle()
        try:
            handle = self._executor.connect(
                config.host,
                config.port,
                config.database,
                config.username or "",
                config.password,
            )
        except ConnectionBackendError:
            LOG.warning("Connection attempt failed", extra={"target": str(config.identity())})
            self._sql_intel.cache.invalidate()
            raise
        identity = config.identity()
        self._handle = handle
        self._config = config
        cache = self._sql_intel.cache
        if not identity.same_database(previous):
            cache.invalidate()
        cache.bind(ExecutorMetadataSource(self._executor, handle))
        self._set_state(SessionState(identity=identity, timing_enabled=self._state.timing_enabled))
        cache.refresh()
        LOG.info("Session connected", extra={"target": str(identity)})
        return CommandOutcome.info(
            f'You are now connected to database "{identity.database}" as user "{identity.username}".'
        )

    def begin(self, modes: str = "") -> CommandOutcome:
        """Open an explicit transaction, applying ``modes`` such as ``READ ONLY``."""

        if self._state.in_transaction:
            return CommandOutcome.warning("Already in transaction.")
        handle = self._require_handle()
        self._executor.set_autocommit(handle, False, modes=modes)
        self._set_state(replace(self._state, in_transaction=True))
        return CommandOutcome.info("BEGIN")

    def commit(self) -> CommandOutcome:
        if not self._state.in_transaction:
            return CommandOutcome.warning("No transaction in progress.")
        handle = self._require_handle()
        self._executor.commit(handle)
        self._executor.set_autocommit(handle, True)
        self._set_state(replace(self._state, in_transaction=False))
        return CommandOutcome.info("COMMIT")

    def rollback(self) -> CommandOutcome:
        if not self._state.in_transaction:
            return CommandOutcome.warning("No transaction in progress.")
        handle = self._require_handle()
        self._executor.rollback(handle)
        self._executor.set_autocommit(handle, True)
        self._set_state(replace(self._state, in_transaction=False))
        return CommandOutcome.info("ROLLBACK")

    def savepoint(self, name: str) -> CommandOutcome:
        handle = self._require_transaction("SAVEPOINT", name)
        self._executor.create_savepoint(handle, name.strip())
        return CommandOutcome.info("SAVEPOINT")

    def release(self, name: str) -> CommandOutcome:
        handle = self._require_transaction("RELEASE", name)
        self._executor.release_savepoint(handle, name.strip())
        return CommandOutcome.info("RELEASE")

    def set_timing(self, value: str = "") -> CommandOutcome:
        choice = value.strip().lower()
        if not choice:
            enabled = not self._state.timing_enabled
        elif choice in {"on", "true", "1"}:
            enabled = True
        elif choice in {"off", "false", "0"}:
            enabled = False
        else:
            raise ValueError(f'unrecognized value "{value}" for "{META_PREFIX}timing": Boolean expected')
        self._set_state(replace(self._state, timing_enabled=enabled))
        return CommandOutcome.info(f"Timing is {'on' if enabled else 'off'}.")

    def mode(self) -> CommandOutcome:
        status = self._state.status
        if status is SessionStatus.DISCONNECTED:
            mode = "disconnected"
        elif status is SessionStatus.IN_TRANSACTION:
            mode = "explicit transaction (autocommit off)"
        else:
            mode = "autocommit"
        return CommandOutcome.info(f"Current query mode: {mode}", f"Executor: {self._executor.label}")

    def help(self) -> CommandOutcome:
        width = max(len(entry.usage) for entry in self._meta_commands.entries)
        lines = ["Available commands:"]
        lines.extend(
            f"{entry.usage.ljust(width)}  - {entry.description}"
            for entry in self._meta_commands.entries
        )
        lines.append("")
        lines.append("SQL commands can be entered directly.")
        return CommandOutcome.info(*lines)

    def close(self) -> None:
        """Tear the session down, rolling back an open transaction first."""

        handle = self._handle
        if handle is None:
            return
        if self._state.in_transaction:
            try:
                self._executor.rollback(handle)
            except Exception:
                LOG.exception("Rollback during shutdown failed")
        self._handle = None
        try:
            self._executor.close(handle)
        except Exception:
            LOG.exception("Error during cleanup")
        cache = self._sql_intel.cache
        cache.bind(None)
        cache.invalidate()
        self._set_state(SessionState(timing_enabled=self._state.timing_enabled))
        LOG.info("Session closed")

    def _meta_connect(self, args: str) -> CommandOutcome:
        return self.connect(parse_connect_target(args, self._config))

    def _meta_list(self, _args: str) -> CommandOutcome:
        handle = self._require_handle()
        return CommandOutcome(result=self._executor.list_databases(handle), title="List of databases")

    def _meta_dt(self, args: str) -> CommandOutcome:
        handle = self._require_handle()
        schema = _relation_name(args) if args else self._default_schema
        tables = self._executor.list_tables(handle, schema)
        if not tables:
            return CommandOutcome.info("Did not find any relations.")
        owner = self._state.identity.username if self._state.identity else ""
        rows = tuple((schema, table, owner) for table in tables)
        result = QueryResult(
            columns=("Schema", "Name", "Owner"),
            rows=rows,
            status=f"{len(rows)} row(s)",
            elapsed_ms=0,
            row_count=len(rows),
        )
        return CommandOutcome(result=result, title="List of relations")

    def _meta_describe(self, args: str) -> CommandOutcome:
        if not args:
            return self._meta_dt("")
        handle = self._require_handle()
        schema, table = split_qualified(args)
        schema = _relation_name(schema) if schema else self._default_schema
        table = _relation_name(table)
        result = self._executor.describe_table(handle, schema, table)
        if not result.rows:
            return CommandOutcome.error(f'Did not find any relation named "{args}".')
        return CommandOutcome(result=result, title=f'Table "{schema}.{table}"')

    def _require_handle(self) -> Any:
        if self._handle is None:
            raise NotConnectedError(
                f"Not connected to any database. Use {META_PREFIX}connect to establish a connection."
            )
        return self._handle

    def _require_transaction(self, command: str, name: str) -> Any:
        if not name.strip():
            raise TransactionStateError(f"{command} requires a savepoint name.")
        if not self._state.in_transaction:
            raise TransactionStateError(f"{command} can only be used in transaction blocks.")
        return self._require_handle()

    def _release_handle(self) -> None:
        handle = self._handle
        self._handle = None
        self._sql_intel.cache.bind(None)
        try:
            self._executor.close(handle)
        except Exception:
            LOG.exception("Failed to close previous connection")
        self._set_state(SessionState(timing_enabled=self._state.timing_enabled))

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        self._sql_intel.set_connected(state.connected)


def _relation_name(name: str) -> str:
    name = name.strip()
    if len(name) >= 2 and name.startswith('"') and name.endswith('"'):
        return name[1:-1]
    return name.lower()


__all__ = [
    "CommandOutcome",
    "ExecutorMetadataSource",
    "NotConnectedError",
    "Notice",
    "SessionManager",
    "SessionState",
    "SessionStatus",
    "Severity",
    "TransactionCommand",
    "TransactionStatement",
    "TransactionStateError",
    "prompt_for",
    "transaction_statement",
]
