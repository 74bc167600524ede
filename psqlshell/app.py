"""Command-line entry point and interactive loop for psqlshell."""

from __future__ import annotations

import argparse
import atexit
import logging
from pathlib import Path
from typing import Callable, Sequence

from prompt_toolkit import PromptSession, prompt
from prompt_toolkit.history import FileHistory, History, InMemoryHistory
from prompt_toolkit.lexers import PygmentsLexer
from pygments.lexers.sql import PostgresLexer

from . import __version__
from .config import AppConfig, ConnectionDefaults, load_config
from .connections import ConnectionBackendError
from .logs import configure_session_logging
from .models import ConnectionConfig
from .query import AsyncpgQueryExecutor, DemoQueryExecutor, QueryExecutor
from .render import OutcomeRenderer
from .session import CommandOutcome, SessionManager
from .sqlintel import MetadataCache, SqlCompleter, SqlIntelService

LOG = logging.getLogger(__name__)

FieldPrompter = Callable[[str, bool], str]


def build_parser() -> argparse.ArgumentParser:
    # -h is taken by --host, as in psql.
    parser = argparse.ArgumentParser(
        prog="psqlshell",
        description="Interactive PostgreSQL client with context-aware completion.",
        add_help=False,
    )
    parser.add_argument("-h", "--host", help="Database server host")
    parser.add_argument("-p", "--port", type=int, help="Database server port")
    parser.add_argument("-U", "--username", help="Database user name")
    parser.add_argument("-d", "--database", help="Database name to connect to")
    parser.add_argument("-W", "--password", help="Password (prompted for when omitted)")
    parser.add_argument("--config", type=Path, help="Path to an alternative config.toml")
    parser.add_argument("--demo", action="store_true", help="Use the in-memory demo executor")
    parser.add_argument("--help", action="help", help="Show this help message and exit")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def resolve_connection(
    args: argparse.Namespace,
    defaults: ConnectionDefaults,
    ask: FieldPrompter | None = None,
) -> ConnectionConfig:
    """Fill connection fields missing from ``args`` by prompting for them.

    An empty answer takes the bracketed default. The password has no default
    and an empty answer means no password.
    """

    ask = ask or _prompt_field
    host = args.host or ask(f"Host [{defaults.host}]: ", False).strip() or defaults.host
    port = args.port
    if port is None:
        answer = ask(f"Port [{defaults.port}]: ", False).strip()
        if answer and not answer.isdigit():
            raise ValueError(f"Invalid port '{answer}'.")
        port = int(answer) if answer else defaults.port
    database = args.database or ask(f"Database [{defaults.database}]: ", False).strip() or defaults.database
    username = args.username or ask(f"Username [{defaults.user}]: ", False).strip() or defaults.user
    password = args.password
    if password is None:
        password = ask("Password: ", True) or None
    return ConnectionConfig(host=host, port=port, database=database, username=username, password=password)


def _prompt_field(message: str, is_password: bool) -> str:
    return prompt(message, is_password=is_password)


def _history(path: Path | None) -> History:
    if path is None:
        return InMemoryHistory()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        LOG.warning("History directory unavailable; using in-memory history", extra={"path": str(path)})
        return InMemoryHistory()
    return FileHistory(str(path))


class InteractiveShell:
    """Read-eval-print loop over a ``SessionManager``."""

    def __init__(
        self,
        session: SessionManager,
        renderer: OutcomeRenderer,
        *,
        history_file: Path | None = None,
        prompt_session: PromptSession[str] | None = None,
    ) -> None:
        self._session = session
        self._renderer = renderer
        self._prompt = prompt_session or PromptSession(
            history=_history(history_file),
            lexer=PygmentsLexer(PostgresLexer),
            completer=SqlCompleter(session.sql_intel),
            complete_while_typing=False,
        )

    def handle(self, line: str) -> CommandOutcome:
        outcome = self._session.handle_line(line)
        self._renderer.render(outcome)
        return outcome

    def run(self) -> None:
        try:
            while True:
                try:
                    line = self._prompt.prompt(self._session.prompt)
                except KeyboardInterrupt:
                    self._renderer.console.print("^C")
                    continue
                except EOFError:
                    self._renderer.console.print("Goodbye!")
                    break
                if self.handle(line).quit:
                    break
        finally:
            self._session.close()


def build_session(config: AppConfig, executor: QueryExecutor) -> SessionManager:
    cache = MetadataCache(ttl=config.metadata_ttl, default_schema=config.default_schema)
    return SessionManager(
        executor,
        sql_intel=SqlIntelService(cache),
        default_schema=config.default_schema,
        timing_enabled=config.timing,
    )


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    config = load_config(args.config)
    log_path = configure_session_logging(config.log_dir)
    LOG.info("Starting psqlshell", extra={"version": __version__, "demo": args.demo})
    renderer = OutcomeRenderer()

    try:
        connection = resolve_connection(args, config.connection)
    except (KeyboardInterrupt, EOFError):
        return
    except ValueError as exc:
        renderer.render(CommandOutcome.error(str(exc)))
        return

    executor: QueryExecutor = DemoQueryExecutor() if args.demo else AsyncpgQueryExecutor()
    session = build_session(config, executor)
    atexit.register(session.close)
    try:
        try:
            renderer.render(session.connect(connection))
        except ConnectionBackendError as exc:
            LOG.error("Initial connection failed", extra={"error": str(exc)})
            renderer.render(CommandOutcome.error(str(exc)))
        renderer.banner(session.state.identity, version=__version__, executor=executor.label)
        renderer.console.print(f"Session log: {log_path}", style="dim")
        InteractiveShell(session, renderer, history_file=config.history_file).run()
    finally:
        session.close()
        if isinstance(executor, AsyncpgQueryExecutor):
            executor.shutdown()
        LOG.info("psqlshell exited")


__all__ = [
    "InteractiveShell",
    "build_parser",
    "build_session",
    "main",
    "parse_args",
    "resolve_connection",
]
