"""Tests for the command-line surface and the interactive loop."""

from __future__ import annotations

import io

import pytest
from prompt_toolkit.completion import CompleteEvent
from prompt_toolkit.document import Document
from rich.console import Console

from psqlshell.app import InteractiveShell, build_session, parse_args, resolve_connection
from psqlshell.config import AppConfig, ConnectionDefaults
from psqlshell.models import ConnectionConfig
from psqlshell.query import DemoQueryExecutor
from psqlshell.render import OutcomeRenderer
from psqlshell.session import SessionStatus
from psqlshell.sqlintel import SqlCompleter


class _ScriptedPrompt:
    def __init__(self, lines: list[object]) -> None:
        self._lines = list(lines)
        self.prompts: list[str] = []

    def prompt(self, message: str) -> str:
        self.prompts.append(message)
        if not self._lines:
            raise EOFError
        line = self._lines.pop(0)
        if isinstance(line, BaseException):
            raise line
        return str(line)


class _Answers:
    def __init__(self, answers: dict[str, str]) -> None:
        self.answers = answers
        self.asked: list[tuple[str, bool]] = []

    def __call__(self, message: str, is_password: bool) -> str:
        self.asked.append((message, is_password))
        for prefix, answer in self.answers.items():
            if message.startswith(prefix):
                return answer
        return ""


def _renderer() -> tuple[OutcomeRenderer, io.StringIO]:
    buffer = io.StringIO()
    return OutcomeRenderer(Console(file=buffer, width=120, highlight=False)), buffer


def test_parse_args_uses_psql_style_flags() -> None:
    args = parse_args(["-h", "db.local", "-p", "6543", "-U", "alice", "-d", "sales", "-W", "pw", "--demo"])

    assert (args.host, args.port, args.username, args.database, args.password) == (
        "db.local",
        6543,
        "alice",
        "sales",
        "pw",
    )
    assert args.demo is True


def test_help_flag_exits(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        parse_args(["--help"])

    assert excinfo.value.code == 0
    assert "--username" in capsys.readouterr().out


def test_resolve_connection_prompts_only_for_missing_fields() -> None:
    args = parse_args(["-h", "db.local", "-d", "sales"])
    answers = _Answers({"Port": "", "Username": "bob", "Password": "hunter2"})

    config = resolve_connection(args, ConnectionDefaults(), answers)

    assert config == ConnectionConfig(host="db.local", port=5432, database="sales", username="bob", password="hunter2")
    assert [message for message, _ in answers.asked] == ["Port [5432]: ", "Username [postgres]: ", "Password: "]
    assert answers.asked[-1][1] is True


def test_resolve_connection_skips_prompts_when_complete() -> None:
    args = parse_args(["-h", "x", "-p", "1", "-U", "u", "-d", "d", "-W", ""])
    answers = _Answers({})

    config = resolve_connection(args, ConnectionDefaults(), answers)

    assert answers.asked == []
    assert config.password == ""


def test_resolve_connection_rejects_bad_port() -> None:
    args = parse_args(["-h", "x", "-d", "d", "-U", "u", "-W", "p"])

    with pytest.raises(ValueError):
        resolve_connection(args, ConnectionDefaults(), _Answers({"Port": "abc"}))


def test_shell_runs_lines_until_quit() -> None:
    session = build_session(AppConfig(), DemoQueryExecutor())
    session.connect(ConnectionConfig(database="demo", username="alice"))
    renderer, output = _renderer()
    scripted = _ScriptedPrompt(["\\begin", KeyboardInterrupt(), "SELECT * FROM users", "\\q", "SELECT 1"])

    InteractiveShell(session, renderer, prompt_session=scripted).run()  # type: ignore[arg-type]

    text = output.getvalue()
    assert scripted.prompts == ["demo=> ", "demo*=> ", "demo*=> ", "demo*=> "]
    assert "BEGIN" in text
    assert "^C" in text
    assert "(5 rows)" in text
    assert "Goodbye!" in text
    assert session.state.status is SessionStatus.DISCONNECTED


def test_shell_stops_on_eof() -> None:
    session = build_session(AppConfig(), DemoQueryExecutor())
    renderer, output = _renderer()

    InteractiveShell(session, renderer, prompt_session=_ScriptedPrompt([])).run()  # type: ignore[arg-type]

    assert "Goodbye!" in output.getvalue()


def test_completer_adapter_yields_prompt_toolkit_completions() -> None:
    session = build_session(AppConfig(), DemoQueryExecutor())
    session.connect(ConnectionConfig(database="demo", username="alice"))
    completer = SqlCompleter(session.sql_intel)
    text = "SELECT * FROM us"

    completions = list(completer.get_completions(Document(text, len(text)), CompleteEvent()))

    assert [c.text for c in completions][:2] == ["users", "public.users"]
    assert all(c.start_position == -2 for c in completions)


def test_completer_is_silent_at_buffer_start() -> None:
    completer = SqlCompleter(build_session(AppConfig(), DemoQueryExecutor()).sql_intel)

    assert list(completer.get_completions(Document("", 0), CompleteEvent())) == []
