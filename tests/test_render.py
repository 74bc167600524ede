"""Tests for outcome rendering."""

from __future__ import annotations

import io

from rich.console import Console

from psqlshell.query import QueryResult
from psqlshell.render import OutcomeRenderer
from psqlshell.session import CommandOutcome, Notice, Severity


def _render(outcome: CommandOutcome) -> str:
    buffer = io.StringIO()
    OutcomeRenderer(Console(file=buffer, width=120, highlight=False)).render(outcome)
    return buffer.getvalue()


def test_rows_render_as_table_with_count() -> None:
    result = QueryResult(
        columns=("id", "email"),
        rows=((1, "a@example.com"), (2, None)),
        status="2 row(s)",
        elapsed_ms=3,
        row_count=2,
    )

    text = _render(CommandOutcome(result=result, title="accounts"))

    assert "email" in text
    assert "a@example.com" in text
    assert "NULL" in text
    assert "(2 rows)" in text


def test_single_row_count_is_singular() -> None:
    result = QueryResult(columns=("n",), rows=((1,),), status="1 row(s)", elapsed_ms=0, row_count=1)

    assert "(1 row)" in _render(CommandOutcome(result=result))


def test_write_reports_affected_rows_and_timing() -> None:
    result = QueryResult(columns=(), rows=(), status="DELETE 4", elapsed_ms=12, affected_rows=4)

    text = _render(CommandOutcome(result=result, elapsed_ms=12))

    assert "4 row(s) affected" in text
    assert "Time: 12 ms" in text


def test_status_only_result_prints_command_tag() -> None:
    result = QueryResult(columns=(), rows=(), status="CREATE TABLE", elapsed_ms=1)

    assert "CREATE TABLE" in _render(CommandOutcome(result=result))


def test_notices_carry_severity_prefix() -> None:
    outcome = CommandOutcome(
        notices=(
            Notice("BEGIN"),
            Notice("Already in transaction.", Severity.WARNING),
            Notice("[boom]", Severity.ERROR),
        )
    )

    lines = _render(outcome).splitlines()

    assert lines == ["BEGIN", "WARNING: Already in transaction.", "ERROR: [boom]"]
