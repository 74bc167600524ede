"""Rich rendering of command outcomes."""

from __future__ import annotations

from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .models import ConnectionIdentity
from .query import QueryResult
from .session import CommandOutcome, Notice, Severity

NULL_DISPLAY = "NULL"

_NOTICE_STYLES = {
    Severity.INFO: "",
    Severity.WARNING: "yellow",
    Severity.ERROR: "bold red",
}


class OutcomeRenderer:
    """Writes notices, result tables and timings to a rich console."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console(highlight=False)

    @property
    def console(self) -> Console:
        return self._console

    def render(self, outcome: CommandOutcome) -> None:
        for notice in outcome.notices:
            self.notice(notice)
        if outcome.result is not None:
            self.result(outcome.result, title=outcome.title)
        if outcome.elapsed_ms is not None:
            self._console.print(f"Time: {outcome.elapsed_ms} ms")

    def notice(self, notice: Notice) -> None:
        message = notice.message
        if notice.severity is Severity.ERROR:
            message = f"ERROR: {message}"
        elif notice.severity is Severity.WARNING:
            message = f"WARNING: {message}"
        self._console.print(Text(message, style=_NOTICE_STYLES[notice.severity]))

    def result(self, result: QueryResult, *, title: str | None = None) -> None:
        if result.row_count is None:
            if result.affected_rows is not None:
                self._console.print(f"{result.affected_rows} row(s) affected")
            else:
                self._console.print(Text(result.status))
            return
        if result.columns:
            self._console.print(build_table(result, title=title))
        count = result.row_count
        self._console.print(f"({count} row{'' if count == 1 else 's'})")

    def banner(self, identity: ConnectionIdentity | None, *, version: str, executor: str) -> None:
        self._console.print(Text(f"psqlshell {version}", style="bold"))
        if identity is not None:
            self._console.print(f"Connected to: {identity.host}:{identity.port}")
            self._console.print(f"Database: {identity.database}")
            self._console.print(f"User: {identity.username}")
        self._console.print(f"Executor: {executor}")
        self._console.print("Type \\help for help, \\quit to exit.")
        self._console.print()


def build_table(result: QueryResult, *, title: str | None = None) -> Table:
    table = Table(title=title, box=box.ASCII, show_header=True, header_style="bold")
    for column in result.columns:
        table.add_column(column)
    for row in result.rows:
        table.add_row(*(format_value(value) for value in row))
    return table


def format_value(value: object) -> Text:
    if value is None:
        return Text(NULL_DISPLAY, style="dim")
    return Text(str(value))


__all__ = ["NULL_DISPLAY", "OutcomeRenderer", "build_table", "format_value"]
