from __future__ import annotations

import sys
from contextlib import contextmanager
from typing import IO, Iterable, Iterator, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .logging_utils import get_log_path


def make_console(stream: IO[str] | None = None) -> Console:
    return Console(file=stream or sys.stdout, highlight=False, soft_wrap=True)


def render_error(context: str, exc: BaseException, *, stream: IO[str] | None = None) -> None:
    console = Console(file=stream or sys.stderr, highlight=False)
    console.print(f"[bold red]{context} failed:[/] {type(exc).__name__}: {escape(str(exc))}", markup=True)
    console.print(f"[dim]Details in {get_log_path()}[/]", markup=True)


def render_table(
    console: Console,
    title: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[object]],
) -> None:
    table = Table(title=title, show_lines=False)
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*(str(cell) for cell in row))
    console.print(table)


@contextmanager
def status(console: Console, message: str) -> Iterator[None]:
    """Rich spinner while the block runs; silent when the console is not a terminal."""

    if not console.is_terminal:
        yield
        return
    with console.status(message):
        yield
