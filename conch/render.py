"""Render values as rectangular character grids.

Commands hand values to ``context.render``; this module turns them into
rows of text with Rich. A width or height of 0 means unbounded.
"""

from dataclasses import dataclass, field
from io import StringIO

from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

_UNBOUNDED_WIDTH = 10_000


@dataclass
class TableValue:
    """Tabular result: column headers plus row tuples."""

    headers: list[str]
    rows: list[tuple] = field(default_factory=list)


def _to_renderable(value):
    if isinstance(value, TableValue):
        table = Table(box=box.SIMPLE_HEAD, show_edge=False, pad_edge=False)
        for header in value.headers:
            table.add_column(str(header), overflow="fold")
        for row in value.rows:
            table.add_row(*("NULL" if cell is None else str(cell) for cell in row))
        return table
    if isinstance(value, (list, tuple)) and value and all(
        isinstance(row, (list, tuple)) for row in value
    ):
        return _to_renderable(TableValue([str(h) for h in value[0]], list(value[1:])))
    return value


def render_rows(value, width: int, height: int, clip: bool) -> list[str]:
    """Return ``value`` rendered as a list of text rows.

    With ``clip`` set, rows are cut to ``width`` columns and the grid is cut
    to ``height`` rows, the last row noting how many were dropped.
    """
    if isinstance(value, str):
        rows = value.splitlines() or [""]
    else:
        console = Console(
            file=StringIO(),
            width=width if width > 0 else _UNBOUNDED_WIDTH,
            color_system=None,
            highlight=False,
            emoji=False,
        )
        with console.capture() as capture:
            console.print(_to_renderable(value))
        rows = [row.rstrip() for row in capture.get().splitlines()]
    if not clip:
        return rows
    if width > 0:
        rows = [row[:width] for row in rows]
    if height > 0 and len(rows) > height:
        dropped = len(rows) - (height - 1)
        rows = rows[: height - 1] + [f"... ({dropped} more rows)"]
    return rows


def wrap_text(text: str, width: int) -> list[str]:
    """Word-wrap prose to ``width`` columns (0 leaves lines as they are)."""
    if width <= 0:
        return text.splitlines() or [""]
    console = Console(file=StringIO(), width=width, color_system=None)
    return [line.plain.rstrip() for line in Text(text).wrap(console, width)]
