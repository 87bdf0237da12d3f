"""Output rendering for the featurecheck CLI.

Colored output goes through ``rich``; with ``--no-color``, ``NO_COLOR`` or a
non-terminal stdout the same calls produce plain, deterministic text.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, Final

from rich.console import Console
from rich.table import Table
from rich.text import Text

if TYPE_CHECKING:
    from collections.abc import Sequence

_STATUS_STYLES: Final[dict[str, str]] = {
    "passed": "green",
    "failed": "bold red",
    "skipped": "yellow",
    "running": "cyan",
    "not_started": "dim",
    "partially_passed": "yellow",
    "not_tested": "dim",
}


def _wants_color(no_color_flag: bool) -> bool:
    if no_color_flag or os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty())


class CLIRenderer:
    """Thin CLI output renderer over a ``rich`` console."""

    def __init__(self, *, no_color: bool = False, verbose: bool = False) -> None:
        self.verbose = verbose
        self._color = _wants_color(no_color)
        self._console = Console(
            no_color=not self._color,
            highlight=False,
            markup=False,
            emoji=False,
            soft_wrap=True,
        )

    @property
    def color(self) -> bool:
        return self._color

    def heading(self, text: str) -> None:
        self._console.print(text, style="bold")

    def kv(self, key: str, value: object) -> None:
        self._console.print(f"{key}: {value}")

    def text(self, line: str, *, style: str | None = None) -> None:
        self._console.print(line, style=style)

    def blank(self) -> None:
        self._console.print()

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        self._console.print()
        self._console.print(title, style="bold")

    def warning(self, text: str) -> None:
        self._console.print(f"  Warning: {text}", style="yellow")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self._console.print(f"  {prefix}{entry}")

    def status(self, value: str) -> str:
        """Style name for a test or feature status value."""

        return _STATUS_STYLES.get(value, "")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
        status_column: int | None = None,
    ) -> None:
        """Print a table; ``status_column`` cells are colored by status value."""

        if not rows:
            return
        if title:
            self.section(title)
        if self._color:
            table = Table(show_edge=False, header_style="bold")
            for header in headers:
                table.add_column(header, overflow="fold")
            for row in rows:
                cells = [str(cell) for cell in row]
                styled: list[str | Text] = list(cells)
                if status_column is not None and status_column < len(cells):
                    styled[status_column] = Text(
                        cells[status_column], style=self.status(cells[status_column])
                    )
                table.add_row(*styled)
            self._console.print(table)
            return
        self._plain_table(headers, rows)

    def ok(self, label: str) -> None:
        self._console.print(f"  OK  {label}", style="green")

    def fail(self, label: str) -> None:
        self._console.print(f"  FAIL  {label}", style="bold red")

    def _plain_table(self, headers: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
        grid = [list(headers)] + [
            [str(cell) for cell in row[: len(headers)]] + [""] * (len(headers) - len(row))
            for row in rows
        ]
        widths = [max(len(line[column]) for line in grid) for column in range(len(headers))]
        grid.insert(1, ["-" * width for width in widths])
        for line in grid:
            padded = "  ".join(cell.ljust(width) for cell, width in zip(line, widths, strict=True))
            self._console.print(f"  {padded.rstrip()}")


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(no_color=no_color, verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
