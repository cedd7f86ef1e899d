"""
Rich console output for the overlay timing editor.

Status lines for load/edit/export, plus table and clip-range helpers
used to show fragment timelines.
"""

from typing import Iterable, Optional, Sequence, Tuple

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from rich.theme import Theme

overlay_theme = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "red bold",
        "step": "blue bold",
        "fragment": "magenta",
        "time": "bright_white",
        "orphan": "yellow italic",
    }
)

# Shared by every module; tests patch this attribute
console = Console(theme=overlay_theme)


def info(message: str) -> None:
    console.print(f"[info]ℹ[/info] {message}")


def success(message: str) -> None:
    console.print(f"[success]✓[/success] {message}")


def warning(message: str) -> None:
    """Non-fatal problem; the operation carried on."""
    console.print(f"[warning]⚠[/warning] {message}")


def error(message: str) -> None:
    """Fatal problem, reported once where it is handled."""
    console.print(f"[error]✗[/error] {message}")


def step(message: str, step_num: Optional[int] = None, total: Optional[int] = None) -> None:
    if step_num and total:
        console.print(f"[step]({step_num}/{total})[/step] {message}")
    else:
        console.print(f"[step]→[/step] {message}")


def header(message: str) -> None:
    console.print()
    console.rule(f"[bold]{escape(message)}[/bold]")


def clip(fragment_id: str, begin: float, end: float, note: str = "") -> None:
    """Print one fragment's clip range."""
    suffix = f" [orphan]{escape(note)}[/orphan]" if note else ""
    console.print(
        f"  [fragment]{escape(fragment_id)}[/fragment] "
        f"[time]{begin:.3f}s → {end:.3f}s[/time]{suffix}"
    )


def timeline_table(
    title: str,
    rows: Iterable[Tuple[str, str, str, str]],
    orphaned: Sequence[str] = (),
) -> Table:
    """
    Build a table of (id, begin, end, text) rows.

    Rows whose id is in orphaned are styled as orphans.
    """
    table = Table(title=title, show_lines=False, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Fragment", style="fragment")
    table.add_column("Begin", style="time")
    table.add_column("End", style="time")
    table.add_column("Text", overflow="ellipsis", no_wrap=True, max_width=50)

    for index, (fragment_id, begin, end, text) in enumerate(rows):
        style = "orphan" if fragment_id in orphaned else None
        table.add_row(str(index), fragment_id, begin, end, escape(text), style=style)
    return table


def create_progress() -> Progress:
    """Progress bar for per-overlay export work."""
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    )
