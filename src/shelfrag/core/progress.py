"""Terminal feedback for the shelfrag commands.

Status lines and progress bars go to stderr so ``--json`` output on
stdout stays machine readable. While a bar is live, console log handlers
are muted (the indexing worker logs from another thread, hence a
process-wide flag rather than a thread-local).
"""

from __future__ import annotations

import sys
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager

import structlog
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
)

_console = Console(stderr=True)

_PREFIXES = {
    "success": "[green]✓[/green] ",
    "error": "[red]✗[/red] ",
    "warning": "[yellow]![/yellow] ",
    "info": "  ",
    "none": "",
}

_TITLE_WIDTH = 40

_live_display = threading.Event()


def is_console_suppressed() -> bool:
    return _live_display.is_set()


@contextmanager
def suppress_console_logs() -> Iterator[None]:
    """Mute console log handlers for the duration of the block."""
    _live_display.set()
    try:
        yield
    finally:
        _live_display.clear()


def _is_tty() -> bool:
    isatty = getattr(sys.stderr, "isatty", None)
    return bool(isatty and isatty())


def status(message: str, *, style: str = "info", indent: int = 0) -> None:
    """One styled line on stderr, mirrored to the debug log."""
    _console.print(" " * indent + _PREFIXES.get(style, "") + message, highlight=False)
    structlog.get_logger().debug("cli.status", message=message, style=style)


def pluralize(count: int, singular: str, plural: str | None = None) -> str:
    """``pluralize(1, "item")`` is "1 item"; ``pluralize(3, "item")`` is "3 items"."""
    word = singular if count == 1 else (plural or singular + "s")
    return f"{count} {word}"


@contextmanager
def progress_callback(
    desc: str,
    *,
    unit: str = "items",
) -> Iterator[Callable[[int, int, str], None]]:
    """Yield an indexing progress callback ``(processed, total, title)``.

    Draws a bar with the current title and time remaining on a TTY. Under
    pipes and CI the updates only reach the debug log.
    """
    if not _is_tty():
        log = structlog.get_logger()

        def _log_only(current: int, total: int, title: str) -> None:
            log.debug("cli.progress", desc=desc, current=current, total=total, title=title)

        yield _log_only
        return

    bar = Progress(
        TextColumn("  {task.description}"),
        BarColumn(bar_width=25, style="cyan", complete_style="cyan"),
        MofNCompleteColumn(),
        TextColumn("{task.fields[unit]}"),
        TimeRemainingColumn(),
        TextColumn("[dim]{task.fields[title]}[/dim]"),
        console=_console,
        transient=True,
    )
    with suppress_console_logs(), bar:
        task = bar.add_task(desc, total=None, unit=unit, title="")

        def _advance(current: int, total: int, title: str) -> None:
            bar.update(task, completed=current, total=total, title=title[:_TITLE_WIDTH])

        yield _advance
