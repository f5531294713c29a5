"""Progress formatting utilities for the CLI."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from sqlops.core.sync import ProgressCallback, SeedingProgress

console = Console()
_MAX_LABEL_WIDTH = 56


def _truncate(text: str, max_len: int) -> str:
    """Return text capped at max_len characters using an ASCII ellipsis."""
    if max_len <= 3 or len(text) <= max_len:
        return text[:max_len]
    return f"{text[: max_len - 3]}..."


def _seeding_label(database: str, replica: str) -> str:
    """Render `<database> -> <replica>` for one progress row."""
    return _truncate(f"{database} -> {replica}", _MAX_LABEL_WIDTH)


def _format_eta(estimated: datetime | None, *, now: datetime | None = None) -> str:
    """
    Render the remaining time until an estimated completion (UTC).

    - Without an estimate: `?`
    - In the past: `0:00:00`
    - Otherwise `H:MM:SS` (days roll into hours)
    """
    if estimated is None:
        return "?"
    if estimated.tzinfo is None:
        estimated = estimated.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    seconds = max(int((estimated - now).total_seconds()), 0)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours}:{minutes:02d}:{secs:02d}"


@contextmanager
def seeding_progress(enabled: bool = True) -> Iterator[ProgressCallback | None]:
    """
    Show one progress bar per (database, replica) while seeding is reported.

    Yields the callback to pass to the workflow as `on_progress`, or None
    when progress display is disabled. Rows are added on the first report
    for a database/replica pair; the bar is transient and disappears when
    the block exits.
    """
    if not enabled:
        yield None
        return

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold]{task.fields[label]}[/]"),
        BarColumn(),
        TaskProgressColumn(),
        TextColumn("eta={task.fields[eta]}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    )
    task_ids: dict[tuple[str, str], TaskID] = {}

    def _on_progress(update: SeedingProgress) -> None:
        key = (update.database, update.replica)
        if key not in task_ids:
            task_ids[key] = progress.add_task(
                "",
                total=100,
                label=_seeding_label(update.database, update.replica),
                eta="?",
            )
        progress.update(
            task_ids[key],
            completed=update.stats.percent_complete,
            eta=_format_eta(update.stats.estimated_completion),
        )

    with progress:
        yield _on_progress
