"""Byte-based progress reporting for long transfers.

Stages accept an optional ``advance(nbytes)`` callback. When the console is
an interactive terminal the callback drives a rich progress bar; otherwise
no callback is produced and stages take their non-progress path.
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

ProgressCallback = Callable[[int], None]


@contextmanager
def transfer_progress(
    console: Console, description: str, total: int | None
) -> Iterator[ProgressCallback | None]:
    """Show a progress bar for a byte transfer.

    Args:
        console: Console to render on.
        description: Label shown left of the bar.
        total: Expected number of bytes (None if unknown).

    Yields:
        A callback advancing the bar by a number of bytes, or None when the
        console is not interactive.
    """
    if not console.is_terminal:
        yield None
        return

    progress = Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        TimeRemainingColumn(),
        console=console,
        transient=False,
    )
    with progress:
        task_id = progress.add_task(description, total=total)

        def advance(nbytes: int) -> None:
            progress.advance(task_id, nbytes)

        yield advance


__all__ = ["ProgressCallback", "transfer_progress"]
