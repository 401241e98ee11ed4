"""Logging setup for piflash.

Console output goes through rich at the configured level; a timestamped
log file always records DEBUG so failed runs can be diagnosed afterwards.
"""

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from piflash.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(
    settings: Settings, console: Console | None = None
) -> Path | None:
    """Configure the root logger for a run.

    Args:
        settings: Application settings (log level and file).
        console: Console used by the rich handler.

    Returns:
        Path of the log file, or None if it could not be opened.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(
        console=console, show_path=False, rich_tracebacks=False, markup=False
    )
    console_handler.setLevel(settings.log_level)
    root.addHandler(console_handler)

    # Third-party HTTP logging is noise at DEBUG
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    log_file = settings.log_file
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
    except OSError as e:
        root.warning("Could not open log file %s: %s", log_file, e)
        return None

    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(file_handler)
    return log_file


__all__ = ["LOG_FORMAT", "configure_logging"]
