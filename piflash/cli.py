"""Thin CLI wrapper for piflash.

This module provides the command-line interface using Typer.
Every decision is an interactive prompt; all business logic is delegated
to the pipeline.
"""

import logging
import os
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from piflash import __version__
from piflash.config import get_invoking_user, get_settings
from piflash.db import get_session
from piflash.errors import ProvisionError
from piflash.history import list_runs, open_history
from piflash.log import configure_logging
from piflash.pipeline import run_pipeline
from piflash.prompts import ConsolePrompter
from piflash.store import RunConfigStore

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="piflash",
    help="Write Raspberry Pi OS Lite to an SD card or USB drive, ready for SSH",
    add_completion=False,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"piflash version {__version__}")
        raise typer.Exit()


def show_last_run(history: sessionmaker[Session]) -> None:
    """Print a one-line summary of the previous run, if any."""
    try:
        with get_session(history) as session:
            runs = list_runs(session, limit=1)
            if not runs:
                return
            last = runs[0]
            summary = (
                f"Previous run: {last.status} on {last.device_path or 'no device'} "
                f"at {last.started_at:%Y-%m-%d %H:%M}"
            )
            if last.error_code:
                summary += f" ({last.error_code})"
    except SQLAlchemyError as e:
        logger.warning("Could not read run history: %s", e)
        return
    console.print(escape(summary))


@app.command()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Provision a Raspberry Pi OS Lite image onto removable media.

    Lists removable devices, asks for the user, network and image settings
    (previous answers are offered as defaults), writes the image and sets up
    SSH access for headless first boot. Must be run as root.
    """
    if os.geteuid() != 0:
        console.print("[red]piflash must be run as root (try: sudo piflash)[/red]")
        raise typer.Exit(code=1)

    settings = get_settings()
    log_file = configure_logging(settings, console)
    if log_file is not None:
        console.print(f"Logging to {log_file}")

    store = RunConfigStore(settings.config_path, get_invoking_user())
    history = open_history(settings.db_url)
    if history is not None:
        show_last_run(history)

    try:
        run_pipeline(
            settings, ConsolePrompter(console), console, store, history=history
        )
    except ProvisionError as e:
        logger.debug("Run failed with %s", e.error_code)
        console.print(f"[red]Error: {escape(e.message)}[/red]")
        raise typer.Exit(code=1) from None
    except KeyboardInterrupt:
        console.print("[yellow]Interrupted[/yellow]")
        raise typer.Exit(code=1) from None


__all__ = ["app", "main", "show_last_run"]
