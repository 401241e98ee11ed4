"""Run-scoped cleanup and outcome recording.

This module handles:
- Cleanup guards for temporary files and mounts, released on every exit
- Converting SIGTERM/SIGHUP into a normal unwind
- Recording the run outcome exactly once (configuration store and history)
- Telling the operator how to recover a device left half-written

The controller is entered once per run. Its exit path never raises.
"""

import logging
import signal
from collections.abc import Mapping
from contextlib import AbstractContextManager, ExitStack
from datetime import datetime
from pathlib import Path
from types import FrameType, TracebackType
from typing import Any, TypeVar

from rich.console import Console
from sqlalchemy.orm import Session, sessionmaker

from piflash.db import get_session
from piflash.errors import ProvisionError
from piflash.history import record_run
from piflash.store import RunConfigStore
from piflash.types import BlockDevice, DeviceClass, RunOutcome

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGHUP)

_T = TypeVar("_T")


def recovery_command(device_path: str, device_class: DeviceClass) -> str:
    """Command that restores a usable device after an interrupted run."""
    if device_class == DeviceClass.FLASH_DRIVE:
        return f"sudo wipefs --all {device_path}"
    return f"sudo mkfs.vfat -F 32 -I {device_path}"


def _raise_system_exit(signum: int, frame: FrameType | None) -> None:
    """Signal handler turning termination requests into SystemExit."""
    logger.warning("Received %s, aborting", signal.Signals(signum).name)
    raise SystemExit(128 + signum)


class RecoveryController:
    """Guards a provisioning run from start to exit.

    Attributes:
        store: Run configuration store receiving the outcome.
        values: Answers persisted with the outcome.
        device: Selected target device, once known.
        device_class: Class of the target device, once known.
        image_path: Image being written, once known.
    """

    def __init__(
        self,
        store: RunConfigStore,
        console: Console,
        *,
        history: sessionmaker[Session] | None = None,
        values: Mapping[str, Any] | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            store: Run configuration store.
            console: Console for recovery guidance.
            history: Session factory of the run history, if available.
            values: Initial values persisted with the outcome (the previous
                answers), replaced as the run collects new ones.
        """
        self.store = store
        self.console = console
        self.history = history
        self.values: dict[str, Any] = dict(values or {})
        self.device: BlockDevice | None = None
        self.device_class: DeviceClass | None = None
        self.image_path: Path | None = None
        self.started_at = datetime.now()
        self.outcome: RunOutcome = RunOutcome.UNKNOWN

        self._stack = ExitStack()
        self._destructive: tuple[str, DeviceClass] | None = None
        self._success = False
        self._finished = False
        self._previous_handlers: dict[int, Any] = {}

    def __enter__(self) -> "RecoveryController":
        for signum in HANDLED_SIGNALS:
            try:
                self._previous_handlers[signum] = signal.signal(
                    signum, _raise_system_exit
                )
            except ValueError:
                # Not the main thread; signals keep their default handling
                logger.debug("Cannot install handler for signal %d", signum)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.finish(exc)

    # Guards

    def track_file(self, path: Path) -> None:
        """Delete a file when the run ends (missing files are ignored)."""
        self._stack.callback(_remove_file, path)

    def track_mount_scope(self, scope: AbstractContextManager[_T]) -> _T:
        """Enter a mount scope that is closed when the run ends."""
        return self._stack.enter_context(scope)

    # Run facts

    def update_values(self, values: Mapping[str, Any]) -> None:
        """Record the latest answers to persist with the outcome."""
        self.values.update(values)

    def record_device(self, device: BlockDevice, device_class: DeviceClass) -> None:
        """Record the selected device and its class."""
        self.device = device
        self.device_class = device_class

    def record_image(self, path: Path) -> None:
        """Record the image being written."""
        self.image_path = path

    def mark_destructive(self, device_path: str, device_class: DeviceClass) -> None:
        """Record that the device is about to be modified."""
        self._destructive = (device_path, device_class)

    def mark_success(self) -> None:
        """Record that the run completed; disables failure reporting."""
        self._success = True

    # Exit path

    def finish(self, exc: BaseException | None = None) -> RunOutcome:
        """Release guards and record the outcome. Runs at most once.

        Args:
            exc: Exception ending the run, if any.

        Returns:
            The recorded outcome.
        """
        if self._finished:
            return self.outcome
        self._finished = True

        try:
            self._stack.close()
        except Exception as e:
            logger.error("Cleanup failed: %s", e)

        self.outcome = (
            RunOutcome.SUCCESS if self._success and exc is None else RunOutcome.FAILED
        )

        self._record_history(exc)

        if self.outcome == RunOutcome.FAILED and self._destructive is not None:
            device_path, device_class = self._destructive
            self.console.print(
                f"[bold yellow]{device_path} may be left partially written.[/] "
                "To make it usable again, run:\n"
                f"  {recovery_command(device_path, device_class)}"
            )

        # The outcome is written last so it reflects everything above
        try:
            self.store.save_outcome(self.values, self.outcome)
        except Exception as e:
            logger.error("Could not save run configuration: %s", e)

        for signum, handler in self._previous_handlers.items():
            try:
                signal.signal(signum, handler)
            except (ValueError, TypeError):
                pass
        self._previous_handlers.clear()

        logger.info("Run finished: %s", self.outcome.value)
        return self.outcome

    def _record_history(self, exc: BaseException | None) -> None:
        """Append the run to the history database."""
        if self.history is None:
            return

        error_code: str | None = None
        error_message: str | None = None
        if isinstance(exc, ProvisionError):
            error_code, error_message = exc.error_code, exc.message
        elif isinstance(exc, KeyboardInterrupt):
            error_code, error_message = "INTERRUPTED", "Interrupted by operator"
        elif isinstance(exc, SystemExit):
            error_code, error_message = "TERMINATED", f"Exit status {exc.code}"
        elif exc is not None:
            error_code, error_message = type(exc).__name__, str(exc)

        try:
            with get_session(self.history) as session:
                record_run(
                    session,
                    outcome=self.outcome,
                    started_at=self.started_at,
                    device_path=self.device.path if self.device else None,
                    device_model=self.device.model if self.device else None,
                    device_class=self.device_class.value if self.device_class else None,
                    image_path=str(self.image_path) if self.image_path else None,
                    username=self.values.get("username"),
                    error_code=error_code,
                    error_message=error_message,
                )
        except Exception as e:
            logger.error("Could not record run history: %s", e)


def _remove_file(path: Path) -> None:
    """Remove a temporary file, logging failures."""
    try:
        path.unlink(missing_ok=True)
        logger.debug("Removed %s", path)
    except OSError as e:
        logger.warning("Could not remove %s: %s", path, e)


__all__ = ["HANDLED_SIGNALS", "RecoveryController", "recovery_command"]
