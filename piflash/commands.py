"""External command execution for piflash.

This module handles:
- Running system tools (lsblk, sfdisk, mount, ...) with logged output
- Failing fast when required tools are missing

Commands are always passed as argument lists, never through a shell.
"""

import logging
import shutil
import subprocess
from collections.abc import Iterable, Sequence

from piflash.errors import CommandError, MissingDependencyError

logger = logging.getLogger(__name__)

# Tools the pipeline cannot run without
REQUIRED_TOOLS = (
    "lsblk",
    "partprobe",
    "sfdisk",
    "mkfs.vfat",
    "mount",
    "umount",
    "openssl",
    "ssh-keygen",
)

# Tools used when present, with a fallback otherwise
OPTIONAL_TOOLS = ("udevadm", "blockdev", "eject")


def tool_available(name: str) -> bool:
    """Return True if an executable is on PATH."""
    return shutil.which(name) is not None


def require_tools(
    tools: Iterable[str] = REQUIRED_TOOLS, optional: Iterable[str] = OPTIONAL_TOOLS
) -> None:
    """Ensure every required tool is installed.

    Absent optional tools are only reported; their fallbacks are used.

    Args:
        tools: Executable names to look up on PATH.
        optional: Executables used when present.

    Raises:
        MissingDependencyError: One or more tools are missing.
    """
    missing = [tool for tool in tools if not tool_available(tool)]
    if missing:
        logger.error("Missing required tools: %s", ", ".join(missing))
        raise MissingDependencyError(missing)
    logger.debug("All required tools present")

    absent = [tool for tool in optional if not tool_available(tool)]
    if absent:
        logger.info("Optional tools not found, using fallbacks: %s", ", ".join(absent))


def run_command(
    command: Sequence[str],
    *,
    input: str | None = None,
    check: bool = True,
    timeout: float | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run an external command and capture its output.

    Args:
        command: Command as a list of strings.
        input: Optional text passed on stdin.
        check: Raise CommandError on a non-zero exit status.
        timeout: Optional timeout in seconds.

    Returns:
        The completed process (stdout/stderr as text).

    Raises:
        CommandError: The command could not start, timed out, or failed
            while check is True.
    """
    logger.debug("Running command: %s", " ".join(command))
    try:
        result = subprocess.run(
            list(command),
            input=input,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise CommandError(command, None, f"executable not found: {e}") from e
    except subprocess.TimeoutExpired as e:
        raise CommandError(command, None, f"timed out after {timeout}s") from e

    if result.stdout:
        logger.debug("stdout: %s", result.stdout.strip())
    if result.stderr:
        logger.debug("stderr: %s", result.stderr.strip())

    if check and result.returncode != 0:
        logger.error(
            "Command failed (%d): %s", result.returncode, " ".join(command)
        )
        raise CommandError(command, result.returncode, result.stderr)

    return result


__all__ = [
    "OPTIONAL_TOOLS",
    "REQUIRED_TOOLS",
    "require_tools",
    "run_command",
    "tool_available",
]
