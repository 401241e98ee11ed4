"""Tests for commands.py - external tool checks and execution."""

import logging
import subprocess
from unittest.mock import patch

import pytest

from piflash.commands import OPTIONAL_TOOLS, require_tools, run_command
from piflash.errors import CommandError, MissingDependencyError


def _which(available):
    return lambda name: f"/usr/bin/{name}" if name in available else None


class TestRequireTools:
    """Tests for require_tools function."""

    def test_all_present(self, caplog):
        """Nothing is raised or reported when every tool is installed."""
        with (
            patch("piflash.commands.shutil.which", side_effect=_which({"a", "b"})),
            caplog.at_level(logging.INFO, logger="piflash.commands"),
        ):
            require_tools(["a"], optional=["b"])

        assert "Optional tools not found" not in caplog.text

    def test_missing_required(self):
        """Every missing required tool is named."""
        with patch("piflash.commands.shutil.which", side_effect=_which({"a"})):
            with pytest.raises(MissingDependencyError) as exc_info:
                require_tools(["a", "sfdisk", "lsblk"], optional=[])

        assert exc_info.value.tools == ["sfdisk", "lsblk"]
        assert exc_info.value.error_code == "MISSING_DEPENDENCY"

    def test_missing_optional_reported(self, caplog):
        """Absent optional tools are logged, not raised."""
        with (
            patch("piflash.commands.shutil.which", side_effect=_which({"a"})),
            caplog.at_level(logging.INFO, logger="piflash.commands"),
        ):
            require_tools(["a"])

        assert f"using fallbacks: {', '.join(OPTIONAL_TOOLS)}" in caplog.text


class TestRunCommand:
    """Tests for run_command function."""

    def test_success(self):
        """Output is captured as text."""
        completed = subprocess.CompletedProcess(["lsblk"], 0, "out\n", "")
        with patch("piflash.commands.subprocess.run", return_value=completed) as run:
            result = run_command(("lsblk", "-J"), input="x", timeout=5)

        assert result.stdout == "out\n"
        run.assert_called_once_with(
            ["lsblk", "-J"],
            input="x",
            capture_output=True,
            text=True,
            check=False,
            timeout=5,
        )

    def test_failure(self):
        """A non-zero status raises CommandError with stderr."""
        completed = subprocess.CompletedProcess(["mount"], 32, "", "bad fs\n")
        with patch("piflash.commands.subprocess.run", return_value=completed):
            with pytest.raises(CommandError) as exc_info:
                run_command(["mount", "/dev/sdb1", "/mnt"])

        assert exc_info.value.returncode == 32
        assert "bad fs" in exc_info.value.message

    def test_failure_unchecked(self):
        """check=False returns the failed process."""
        completed = subprocess.CompletedProcess(["eject"], 1, "", "")
        with patch("piflash.commands.subprocess.run", return_value=completed):
            assert run_command(["eject"], check=False).returncode == 1

    def test_executable_missing(self):
        """A missing executable is a CommandError without a status."""
        with patch(
            "piflash.commands.subprocess.run", side_effect=FileNotFoundError("nope")
        ):
            with pytest.raises(CommandError) as exc_info:
                run_command(["nope"])

        assert exc_info.value.returncode is None

    def test_timeout(self):
        """A timeout is a CommandError naming the limit."""
        with patch(
            "piflash.commands.subprocess.run",
            side_effect=subprocess.TimeoutExpired(["udevadm"], 10),
        ):
            with pytest.raises(CommandError) as exc_info:
                run_command(["udevadm", "settle"], timeout=10)

        assert "timed out after 10s" in exc_info.value.message
