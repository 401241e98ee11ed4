"""Tests for log.py - console and file logging."""

import io
import logging

import pytest
from rich.console import Console
from rich.logging import RichHandler

from piflash.log import configure_logging


@pytest.fixture
def restore_root_logger():
    """Put the root logger back the way pytest configured it."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def test_console_and_file(self, settings, restore_root_logger):
        """Console shows INFO and up; the file records DEBUG."""
        console = Console(file=io.StringIO(), width=200)

        log_file = configure_logging(settings, console)
        logging.getLogger("piflash.test").debug("detail only in the file")
        logging.getLogger("piflash.test").info("shown on the console")
        for handler in restore_root_logger.handlers:
            handler.flush()

        assert log_file == settings.log_file
        content = log_file.read_text()
        assert "DEBUG piflash.test: detail only in the file" in content
        assert "shown on the console" in console.file.getvalue()
        assert "detail only in the file" not in console.file.getvalue()

    def test_reconfigure_replaces_handlers(self, settings, restore_root_logger):
        """Calling twice does not duplicate handlers."""
        configure_logging(settings, Console(file=io.StringIO()))
        configure_logging(settings, Console(file=io.StringIO()))

        rich_handlers = [
            h for h in restore_root_logger.handlers if isinstance(h, RichHandler)
        ]
        assert len(rich_handlers) == 1

    def test_unwritable_log_file(self, settings, tmp_path, restore_root_logger):
        """An unwritable log location leaves console logging in place."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        settings.log_file = blocker / "sub" / "piflash.log"

        assert configure_logging(settings, Console(file=io.StringIO())) is None
        assert len(restore_root_logger.handlers) == 1
