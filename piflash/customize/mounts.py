"""Temporary mounts of the written image's partitions."""

import logging
import os
import tempfile
from pathlib import Path
from types import TracebackType

from piflash.commands import run_command
from piflash.errors import CommandError, MountFailedError
from piflash.types import PartitionPair

logger = logging.getLogger(__name__)


class MountScope:
    """Boot and root partitions mounted on private temporary directories.

    Entering the scope creates two directories and mounts the partitions;
    closing it unmounts and removes them. close() is idempotent and never
    raises, so the scope can be closed early and again by an exit guard.

    Attributes:
        pair: Partitions to mount.
        boot_dir: Mount point of the boot partition (while open).
        root_dir: Mount point of the root partition (while open).
    """

    def __init__(self, pair: PartitionPair) -> None:
        self.pair = pair
        self.boot_dir: Path | None = None
        self.root_dir: Path | None = None
        self._mounted: list[Path] = []
        self._created: list[Path] = []

    def __enter__(self) -> "MountScope":
        try:
            self.boot_dir = self._mount(self.pair.boot, "boot")
            self.root_dir = self._mount(self.pair.root, "root")
        except BaseException:
            self.close()
            raise
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _mount(self, partition: str, label: str) -> Path:
        """Mount a partition on a new temporary directory."""
        mount_dir = Path(tempfile.mkdtemp(prefix=f"piflash-{label}-"))
        self._created.append(mount_dir)
        try:
            run_command(["mount", partition, str(mount_dir)])
        except CommandError as e:
            logger.error("Failed to mount %s: %s", partition, e.message)
            raise MountFailedError(partition, e.stderr.strip() or e.message) from e
        self._mounted.append(mount_dir)
        logger.debug("Mounted %s on %s", partition, mount_dir)
        return mount_dir

    def close(self) -> None:
        """Unmount and remove everything this scope created."""
        while self._mounted:
            mount_dir = self._mounted.pop()
            try:
                os.sync()
                result = run_command(["umount", str(mount_dir)], check=False)
                if result.returncode != 0:
                    logger.warning(
                        "umount %s failed, trying lazy unmount: %s",
                        mount_dir,
                        result.stderr.strip(),
                    )
                    run_command(["umount", "-l", str(mount_dir)], check=False)
            except CommandError as e:
                logger.warning("Could not unmount %s: %s", mount_dir, e.message)

        while self._created:
            mount_dir = self._created.pop()
            try:
                mount_dir.rmdir()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Could not remove mount directory %s: %s", mount_dir, e)

        self.boot_dir = None
        self.root_dir = None


__all__ = ["MountScope"]
