"""Format policy for target devices.

This module handles:
- Recommending whether to format a device before writing
- Formatting a device (signature wipe, DOS label, single FAT32 partition)
- Re-reading the partition table after any change

The recommendation is only ever the default of a confirmation prompt; the
caller decides whether format_device() runs.
"""

import logging
import os
import time
from dataclasses import dataclass

from piflash.commands import run_command, tool_available
from piflash.config import MIB, Settings
from piflash.devices.partitions import list_partitions
from piflash.errors import CommandError, WriteFailedError
from piflash.types import DeviceClass, FormatAction

logger = logging.getLogger(__name__)

# Bytes zeroed at the start of the device to clear old signatures
WIPE_BYTES = 1 * MIB

# sfdisk script: DOS label, one primary W95 FAT32 (LBA) partition, whole disk
SFDISK_SCRIPT = "label: dos\ntype=c\n"


@dataclass(frozen=True)
class FormatRecommendation:
    """Recommended pre-write action and why.

    Attributes:
        action: Format or skip.
        reason: Explanation shown to the operator.
    """

    action: FormatAction
    reason: str

    @property
    def default_confirm(self) -> bool:
        """Default answer of the 'format first?' prompt."""
        return self.action == FormatAction.FORMAT


def recommend_format(device_class: DeviceClass) -> FormatRecommendation:
    """Recommend whether to format a device before writing.

    Args:
        device_class: Class from classify_device().

    Returns:
        The recommendation.
    """
    if device_class == DeviceClass.FLASH_DRIVE:
        return FormatRecommendation(
            FormatAction.SKIP,
            "USB flash drives are written directly; the image carries its "
            "own partition table.",
        )
    if device_class == DeviceClass.UNKNOWN:
        return FormatRecommendation(
            FormatAction.FORMAT,
            "The device size is unknown; formatting clears stale partitions.",
        )
    return FormatRecommendation(
        FormatAction.FORMAT,
        "SD cards are formatted first to clear stale partitions and signatures.",
    )


def wipe_device(device_path: str, wipe_bytes: int = WIPE_BYTES) -> int:
    """Zero the beginning of a device.

    This clears filesystem and partition signatures left by previous
    contents.

    Args:
        device_path: Path to the device.
        wipe_bytes: Number of bytes to zero (default 1 MiB).

    Returns:
        Number of bytes wiped.

    Raises:
        WriteFailedError: The device could not be opened or written.
    """
    logger.info("Wiping first %d bytes of %s", wipe_bytes, device_path)
    try:
        with open(device_path, "r+b") as f:
            f.write(b"\x00" * wipe_bytes)
            f.flush()
            os.fsync(f.fileno())
    except PermissionError as e:
        logger.error("Permission denied wiping device: %s", e)
        raise WriteFailedError(device_path, "permission denied") from e
    except OSError as e:
        logger.error("I/O error wiping device: %s", e)
        raise WriteFailedError(device_path, f"wipe failed: {e}") from e

    return wipe_bytes


def refresh_partition_table(device_path: str, settings: Settings) -> None:
    """Ask the kernel to re-read a device's partition table and settle.

    Uses partprobe, falling back to ``blockdev --rereadpt``. Afterwards waits
    for udev with ``udevadm settle`` when available, or a second fixed wait.
    A failed re-read is logged, not raised; the next stage detects a stale
    table on its own.

    Args:
        device_path: Whole device path.
        settings: Settings holding the settle wait.
    """
    try:
        run_command(["partprobe", device_path])
    except CommandError as e:
        logger.warning("partprobe failed on %s: %s", device_path, e.message)
        if tool_available("blockdev"):
            try:
                run_command(["blockdev", "--rereadpt", device_path])
            except CommandError as fallback_error:
                logger.warning(
                    "blockdev --rereadpt failed on %s: %s",
                    device_path,
                    fallback_error.message,
                )

    time.sleep(settings.settle_seconds)

    if tool_available("udevadm"):
        try:
            run_command(["udevadm", "settle"], check=False)
        except CommandError as e:
            logger.warning("udevadm settle failed: %s", e.message)
    else:
        time.sleep(settings.settle_seconds)


def _first_partition(device_path: str) -> str:
    """Return the path of the first partition on a device."""
    partitions = list_partitions(device_path)
    if not partitions:
        raise WriteFailedError(device_path, "no partition appeared after sfdisk")
    return partitions[0].path


def format_device(
    device_path: str, device_class: DeviceClass, settings: Settings
) -> None:
    """Format a device before the image is written.

    Flash drives only get their first MiB zeroed. Every other class is
    relabeled with a single FAT32 partition spanning the device, which is
    then formatted with mkfs.vfat. The partition table is re-read afterwards
    in both cases.

    Args:
        device_path: Whole device path.
        device_class: Class from classify_device().
        settings: Application settings.

    Raises:
        WriteFailedError: Any formatting step failed.
    """
    logger.info("Formatting %s (%s)", device_path, device_class.value)
    wipe_device(device_path)

    if device_class != DeviceClass.FLASH_DRIVE:
        try:
            run_command(["sfdisk", device_path], input=SFDISK_SCRIPT)
            refresh_partition_table(device_path, settings)
            partition = _first_partition(device_path)
            run_command(["mkfs.vfat", "-F", "32", partition])
        except CommandError as e:
            logger.error("Formatting %s failed: %s", device_path, e.message)
            raise WriteFailedError(device_path, e.message) from e
        logger.info("Created FAT32 partition %s", partition)

    refresh_partition_table(device_path, settings)


__all__ = [
    "FormatRecommendation",
    "SFDISK_SCRIPT",
    "WIPE_BYTES",
    "format_device",
    "recommend_format",
    "refresh_partition_table",
    "wipe_device",
]
