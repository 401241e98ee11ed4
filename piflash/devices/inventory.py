"""Block device inventory and classification.

This module handles:
- Finding the devices that back the running system (never candidates)
- Listing block devices through lsblk JSON output
- Filtering candidates (removable first, everything else as a fallback)
- Classifying a device by size (flash drive, SD card, small device)

Classification is a size heuristic only. A wrong guess changes the
recommended format action and the number of confirmations, nothing else.
"""

import json
import logging
import re
from collections.abc import Iterable
from typing import Any

from piflash.commands import run_command
from piflash.config import Settings
from piflash.errors import CommandError, NoDeviceFoundError
from piflash.types import BlockDevice, DeviceClass, DeviceKind

logger = logging.getLogger(__name__)

# Mount points whose backing device is the running system
SYSTEM_MOUNT_POINTS = ("/", "/boot", "/boot/firmware")

LSBLK_COLUMNS = "NAME,PATH,SIZE,RM,MODEL,TYPE,MOUNTPOINTS"

# Patterns for partition detection
# /dev/sdX1, /dev/hdX1, /dev/vdX1
_PARTITION_PATTERN_SD = re.compile(r"^/dev/[shv]d[a-z]+(\d+)$")
# /dev/nvme0n1p1, /dev/nvme0n1p2
_PARTITION_PATTERN_NVME = re.compile(r"^/dev/nvme\d+n\d+p(\d+)$")
# /dev/mmcblk0p1, /dev/mmcblk0p2
_PARTITION_PATTERN_MMC = re.compile(r"^/dev/mmcblk\d+p(\d+)$")
# /dev/loop0p1
_PARTITION_PATTERN_LOOP = re.compile(r"^/dev/loop\d+p(\d+)$")


def partition_to_whole_device(partition_path: str) -> str:
    """Convert a partition path to its whole device path.

    Args:
        partition_path: Path to a partition (e.g., '/dev/sda1').

    Returns:
        Path to the whole device (e.g., '/dev/sda'). Paths that are not
        recognized partitions are returned unchanged.
    """
    match = _PARTITION_PATTERN_SD.match(partition_path)
    if match:
        return partition_path[: -len(match.group(1))]

    for pattern in (
        _PARTITION_PATTERN_NVME,
        _PARTITION_PATTERN_MMC,
        _PARTITION_PATTERN_LOOP,
    ):
        if pattern.match(partition_path):
            return partition_path[: partition_path.rfind("p")]

    return partition_path


def get_boot_devices(mounts_file: str = "/proc/mounts") -> set[str]:
    """Get the whole devices backing the running system.

    Reads the mount table and resolves the devices mounted at '/', '/boot'
    and '/boot/firmware' to their whole-device paths.

    Args:
        mounts_file: Mount table to read.

    Returns:
        Set of whole-device paths (empty if the mount table is unreadable).
    """
    boot_devices: set[str] = set()
    try:
        with open(mounts_file) as f:
            for line in f:
                parts = line.split()
                if len(parts) < 2 or parts[1] not in SYSTEM_MOUNT_POINTS:
                    continue
                if not parts[0].startswith("/dev/"):
                    continue
                boot_devices.add(partition_to_whole_device(parts[0]))
    except OSError:
        logger.warning("Could not read %s to determine boot devices", mounts_file)

    logger.debug("Boot devices: %s", sorted(boot_devices))
    return boot_devices


def _parse_removable(value: Any) -> bool:
    """Interpret lsblk's RM column (bool, '1'/'0' or 1/0)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true")
    return False


def _parse_size(value: Any) -> int:
    """Interpret lsblk's SIZE column in bytes (0 when unknown)."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _collect_mountpoints(entry: dict[str, Any]) -> list[str]:
    """Gather mount points of an entry and all of its children."""
    mountpoints: list[str] = []
    values = entry.get("mountpoints")
    if values is None:
        values = [entry.get("mountpoint")]
    for value in values:
        if value:
            mountpoints.append(value)
    for child in entry.get("children") or []:
        mountpoints.extend(_collect_mountpoints(child))
    return mountpoints


def parse_lsblk_output(output: str) -> list[BlockDevice]:
    """Parse ``lsblk -J -b`` output into whole-disk BlockDevice objects.

    Args:
        output: JSON text printed by lsblk.

    Returns:
        Disks in lsblk order, with child mount points merged in.

    Raises:
        ValueError: The output is not the expected JSON document.
    """
    data = json.loads(output)
    if not isinstance(data, dict) or not isinstance(
        data.get("blockdevices"), list
    ):
        raise ValueError("lsblk output has no 'blockdevices' list")

    devices: list[BlockDevice] = []
    for entry in data["blockdevices"]:
        if entry.get("type") != DeviceKind.DISK.value:
            continue
        name = entry.get("name") or ""
        path = entry.get("path") or (f"/dev/{name}" if name else "")
        devices.append(
            BlockDevice(
                path=path,
                name=name,
                size_bytes=_parse_size(entry.get("size")),
                removable=_parse_removable(entry.get("rm")),
                model=(entry.get("model") or "").strip() or None,
                mountpoints=_collect_mountpoints(entry),
                kind=DeviceKind.DISK,
            )
        )
    return devices


def list_block_devices() -> list[BlockDevice]:
    """List whole-disk block devices.

    Returns:
        Devices reported by lsblk.

    Raises:
        CommandError: lsblk failed or printed unparseable output.
    """
    command = ["lsblk", "-J", "-b", "-o", LSBLK_COLUMNS]
    result = run_command(command)
    try:
        devices = parse_lsblk_output(result.stdout)
    except ValueError as e:
        logger.error("Could not parse lsblk output: %s", e)
        raise CommandError(command, result.returncode, str(e)) from e

    logger.debug("Found %d block device(s)", len(devices))
    return devices


def find_candidates(
    devices: Iterable[BlockDevice], boot_devices: Iterable[str]
) -> list[BlockDevice]:
    """Select the devices offered to the operator.

    Boot devices and unnamed entries are never offered. Removable devices
    are preferred; when there are none, every remaining device is offered
    and a warning is logged.

    Args:
        devices: Devices from list_block_devices().
        boot_devices: Whole-device paths backing the running system.

    Returns:
        Candidate devices.

    Raises:
        NoDeviceFoundError: No candidate remains.
    """
    excluded = set(boot_devices)
    eligible = [d for d in devices if d.name and d.path not in excluded]

    candidates = [d for d in eligible if d.removable]
    if not candidates and eligible:
        logger.warning(
            "No removable devices found; offering all non-system devices. "
            "Double-check the selection, internal disks may be listed."
        )
        candidates = eligible

    if not candidates:
        logger.error("No candidate block devices found")
        raise NoDeviceFoundError()

    logger.info("Candidate devices: %s", ", ".join(d.path for d in candidates))
    return candidates


def classify_device(
    size_bytes: int | None, removable: bool, settings: Settings
) -> DeviceClass:
    """Classify a device by size.

    The first matching rule wins: unknown or zero size is UNKNOWN, above the
    flash drive threshold is FLASH_DRIVE, above the SD card threshold is
    SD_CARD, anything else is SMALL_DEVICE. Removability does not change
    the result; it is accepted so callers pass everything lsblk reports.

    Args:
        size_bytes: Device size in bytes (None or 0 if unknown).
        removable: Removable flag reported by the kernel.
        settings: Settings holding the size thresholds.

    Returns:
        The device class.
    """
    if not size_bytes or size_bytes <= 0:
        device_class = DeviceClass.UNKNOWN
    elif size_bytes > settings.flash_drive_threshold:
        device_class = DeviceClass.FLASH_DRIVE
    elif size_bytes > settings.sd_card_threshold:
        device_class = DeviceClass.SD_CARD
    else:
        device_class = DeviceClass.SMALL_DEVICE

    logger.debug(
        "Classified device (size=%s, removable=%s) as %s",
        size_bytes,
        removable,
        device_class.value,
    )
    return device_class


def format_size(size_bytes: int) -> str:
    """Format a byte count for display (e.g., '29.7 GiB')."""
    size = float(size_bytes)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if size < 1024:
            return f"{size:.1f} {unit}" if unit != "B" else f"{int(size)} B"
        size /= 1024
    return f"{size:.1f} TiB"


__all__ = [
    "LSBLK_COLUMNS",
    "SYSTEM_MOUNT_POINTS",
    "classify_device",
    "find_candidates",
    "format_size",
    "get_boot_devices",
    "list_block_devices",
    "parse_lsblk_output",
    "partition_to_whole_device",
]
