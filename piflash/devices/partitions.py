"""Partition discovery on the target device.

The boot and root partitions of a written image are identified by
filesystem type (vfat and ext4), never by number or naming convention.
"""

import json
import logging
import time
from collections.abc import Iterable
from typing import Any

from piflash.commands import run_command
from piflash.config import Settings
from piflash.errors import CommandError, PartitionsNotFoundError
from piflash.types import DeviceKind, PartitionInfo, PartitionPair

logger = logging.getLogger(__name__)

BOOT_FSTYPE = "vfat"
ROOT_FSTYPE = "ext4"


def _walk_partitions(entries: Iterable[dict[str, Any]]) -> list[PartitionInfo]:
    """Flatten lsblk entries into partitions, depth first."""
    partitions: list[PartitionInfo] = []
    for entry in entries:
        if entry.get("type") == DeviceKind.PARTITION.value:
            path = entry.get("path") or f"/dev/{entry.get('name', '')}"
            partitions.append(PartitionInfo(path=path, fstype=entry.get("fstype")))
        partitions.extend(_walk_partitions(entry.get("children") or []))
    return partitions


def list_partitions(device_path: str) -> list[PartitionInfo]:
    """List the partitions of a device with their filesystem types.

    Args:
        device_path: Whole device (e.g., '/dev/sdb').

    Returns:
        Partitions in lsblk order.

    Raises:
        CommandError: lsblk failed or printed unparseable output.
    """
    command = ["lsblk", "-J", "-o", "PATH,NAME,FSTYPE,TYPE", device_path]
    result = run_command(command)
    try:
        data = json.loads(result.stdout)
        entries = data["blockdevices"]
    except (ValueError, KeyError, TypeError) as e:
        logger.error("Could not parse lsblk output for %s: %s", device_path, e)
        raise CommandError(command, result.returncode, str(e)) from e

    partitions = _walk_partitions(entries)
    logger.debug(
        "Partitions on %s: %s",
        device_path,
        ", ".join(f"{p.path}={p.fstype}" for p in partitions) or "none",
    )
    return partitions


def find_partition_pair(
    device_path: str, partitions: Iterable[PartitionInfo]
) -> PartitionPair:
    """Pick the boot and root partitions by filesystem type.

    The first vfat partition is the boot partition and the first ext4
    partition is the root partition.

    Args:
        device_path: Device the partitions belong to (for error reporting).
        partitions: Partitions from list_partitions().

    Returns:
        The boot/root pair.

    Raises:
        PartitionsNotFoundError: Either partition is missing.
    """
    partitions = list(partitions)
    boot = next((p.path for p in partitions if p.fstype == BOOT_FSTYPE), None)
    root = next((p.path for p in partitions if p.fstype == ROOT_FSTYPE), None)

    if boot is None or root is None:
        raise PartitionsNotFoundError(
            device_path, [(p.path, p.fstype) for p in partitions]
        )
    return PartitionPair(boot=boot, root=root)


def locate_partitions(device_path: str, settings: Settings) -> PartitionPair:
    """Find the boot and root partitions of a freshly written device.

    Udev may not have probed the new filesystems yet, so a failed first
    scan is followed by one settle wait and a second scan.

    Args:
        device_path: Whole device that was written.
        settings: Settings holding the settle wait.

    Returns:
        The boot/root pair.

    Raises:
        PartitionsNotFoundError: Both scans failed to find the pair.
    """
    try:
        pair = find_partition_pair(device_path, list_partitions(device_path))
    except PartitionsNotFoundError as e:
        logger.info(
            "Partitions not found yet on %s (%s), rescanning in %.1fs",
            device_path,
            e.message,
            settings.settle_seconds,
        )
        time.sleep(settings.settle_seconds)
        try:
            pair = find_partition_pair(device_path, list_partitions(device_path))
        except PartitionsNotFoundError as retry_error:
            logger.error("%s", retry_error.message)
            raise

    logger.info("Found boot partition %s and root partition %s", pair.boot, pair.root)
    return pair


__all__ = [
    "BOOT_FSTYPE",
    "ROOT_FSTYPE",
    "find_partition_pair",
    "list_partitions",
    "locate_partitions",
]
