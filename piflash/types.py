"""Shared type definitions for piflash.

This module contains enums and dataclasses shared across subpackages to
avoid circular imports.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class DeviceKind(str, Enum):
    """Kind of block device entry reported by lsblk."""

    DISK = "disk"
    PARTITION = "part"


class DeviceClass(str, Enum):
    """Heuristic classification of a target device by size."""

    FLASH_DRIVE = "flash_drive"
    SD_CARD = "sd_card"
    SMALL_DEVICE = "small_device"
    UNKNOWN = "unknown"


class FormatAction(str, Enum):
    """Recommended pre-write action for a device."""

    FORMAT = "format"
    SKIP = "skip"


class RunOutcome(str, Enum):
    """Final status of a provisioning run."""

    UNKNOWN = "unknown"
    SUCCESS = "success"
    FAILED = "failed"


class Architecture(str, Enum):
    """Raspberry Pi OS userland architecture."""

    ARM32 = "32"
    ARM64 = "64"


class NetworkInterface(str, Enum):
    """Interface that receives the static IP configuration."""

    WIRED = "eth0"
    WIRELESS = "wlan0"


class VerificationMode(str, Enum):
    """Mode for verifying the written image."""

    FULL = "full-hash"
    PREFIX_16M = "prefix-16MiB"
    SKIP = "skip"


@dataclass
class BlockDevice:
    """A block device as reported by lsblk.

    Attributes:
        path: Absolute device path (e.g., '/dev/sdb').
        name: Kernel name (e.g., 'sdb').
        size_bytes: Size in bytes (0 when unknown).
        removable: Whether the kernel flags the device as removable.
        model: Model string, if reported.
        mountpoints: Mount points of the device and its partitions.
        kind: Whole disk or partition.
    """

    path: str
    name: str
    size_bytes: int
    removable: bool
    model: str | None = None
    mountpoints: list[str] = field(default_factory=list)
    kind: DeviceKind = DeviceKind.DISK


@dataclass(frozen=True)
class PartitionInfo:
    """A child partition and its detected filesystem type."""

    path: str
    fstype: str | None


@dataclass(frozen=True)
class PartitionPair:
    """Boot (vfat) and root (ext4) partitions discovered on a device."""

    boot: str
    root: str


@dataclass(frozen=True)
class LocalImage:
    """Image supplied by the operator as a local file."""

    path: Path


@dataclass(frozen=True)
class RemoteImage:
    """Latest Raspberry Pi OS Lite image for an architecture."""

    architecture: Architecture


ImageSource = LocalImage | RemoteImage


@dataclass(frozen=True)
class ResolvedImage:
    """A verified, decompressed image ready to be written.

    Attributes:
        path: Path to the uncompressed image file.
        size_bytes: Size of the image in bytes.
        owned: Whether the run created the file and must delete it.
    """

    path: Path
    size_bytes: int
    owned: bool


__all__ = [
    "Architecture",
    "BlockDevice",
    "DeviceClass",
    "DeviceKind",
    "FormatAction",
    "ImageSource",
    "LocalImage",
    "NetworkInterface",
    "PartitionInfo",
    "PartitionPair",
    "RemoteImage",
    "ResolvedImage",
    "RunOutcome",
    "VerificationMode",
]
