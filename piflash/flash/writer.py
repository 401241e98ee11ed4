"""Writer module for SD card / USB drive flashing.

This module handles the actual write operations:
- Unmount every mounted partition of the target device
- Write the image to the device with fsync
- Hash verification (full and prefix modes)

Writes are synchronous and flushed (conv=fsync equivalent); a failed write
is never resumed, the whole image is written again on the next run.
"""

import hashlib
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from piflash.commands import run_command
from piflash.config import MIB, Settings
from piflash.devices.policy import refresh_partition_table
from piflash.errors import CommandError, WriteFailedError
from piflash.types import ResolvedImage, VerificationMode

logger = logging.getLogger(__name__)

# Size prefixes for verification modes
VERIFICATION_SIZE_BYTES = {
    VerificationMode.PREFIX_16M: 16 * MIB,
}


@dataclass
class WriteResult:
    """Result of a write operation.

    Attributes:
        bytes_written: Number of bytes written.
        verification_mode: Verification mode used.
        verified_bytes: Number of bytes compared after the write (0 if skipped).
        source_hash: SHA-256 of the compared source prefix (None if skipped).
    """

    bytes_written: int
    verification_mode: VerificationMode
    verified_bytes: int = 0
    source_hash: str | None = None


def get_mount_points(device_path: str, mounts_file: str = "/proc/mounts") -> list[str]:
    """Get mount points for a device and its partitions.

    Args:
        device_path: Path to the device (e.g., '/dev/sda').
        mounts_file: Mount table to read.

    Returns:
        List of mount points (empty if none mounted).
    """
    mount_points: list[str] = []
    device_name = Path(device_path).name

    try:
        with open(mounts_file) as f:
            for line in f:
                parts = line.split()
                if len(parts) < 2:
                    continue
                mounted_name = Path(parts[0]).name
                # Exact match, or a partition like sda1, mmcblk0p1, nvme0n1p1
                if mounted_name == device_name or (
                    mounted_name.startswith(device_name)
                    and len(mounted_name) > len(device_name)
                    and (
                        mounted_name[len(device_name)].isdigit()
                        or mounted_name[len(device_name)] == "p"
                    )
                ):
                    # /proc/mounts escapes spaces as \040
                    mount_points.append(parts[1].replace("\\040", " "))
    except OSError:
        logger.warning("Could not read %s, skipping mount check", mounts_file)

    return mount_points


def unmount_device(device_path: str) -> None:
    """Unmount every mounted partition of a device.

    Each mount point is unmounted normally, then lazily if that fails.
    'Not mounted' errors are ignored.

    Args:
        device_path: Whole device path.

    Raises:
        WriteFailedError: A partition is still mounted afterwards.
    """
    # Deepest mount points first so nested mounts come off cleanly
    for mount_point in sorted(get_mount_points(device_path), key=len, reverse=True):
        logger.info("Unmounting %s", mount_point)
        try:
            result = run_command(["umount", mount_point], check=False)
            if result.returncode != 0 and "not mounted" not in result.stderr:
                logger.warning(
                    "umount %s failed, trying lazy unmount: %s",
                    mount_point,
                    result.stderr.strip(),
                )
                run_command(["umount", "-l", mount_point], check=False)
        except CommandError as e:
            logger.warning("Could not unmount %s: %s", mount_point, e.message)

    remaining = get_mount_points(device_path)
    if remaining:
        logger.error("Device %s still mounted at %s", device_path, remaining)
        raise WriteFailedError(
            device_path, f"still mounted at {', '.join(remaining)}"
        )


def compute_file_hash(
    file_path: str | Path,
    max_bytes: int | None = None,
    block_size: int = 4 * MIB,
) -> tuple[str, int]:
    """Compute SHA-256 hash of a file or device.

    Args:
        file_path: Path to the file (or block device) to hash.
        max_bytes: Maximum number of bytes to hash (for prefix verification).
        block_size: Block size for reading.

    Returns:
        Tuple of (hex hash string, bytes hashed).
    """
    hasher = hashlib.sha256()
    bytes_hashed = 0

    with open(file_path, "rb") as f:
        while True:
            if max_bytes is not None:
                remaining = max_bytes - bytes_hashed
                if remaining <= 0:
                    break
                read_size = min(block_size, remaining)
            else:
                read_size = block_size

            chunk = f.read(read_size)
            if not chunk:
                break

            hasher.update(chunk)
            bytes_hashed += len(chunk)

    return hasher.hexdigest(), bytes_hashed


def _copy_blocks(
    source: BinaryIO,
    dest: BinaryIO,
    total_bytes: int,
    block_size: int,
    progress: Callable[[int], None] | None,
) -> int:
    """Copy source to dest block by block.

    Args:
        source: Source file object.
        dest: Destination file object.
        total_bytes: Total bytes to write.
        block_size: Block size for I/O.
        progress: Optional callback advanced by bytes written.

    Returns:
        Number of bytes written.
    """
    bytes_written = 0

    while bytes_written < total_bytes:
        chunk = source.read(block_size)
        if not chunk:
            break

        dest.write(chunk)
        bytes_written += len(chunk)
        if progress is not None:
            progress(len(chunk))

        # Log progress every 256 MiB
        if bytes_written % (256 * MIB) < block_size:
            logger.debug(
                "Write progress: %d / %d bytes (%.1f%%)",
                bytes_written,
                total_bytes,
                (bytes_written / total_bytes) * 100,
            )

    return bytes_written


def write_image_to_device(
    image: ResolvedImage,
    device_path: str,
    settings: Settings,
    progress: Callable[[int], None] | None = None,
) -> WriteResult:
    """Write an image file to a block device with verification.

    This is the core write function that:
    1. Writes the image with fsync
    2. Syncs all filesystems
    3. Verifies the write by reading back and comparing hashes
    4. Re-reads the partition table

    Args:
        image: Resolved image to write.
        device_path: Path to the target device.
        settings: Settings (block size, verification mode, settle wait).
        progress: Optional callback advanced by bytes written.

    Returns:
        WriteResult with operation details.

    Raises:
        WriteFailedError: The image is missing, the device could not be
            written, or verification failed.
    """
    image_path = image.path
    if not image_path.is_file() or image_path.stat().st_size <= 0:
        raise WriteFailedError(device_path, f"image {image_path} is missing or empty")

    image_size = image_path.stat().st_size
    block_size = settings.block_size
    mode = VerificationMode(settings.verification_mode)
    logger.info(
        "Writing image %s (%d bytes) to %s",
        image_path.name,
        image_size,
        device_path,
    )

    try:
        with open(image_path, "rb") as src, open(device_path, "r+b") as dst:
            bytes_written = _copy_blocks(
                src, dst, image_size, block_size, progress
            )

            # Flush all buffers and sync to device
            dst.flush()
            os.fsync(dst.fileno())
    except PermissionError as e:
        logger.error("Permission denied writing to device: %s", e)
        raise WriteFailedError(device_path, "permission denied") from e
    except OSError as e:
        logger.error("I/O error writing to device: %s", e)
        raise WriteFailedError(device_path, str(e)) from e

    if bytes_written != image_size:
        raise WriteFailedError(
            device_path, f"wrote {bytes_written} of {image_size} bytes"
        )
    logger.info("Wrote %d bytes to %s", bytes_written, device_path)

    # Call sync to ensure all writes are flushed
    os.sync()

    result = WriteResult(bytes_written=bytes_written, verification_mode=mode)
    if mode != VerificationMode.SKIP:
        verify_bytes = min(VERIFICATION_SIZE_BYTES.get(mode, image_size), image_size)
        logger.info("Verifying write (mode=%s, bytes=%d)", mode.value, verify_bytes)
        try:
            source_hash, _ = compute_file_hash(image_path, verify_bytes, block_size)
            device_hash, _ = compute_file_hash(device_path, verify_bytes, block_size)
        except OSError as e:
            logger.error("Could not read back %s: %s", device_path, e)
            raise WriteFailedError(device_path, f"read-back failed: {e}") from e

        if device_hash != source_hash:
            logger.error(
                "Hash verification FAILED: expected=%s, got=%s",
                source_hash[:16],
                device_hash[:16],
            )
            raise WriteFailedError(
                device_path,
                f"verification ({mode.value}) failed: expected "
                f"{source_hash[:16]}..., got {device_hash[:16]}... "
                "The card may be defective.",
            )
        logger.info("Hash verification passed")
        result.verified_bytes = verify_bytes
        result.source_hash = source_hash

    refresh_partition_table(device_path, settings)
    return result


__all__ = [
    "VERIFICATION_SIZE_BYTES",
    "WriteResult",
    "compute_file_hash",
    "get_mount_points",
    "unmount_device",
    "write_image_to_device",
]
