"""Block-level image writing.

This module handles:
- Unmounting the target device
- Synchronous, flushed writes of the image
- Hash-based verification after the write
"""

from piflash.flash.writer import (
    WriteResult,
    compute_file_hash,
    get_mount_points,
    unmount_device,
    write_image_to_device,
)

__all__ = [
    "WriteResult",
    "compute_file_hash",
    "get_mount_points",
    "unmount_device",
    "write_image_to_device",
]
