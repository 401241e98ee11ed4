"""Target device handling.

This module handles:
- Block device inventory and size classification
- The format recommendation and formatting itself
- Boot/root partition discovery after the image is written
"""

from piflash.devices.inventory import (
    classify_device,
    find_candidates,
    get_boot_devices,
    list_block_devices,
)
from piflash.devices.partitions import (
    find_partition_pair,
    list_partitions,
    locate_partitions,
)
from piflash.devices.policy import (
    FormatRecommendation,
    format_device,
    recommend_format,
    refresh_partition_table,
)

__all__ = [
    # Inventory
    "classify_device",
    "find_candidates",
    "get_boot_devices",
    "list_block_devices",
    # Policy
    "FormatRecommendation",
    "format_device",
    "recommend_format",
    "refresh_partition_table",
    # Partitions
    "find_partition_pair",
    "list_partitions",
    "locate_partitions",
]
