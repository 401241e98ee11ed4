"""Raspberry Pi OS image acquisition.

This module handles:
- Local .img / .img.xz images
- Download of the latest image with SHA-256 verification
- Streaming .xz decompression
"""

from piflash.image.fetch import (
    ImageURLs,
    PublishedChecksum,
    build_image_urls,
    parse_checksum_file,
)
from piflash.image.provider import (
    decompress_xz,
    fetch_remote_image,
    resolve_image,
    resolve_local_image,
)

__all__ = [
    "ImageURLs",
    "PublishedChecksum",
    "build_image_urls",
    "decompress_xz",
    "fetch_remote_image",
    "parse_checksum_file",
    "resolve_image",
    "resolve_local_image",
]
