"""Raspberry Pi OS image download.

This module handles:
- URL discovery for the latest Raspberry Pi OS Lite archive
- Fetching and parsing the published .sha256 file
- Streaming download with progress and SHA-256 computation
"""

import hashlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import httpx

from piflash.errors import DownloadFailedError
from piflash.types import Architecture

logger = logging.getLogger(__name__)

# Timeout for small requests such as the checksum file (seconds)
CHECKSUM_TIMEOUT = 30

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB

# Names under the download server for each architecture
IMAGE_NAMES = {
    Architecture.ARM64: "raspios_lite_arm64_latest",
    Architecture.ARM32: "raspios_lite_armhf_latest",
}

# Local names used until the checksum file reveals the real archive name
ARCHIVE_FILENAME = "raspios-lite-latest.img.xz"
CHECKSUM_FILENAME = "raspios-lite-latest.sha256"


@dataclass(frozen=True)
class ImageURLs:
    """URLs for an image archive and its checksum file."""

    archive_url: str
    checksum_url: str


@dataclass(frozen=True)
class PublishedChecksum:
    """Digest and file name recorded in a .sha256 file.

    Attributes:
        sha256: Lower-case hex digest.
        filename: Archive name recorded next to the digest, if any.
    """

    sha256: str
    filename: str | None


def build_image_urls(architecture: Architecture, base_url: str) -> ImageURLs:
    """Build the archive and checksum URLs for an architecture.

    Args:
        architecture: 32 or 64 bit userland.
        base_url: Base URL for Raspberry Pi downloads.

    Returns:
        ImageURLs; the checksum URL is the archive URL plus '.sha256'.
    """
    archive_url = f"{base_url.rstrip('/')}/{IMAGE_NAMES[architecture]}"
    return ImageURLs(archive_url=archive_url, checksum_url=f"{archive_url}.sha256")


def parse_checksum_file(content: str) -> PublishedChecksum | None:
    """Parse a sha256sum-style file holding a single entry.

    Args:
        content: File content ('<digest>  <filename>' or just '<digest>').

    Returns:
        The first entry, or None if no digest is present.
    """
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        parts = line.split(maxsplit=1)
        checksum = parts[0].lower()
        if len(checksum) != 64 or any(c not in "0123456789abcdef" for c in checksum):
            continue

        filename = None
        if len(parts) == 2:
            # Remove leading '*' if present (binary mode indicator)
            filename = Path(parts[1].lstrip("*").strip()).name or None
        return PublishedChecksum(sha256=checksum, filename=filename)

    return None


def fetch_text(
    client: httpx.Client, url: str, timeout: float = CHECKSUM_TIMEOUT
) -> str:
    """Fetch a small text resource.

    Args:
        client: HTTPX client instance.
        url: URL to fetch.
        timeout: Request timeout in seconds.

    Returns:
        Response body as text.

    Raises:
        DownloadFailedError: If the request fails.
    """
    logger.debug("Fetching %s", url)

    try:
        response = client.get(url, timeout=timeout)
        response.raise_for_status()
        return response.text

    except httpx.HTTPStatusError as e:
        raise DownloadFailedError(
            url, f"HTTP {e.response.status_code} {e.response.reason_phrase}"
        ) from e
    except httpx.TimeoutException as e:
        raise DownloadFailedError(url, "timeout") from e
    except httpx.RequestError as e:
        raise DownloadFailedError(url, f"network error: {e}") from e


def download_file(
    client: httpx.Client,
    url: str,
    dest_path: Path,
    *,
    timeout: float,
    progress: Callable[[int], None] | None = None,
    chunk_size: int = DOWNLOAD_CHUNK_SIZE,
) -> str:
    """Stream a download to disk.

    Args:
        client: HTTPX client instance.
        url: URL to download from.
        dest_path: Destination path for the downloaded file.
        timeout: Download timeout in seconds.
        progress: Optional callback advanced by bytes received.
        chunk_size: Size of chunks to download.

    Returns:
        SHA256 hex digest of the downloaded content.

    Raises:
        DownloadFailedError: If the download fails. A partial file is left
            in place for the caller to clean up.
    """
    logger.info("Downloading %s to %s", url, dest_path)

    try:
        with client.stream("GET", url, timeout=timeout) as response:
            response.raise_for_status()

            total_bytes = 0
            sha256 = hashlib.sha256()

            dest_path.parent.mkdir(parents=True, exist_ok=True)

            with dest_path.open("wb") as f:
                for chunk in response.iter_bytes(chunk_size):
                    f.write(chunk)
                    sha256.update(chunk)
                    total_bytes += len(chunk)
                    if progress is not None:
                        progress(len(chunk))

    except httpx.HTTPStatusError as e:
        raise DownloadFailedError(
            url, f"HTTP {e.response.status_code} {e.response.reason_phrase}"
        ) from e
    except httpx.TimeoutException as e:
        raise DownloadFailedError(url, "timeout") from e
    except httpx.RequestError as e:
        raise DownloadFailedError(url, f"network error: {e}") from e
    except OSError as e:
        raise DownloadFailedError(url, f"could not write {dest_path}: {e}") from e

    digest = sha256.hexdigest()
    logger.info(
        "Downloaded %s (%d bytes, checksum: %s)",
        dest_path.name,
        total_bytes,
        digest[:16] + "...",
    )
    return digest


def probe_content_length(
    client: httpx.Client, url: str, timeout: float = CHECKSUM_TIMEOUT
) -> int | None:
    """Return the size advertised for a URL, or None if unknown."""
    try:
        response = client.head(url, timeout=timeout)
        response.raise_for_status()
    except httpx.HTTPError as e:
        logger.debug("HEAD %s failed: %s", url, e)
        return None

    length = response.headers.get("content-length")
    return int(length) if length and length.isdigit() else None


__all__ = [
    "ARCHIVE_FILENAME",
    "CHECKSUM_FILENAME",
    "ImageURLs",
    "PublishedChecksum",
    "build_image_urls",
    "download_file",
    "fetch_text",
    "parse_checksum_file",
    "probe_content_length",
]
