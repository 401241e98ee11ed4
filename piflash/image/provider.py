"""Image acquisition.

This module handles:
- Validating a local .img or .img.xz image
- Streaming .xz decompression with progress
- Downloading the latest image, verifying its published SHA-256

Both paths end in a ResolvedImage: an uncompressed file ready to be
written, flagged as owned when the run created it and must delete it.
"""

import logging
import lzma
import shutil
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

import httpx
from rich.console import Console

from piflash.config import Settings
from piflash.errors import (
    DecompressionFailedError,
    DownloadFailedError,
    ImageUnavailableError,
    IntegrityCheckFailedError,
    InvalidImageFormatError,
)
from piflash.image.fetch import (
    ARCHIVE_FILENAME,
    CHECKSUM_FILENAME,
    build_image_urls,
    download_file,
    fetch_text,
    parse_checksum_file,
    probe_content_length,
)
from piflash.progress import ProgressCallback, transfer_progress
from piflash.types import (
    Architecture,
    ImageSource,
    LocalImage,
    RemoteImage,
    ResolvedImage,
)

logger = logging.getLogger(__name__)

# Compressed bytes read per decompression step
DECOMPRESS_CHUNK_SIZE = 1024 * 1024

TrackFile = Callable[[Path], None]


@contextmanager
def _progress(
    console: Console | None, description: str, total: int | None
) -> Iterator[ProgressCallback | None]:
    """Progress callback for a transfer, or None without a console."""
    if console is None:
        yield None
        return
    with transfer_progress(console, description, total) as advance:
        yield advance


def _decompress_streaming(
    src: Path, dest: Path, progress: ProgressCallback
) -> None:
    """Decode an .xz file chunk by chunk, reporting compressed bytes read."""
    decompressor = lzma.LZMADecompressor()
    with src.open("rb") as fin, dest.open("wb") as fout:
        while chunk := fin.read(DECOMPRESS_CHUNK_SIZE):
            progress(len(chunk))
            data = chunk
            while True:
                if decompressor.eof:
                    # Next stream of a multi-stream file, after null padding
                    data = (decompressor.unused_data + data).lstrip(b"\x00")
                    if not data:
                        break
                    decompressor = lzma.LZMADecompressor()
                elif not data and decompressor.needs_input:
                    break
                # Bounded output per call
                fout.write(
                    decompressor.decompress(data, max_length=DECOMPRESS_CHUNK_SIZE)
                )
                data = b""

    if not decompressor.eof:
        raise EOFError(
            "Compressed file ended before the end-of-stream marker was reached"
        )


def decompress_xz(
    src: Path, dest: Path, progress: ProgressCallback | None = None
) -> Path:
    """Decompress an .xz archive.

    Args:
        src: The .xz archive.
        dest: Output file (overwritten).
        progress: Optional callback advanced by compressed bytes consumed.

    Returns:
        The output path.

    Raises:
        DecompressionFailedError: The archive is corrupt, truncated or could
            not be read. The partial output is removed.
    """
    logger.info("Decompressing %s to %s", src.name, dest)
    try:
        if progress is not None:
            _decompress_streaming(src, dest, progress)
        else:
            with lzma.open(src, "rb") as fin, dest.open("wb") as fout:
                shutil.copyfileobj(fin, fout, DECOMPRESS_CHUNK_SIZE)
    except (lzma.LZMAError, EOFError, OSError) as e:
        dest.unlink(missing_ok=True)
        logger.error("Decompression of %s failed: %s", src, e)
        raise DecompressionFailedError(str(src), str(e)) from e
    except BaseException:
        dest.unlink(missing_ok=True)
        raise

    logger.info("Decompressed %s (%d bytes)", dest.name, dest.stat().st_size)
    return dest


def _finalize(path: Path, owned: bool) -> ResolvedImage:
    """Build the ResolvedImage, rejecting missing or empty output."""
    if not path.is_file():
        raise ImageUnavailableError(str(path), "file does not exist")
    size = path.stat().st_size
    if size <= 0:
        raise ImageUnavailableError(str(path), "file is empty")
    return ResolvedImage(path=path, size_bytes=size, owned=owned)


def resolve_local_image(
    path: Path,
    *,
    console: Console | None = None,
    track: TrackFile | None = None,
) -> ResolvedImage:
    """Resolve an operator-supplied image file.

    A plain .img is used in place. An .img.xz is decompressed next to the
    archive with the .xz suffix stripped; an existing file at that path is
    never overwritten.

    Args:
        path: Local .img or .img.xz file.
        console: Console for progress output.
        track: Called with every file the run creates, before creating it.

    Returns:
        The resolved image.

    Raises:
        InvalidImageFormatError: Missing file or unsupported extension.
        ImageUnavailableError: The decompression target already exists or
            the result is empty.
        DecompressionFailedError: The archive could not be decompressed.
    """
    path = Path(path).expanduser()
    if not path.is_file():
        raise InvalidImageFormatError(str(path), "file does not exist")

    if path.name.endswith(".img"):
        logger.info("Using local image %s", path)
        return _finalize(path, owned=False)

    if not path.name.endswith(".img.xz"):
        raise InvalidImageFormatError(str(path), "expected a .img or .img.xz file")

    dest = path.with_suffix("")
    if dest.exists():
        raise ImageUnavailableError(
            str(dest), "refusing to overwrite an existing file; remove it first"
        )

    if track is not None:
        track(dest)
    with _progress(console, "Decompressing", path.stat().st_size) as advance:
        decompress_xz(path, dest, advance)
    return _finalize(dest, owned=True)


def fetch_remote_image(
    architecture: Architecture,
    settings: Settings,
    *,
    client: httpx.Client | None = None,
    console: Console | None = None,
    track: TrackFile | None = None,
) -> ResolvedImage:
    """Download, verify and decompress the latest Raspberry Pi OS Lite.

    The checksum file is fetched first, then the archive is streamed to the
    work directory and renamed to the name recorded in the checksum file.
    A digest mismatch deletes both downloaded files.

    Args:
        architecture: 32 or 64 bit userland.
        settings: Settings (base URL, work directory, timeout).
        client: HTTPX client; one following redirects is created if omitted.
        console: Console for progress output.
        track: Called with every file the run creates, before creating it.

    Returns:
        The resolved (decompressed, owned) image.

    Raises:
        DownloadFailedError: Network failure or unusable checksum file.
        IntegrityCheckFailedError: The archive digest does not match.
        DecompressionFailedError: The archive could not be decompressed.
    """
    urls = build_image_urls(architecture, settings.download_base_url)
    work_dir = settings.work_dir
    work_dir.mkdir(parents=True, exist_ok=True)

    archive_path = work_dir / ARCHIVE_FILENAME
    checksum_path = work_dir / CHECKSUM_FILENAME

    owns_client = client is None
    if client is None:
        client = httpx.Client(follow_redirects=True)

    try:
        checksum_text = fetch_text(client, urls.checksum_url)
        if track is not None:
            track(checksum_path)
        checksum_path.write_text(checksum_text, encoding="utf-8")

        published = parse_checksum_file(checksum_text)
        if published is None:
            raise DownloadFailedError(
                urls.checksum_url, "no SHA-256 digest in checksum file"
            )

        total = probe_content_length(client, urls.archive_url)
        if track is not None:
            track(archive_path)
        logger.info("Downloading Raspberry Pi OS Lite (%s-bit)", architecture.value)
        with _progress(console, "Downloading", total) as advance:
            digest = download_file(
                client,
                urls.archive_url,
                archive_path,
                timeout=settings.download_timeout,
                progress=advance,
            )
    finally:
        if owns_client:
            client.close()

    if published.filename and published.filename != archive_path.name:
        renamed = work_dir / published.filename
        if track is not None:
            track(renamed)
        archive_path.replace(renamed)
        archive_path = renamed
        logger.debug("Renamed archive to %s", archive_path.name)

    if digest != published.sha256:
        logger.error(
            "Checksum mismatch for %s: expected %s, got %s",
            archive_path.name,
            published.sha256,
            digest,
        )
        archive_path.unlink(missing_ok=True)
        checksum_path.unlink(missing_ok=True)
        raise IntegrityCheckFailedError(str(archive_path), published.sha256, digest)
    logger.info("Checksum verified for %s", archive_path.name)

    if not archive_path.name.endswith(".xz"):
        raise InvalidImageFormatError(str(archive_path), "expected an .xz archive")

    image_path = archive_path.with_suffix("")
    if track is not None:
        track(image_path)
    with _progress(console, "Decompressing", archive_path.stat().st_size) as advance:
        decompress_xz(archive_path, image_path, advance)
    return _finalize(image_path, owned=True)


def resolve_image(
    source: ImageSource,
    settings: Settings,
    *,
    client: httpx.Client | None = None,
    console: Console | None = None,
    track: TrackFile | None = None,
) -> ResolvedImage:
    """Resolve an image source into a writable image file.

    Args:
        source: Local file or remote architecture.
        settings: Application settings.
        client: HTTPX client for remote sources.
        console: Console for progress output.
        track: Called with every file the run creates, before creating it.

    Returns:
        The resolved image.
    """
    if isinstance(source, LocalImage):
        return resolve_local_image(source.path, console=console, track=track)
    if isinstance(source, RemoteImage):
        return fetch_remote_image(
            source.architecture,
            settings,
            client=client,
            console=console,
            track=track,
        )
    raise TypeError(f"Unsupported image source: {source!r}")


__all__ = [
    "DECOMPRESS_CHUNK_SIZE",
    "decompress_xz",
    "fetch_remote_image",
    "resolve_image",
    "resolve_local_image",
]
