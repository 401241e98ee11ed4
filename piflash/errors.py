"""Error definitions for piflash.

Every pipeline stage raises a subclass of ProvisionError with a stable
error code. All of them are terminal for the current run; the CLI reports
the message and exits with status 1.
"""

from collections.abc import Sequence


class ProvisionError(Exception):
    """Base exception for provisioning failures."""

    def __init__(self, message: str, error_code: str) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class MissingDependencyError(ProvisionError):
    """Required external tools are not installed."""

    def __init__(self, tools: Sequence[str]) -> None:
        names = ", ".join(tools)
        super().__init__(
            f"Required tools not found: {names}. "
            f"Install them first (e.g., 'sudo apt install {' '.join(tools)}').",
            error_code="MISSING_DEPENDENCY",
        )
        self.tools = list(tools)


class CommandError(ProvisionError):
    """An external command exited with a failure status."""

    def __init__(
        self, command: Sequence[str], returncode: int | None, stderr: str = ""
    ) -> None:
        detail = stderr.strip() or "no error output"
        super().__init__(
            f"Command failed ({returncode}): {' '.join(command)}: {detail}",
            error_code="COMMAND_FAILED",
        )
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr


class NoDeviceFoundError(ProvisionError):
    """No candidate block device is available."""

    def __init__(self) -> None:
        super().__init__(
            "No block devices found. Insert an SD card or USB drive and retry.",
            error_code="NO_DEVICE_FOUND",
        )


class InvalidSelectionError(ProvisionError):
    """The operator selected something that is not a candidate device."""

    def __init__(self, selection: str) -> None:
        super().__init__(
            f"Invalid device selection: {selection!r}",
            error_code="INVALID_SELECTION",
        )
        self.selection = selection


class ValidationError(ProvisionError):
    """An answer failed validation."""

    def __init__(self, field: str, value: object, reason: str) -> None:
        super().__init__(
            f"Invalid {field} {value!r}: {reason}", error_code="VALIDATION_ERROR"
        )
        self.field = field
        self.value = value
        self.reason = reason


class UserAbortedError(ProvisionError):
    """The operator declined a confirmation."""

    def __init__(self, message: str = "Aborted by user") -> None:
        super().__init__(message, error_code="USER_ABORTED")


class InvalidImageFormatError(ProvisionError):
    """Local image is missing or has an unsupported extension."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Invalid image {path}: {reason}", error_code="INVALID_IMAGE")
        self.path = path


class DecompressionFailedError(ProvisionError):
    """The .xz archive could not be decompressed."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(
            f"Failed to decompress {path}: {reason}",
            error_code="DECOMPRESSION_FAILED",
        )
        self.path = path


class DownloadFailedError(ProvisionError):
    """Image or checksum download failed."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(
            f"Download of {url} failed: {reason}", error_code="DOWNLOAD_FAILED"
        )
        self.url = url


class IntegrityCheckFailedError(ProvisionError):
    """Downloaded image does not match its published checksum."""

    def __init__(self, path: str, expected: str, actual: str) -> None:
        super().__init__(
            f"Checksum mismatch for {path}: expected {expected}, got {actual}",
            error_code="INTEGRITY_CHECK_FAILED",
        )
        self.path = path
        self.expected = expected
        self.actual = actual


class ImageUnavailableError(ProvisionError):
    """No usable uncompressed image was produced."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(
            f"Image {path} is unavailable: {reason}", error_code="IMAGE_UNAVAILABLE"
        )
        self.path = path


class WriteFailedError(ProvisionError):
    """Writing to the target device failed."""

    def __init__(self, device_path: str, reason: str) -> None:
        super().__init__(
            f"Writing to {device_path} failed: {reason}", error_code="WRITE_FAILED"
        )
        self.device_path = device_path


class PartitionsNotFoundError(ProvisionError):
    """Boot and root partitions could not both be identified."""

    def __init__(
        self, device_path: str, observed: Sequence[tuple[str, str | None]]
    ) -> None:
        listing = ", ".join(
            f"{path} ({fstype or 'no filesystem'})" for path, fstype in observed
        )
        super().__init__(
            f"Could not find a vfat boot and an ext4 root partition on "
            f"{device_path}. Observed: {listing or 'no partitions'}",
            error_code="PARTITIONS_NOT_FOUND",
        )
        self.device_path = device_path
        self.observed = list(observed)


class MountFailedError(ProvisionError):
    """A partition could not be mounted."""

    def __init__(self, partition: str, reason: str) -> None:
        super().__init__(
            f"Failed to mount {partition}: {reason}", error_code="MOUNT_FAILED"
        )
        self.partition = partition


__all__ = [
    "CommandError",
    "DecompressionFailedError",
    "DownloadFailedError",
    "ImageUnavailableError",
    "IntegrityCheckFailedError",
    "InvalidImageFormatError",
    "InvalidSelectionError",
    "MissingDependencyError",
    "MountFailedError",
    "NoDeviceFoundError",
    "PartitionsNotFoundError",
    "ProvisionError",
    "UserAbortedError",
    "ValidationError",
    "WriteFailedError",
]
