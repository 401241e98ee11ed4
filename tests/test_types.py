"""Tests for shared types module."""

from pathlib import Path

from piflash.types import (
    Architecture,
    BlockDevice,
    DeviceClass,
    DeviceKind,
    FormatAction,
    LocalImage,
    NetworkInterface,
    RemoteImage,
    ResolvedImage,
    RunOutcome,
    VerificationMode,
)


class TestEnums:
    """Test enum definitions."""

    def test_device_class_values(self) -> None:
        """DeviceClass should have expected values."""
        assert DeviceClass.FLASH_DRIVE.value == "flash_drive"
        assert DeviceClass.SD_CARD.value == "sd_card"
        assert DeviceClass.SMALL_DEVICE.value == "small_device"
        assert DeviceClass.UNKNOWN.value == "unknown"

    def test_run_outcome_values(self) -> None:
        """RunOutcome should have expected values."""
        assert RunOutcome.UNKNOWN.value == "unknown"
        assert RunOutcome.SUCCESS.value == "success"
        assert RunOutcome.FAILED.value == "failed"

    def test_stored_values_round_trip(self) -> None:
        """Enums are rebuilt from the strings kept in the config store."""
        assert Architecture("32") is Architecture.ARM32
        assert Architecture("64") is Architecture.ARM64
        assert NetworkInterface("wlan0") is NetworkInterface.WIRELESS
        assert VerificationMode("prefix-16MiB") is VerificationMode.PREFIX_16M

    def test_str_enum(self) -> None:
        """Enums should compare equal to their string values."""
        assert FormatAction.FORMAT == "format"
        assert DeviceKind.PARTITION == "part"


class TestDataclasses:
    """Test dataclass defaults."""

    def test_block_device_defaults(self) -> None:
        """BlockDevice defaults to a whole disk without mount points."""
        device = BlockDevice(path="/dev/sdb", name="sdb", size_bytes=0, removable=True)

        assert device.kind is DeviceKind.DISK
        assert device.mountpoints == []
        assert device.model is None

    def test_mountpoints_not_shared(self) -> None:
        """Each BlockDevice gets its own mount point list."""
        a = BlockDevice(path="/dev/sdb", name="sdb", size_bytes=1, removable=True)
        b = BlockDevice(path="/dev/sdc", name="sdc", size_bytes=1, removable=True)
        a.mountpoints.append("/media/a")

        assert b.mountpoints == []

    def test_image_sources(self) -> None:
        """Image sources carry their path or architecture."""
        assert LocalImage(Path("/tmp/a.img")).path == Path("/tmp/a.img")
        assert RemoteImage(Architecture.ARM64).architecture is Architecture.ARM64

    def test_resolved_image(self) -> None:
        """ResolvedImage records ownership of the file."""
        image = ResolvedImage(path=Path("/tmp/a.img"), size_bytes=10, owned=True)
        assert image.owned is True
