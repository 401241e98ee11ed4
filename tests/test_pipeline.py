"""End-to-end tests for pipeline.py with external effects stubbed out."""

import io
import lzma
from contextlib import ExitStack
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from rich.console import Console

from piflash.answers import parse_answers
from piflash.config import GIB
from piflash.errors import (
    IntegrityCheckFailedError,
    MissingDependencyError,
    PartitionsNotFoundError,
    UserAbortedError,
    ValidationError,
)
from piflash.pipeline import image_source, run_pipeline, ssh_hint
from piflash.store import RunConfigStore
from piflash.types import (
    Architecture,
    BlockDevice,
    DeviceClass,
    LocalImage,
    PartitionPair,
    RemoteImage,
)

PUBLIC_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIExample alice@laptop"


class ScriptedPrompter:
    """Prompter answering from a script; records confirmations asked."""

    def __init__(self, answers=None, confirms=None):
        self.answers = answers or {}
        self.confirms = list(confirms or [])
        self.confirmations = []
        self.shown = []

    def choose_device(self, candidates):
        return candidates[0].path

    def confirm(self, message, default):
        self.confirmations.append((message, default))
        return self.confirms.pop(0)

    def ask(self, message, default="", secret=False):
        for prefix, value in self.answers.items():
            if message.startswith(prefix):
                return value
        return default

    def show(self, message):
        self.shown.append(message)


class FakeMountScope:
    """Mount scope exposing prepared directories instead of mounting."""

    dirs = None
    opened = []

    def __init__(self, pair):
        self.pair = pair
        self.boot_dir = None
        self.root_dir = None

    def __enter__(self):
        self.boot_dir, self.root_dir = self.dirs
        FakeMountScope.opened.append(self.pair)
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self.boot_dir = None
        self.root_dir = None


@pytest.fixture
def env(tmp_path, settings, root_fs, boot_fs):
    """Stub every effect on real hardware and return the mocks."""
    image_path = tmp_path / "raspios.img"
    image_path.write_bytes(b"image" * 100)
    FakeMountScope.dirs = (boot_fs, root_fs)
    FakeMountScope.opened = []

    with ExitStack() as stack:

        def stub(target, **kwargs):
            return stack.enter_context(patch(f"piflash.pipeline.{target}", **kwargs))

        mocks = SimpleNamespace(
            require_tools=stub("require_tools"),
            list_block_devices=stub("list_block_devices"),
            get_boot_devices=stub("get_boot_devices", return_value=set()),
            resolve_public_key=stub("resolve_public_key", return_value=PUBLIC_KEY),
            unmount_device=stub("unmount_device"),
            format_device=stub("format_device"),
            write_image_to_device=stub("write_image_to_device"),
            locate_partitions=stub(
                "locate_partitions",
                return_value=PartitionPair(boot="/dev/sdb1", root="/dev/sdb2"),
            ),
            tool_available=stub("tool_available", return_value=False),
            mount_scope=stub("MountScope", new=FakeMountScope),
        )
        stack.enter_context(patch("piflash.customize.users.os.lchown"))
        mocks.image_path = image_path
        mocks.root_fs = root_fs
        mocks.boot_fs = boot_fs
        mocks.store = RunConfigStore(settings.config_path)
        mocks.console = Console(file=io.StringIO(), width=200)
        yield mocks


def _device(size):
    return BlockDevice(
        path="/dev/sdb", name="sdb", size_bytes=size, removable=True, model="Reader"
    )


def _run(env, settings, prompter):
    return run_pipeline(settings, prompter, env.console, env.store)


class TestRunPipeline:
    """End-to-end provisioning runs."""

    def test_sd_card_formatted_and_provisioned(self, env, settings):
        """An 8 GB card is formatted, written and customized."""
        env.list_block_devices.return_value = [_device(8 * GIB)]
        prompter = ScriptedPrompter(
            {"Local image": str(env.image_path)}, confirms=[True, True]
        )

        ctx = _run(env, settings, prompter)

        assert ctx.device_class is DeviceClass.SD_CARD
        assert any("sd card" in m for m in prompter.shown)
        assert len(prompter.confirmations) == 2
        assert prompter.confirmations[1] == ("Format /dev/sdb before writing?", True)
        env.format_device.assert_called_once_with(
            "/dev/sdb", DeviceClass.SD_CARD, settings
        )
        written_image = env.write_image_to_device.call_args[0][0]
        assert written_image.path == env.image_path
        etc = env.root_fs / "etc"
        assert "pi:x:1000:1000" in (etc / "passwd").read_text()
        shadow = (etc / "shadow").read_text().splitlines()
        assert any(line.startswith("pi:!:") for line in shadow)
        sshd_config = (etc / "ssh" / "sshd_config").read_text().splitlines()
        assert "PasswordAuthentication no" in sshd_config
        assert (env.boot_fs / "ssh").exists()
        assert env.image_path.exists()
        env.resolve_public_key.assert_called_once_with(settings, username="pi")

        stored = env.store.load()
        assert stored["last_flash_status"] == "success"
        assert stored["username"] == "pi"
        assert stored["format_device"] is True
        output = env.console.file.getvalue()
        assert "/dev/sdb is ready" in output
        assert "ssh pi@<Raspberry Pi IP>" in output

    def test_flash_drive_without_format(self, env, settings):
        """A flash drive needs two confirmations and is not formatted."""
        env.list_block_devices.return_value = [_device(32 * GIB)]
        prompter = ScriptedPrompter(
            {"Local image": str(env.image_path)}, confirms=[True, True, False]
        )

        ctx = _run(env, settings, prompter)

        assert ctx.device_class is DeviceClass.FLASH_DRIVE
        assert "absolutely sure" in prompter.confirmations[1][0]
        assert prompter.confirmations[2][1] is False
        env.format_device.assert_not_called()
        env.write_image_to_device.assert_called_once()
        assert env.store.load()["format_device"] is False

    def test_static_ip(self, env, settings):
        """A static eth0 address lands in dhcpcd.conf and the SSH hint."""
        env.list_block_devices.return_value = [_device(8 * GIB)]
        prompter = ScriptedPrompter(
            {
                "Username": "alice",
                "Static IP": "192.168.1.50",
                "Gateway": "192.168.1.1",
                "Local image": str(env.image_path),
            },
            confirms=[True, False],
        )

        _run(env, settings, prompter)

        dhcpcd = (env.root_fs / "etc" / "dhcpcd.conf").read_text()
        assert "interface eth0\nstatic ip_address=192.168.1.50/24\n" in dhcpcd
        assert "nodhcp" in dhcpcd
        assert "ssh alice@192.168.1.50" in env.console.file.getvalue()

    def test_checksum_failure_stops_before_write(self, env, settings):
        """A failed integrity check never reaches the writer."""
        env.list_block_devices.return_value = [_device(8 * GIB)]
        prompter = ScriptedPrompter(confirms=[True, False])

        with patch("piflash.pipeline.resolve_image") as mock_resolve:
            mock_resolve.side_effect = IntegrityCheckFailedError(
                "image.img.xz", "a" * 64, "b" * 64
            )
            with pytest.raises(IntegrityCheckFailedError):
                _run(env, settings, prompter)

        assert isinstance(mock_resolve.call_args[0][0], RemoteImage)
        env.write_image_to_device.assert_not_called()
        assert env.store.load()["last_flash_status"] == "failed"
        assert "partially written" not in env.console.file.getvalue()

    def test_partitions_not_found_skips_customization(self, env, settings):
        """Without both partitions nothing is mounted or customized."""
        env.list_block_devices.return_value = [_device(8 * GIB)]
        env.locate_partitions.side_effect = PartitionsNotFoundError(
            "/dev/sdb", [("/dev/sdb1", "vfat")]
        )
        prompter = ScriptedPrompter(
            {"Local image": str(env.image_path)}, confirms=[True, False]
        )

        with pytest.raises(PartitionsNotFoundError):
            _run(env, settings, prompter)

        assert FakeMountScope.opened == []
        assert "pi:x:1000" not in (env.root_fs / "etc" / "passwd").read_text()
        assert env.store.load()["last_flash_status"] == "failed"
        output = env.console.file.getvalue()
        assert "sudo mkfs.vfat -F 32 -I /dev/sdb" in output

    def test_missing_tools_recorded_as_failure(self, env, settings):
        """Missing tools still replace a previous success outcome."""
        env.store.save({"username": "pi", "last_flash_status": "success"})
        env.require_tools.side_effect = MissingDependencyError(["sfdisk"])

        with pytest.raises(MissingDependencyError):
            _run(env, settings, ScriptedPrompter())

        stored = env.store.load()
        assert stored["last_flash_status"] == "failed"
        assert stored["username"] == "pi"
        env.list_block_devices.assert_not_called()

    def test_declined_confirmation(self, env, settings):
        """Declining the erase confirmation touches nothing."""
        env.list_block_devices.return_value = [_device(8 * GIB)]
        prompter = ScriptedPrompter(confirms=[False])

        with pytest.raises(UserAbortedError):
            _run(env, settings, prompter)

        env.unmount_device.assert_not_called()
        env.format_device.assert_not_called()
        env.write_image_to_device.assert_not_called()

    def test_invalid_answers_before_destruction(self, env, settings):
        """Invalid answers fail before any confirmation is asked."""
        env.list_block_devices.return_value = [_device(8 * GIB)]
        prompter = ScriptedPrompter({"Username": "Bad User"})

        with pytest.raises(ValidationError):
            _run(env, settings, prompter)

        assert prompter.confirmations == []
        env.resolve_public_key.assert_not_called()

    def test_generated_files_cleaned_up(self, env, settings, tmp_path):
        """An image decompressed during the run is removed afterwards."""
        archive = tmp_path / "custom.img.xz"
        archive.write_bytes(lzma.compress(b"image" * 100))
        env.list_block_devices.return_value = [_device(8 * GIB)]
        prompter = ScriptedPrompter(
            {"Local image": str(archive)}, confirms=[True, False]
        )

        _run(env, settings, prompter)

        assert archive.exists()
        assert not (tmp_path / "custom.img").exists()
        written_image = env.write_image_to_device.call_args[0][0]
        assert written_image.owned is True


class TestHelpers:
    """Tests for pipeline helpers."""

    def test_image_source(self):
        """A local image wins over the architecture."""
        local = parse_answers({"local_image": "/tmp/a.img", "architecture": "32"})
        remote = parse_answers({"architecture": "32"})

        assert image_source(local) == LocalImage(Path("/tmp/a.img"))
        assert image_source(remote) == RemoteImage(Architecture.ARM32)

    def test_ssh_hint(self):
        """The hint uses the static IP when there is one."""
        dhcp = parse_answers({"username": "bob"})
        static = parse_answers(
            {"username": "bob", "static_ip": "10.0.0.5", "gateway_ip": "10.0.0.1"}
        )

        assert ssh_hint(dhcp) == "ssh bob@<Raspberry Pi IP>"
        assert ssh_hint(static) == "ssh bob@10.0.0.5"
