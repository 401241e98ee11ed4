"""Tests for keys.py - SSH public key resolution."""

from unittest.mock import MagicMock, patch

import pytest

from piflash.config import InvokingUser
from piflash.errors import ValidationError
from piflash.keys import generate_key_pair, resolve_public_key

PUBLIC_KEY = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIExample alice@raspberrypi"


@pytest.fixture
def owner(tmp_path):
    """Operator owning the key."""
    return InvokingUser("alice", 1001, 1001, tmp_path)


def _fake_keygen(command, **kwargs):
    """Create the files ssh-keygen would."""
    private_key = command[command.index("-f") + 1]
    with open(private_key, "w") as f:
        f.write("PRIVATE\n")
    with open(private_key + ".pub", "w") as f:
        f.write(PUBLIC_KEY + "\n")
    return MagicMock(returncode=0)


class TestGenerateKeyPair:
    """Tests for generate_key_pair function."""

    def test_command(self, tmp_path, owner):
        """An unencrypted ed25519 key is generated."""
        private_key = tmp_path / "ssh" / "id_ed25519"
        with (
            patch("piflash.keys.run_command", side_effect=_fake_keygen) as mock_run,
            patch("piflash.keys.os.geteuid", return_value=1001),
        ):
            generate_key_pair(private_key, owner)

        command = mock_run.call_args[0][0]
        assert command[:5] == ["ssh-keygen", "-t", "ed25519", "-N", ""]
        assert "alice@raspberrypi" in command
        assert (tmp_path / "ssh").is_dir()

    def test_hand_over_as_root(self, tmp_path, owner):
        """As root, the pair and the new directory go to the operator."""
        private_key = tmp_path / "ssh" / "id_ed25519"
        with (
            patch("piflash.keys.run_command", side_effect=_fake_keygen),
            patch("piflash.keys.os.geteuid", return_value=0),
            patch("piflash.keys.os.chown") as mock_chown,
        ):
            generate_key_pair(private_key, owner)

        chowned = [c.args[0] for c in mock_chown.call_args_list]
        assert chowned == [
            tmp_path / "ssh",
            private_key,
            tmp_path / "ssh" / "id_ed25519.pub",
        ]


class TestResolvePublicKey:
    """Tests for resolve_public_key function."""

    def test_existing_key(self, settings, owner):
        """An existing key is read, not regenerated."""
        key = settings.ssh_key_path
        key.parent.mkdir(parents=True)
        key.write_text("PRIVATE\n")
        key.with_name("id_ed25519.pub").write_text(PUBLIC_KEY + "\n")

        with patch("piflash.keys.run_command") as mock_run:
            assert resolve_public_key(settings, owner) == PUBLIC_KEY

        mock_run.assert_not_called()

    def test_generates_missing_key(self, settings, owner):
        """A missing key pair is generated first."""
        with (
            patch("piflash.keys.run_command", side_effect=_fake_keygen),
            patch("piflash.keys.os.geteuid", return_value=1001),
        ):
            assert resolve_public_key(settings, owner) == PUBLIC_KEY

    def test_comment_names_provisioned_user(self, settings, owner):
        """A generated key is labelled with the account it logs in to."""
        with (
            patch("piflash.keys.run_command", side_effect=_fake_keygen) as mock_run,
            patch("piflash.keys.os.geteuid", return_value=1001),
        ):
            resolve_public_key(settings, owner, username="pi")

        command = mock_run.call_args[0][0]
        assert command[command.index("-C") + 1] == "pi@raspberrypi"

    def test_empty_public_key(self, settings, owner):
        """An empty public key file is rejected."""
        key = settings.ssh_key_path
        key.parent.mkdir(parents=True)
        key.write_text("PRIVATE\n")
        key.with_name("id_ed25519.pub").write_text("\n")

        with pytest.raises(ValidationError, match="public key file is empty"):
            resolve_public_key(settings, owner)
