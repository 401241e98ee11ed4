"""SSH key resolution.

The public key installed on the device belongs to the operator who invoked
piflash. When that operator has no key yet, an ed25519 pair is generated
and handed over to them.
"""

import logging
import os
from pathlib import Path

from piflash.commands import run_command
from piflash.config import InvokingUser, Settings, get_invoking_user
from piflash.errors import ValidationError

logger = logging.getLogger(__name__)


def generate_key_pair(
    private_key: Path, owner: InvokingUser, username: str | None = None
) -> None:
    """Generate an unencrypted ed25519 key pair.

    Args:
        private_key: Path of the private key to create.
        owner: Operator who receives ownership of the pair.
        username: Account the key logs in to, used in the key comment
            (defaults to the operator's name).

    Raises:
        CommandError: ssh-keygen failed.
    """
    logger.info("Generating SSH key pair %s", private_key)
    created_dir = not private_key.parent.exists()
    private_key.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    run_command(
        [
            "ssh-keygen",
            "-t",
            "ed25519",
            "-N",
            "",
            "-C",
            f"{username or owner.name}@raspberrypi",
            "-f",
            str(private_key),
        ]
    )

    if os.geteuid() != 0:
        return
    targets = [private_key, private_key.with_name(private_key.name + ".pub")]
    if created_dir:
        targets.insert(0, private_key.parent)
    for target in targets:
        try:
            os.chown(target, owner.uid, owner.gid)
        except OSError as e:
            logger.warning("Could not hand %s to %s: %s", target, owner.name, e)


def resolve_public_key(
    settings: Settings,
    owner: InvokingUser | None = None,
    username: str | None = None,
) -> str:
    """Return the public key to install on the device.

    Args:
        settings: Settings holding the private key path.
        owner: Operator owning the key (defaults to the invoking user).
        username: Account provisioned on the device; names a new key.

    Returns:
        The public key line.

    Raises:
        ValidationError: The public key file is empty.
        CommandError: Key generation failed.
        OSError: The public key could not be read.
    """
    owner = owner or get_invoking_user()
    private_key = settings.ssh_key_path.expanduser()
    public_key_path = private_key.with_name(private_key.name + ".pub")

    if not private_key.exists():
        generate_key_pair(private_key, owner, username)

    public_key = public_key_path.read_text(encoding="utf-8").strip()
    if not public_key:
        raise ValidationError(
            "ssh_key_path", str(public_key_path), "public key file is empty"
        )
    logger.debug("Using SSH public key %s", public_key_path)
    return public_key


__all__ = ["generate_key_pair", "resolve_public_key"]
