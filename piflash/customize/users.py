"""User account provisioning on the mounted root filesystem.

This module handles:
- passwd, group, shadow (and gshadow when present) records for the user
- Supplementary group membership
- Passwordless sudo drop-in
- The user's home directory and authorized SSH key

Existing records for the same username are replaced, so provisioning an
image twice leaves exactly one set of entries behind.
"""

import logging
import os
import shutil
import time
from collections.abc import Callable, Iterable
from pathlib import Path

from piflash.commands import run_command
from piflash.errors import CommandError, ValidationError

logger = logging.getLogger(__name__)

USER_UID = 1000
USER_GID = 1000
USER_GECOS = "Raspberry Pi User"
USER_SHELL = "/bin/bash"

# Supplementary groups of the stock Raspberry Pi OS user, added when present
STANDARD_GROUPS = (
    "adm",
    "dialout",
    "cdrom",
    "sudo",
    "audio",
    "video",
    "plugdev",
    "games",
    "users",
    "input",
    "netdev",
    "spi",
    "i2c",
    "gpio",
)

# Shadow hash that disables password login
LOCKED_PASSWORD = "!"


def _read_lines(path: Path) -> list[str]:
    """Read a colon-separated database file without trailing newlines."""
    if not path.exists():
        return []
    return path.read_text(encoding="utf-8").splitlines()


def _write_lines(path: Path, lines: Iterable[str]) -> None:
    """Rewrite a database file in place, keeping its mode and owner."""
    path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")


def _edit(path: Path, transform: Callable[[list[str]], list[str]]) -> None:
    """Apply a transformation to the lines of an existing file."""
    _write_lines(path, transform(_read_lines(path)))


def _drop_records(lines: list[str], name: str) -> list[str]:
    """Remove records whose first field is name."""
    return [line for line in lines if line.split(":", 1)[0] != name]


def _strip_member(lines: list[str], name: str) -> list[str]:
    """Remove name from the member list (last field) of every group."""
    result = []
    for line in lines:
        fields = line.split(":")
        if len(fields) >= 4 and fields[-1]:
            members = [m for m in fields[-1].split(",") if m != name]
            fields[-1] = ",".join(members)
            line = ":".join(fields)
        result.append(line)
    return result


def _add_member(lines: list[str], groups: Iterable[str], name: str) -> list[str]:
    """Append name to the member list of the given groups, where present."""
    wanted = set(groups)
    result = []
    for line in lines:
        fields = line.split(":")
        if len(fields) >= 4 and fields[0] in wanted:
            members = [m for m in fields[-1].split(",") if m]
            if name not in members:
                members.append(name)
            fields[-1] = ",".join(members)
            line = ":".join(fields)
        result.append(line)
    return result


def remove_user_entries(root_dir: Path, username: str) -> None:
    """Remove every account record of a user from a root filesystem.

    Args:
        root_dir: Mounted root filesystem.
        username: Login name to remove.
    """
    etc = root_dir / "etc"
    for name in ("passwd", "shadow"):
        path = etc / name
        if path.exists():
            _edit(path, lambda lines: _drop_records(lines, username))
    for name in ("group", "gshadow"):
        path = etc / name
        if path.exists():
            _edit(
                path,
                lambda lines: _strip_member(_drop_records(lines, username), username),
            )


def hash_password(password: str) -> str:
    """Hash a password with SHA-512 crypt (``openssl passwd -6``).

    Args:
        password: Clear-text password.

    Returns:
        Crypt string suitable for /etc/shadow.

    Raises:
        CommandError: openssl failed.
    """
    result = run_command(["openssl", "passwd", "-6", "-stdin"], input=password)
    hashed = result.stdout.strip()
    if not hashed.startswith("$6$"):
        raise CommandError(
            ["openssl", "passwd", "-6", "-stdin"], result.returncode, "no hash output"
        )
    return hashed


def _chown_tree(path: Path, uid: int, gid: int) -> None:
    """Recursively change ownership without following symlinks."""
    os.lchown(path, uid, gid)
    for dirpath, dirnames, filenames in os.walk(path):
        for entry in dirnames + filenames:
            os.lchown(os.path.join(dirpath, entry), uid, gid)


def _create_home(root_dir: Path, home: Path) -> None:
    """Create a home directory from /etc/skel of the image."""
    skel = root_dir / "etc" / "skel"
    if skel.is_dir():
        shutil.copytree(skel, home, symlinks=True)
    else:
        home.mkdir(parents=True)
    home.chmod(0o755)
    logger.debug("Created home directory %s", home)


def provision_user(
    root_dir: Path,
    username: str,
    password: str | None,
    public_key: str,
) -> None:
    """Create the login user on a mounted root filesystem.

    Args:
        root_dir: Mounted root filesystem.
        username: Login name (already validated).
        password: Clear-text password, or None for key-only login.
        public_key: SSH public key installed in authorized_keys.

    Raises:
        ValidationError: The public key is empty.
        CommandError: Password hashing failed.
        OSError: A file on the image could not be written.
    """
    public_key = public_key.strip()
    if not public_key:
        raise ValidationError("public_key", public_key, "SSH public key is empty")

    etc = root_dir / "etc"
    home_rel = f"/home/{username}"
    logger.info("Configuring user %s", username)

    remove_user_entries(root_dir, username)

    passwd = _read_lines(etc / "passwd")
    holders = [
        line.split(":", 1)[0]
        for line in passwd
        if len(line.split(":")) > 2 and line.split(":")[2] == str(USER_UID)
    ]
    if holders:
        logger.warning(
            "UID %d is already used by %s on the image", USER_UID, ", ".join(holders)
        )

    passwd.append(
        f"{username}:x:{USER_UID}:{USER_GID}:{USER_GECOS}:{home_rel}:{USER_SHELL}"
    )
    _write_lines(etc / "passwd", passwd)

    _edit(
        etc / "group",
        lambda lines: _add_member(lines, STANDARD_GROUPS, username)
        + [f"{username}:x:{USER_GID}:"],
    )
    if (etc / "gshadow").exists():
        _edit(
            etc / "gshadow",
            lambda lines: _add_member(lines, STANDARD_GROUPS, username)
            + [f"{username}:!::"],
        )

    password_hash = hash_password(password) if password else LOCKED_PASSWORD
    last_change = int(time.time()) // 86400
    shadow_entry = f"{username}:{password_hash}:{last_change}:0:99999:7:::"
    _edit(etc / "shadow", lambda lines: lines + [shadow_entry])

    sudoers_dir = etc / "sudoers.d"
    sudoers_dir.mkdir(mode=0o755, parents=True, exist_ok=True)
    sudoers = sudoers_dir / f"010_{username}-nopasswd"
    sudoers.unlink(missing_ok=True)
    sudoers.write_text(f"{username} ALL=(ALL) NOPASSWD: ALL\n", encoding="utf-8")
    sudoers.chmod(0o440)

    home = root_dir / "home" / username
    if not home.exists():
        _create_home(root_dir, home)

    ssh_dir = home / ".ssh"
    ssh_dir.mkdir(exist_ok=True)
    ssh_dir.chmod(0o700)
    authorized_keys = ssh_dir / "authorized_keys"
    authorized_keys.write_text(public_key + "\n", encoding="utf-8")
    authorized_keys.chmod(0o600)

    _chown_tree(home, USER_UID, USER_GID)
    logger.info(
        "User %s configured (%s)",
        username,
        "password set" if password else "key-only login",
    )


__all__ = [
    "LOCKED_PASSWORD",
    "STANDARD_GROUPS",
    "USER_GID",
    "USER_UID",
    "hash_password",
    "provision_user",
    "remove_user_entries",
]
