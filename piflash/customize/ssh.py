"""SSH server configuration on the written image.

This module handles:
- Enabling the SSH server on first boot (boot partition sentinel)
- Hardening sshd_config: no root login, only the provisioned user,
  no password authentication for key-only accounts
"""

import logging
import re
from pathlib import Path

logger = logging.getLogger(__name__)

SSH_SENTINEL = "ssh"

_MATCH_PATTERN = re.compile(r"^\s*Match\s", re.IGNORECASE)


def _keyword_pattern(keyword: str, commented: bool) -> re.Pattern[str]:
    """Pattern for a directive line, optionally also matching '#Keyword'."""
    prefix = r"^\s*#?\s*" if commented else r"^\s*"
    return re.compile(prefix + keyword + r"\b", re.IGNORECASE)


def _set_directive(
    lines: list[str], keyword: str, value: str, *, commented: bool = True
) -> list[str]:
    """Set a global directive, replacing the first match and dropping the rest.

    Active and (optionally) commented-out occurrences in the global section
    are considered. Without any, the directive is inserted before the first
    Match block, or appended.
    """
    pattern = _keyword_pattern(keyword, commented)
    directive = f"{keyword} {value}"
    result: list[str] = []
    placed = False
    in_match = False
    for line in lines:
        if _MATCH_PATTERN.match(line):
            if not placed:
                result.append(directive)
                placed = True
            in_match = True
        if not in_match and pattern.match(line):
            if not placed:
                result.append(directive)
                placed = True
            continue
        result.append(line)
    if not placed:
        result.append(directive)
    return result


def _active_value(lines: list[str], keyword: str) -> str | None:
    """Return the value of the first active directive in the global section."""
    pattern = _keyword_pattern(keyword, commented=False)
    for line in lines:
        if _MATCH_PATTERN.match(line):
            return None
        if pattern.match(line):
            parts = line.split(None, 1)
            return parts[1].strip() if len(parts) == 2 else ""
    return None


def enable_ssh(boot_dir: Path) -> Path:
    """Create the boot partition sentinel that enables sshd on first boot."""
    sentinel = boot_dir / SSH_SENTINEL
    sentinel.touch()
    logger.debug("Created %s", sentinel)
    return sentinel


def configure_ssh(
    boot_dir: Path, root_dir: Path, username: str, key_only: bool
) -> None:
    """Enable and harden the SSH server.

    Args:
        boot_dir: Mounted boot partition.
        root_dir: Mounted root filesystem.
        username: The only user allowed to log in.
        key_only: Disable password authentication.
    """
    logger.info("Configuring SSH server")
    enable_ssh(boot_dir)

    config_path = root_dir / "etc" / "ssh" / "sshd_config"
    if config_path.exists():
        lines = config_path.read_text(encoding="utf-8").splitlines()
    else:
        logger.warning("%s not found, creating it", config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        lines = []

    lines = _set_directive(lines, "PermitRootLogin", "no")
    lines = _set_directive(lines, "AllowUsers", username, commented=False)
    if key_only:
        lines = _set_directive(lines, "PasswordAuthentication", "no")
    elif _active_value(lines, "PasswordAuthentication") == "no":
        # A previous key-only run disabled passwords; the user has one now
        lines = _set_directive(lines, "PasswordAuthentication", "yes")

    config_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    logger.debug(
        "sshd_config updated (AllowUsers %s, key_only=%s)", username, key_only
    )


__all__ = ["SSH_SENTINEL", "configure_ssh", "enable_ssh"]
