"""Configuration settings for piflash.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: env vars > .env file > defaults.

piflash runs as root, so default paths are resolved against the home
directory of the operator who invoked it through sudo, not root's.
"""

import os
import pwd
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

GIB = 1024 * 1024 * 1024
MIB = 1024 * 1024


@dataclass(frozen=True)
class InvokingUser:
    """The non-privileged operator behind the current process.

    Attributes:
        name: Login name.
        uid: Numeric user ID.
        gid: Numeric primary group ID.
        home: Home directory.
    """

    name: str
    uid: int
    gid: int
    home: Path


def get_invoking_user() -> InvokingUser:
    """Return the operator who started piflash.

    When running under sudo, SUDO_USER/SUDO_UID/SUDO_GID identify the real
    operator. Otherwise the current process owner is returned.
    """
    sudo_user = os.environ.get("SUDO_USER")
    if sudo_user and sudo_user != "root":
        try:
            entry = pwd.getpwnam(sudo_user)
        except KeyError:
            entry = None
        if entry is not None:
            uid = int(os.environ.get("SUDO_UID", entry.pw_uid))
            gid = int(os.environ.get("SUDO_GID", entry.pw_gid))
            return InvokingUser(sudo_user, uid, gid, Path(entry.pw_dir))

    uid = os.getuid()
    try:
        entry = pwd.getpwuid(uid)
        return InvokingUser(entry.pw_name, uid, entry.pw_gid, Path(entry.pw_dir))
    except KeyError:
        return InvokingUser(str(uid), uid, os.getgid(), Path.home())


def _default_config_path() -> Path:
    """Return the default run configuration file."""
    return get_invoking_user().home / ".config" / "piflash" / "config.yaml"


def _default_work_dir() -> Path:
    """Return the default directory for downloaded images."""
    return get_invoking_user().home / ".cache" / "piflash"


def _default_log_file() -> Path:
    """Return the default log file."""
    return get_invoking_user().home / ".local" / "state" / "piflash" / "piflash.log"


def _default_db_url() -> str:
    """Return the default run history database URL (SQLite)."""
    data_dir = get_invoking_user().home / ".local" / "share" / "piflash"
    db_path = data_dir / "history.sqlite"
    return f"sqlite:///{db_path}"


def _default_ssh_key_path() -> Path:
    """Return the default SSH private key whose public half is installed."""
    return get_invoking_user().home / ".ssh" / "id_ed25519"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the PIFLASH_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="PIFLASH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    config_path: Path = Field(
        default_factory=_default_config_path,
        description="Run configuration file (previous answers and last status)",
    )
    work_dir: Path = Field(
        default_factory=_default_work_dir,
        description="Directory for downloaded and decompressed images",
    )
    log_file: Path = Field(
        default_factory=_default_log_file,
        description="Timestamped log file",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Run history database URL",
    )
    ssh_key_path: Path = Field(
        default_factory=_default_ssh_key_path,
        description="SSH private key; its .pub file is installed on the device",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Console logging level",
    )

    # Image download
    download_base_url: str = Field(
        default="https://downloads.raspberrypi.org",
        description="Base URL for Raspberry Pi OS downloads",
    )
    download_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for image downloads (seconds)",
    )

    # Device handling
    block_size: int = Field(
        default=4 * MIB,
        ge=512,
        description="Block size for writing the image to the device",
    )
    flash_drive_threshold: int = Field(
        default=16 * GIB,
        ge=0,
        description="Devices larger than this are treated as USB flash drives",
    )
    sd_card_threshold: int = Field(
        default=1 * GIB,
        ge=0,
        description="Devices larger than this (and not flash drives) are SD cards",
    )
    settle_seconds: float = Field(
        default=2.0,
        ge=0,
        le=60,
        description="Wait after partition table changes",
    )
    verification_mode: Literal["full-hash", "prefix-16MiB", "skip"] = Field(
        default="prefix-16MiB",
        description="Read-back verification after writing",
    )

    # Prompt defaults
    default_dns: str = Field(default="8.8.8.8", description="Default DNS server")
    default_subnet: str = Field(default="24", description="Default subnet prefix")
    default_wifi_country: str = Field(
        default="US", description="Default Wi-Fi regulatory country"
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


__all__ = [
    "GIB",
    "MIB",
    "InvokingUser",
    "Settings",
    "get_invoking_user",
    "get_settings",
]
