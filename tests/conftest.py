"""Shared fixtures for piflash tests."""

from pathlib import Path

import pytest

from piflash.config import Settings

PASSWD = """\
root:x:0:0:root:/root:/bin/bash
daemon:x:1:1:daemon:/usr/sbin:/usr/sbin/nologin
sshd:x:105:65534::/run/sshd:/usr/sbin/nologin
"""

GROUP = """\
root:x:0:
adm:x:4:
dialout:x:20:
cdrom:x:24:
sudo:x:27:
audio:x:29:pulse
video:x:44:
plugdev:x:46:
games:x:60:
users:x:100:
input:x:105:
netdev:x:106:
spi:x:999:
i2c:x:998:
gpio:x:997:
"""

SHADOW = """\
root:*:19000:0:99999:7:::
daemon:*:19000:0:99999:7:::
sshd:*:19000:0:99999:7:::
"""

SSHD_CONFIG = """\
Include /etc/ssh/sshd_config.d/*.conf

#PermitRootLogin prohibit-password
#PasswordAuthentication yes
KbdInteractiveAuthentication no
UsePAM yes

# Example of overriding settings on a per-user basis
#Match User anoncvs
#	X11Forwarding no
"""

DHCPCD_CONF = """\
# A sample configuration for dhcpcd.
hostname
clientid
persistent
option rapid_commit

# Example static IP configuration:
#interface eth0
#static ip_address=192.168.0.10/24
"""


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing every path into a temporary directory."""
    return Settings(
        config_path=tmp_path / "config" / "config.yaml",
        work_dir=tmp_path / "work",
        log_file=tmp_path / "state" / "piflash.log",
        db_url=f"sqlite:///{tmp_path / 'history.sqlite'}",
        ssh_key_path=tmp_path / "ssh" / "id_ed25519",
        settle_seconds=0,
    )


@pytest.fixture
def root_fs(tmp_path: Path) -> Path:
    """A minimal Raspberry Pi OS root filesystem tree."""
    root = tmp_path / "rootfs"
    etc = root / "etc"
    (etc / "ssh").mkdir(parents=True)
    (etc / "skel").mkdir()
    (root / "home").mkdir()

    (etc / "passwd").write_text(PASSWD)
    (etc / "group").write_text(GROUP)
    groups = [line.split(":")[0] for line in GROUP.splitlines()]
    (etc / "gshadow").write_text("".join(f"{name}:!::\n" for name in groups))
    (etc / "shadow").write_text(SHADOW)
    (etc / "ssh" / "sshd_config").write_text(SSHD_CONFIG)
    (etc / "dhcpcd.conf").write_text(DHCPCD_CONF)
    (etc / "skel" / ".bashrc").write_text("# ~/.bashrc\n")
    return root


@pytest.fixture
def boot_fs(tmp_path: Path) -> Path:
    """An empty boot partition."""
    boot = tmp_path / "bootfs"
    boot.mkdir()
    return boot
