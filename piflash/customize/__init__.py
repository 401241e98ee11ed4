"""First-boot customization of the written image.

This module handles:
- Mounting the boot and root partitions on temporary directories
- The login user, its sudo rights and SSH key
- SSH server hardening
- Optional static network configuration
"""

from piflash.customize.mounts import MountScope
from piflash.customize.network import configure_network
from piflash.customize.ssh import configure_ssh
from piflash.customize.users import provision_user

__all__ = [
    "MountScope",
    "configure_network",
    "configure_ssh",
    "provision_user",
]
