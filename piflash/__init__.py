"""piflash - Raspberry Pi OS provisioning for removable media.

This package writes a Raspberry Pi OS Lite image to an SD card or USB flash
drive and customizes it for headless first boot (SSH, user, static IP).
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
