"""Static network configuration on the written image.

This module handles:
- Wi-Fi credentials on the boot partition (wpa_supplicant.conf)
- A static dhcpcd.conf block for the chosen interface

Images that manage the network with NetworkManager instead of dhcpcd get
the dhcpcd.conf block anyway, with a warning.
"""

import logging
from pathlib import Path

from piflash.answers import ProvisioningAnswers
from piflash.config import Settings
from piflash.types import NetworkInterface

logger = logging.getLogger(__name__)

WPA_SUPPLICANT_FILENAME = "wpa_supplicant.conf"


def render_wpa_supplicant(ssid: str, psk: str | None, country: str) -> str:
    """Render a wpa_supplicant.conf for a single network.

    Args:
        ssid: Network name.
        psk: Passphrase or 64-digit hex key; None for an open network.
        country: Regulatory country code.

    Returns:
        File content.
    """
    if psk is None:
        auth = "    key_mgmt=NONE\n"
    elif len(psk) == 64 and all(c in "0123456789abcdefABCDEF" for c in psk):
        # Raw pre-computed key is written unquoted
        auth = f"    psk={psk}\n"
    else:
        auth = f'    psk="{psk}"\n'

    return (
        "ctrl_interface=DIR=/var/run/wpa_supplicant GROUP=netdev\n"
        "update_config=1\n"
        f"country={country}\n"
        "\n"
        "network={\n"
        f'    ssid="{ssid}"\n'
        f"{auth}"
        "}\n"
    )


def remove_interface_block(lines: list[str], interface: str) -> list[str]:
    """Drop every 'interface <name>' block through the next blank line."""
    result: list[str] = []
    skipping = False
    for line in lines:
        stripped = line.strip()
        if skipping:
            if not stripped:
                skipping = False
            continue
        if stripped.split() == ["interface", interface]:
            skipping = True
            continue
        result.append(line)

    # Collapse the trailing blank lines left behind
    while result and not result[-1].strip():
        result.pop()
    return result


def render_static_block(
    interface: str, address: str, prefix: str, gateway: str, dns: str
) -> list[str]:
    """Render a static dhcpcd.conf block that also disables DHCP."""
    return [
        f"interface {interface}",
        f"static ip_address={address}/{prefix}",
        f"static routers={gateway}",
        f"static domain_name_servers={dns}",
        "nodhcp",
    ]


def configure_network(
    boot_dir: Path,
    root_dir: Path,
    answers: ProvisioningAnswers,
    settings: Settings,
) -> bool:
    """Write the static network configuration, if one was requested.

    Args:
        boot_dir: Mounted boot partition.
        root_dir: Mounted root filesystem.
        answers: Validated answers (static_ip, gateway_ip, ...).
        settings: Settings holding the DNS and subnet defaults.

    Returns:
        True if a static configuration was written.
    """
    if answers.static_ip is None or answers.gateway_ip is None:
        logger.debug("No static IP requested, keeping DHCP")
        return False

    interface = answers.network_interface
    prefix = answers.subnet_mask or settings.default_subnet
    dns = answers.dns_server or settings.default_dns
    logger.info(
        "Configuring static IP %s/%s on %s", answers.static_ip, prefix, interface.value
    )

    if interface == NetworkInterface.WIRELESS:
        wpa_path = boot_dir / WPA_SUPPLICANT_FILENAME
        wpa_path.write_text(
            render_wpa_supplicant(
                answers.wifi_ssid or "", answers.wifi_psk, answers.wifi_country
            ),
            encoding="utf-8",
        )
        logger.debug("Wrote %s", wpa_path)

    dhcpcd_path = root_dir / "etc" / "dhcpcd.conf"
    if dhcpcd_path.exists():
        lines = dhcpcd_path.read_text(encoding="utf-8").splitlines()
    else:
        logger.warning(
            "%s not found; the image may use NetworkManager and ignore it",
            dhcpcd_path,
        )
        dhcpcd_path.parent.mkdir(parents=True, exist_ok=True)
        lines = []

    lines = remove_interface_block(lines, interface.value)
    if lines:
        lines.append("")
    lines.extend(
        render_static_block(
            interface.value, answers.static_ip, prefix, answers.gateway_ip, dns
        )
    )
    dhcpcd_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return True


__all__ = [
    "WPA_SUPPLICANT_FILENAME",
    "configure_network",
    "remove_interface_block",
    "render_static_block",
    "render_wpa_supplicant",
]
