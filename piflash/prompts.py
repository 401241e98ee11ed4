"""Operator interaction.

This module handles:
- The Prompter interface used by the pipeline for every decision
- Device selection (automatic when there is a single candidate)
- Collecting the provisioning answers with stored defaults
- A console implementation built on typer prompts and rich tables
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

import typer
from rich.console import Console
from rich.table import Table

from piflash.config import Settings
from piflash.devices.inventory import format_size
from piflash.errors import InvalidSelectionError
from piflash.types import Architecture, BlockDevice, NetworkInterface

logger = logging.getLogger(__name__)

# Typed in place of a remembered value to answer "none"
CLEAR_TOKENS = frozenset({"-", "none"})


class Prompter(Protocol):
    """Source of operator decisions."""

    def choose_device(self, candidates: Sequence[BlockDevice]) -> str:
        """Return the path of the chosen device."""
        ...

    def confirm(self, message: str, default: bool) -> bool:
        """Ask a yes/no question."""
        ...

    def ask(self, message: str, default: str = "", secret: bool = False) -> str:
        """Ask for a free-form value."""
        ...

    def show(self, message: str) -> None:
        """Display an informational message."""
        ...


def select_device(
    candidates: Sequence[BlockDevice], prompter: Prompter
) -> BlockDevice:
    """Pick the target device.

    A single candidate is selected without asking.

    Args:
        candidates: Devices from find_candidates().
        prompter: Source of the operator's choice.

    Returns:
        The selected device.

    Raises:
        InvalidSelectionError: The choice is not one of the candidates.
    """
    if len(candidates) == 1:
        device = candidates[0]
        prompter.show(f"Only one device found, selecting {device.path}")
        logger.info("Auto-selected %s", device.path)
        return device

    choice = prompter.choose_device(candidates).strip()
    for device in candidates:
        if choice in (device.path, device.name):
            logger.info("Selected %s", device.path)
            return device

    logger.error("Invalid device selection: %r", choice)
    raise InvalidSelectionError(choice)


def _stored(defaults: Mapping[str, Any], key: str, fallback: str = "") -> str:
    """Stored answer as prompt default text."""
    value = defaults.get(key)
    return fallback if value is None else str(value)


def _cleared(value: str) -> str:
    """Map a clear token to an empty answer."""
    return "" if value.strip().lower() in CLEAR_TOKENS else value


def ask_answers(
    prompter: Prompter, defaults: Mapping[str, Any], settings: Settings
) -> dict[str, Any]:
    """Ask every provisioning question.

    Previous answers are offered as defaults, except the password and the
    Wi-Fi passphrase. A remembered static IP or local image is cleared by
    answering "-" or "none". The raw values are returned unvalidated; see
    parse_answers().

    Args:
        prompter: Source of the answers.
        defaults: Values loaded from the run configuration store.
        settings: Settings holding the network defaults.

    Returns:
        Raw answers keyed by field name.
    """
    answers: dict[str, Any] = {}
    answers["username"] = prompter.ask("Username", _stored(defaults, "username", "pi"))
    answers["password"] = prompter.ask(
        "Password (empty for SSH key login only)", "", secret=True
    )

    answers["static_ip"] = _cleared(
        prompter.ask(
            "Static IP address (empty or - for DHCP)", _stored(defaults, "static_ip")
        )
    )
    if answers["static_ip"].strip():
        answers["gateway_ip"] = prompter.ask(
            "Gateway IP address", _stored(defaults, "gateway_ip")
        )
        answers["subnet_mask"] = prompter.ask(
            "Subnet mask or prefix length",
            _stored(defaults, "subnet_mask", settings.default_subnet),
        )
        answers["dns_server"] = prompter.ask(
            "DNS server", _stored(defaults, "dns_server", settings.default_dns)
        )
        answers["network_interface"] = prompter.ask(
            "Interface (eth0 = wired, wlan0 = wireless)",
            _stored(defaults, "network_interface", NetworkInterface.WIRED.value),
        )
        if answers["network_interface"].strip() == NetworkInterface.WIRELESS.value:
            answers["wifi_ssid"] = prompter.ask(
                "Wi-Fi network name (SSID)", _stored(defaults, "wifi_ssid")
            )
            answers["wifi_psk"] = prompter.ask(
                "Wi-Fi passphrase (empty for an open network)", "", secret=True
            )
            answers["wifi_country"] = prompter.ask(
                "Wi-Fi country code",
                _stored(defaults, "wifi_country", settings.default_wifi_country),
            )

    answers["local_image"] = _cleared(
        prompter.ask(
            "Local image (.img or .img.xz, empty or - to download the latest)",
            _stored(defaults, "local_image"),
        )
    )
    if not answers["local_image"].strip():
        answers["architecture"] = prompter.ask(
            "Architecture (32 or 64 bit)",
            _stored(defaults, "architecture", Architecture.ARM64.value),
        )
    elif "architecture" in defaults:
        answers["architecture"] = _stored(defaults, "architecture")

    return answers


class ConsolePrompter:
    """Interactive prompter on a rich console."""

    def __init__(self, console: Console) -> None:
        self.console = console

    def choose_device(self, candidates: Sequence[BlockDevice]) -> str:
        """List candidates in a numbered table and read a choice.

        A number selects the corresponding row; anything else is returned
        as typed and matched against device paths by the caller.
        """
        table = Table(title="Available devices")
        table.add_column("#", justify="right")
        table.add_column("Device")
        table.add_column("Size", justify="right")
        table.add_column("Model")
        table.add_column("Mounted at")
        table.add_column("Removable")
        for index, device in enumerate(candidates):
            table.add_row(
                str(index),
                device.path,
                format_size(device.size_bytes) if device.size_bytes else "unknown",
                device.model or "",
                ", ".join(device.mountpoints),
                "yes" if device.removable else "no",
            )
        self.console.print(table)

        choice = typer.prompt("Select device", default="0").strip()
        if choice.isdigit() and int(choice) < len(candidates):
            return candidates[int(choice)].path
        return choice

    def confirm(self, message: str, default: bool) -> bool:
        """Ask a yes/no question."""
        return typer.confirm(message, default=default)

    def ask(self, message: str, default: str = "", secret: bool = False) -> str:
        """Ask for a value; secrets are read without echo."""
        value: str = typer.prompt(
            message,
            default=default,
            hide_input=secret,
            show_default=not secret and bool(default),
        )
        return value

    def show(self, message: str) -> None:
        """Print an informational message."""
        self.console.print(message)


__all__ = [
    "CLEAR_TOKENS",
    "ConsolePrompter",
    "Prompter",
    "ask_answers",
    "select_device",
]
