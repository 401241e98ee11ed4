"""Input validation helpers.

Pure predicates and normalizers used by the answers model and by the
interactive prompts to reject malformed values before any device is touched.
"""

import re

USERNAME_PATTERN = re.compile(r"[a-z_][a-z0-9_-]*")
USERNAME_MAX_LENGTH = 32

_OCTET_PATTERN = re.compile(r"[0-9]{1,3}")
_HEX_PSK_PATTERN = re.compile(r"[0-9a-fA-F]{64}")
_COUNTRY_PATTERN = re.compile(r"[A-Z]{2}")


def validate_username(name: str) -> bool:
    """Check a Linux login name.

    Accepts names matching ``[a-z_][a-z0-9_-]*`` that are at most 32
    characters long.
    """
    return (
        0 < len(name) <= USERNAME_MAX_LENGTH
        and USERNAME_PATTERN.fullmatch(name) is not None
    )


def validate_ip(address: str) -> bool:
    """Check a dotted-quad IPv4 address.

    Accepts exactly four decimal integers in 0-255 separated by dots.
    """
    parts = address.split(".")
    if len(parts) != 4:
        return False
    return all(
        _OCTET_PATTERN.fullmatch(part) is not None and int(part) <= 255
        for part in parts
    )


def normalize_netmask(value: str) -> int:
    """Convert a subnet mask to a prefix length.

    Args:
        value: Prefix length ('24', '/24') or dotted mask ('255.255.255.0').

    Returns:
        Prefix length in 0-32.

    Raises:
        ValueError: The value is neither a prefix length nor a contiguous mask.
    """
    value = value.strip().lstrip("/")
    if value.isascii() and value.isdigit():
        prefix = int(value)
        if 0 <= prefix <= 32:
            return prefix
        raise ValueError(f"prefix length must be 0-32, got {prefix}")

    if not validate_ip(value):
        raise ValueError(f"not a prefix length or dotted mask: {value!r}")

    bits = "".join(f"{int(octet):08b}" for octet in value.split("."))
    if "01" in bits:
        raise ValueError(f"mask is not contiguous: {value}")
    return bits.count("1")


def validate_wifi_psk(psk: str) -> bool:
    """Check a WPA pre-shared key (8-63 char passphrase or 64 hex digits)."""
    if _HEX_PSK_PATTERN.fullmatch(psk):
        return True
    return 8 <= len(psk) <= 63 and psk.isprintable() and '"' not in psk


def validate_country(code: str) -> bool:
    """Check an ISO 3166 alpha-2 country code (upper case)."""
    return _COUNTRY_PATTERN.fullmatch(code) is not None


__all__ = [
    "USERNAME_MAX_LENGTH",
    "normalize_netmask",
    "validate_country",
    "validate_ip",
    "validate_username",
    "validate_wifi_psk",
]
