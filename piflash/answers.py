"""Pydantic model for the operator's provisioning answers.

The answers are collected interactively, validated here before use, and
persisted as defaults for the next run (the Wi-Fi passphrase excepted).
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from piflash.errors import ValidationError
from piflash.types import Architecture, NetworkInterface
from piflash.validation import (
    normalize_netmask,
    validate_country,
    validate_ip,
    validate_username,
    validate_wifi_psk,
)

# Fields never written to the run configuration store
UNPERSISTED_FIELDS = {"wifi_psk"}


class ProvisioningAnswers(BaseModel):
    """Validated answers for a provisioning run.

    Attributes:
        username: Login name created on the image.
        password: Optional password; None means key-only authentication.
        architecture: 32 or 64 bit image when downloading.
        static_ip: Optional static IPv4 address.
        gateway_ip: Gateway, required with a static IP.
        subnet_mask: Prefix length (dotted masks are normalized).
        dns_server: DNS server for the static configuration.
        network_interface: Interface for the static configuration.
        wifi_ssid: SSID, required for the wireless interface.
        wifi_psk: Optional WPA passphrase; None means an open network.
        wifi_country: Wi-Fi regulatory country.
        local_image: Optional local .img or .img.xz path.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    username: str = Field(default="pi")
    password: str | None = Field(default=None)
    architecture: Architecture = Field(default=Architecture.ARM64)
    static_ip: str | None = Field(default=None)
    gateway_ip: str | None = Field(default=None)
    subnet_mask: str | None = Field(default=None)
    dns_server: str | None = Field(default=None)
    network_interface: NetworkInterface = Field(default=NetworkInterface.WIRED)
    wifi_ssid: str | None = Field(default=None)
    wifi_psk: str | None = Field(default=None)
    wifi_country: str = Field(default="US")
    local_image: str | None = Field(default=None)

    @field_validator(
        "password",
        "static_ip",
        "gateway_ip",
        "subnet_mask",
        "dns_server",
        "wifi_ssid",
        "wifi_psk",
        "local_image",
        mode="before",
    )
    @classmethod
    def empty_to_none(cls, v: Any) -> Any:
        """Treat empty answers as 'not given'."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("username")
    @classmethod
    def check_username(cls, v: str) -> str:
        """Validate the login name."""
        if not validate_username(v):
            raise ValueError(
                "must match [a-z_][a-z0-9_-]* and be at most 32 characters"
            )
        return v

    @field_validator("static_ip", "gateway_ip", "dns_server")
    @classmethod
    def check_ip(cls, v: str | None) -> str | None:
        """Validate dotted-quad addresses."""
        if v is not None and not validate_ip(v.strip()):
            raise ValueError("must be four integers 0-255 separated by dots")
        return v.strip() if v is not None else v

    @field_validator("subnet_mask")
    @classmethod
    def check_subnet(cls, v: str | None) -> str | None:
        """Normalize the subnet mask to a prefix length."""
        if v is None:
            return v
        return str(normalize_netmask(v))

    @field_validator("wifi_psk")
    @classmethod
    def check_psk(cls, v: str | None) -> str | None:
        """Validate the WPA passphrase."""
        if v is not None and not validate_wifi_psk(v):
            raise ValueError("must be 8-63 printable characters or 64 hex digits")
        return v

    @field_validator("wifi_country")
    @classmethod
    def check_country(cls, v: str) -> str:
        """Validate the regulatory country code."""
        v = v.strip().upper()
        if not validate_country(v):
            raise ValueError("must be a two-letter country code")
        return v

    @model_validator(mode="after")
    def check_network(self) -> "ProvisioningAnswers":
        """Require a gateway with a static IP and an SSID for Wi-Fi."""
        if self.static_ip is None:
            return self
        if self.gateway_ip is None:
            raise ValueError("gateway_ip is required when static_ip is set")
        if self.network_interface == NetworkInterface.WIRELESS and not self.wifi_ssid:
            raise ValueError("wifi_ssid is required for the wireless interface")
        return self

    @property
    def key_only(self) -> bool:
        """Whether password login is disabled."""
        return self.password is None

    def to_store_dict(self) -> dict[str, Any]:
        """Return the persistable fields as plain values."""
        return self.model_dump(mode="json", exclude=UNPERSISTED_FIELDS)


def parse_answers(data: dict[str, Any]) -> ProvisioningAnswers:
    """Validate raw answers.

    Args:
        data: Answer values keyed by field name.

    Returns:
        Validated ProvisioningAnswers.

    Raises:
        ValidationError: The first offending field, its value and the reason.
    """
    try:
        return ProvisioningAnswers.model_validate(data)
    except PydanticValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or "answers"
        reason = error["msg"].removeprefix("Value error, ")
        raise ValidationError(field, error.get("input"), reason) from None


__all__ = ["ProvisioningAnswers", "UNPERSISTED_FIELDS", "parse_answers"]
