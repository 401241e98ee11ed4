"""Run configuration store.

Previous answers are loaded at start as prompt defaults; the latest answers
plus the outcome of the run are written back wholesale at the end. The
file is YAML, readable only by the operator who invoked piflash.
"""

import logging
import os
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from piflash.config import InvokingUser
from piflash.types import RunOutcome

logger = logging.getLogger(__name__)

STORE_FIELDS = (
    "username",
    "password",
    "architecture",
    "static_ip",
    "gateway_ip",
    "subnet_mask",
    "dns_server",
    "network_interface",
    "wifi_ssid",
    "wifi_country",
    "local_image",
    "format_device",
    "last_flash_status",
    "last_flash_date",
)


class RunConfigStore:
    """YAML-backed record of previous answers and the last run status."""

    def __init__(self, path: Path, owner: InvokingUser | None = None) -> None:
        """Initialize the store.

        Args:
            path: Location of the YAML file.
            owner: Operator who receives ownership of the file when the
                process runs as root.
        """
        self.path = path
        self.owner = owner

    def load(self) -> dict[str, Any]:
        """Load stored values.

        A missing, empty or unreadable file yields empty defaults.

        Returns:
            Stored values keyed by field name.
        """
        if not self.path.exists():
            logger.debug("No run configuration at %s, using defaults", self.path)
            return {}

        try:
            with open(self.path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Ignoring unreadable run configuration %s: %s", self.path, e)
            return {}

        if data is None:
            return {}
        if not isinstance(data, dict):
            logger.warning(
                "Ignoring run configuration %s: expected a mapping, got %s",
                self.path,
                type(data).__name__,
            )
            return {}
        return {k: v for k, v in data.items() if k in STORE_FIELDS}

    def save(self, values: Mapping[str, Any]) -> None:
        """Overwrite the store with the given values.

        Args:
            values: Values keyed by field name; unknown keys are dropped.

        Raises:
            OSError: The file could not be written.
        """
        data = {k: values.get(k) for k in STORE_FIELDS if k in values}
        self.path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        os.replace(tmp_path, self.path)

        self._hand_over(self.path)
        logger.debug("Saved run configuration to %s", self.path)

    def save_outcome(
        self,
        values: Mapping[str, Any],
        outcome: RunOutcome,
        when: datetime | None = None,
    ) -> None:
        """Persist the answers together with the run outcome.

        Args:
            values: Latest answers.
            outcome: Final status of the run.
            when: Timestamp of the outcome (defaults to now).
        """
        when = when or datetime.now()
        data = dict(values)
        data["last_flash_status"] = outcome.value
        data["last_flash_date"] = when.isoformat(timespec="seconds")
        self.save(data)

    def _hand_over(self, path: Path) -> None:
        """Give the file (and its directory) back to the invoking operator."""
        if self.owner is None or os.geteuid() != 0:
            return
        for target in (path.parent, path):
            try:
                os.chown(target, self.owner.uid, self.owner.gid)
            except OSError as e:
                logger.warning(
                    "Could not hand %s to %s: %s", target, self.owner.name, e
                )


__all__ = ["STORE_FIELDS", "RunConfigStore"]
