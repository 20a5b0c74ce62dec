"""
MQTT Topic Schema for Subco Agent.

Inbound: getVersion, newUpdate.
Outbound: Version (raw version string), DeviceStatus (JSON snapshot).
All four names share one configurable prefix ("/" by default, matching the controller).
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_PREFIX_RE = re.compile(r"^[A-Za-z0-9_/\-]*$")


class TopicSchemaError(ValueError):
    """Raised when an invalid prefix is used to construct topics."""


def _validate_prefix(prefix: str) -> str:
    if not isinstance(prefix, str):
        raise TopicSchemaError("prefix must be a string")
    if not _PREFIX_RE.fullmatch(prefix):
        raise TopicSchemaError(
            f"prefix '{prefix}' is invalid; wildcards and spaces are not allowed"
        )
    return prefix


@dataclass(frozen=True, slots=True)
class TopicSchema:
    """MQTT topic names for one agent."""

    prefix: str = "/"

    def __post_init__(self) -> None:
        _validate_prefix(self.prefix)

    # -------------------------
    # Inbound
    # -------------------------
    def get_version(self) -> str:
        return f"{self.prefix}getVersion"

    def new_update(self) -> str:
        return f"{self.prefix}newUpdate"

    # -------------------------
    # Outbound
    # -------------------------
    def version(self) -> str:
        return f"{self.prefix}Version"

    def device_status(self) -> str:
        return f"{self.prefix}DeviceStatus"

    def inbound(self) -> tuple[str, str]:
        return (self.get_version(), self.new_update())
