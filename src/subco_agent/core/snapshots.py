"""
Snapshot builders for Subco Agent.

DeviceStatusSnapshot is published on DeviceStatus and served on
GET /device-status; the other builders are pure functions for the HTTP
payloads. Wire keys are camelCase to match the controller.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from subco_agent.core.state import VersionView


def now_iso8601() -> str:
    """Return current UTC time as ISO8601 string."""
    return datetime.now(timezone.utc).isoformat()


def uptime_since(started_monotonic: float) -> float:
    return round(max(0.0, time.monotonic() - started_monotonic), 3)


@dataclass(frozen=True, slots=True)
class DeviceIdentity:
    ip: str
    mac: str


@dataclass(frozen=True, slots=True)
class DeviceStatusSnapshot:
    ip: str
    mac: str
    version: str
    container_image_version: str
    available_image_versions: tuple[str, ...]
    timestamp: str
    uptime_seconds: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "ip": self.ip,
            "mac": self.mac,
            "version": self.version,
            "containerImageVersion": self.container_image_version,
            "availableImageVersions": list(self.available_image_versions),
            "timestamp": self.timestamp,
            "uptimeSeconds": self.uptime_seconds,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def build_device_status(
    view: VersionView,
    identity: DeviceIdentity,
    started_monotonic: float,
) -> DeviceStatusSnapshot:
    return DeviceStatusSnapshot(
        ip=identity.ip,
        mac=identity.mac,
        version=view.current,
        container_image_version=view.current_image_version,
        available_image_versions=view.known_image_versions,
        timestamp=now_iso8601(),
        uptime_seconds=uptime_since(started_monotonic),
    )


def build_version(view: VersionView) -> dict[str, Any]:
    return {"version": view.current, "timestamp": now_iso8601()}


def build_health(connected: bool, broker_url: str, started_monotonic: float) -> dict[str, Any]:
    """Contract: status, mqtt { connected, brokerUrl }, uptime, timestamp."""
    return {
        "status": "healthy",
        "mqtt": {"connected": connected, "brokerUrl": broker_url},
        "uptime": uptime_since(started_monotonic),
        "timestamp": now_iso8601(),
    }


def build_image_versions(view: VersionView) -> dict[str, Any]:
    return {
        "currentImageVersion": view.current_image_version,
        "availableImageVersions": list(view.known_image_versions),
        "timestamp": now_iso8601(),
    }
