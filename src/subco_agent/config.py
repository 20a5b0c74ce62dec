"""
Subco Agent configuration.

Single source for runtime configuration. Values come from environment variables,
optionally loaded from standard env files. Read once at startup; never re-read.

Priority (lowest -> highest):
1) /etc/subco/agent.env (system install)
2) ~/.config/subco-agent/.env (user install)
3) ./.env (project override)
4) process environment variables (always win)
"""

from __future__ import annotations

import os
import socket
import sys
from dataclasses import dataclass
from importlib.metadata import PackageNotFoundError, version as _pkg_version
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from subco_agent.mqtt_topics import TopicSchema, TopicSchemaError

DEFAULT_BROKER_URL = "mqtt://localhost:1883"
DEFAULT_HTTP_PORT = 3000
DEFAULT_HEARTBEAT_S = 30
DEFAULT_RECONNECT_S = 1

_SCHEME_PORTS = {"mqtt": 1883, "tcp": 1883, "mqtts": 8883, "ssl": 8883}


class ConfigError(ValueError):
    """Raised when configuration is missing or invalid."""


def package_version() -> str:
    try:
        return _pkg_version("subco-agent")
    except PackageNotFoundError:
        return "0.0.0+dev"


def _env_paths() -> Iterable[Path]:
    # 1) system install
    yield Path("/etc/subco/agent.env")

    # 2) user config dir
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", str(Path.home())))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config")))
    yield base / "subco-agent" / ".env"

    # 3) project override
    yield Path(".env")


def _env(key: str, default: str) -> str:
    v = os.getenv(key)
    if v is None or v.strip() == "":
        return default
    return v.strip()


def _optional_env(key: str) -> Optional[str]:
    v = os.getenv(key)
    if v is None or v.strip() == "":
        return None
    return v.strip()


def _parse_int(key: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"Invalid integer for {key}: {raw!r}") from exc


@dataclass(frozen=True, slots=True)
class BrokerAddress:
    url: str
    host: str
    port: int
    tls: bool


def parse_broker_url(url: str) -> BrokerAddress:
    """
    Parse mqtt://host[:port], tcp://..., mqtts://... into a BrokerAddress.
    Raises ConfigError for unknown schemes, a missing host or a bad port.
    """
    parsed = urlparse(url)
    scheme = (parsed.scheme or "").lower()
    if scheme not in _SCHEME_PORTS:
        raise ConfigError(f"Unsupported broker URL scheme in MQTT_BROKER_URL: {url!r}")
    if not parsed.hostname:
        raise ConfigError(f"Missing host in MQTT_BROKER_URL: {url!r}")
    try:
        port = parsed.port or _SCHEME_PORTS[scheme]
    except ValueError as exc:
        raise ConfigError(f"Invalid port in MQTT_BROKER_URL: {url!r}") from exc
    return BrokerAddress(
        url=url,
        host=parsed.hostname,
        port=port,
        tls=scheme in ("mqtts", "ssl"),
    )


@dataclass(frozen=True, slots=True)
class AgentConfig:
    broker: BrokerAddress
    mqtt_username: Optional[str]
    mqtt_password: Optional[str]
    mqtt_client_id: str
    mqtt_reconnect_s: int
    topic_prefix: str
    http_port: int  # 0 disables the status listener
    device_ip: str
    device_mac: str
    image_version: Optional[str]  # None -> run image discovery
    image_family: str
    initial_version: str
    heartbeat_s: int
    agent_version: str

    @property
    def broker_url(self) -> str:
        return self.broker.url


def _load_env_files() -> None:
    for p in _env_paths():
        if p.is_file():
            # do not override existing env vars; later files can fill missing
            load_dotenv(p, override=False)


def load_config(*, dotenv_enabled: bool = True) -> AgentConfig:
    """
    Load config by reading env files and then
    validating environment variables.

    Returns an immutable AgentConfig. Raises ConfigError on failure.
    """
    if dotenv_enabled:
        _load_env_files()

    broker = parse_broker_url(_env("MQTT_BROKER_URL", DEFAULT_BROKER_URL))

    http_port = _parse_int("PORT", _env("PORT", str(DEFAULT_HTTP_PORT)))
    if not (0 <= http_port <= 65535):
        raise ConfigError(f"PORT out of range: {http_port}")

    heartbeat_s = _parse_int("HEARTBEAT_S", _env("HEARTBEAT_S", str(DEFAULT_HEARTBEAT_S)))
    if heartbeat_s <= 0:
        raise ConfigError("HEARTBEAT_S must be > 0")

    reconnect_s = _parse_int("MQTT_RECONNECT_S", _env("MQTT_RECONNECT_S", str(DEFAULT_RECONNECT_S)))
    if reconnect_s <= 0:
        raise ConfigError("MQTT_RECONNECT_S must be > 0")

    topic_prefix = os.getenv("MQTT_TOPIC_PREFIX", "/")
    try:
        TopicSchema(topic_prefix)
    except TopicSchemaError as exc:
        raise ConfigError(f"Invalid MQTT_TOPIC_PREFIX: {exc}") from exc

    return AgentConfig(
        broker=broker,
        mqtt_username=_optional_env("MQTT_USERNAME"),
        mqtt_password=_optional_env("MQTT_PASSWORD"),
        mqtt_client_id=_env("MQTT_CLIENT_ID", f"subco-agent-{socket.gethostname()}"),
        mqtt_reconnect_s=reconnect_s,
        topic_prefix=topic_prefix,
        http_port=http_port,
        device_ip=_env("DEVICE_IP", "unknown"),
        device_mac=_env("DEVICE_MAC", "unknown"),
        image_version=_optional_env("IMAGE_VERSION"),
        image_family=_env("IMAGE_FAMILY", "subco"),
        initial_version=_env("SUBCO_VERSION", "1.0.0"),
        heartbeat_s=heartbeat_s,
        agent_version=package_version(),
    )
