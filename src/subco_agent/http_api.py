"""
Read-only HTTP status surface for Subco Agent.

GET /                -> service identity + MQTT connectivity
GET /version         -> { version, timestamp }
GET /health          -> { status, mqtt { connected, brokerUrl }, uptime, timestamp }
GET /device-status   -> DeviceStatusSnapshot
GET /image-versions  -> { currentImageVersion, availableImageVersions, timestamp }
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional, Protocol

import uvicorn
from fastapi import FastAPI

from subco_agent.core.snapshots import (
    DeviceIdentity,
    build_device_status,
    build_health,
    build_image_versions,
    build_version,
)
from subco_agent.core.state import VersionState

logger = logging.getLogger(__name__)

SERVICE_NAME = "subco-agent"


class ConnectivitySource(Protocol):
    broker_url: str

    def is_connected(self) -> bool: ...


def create_app(
    state: VersionState,
    session: ConnectivitySource,
    identity: DeviceIdentity,
    started_monotonic: float,
    *,
    agent_version: str = "0.0.0+dev",
) -> FastAPI:
    app = FastAPI(title="Subco Agent", version=agent_version)

    @app.get("/")
    def root() -> dict[str, Any]:
        return {
            "service": SERVICE_NAME,
            "status": "running",
            "mqttConnected": session.is_connected(),
        }

    @app.get("/version")
    def get_version() -> dict[str, Any]:
        return build_version(state.view())

    @app.get("/health")
    def health() -> dict[str, Any]:
        return build_health(session.is_connected(), session.broker_url, started_monotonic)

    @app.get("/device-status")
    def device_status() -> dict[str, Any]:
        return build_device_status(state.view(), identity, started_monotonic).to_dict()

    @app.get("/image-versions")
    def image_versions() -> dict[str, Any]:
        return build_image_versions(state.view())

    return app


class StatusServer:
    """
    Runs uvicorn on a daemon thread (off the main thread uvicorn leaves
    signal handling to the agent). close() stops accepting new connections,
    lets in-flight requests finish, and calls on_closed once the server exits.
    """

    def __init__(self, app: FastAPI, host: str = "0.0.0.0", port: int = 3000) -> None:
        self.host = host
        self.port = port
        self._server = uvicorn.Server(
            uvicorn.Config(app, host=host, port=port, log_level="warning", lifespan="off")
        )
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._serve, daemon=True, name="http-status")
        self._thread.start()
        logger.info("HTTP status server listening on %s:%s", self.host, self.port)

    def _serve(self) -> None:
        try:
            self._server.run()
        except SystemExit as exc:
            # uvicorn exits on startup failures such as a port already in use
            logger.error("HTTP status server failed to start on %s:%s (exit %s)", self.host, self.port, exc.code)
        except Exception:
            logger.exception("HTTP status server failed")

    def close(self, on_closed: Optional[Callable[[], None]] = None) -> None:
        self._server.should_exit = True
        thread = self._thread

        def _wait() -> None:
            if thread is not None:
                thread.join()
            logger.info("HTTP status server stopped")
            if on_closed is not None:
                on_closed()

        threading.Thread(target=_wait, daemon=True, name="http-close").start()
