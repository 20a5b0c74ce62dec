"""
DeviceStatus heartbeat.

Best-effort periodic broadcast: every period, if the transport reports
connected, snapshot VersionState and publish it. A disconnected tick is
skipped silently; a failed tick is logged and the next tick tries again.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional, Protocol

from subco_agent.core.snapshots import DeviceIdentity, DeviceStatusSnapshot, build_device_status
from subco_agent.core.state import VersionState
from subco_agent.mqtt_topics import TopicSchema

logger = logging.getLogger(__name__)


class StatusTransport(Protocol):
    def is_connected(self) -> bool: ...

    def publish(self, topic: str, payload: Any) -> bool: ...


class HeartbeatScheduler:
    def __init__(
        self,
        state: VersionState,
        transport: StatusTransport,
        topics: TopicSchema,
        identity: DeviceIdentity,
        started_monotonic: float,
        *,
        interval_s: float = 30,
    ) -> None:
        self.state = state
        self.transport = transport
        self.topics = topics
        self.identity = identity
        self.started_monotonic = started_monotonic
        self.interval_s = interval_s

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lifecycle_lock = threading.Lock()
        self._cancelled = False

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def snapshot(self) -> DeviceStatusSnapshot:
        return build_device_status(self.state.view(), self.identity, self.started_monotonic)

    def tick(self) -> bool:
        """Run one heartbeat. Returns True if a DeviceStatus publish was attempted and accepted."""
        # Same lock as reconcile-and-publish: a DeviceStatus never trails a newer Version
        with self.state.locked():
            if not self.transport.is_connected():
                logger.debug("Heartbeat skipped: transport not connected")
                return False
            try:
                snapshot = self.snapshot()
                ok = self.transport.publish(self.topics.device_status(), snapshot.to_json())
            except Exception as exc:
                logger.error("Heartbeat publish failed: %s", exc)
                return False
        if ok:
            logger.debug("Published device status: version=%s", snapshot.version)
        return bool(ok)

    def start(self) -> bool:
        """
        Start the heartbeat thread; the first tick runs immediately.
        Returns False if already started or cancelled.
        """
        with self._lifecycle_lock:
            if self._thread is not None or self._cancelled:
                return False
            self._thread = threading.Thread(
                target=self._loop,
                daemon=True,
                name="device-status-heartbeat",
            )
            self._thread.start()
        logger.info("Heartbeat started (every %ss)", self.interval_s)
        return True

    def on_connected(self) -> None:
        """Transport connect listener: start on the first connect only."""
        self.start()

    def cancel(self, join_timeout_s: float = 2.0) -> bool:
        """Stop the heartbeat. Effective once; later calls return False."""
        with self._lifecycle_lock:
            if self._cancelled:
                return False
            self._cancelled = True
            thread = self._thread
        self._stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=join_timeout_s)
            if thread.is_alive():
                logger.warning("Heartbeat thread did not stop within timeout")
        logger.info("Heartbeat cancelled")
        return True

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            if self._stop_event.wait(timeout=self.interval_s):
                break
