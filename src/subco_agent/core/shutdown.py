"""
Shutdown coordination for Subco Agent.

RUNNING -> DRAINING on the first termination request: cancel the heartbeat,
ask the transport to end with drain, ask the HTTP listener to stop accepting
connections. DRAINING -> TERMINATED once every close callback has fired or
the safety timeout elapses, whichever comes first.
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)

LISTENER_TIMEOUT_S = 8.0
BARE_TIMEOUT_S = 2.0


class ShutdownState(str, enum.Enum):
    RUNNING = "running"
    DRAINING = "draining"
    TERMINATED = "terminated"


class Closable(Protocol):
    def end(self, drain: bool, on_closed: Callable[[], None]) -> None: ...


class Listener(Protocol):
    def close(self, on_closed: Callable[[], None]) -> None: ...


class Cancellable(Protocol):
    def cancel(self) -> bool: ...


class ShutdownCoordinator:
    def __init__(
        self,
        transport: Closable,
        listener: Optional[Listener] = None,
        heartbeat: Optional[Cancellable] = None,
        *,
        listener_timeout_s: float = LISTENER_TIMEOUT_S,
        bare_timeout_s: float = BARE_TIMEOUT_S,
    ) -> None:
        self.transport = transport
        self.listener = listener
        self.heartbeat = heartbeat
        self.timeout_s = listener_timeout_s if listener is not None else bare_timeout_s

        self._lock = threading.Lock()
        self._state = ShutdownState.RUNNING
        self._pending: set[str] = set()
        self._timer: Optional[threading.Timer] = None
        self._terminated = threading.Event()
        self.timed_out = False

    @property
    def state(self) -> ShutdownState:
        with self._lock:
            return self._state

    def request_shutdown(self, reason: str = "signal") -> bool:
        """
        Begin draining. Safe to call from a signal handler and idempotent:
        returns False if shutdown was already requested.
        """
        with self._lock:
            if self._state is not ShutdownState.RUNNING:
                logger.info("Shutdown already in progress; ignoring %s", reason)
                return False
            self._state = ShutdownState.DRAINING
            self._pending = {"transport"}
            if self.listener is not None:
                self._pending.add("listener")
            self._timer = threading.Timer(self.timeout_s, self._on_timeout)
            self._timer.daemon = True
            self._timer.start()

        logger.info("Shutting down (%s); safety timeout %.1fs", reason, self.timeout_s)

        if self.heartbeat is not None:
            try:
                self.heartbeat.cancel()
            except Exception:
                logger.exception("Error cancelling heartbeat")

        try:
            self.transport.end(drain=True, on_closed=lambda: self._closed("transport"))
        except Exception:
            logger.exception("Error ending MQTT session")
            self._closed("transport")

        if self.listener is not None:
            try:
                self.listener.close(on_closed=lambda: self._closed("listener"))
            except Exception:
                logger.exception("Error closing HTTP listener")
                self._closed("listener")
        return True

    def _closed(self, name: str) -> None:
        with self._lock:
            self._pending.discard(name)
            done = not self._pending
        logger.info("%s closed", name.capitalize())
        if done:
            self._terminate(timed_out=False)

    def _on_timeout(self) -> None:
        logger.warning("Shutdown timed out after %.1fs; forcing exit", self.timeout_s)
        self._terminate(timed_out=True)

    def _terminate(self, *, timed_out: bool) -> None:
        with self._lock:
            if self._state is ShutdownState.TERMINATED:
                return
            self._state = ShutdownState.TERMINATED
            self.timed_out = timed_out
            timer = self._timer
        if timer is not None and not timed_out:
            timer.cancel()
        logger.info("Shutdown complete")
        self._terminated.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until TERMINATED. Returns False if timeout elapsed first."""
        return self._terminated.wait(timeout=timeout)
