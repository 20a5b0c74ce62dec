"""
MQTT transport session for Subco Agent.

Wraps a paho-mqtt client: background network loop with fixed-interval
reconnect, re-subscription of every registered topic on each (re)connect,
fire-and-forget publish, and a draining end().
"""

from __future__ import annotations

import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

import paho.mqtt.client as mqtt

from subco_agent.config import BrokerAddress

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str], None]


class BrokerSession:
    """
    Register handlers and connect listeners before start(). Inbound messages
    are handed to a single worker thread so they are processed one at a time,
    in arrival order.
    """

    def __init__(
        self,
        broker: BrokerAddress,
        client_id: str,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        keepalive: int = 60,
        reconnect_s: int = 1,
        qos: int = 1,
        drain_timeout_s: float = 5.0,
    ) -> None:
        self.broker = broker
        self.client_id = client_id
        self.username = username
        self.password = password
        self.keepalive = keepalive
        self.reconnect_s = reconnect_s
        self.qos = qos
        self.drain_timeout_s = drain_timeout_s

        self._client: Optional[mqtt.Client] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="mqtt-msg")
        self._handlers: dict[str, MessageHandler] = {}
        self._connect_listeners: list[Callable[[], None]] = []
        self._inflight: list[mqtt.MQTTMessageInfo] = []
        self._inflight_lock = threading.Lock()
        self._end_lock = threading.Lock()
        self._ending = False
        self.connect_count = 0

    @property
    def broker_url(self) -> str:
        return self.broker.url

    @property
    def connected(self) -> bool:
        return self.is_connected()

    def is_connected(self) -> bool:
        return bool(self._client and self._client.is_connected())

    def set_message_handler(self, topic: str, handler: MessageHandler) -> None:
        self._handlers[topic] = handler

    def add_connect_listener(self, listener: Callable[[], None]) -> None:
        self._connect_listeners.append(listener)

    # -------------------------
    # paho callbacks
    # -------------------------
    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        if reason_code.is_failure:
            logger.error("MQTT connect failed rc=%s; retrying in %ss", reason_code, self.reconnect_s)
            return

        self.connect_count += 1
        logger.info("Connected to MQTT broker %s", self.broker.url)

        # Subscriptions are not assumed durable across reconnects
        for topic in list(self._handlers.keys()):
            client.subscribe(topic, qos=self.qos)
            logger.info("Subscribed: %s", topic)

        for listener in list(self._connect_listeners):
            try:
                listener()
            except Exception:
                logger.exception("Connect listener failed")

    def _on_connect_fail(self, client: mqtt.Client, userdata: Any) -> None:
        logger.warning(
            "MQTT connection to %s failed; retrying in %ss",
            self.broker.url,
            self.reconnect_s,
        )

    def _on_disconnect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        if self._ending:
            logger.info("MQTT disconnected")
        else:
            logger.warning("Unexpected disconnect rc=%s; reconnecting", reason_code)

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        handler = self._handlers.get(msg.topic)
        if not handler:
            logger.warning("Unhandled topic: %s", msg.topic)
            return
        if self._ending:
            logger.debug("Dropping message on %s during shutdown", msg.topic)
            return
        try:
            payload_str = msg.payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            logger.error("Payload decode failed topic=%s err=%s", msg.topic, exc)
            return
        try:
            self._executor.submit(self._dispatch, msg.topic, handler, payload_str)
        except RuntimeError:
            # executor shut down by end() after the _ending check
            logger.debug("Dropping message on %s during shutdown", msg.topic)

    @staticmethod
    def _dispatch(topic: str, handler: MessageHandler, payload_str: str) -> None:
        try:
            handler(payload_str)
        except Exception:
            logger.exception("Handler for %s failed", topic)

    # -------------------------
    # Lifecycle
    # -------------------------
    def start(self) -> bool:
        """
        Begin connecting in the background. An unreachable broker is not an
        error here; paho keeps retrying every reconnect_s seconds.
        """
        try:
            client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=self.client_id,
                protocol=mqtt.MQTTv311,
            )
            if self.username:
                client.username_pw_set(self.username, self.password)
            if self.broker.tls:
                client.tls_set()
            client.reconnect_delay_set(min_delay=self.reconnect_s, max_delay=self.reconnect_s)

            client.on_connect = self._on_connect
            client.on_connect_fail = self._on_connect_fail
            client.on_disconnect = self._on_disconnect
            client.on_message = self._on_message

            client.connect_async(self.broker.host, self.broker.port, keepalive=self.keepalive)
            client.loop_start()

            self._client = client
            logger.info("Connecting to MQTT broker %s", self.broker.url)
            return True
        except Exception:
            logger.exception("Failed to start MQTT client")
            return False

    def publish(self, topic: str, payload: Any) -> bool:
        """Fire-and-forget publish. Logs and returns False on failure; never raises."""
        if not self._client:
            logger.error("Publish to %s failed: MQTT client not started", topic)
            return False
        if isinstance(payload, (dict, list)):
            payload = json.dumps(payload)
        try:
            info = self._client.publish(topic, payload=payload, qos=self.qos, retain=False)
        except Exception as exc:
            logger.error("Publish to %s failed: %s", topic, exc)
            return False
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.error("Publish to %s failed: %s", topic, mqtt.error_string(info.rc))
            return False
        with self._inflight_lock:
            self._inflight = [i for i in self._inflight if not i.is_published()]
            self._inflight.append(info)
        return True

    def _wait_inflight(self) -> None:
        with self._inflight_lock:
            pending = [i for i in self._inflight if not i.is_published()]
            self._inflight = []
        if not pending or not self.is_connected():
            return
        deadline = time.monotonic() + self.drain_timeout_s
        for info in pending:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning("Drain timed out with %d publishes in flight", len(pending))
                return
            try:
                info.wait_for_publish(timeout=remaining)
            except (ValueError, RuntimeError) as exc:
                logger.warning("In-flight publish lost during drain: %s", exc)

    def end(self, drain: bool = True, on_closed: Optional[Callable[[], None]] = None) -> None:
        """
        Close the session on a helper thread and call on_closed when done.
        With drain, queued handlers finish and in-flight publishes are awaited
        (bounded by drain_timeout_s) before disconnecting. Idempotent.
        """
        with self._end_lock:
            if self._ending:
                return
            self._ending = True

        def _close() -> None:
            try:
                self._executor.shutdown(wait=drain, cancel_futures=not drain)
                if drain:
                    self._wait_inflight()
                if self._client is not None:
                    self._client.disconnect()
                    self._client.loop_stop()
            except Exception:
                logger.exception("Error closing MQTT session")
            finally:
                if on_closed is not None:
                    on_closed()

        threading.Thread(target=_close, daemon=True, name="mqtt-close").start()
