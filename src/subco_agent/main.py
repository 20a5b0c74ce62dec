"""
Subco Agent entrypoint.

CLI:
  subco-agent run           -> run agent (MQTT session, heartbeat, HTTP status)
  subco-agent detect-image  -> print the running container image tag and exit
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import time
from dataclasses import dataclass
from typing import Optional

from subco_agent.config import AgentConfig, package_version
from subco_agent.core.heartbeat import HeartbeatScheduler
from subco_agent.core.log_config import configure_logging
from subco_agent.core.reconciler import VersionReconciler
from subco_agent.core.shutdown import ShutdownCoordinator, ShutdownState
from subco_agent.core.snapshots import DeviceIdentity
from subco_agent.core.state import VersionState
from subco_agent.mqtt_client import BrokerSession
from subco_agent.mqtt_topics import TopicSchema
from subco_agent.versioning import DETECTING

configure_logging()
logger = logging.getLogger(__name__)


def get_version_string() -> str:
    return package_version()


@dataclass
class Runtime:
    cfg: AgentConfig
    state: VersionState
    session: BrokerSession
    reconciler: VersionReconciler
    heartbeat: HeartbeatScheduler
    coordinator: ShutdownCoordinator
    server: Optional[object] = None


def build_runtime(cfg: AgentConfig, *, started_monotonic: Optional[float] = None) -> Runtime:
    """Wire state, transport, reconciler, heartbeat, HTTP listener and shutdown."""
    started = time.monotonic() if started_monotonic is None else started_monotonic
    topics = TopicSchema(cfg.topic_prefix)
    identity = DeviceIdentity(ip=cfg.device_ip, mac=cfg.device_mac)

    state = VersionState(
        current=cfg.initial_version,
        current_image_version=cfg.image_version or DETECTING,
    )

    session = BrokerSession(
        cfg.broker,
        cfg.mqtt_client_id,
        username=cfg.mqtt_username,
        password=cfg.mqtt_password,
        reconnect_s=cfg.mqtt_reconnect_s,
    )
    reconciler = VersionReconciler(state, session, topics, cfg.image_family)
    session.set_message_handler(topics.get_version(), reconciler.on_version_query)
    session.set_message_handler(topics.new_update(), reconciler.on_update_notification)

    heartbeat = HeartbeatScheduler(
        state,
        session,
        topics,
        identity,
        started,
        interval_s=cfg.heartbeat_s,
    )
    session.add_connect_listener(heartbeat.on_connected)

    server = None
    if cfg.http_port:
        from subco_agent.http_api import StatusServer, create_app

        app = create_app(state, session, identity, started, agent_version=cfg.agent_version)
        server = StatusServer(app, port=cfg.http_port)

    coordinator = ShutdownCoordinator(session, server, heartbeat)
    return Runtime(
        cfg=cfg,
        state=state,
        session=session,
        reconciler=reconciler,
        heartbeat=heartbeat,
        coordinator=coordinator,
        server=server,
    )


def _install_signal_handlers(rt: Runtime) -> None:
    def _handler(signum: int, frame) -> None:  # frame is unused, keep signature
        logger.info("Received signal %s; requesting shutdown", signum)
        rt.coordinator.request_shutdown(f"signal {signum}")

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def _stopping(rt: Runtime) -> bool:
    return rt.coordinator.state is not ShutdownState.RUNNING


def run_agent() -> int:
    """
    Runtime mode: start MQTT session, HTTP listener and image discovery,
    block until the shutdown coordinator terminates. Returns process exit code.
    """
    from subco_agent.config import ConfigError, load_config
    from subco_agent.core.image_detect import start_image_detection

    try:
        cfg = load_config()
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    rt = build_runtime(cfg)
    _install_signal_handlers(rt)

    logger.info("============================================================")
    logger.info("Subco Agent")
    logger.info("Version: %s", get_version_string())
    logger.info("Broker: %s", cfg.broker_url)
    logger.info("Initial subco version: %s", cfg.initial_version)
    logger.info("============================================================")

    if cfg.image_version is None:
        start_image_detection(rt.state, cfg.image_family)
    else:
        logger.info("Image version from environment: %s", cfg.image_version)

    if rt.server is not None and not _stopping(rt):
        rt.server.start()

    if _stopping(rt):
        logger.info("Shutdown requested during startup; not connecting to MQTT")
        rt.coordinator.wait()
        return 0

    if not rt.session.start():
        logger.error("MQTT client could not be started")
        rt.coordinator.request_shutdown("mqtt start failure")
        rt.coordinator.wait()
        return 1

    logger.info("Agent running (shutdown via SIGINT/SIGTERM)")

    while not rt.coordinator.wait(timeout=0.5):
        pass

    return 0


def detect_image() -> int:
    from subco_agent.core.image_detect import detect_image_version

    tag = detect_image_version(os.getenv("IMAGE_FAMILY", "subco") or "subco")
    print(tag)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="subco-agent")
    p.add_argument("--version", action="version", version=get_version_string())

    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("run", help="Run agent runtime")
    sub.add_parser(
        "detect-image",
        help="Print the running container image for this service's image family",
    )

    return p


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.cmd == "run":
        raise SystemExit(run_agent())

    if args.cmd == "detect-image":
        raise SystemExit(detect_image())

    raise SystemExit(2)


if __name__ == "__main__":
    main()
