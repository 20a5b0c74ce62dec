"""
Version reconciliation for Subco Agent.

newUpdate  -> parse, replace the known image list, set or increment the
              version, publish it on Version.
getVersion -> publish the current version on Version; no state change.

Handlers never raise: any failure is logged and the message is dropped.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from subco_agent.core.state import VersionState
from subco_agent.mqtt_topics import TopicSchema
from subco_agent.versioning import VersionFormatError, increment_version

logger = logging.getLogger(__name__)


class MalformedNotification(ValueError):
    """Raised when a newUpdate payload cannot be parsed or has the wrong shape."""


class Publisher(Protocol):
    def publish(self, topic: str, payload: Any) -> bool: ...


@dataclass(frozen=True, slots=True)
class UpdateNotification:
    subco_version: Optional[str]  # None or "" -> increment
    image_versions: Optional[tuple[str, ...]]  # None -> leave the image list alone


def parse_update_notification(payload: bytes | str) -> UpdateNotification:
    """
    Parse a newUpdate payload:
      { "versions": { "subcoVersion": str }, "imageVersions": [str, ...] }
    Both fields are optional. Raises MalformedNotification on bad JSON or shape.
    """
    try:
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        obj = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedNotification(f"payload is not valid JSON: {exc}") from exc

    if not isinstance(obj, dict):
        raise MalformedNotification(f"payload must be a JSON object, got {type(obj).__name__}")

    subco_version: Optional[str] = None
    versions = obj.get("versions")
    if versions is not None:
        if not isinstance(versions, dict):
            raise MalformedNotification("versions must be an object")
        raw = versions.get("subcoVersion")
        if raw is not None and not isinstance(raw, str):
            raise MalformedNotification("versions.subcoVersion must be a string")
        subco_version = raw

    image_versions: Optional[tuple[str, ...]] = None
    images = obj.get("imageVersions")
    if images is not None:
        if not isinstance(images, list) or not all(isinstance(i, str) for i in images):
            raise MalformedNotification("imageVersions must be an array of strings")
        image_versions = tuple(images)

    return UpdateNotification(subco_version=subco_version, image_versions=image_versions)


class VersionReconciler:
    """
    Sole writer of VersionState. Holds the state lock across
    reconcile-and-publish so a concurrent heartbeat or getVersion never
    observes a half-applied notification.
    """

    def __init__(
        self,
        state: VersionState,
        publisher: Publisher,
        topics: TopicSchema,
        image_family: str,
    ) -> None:
        self.state = state
        self.publisher = publisher
        self.topics = topics
        self.image_family = image_family

    def on_update_notification(self, payload: bytes | str) -> None:
        try:
            notification = parse_update_notification(payload)
        except MalformedNotification as exc:
            logger.error("Ignoring malformed newUpdate: %s", exc)
            return

        logger.info("Received update: %s", notification)

        try:
            self.apply(notification)
        except Exception:
            logger.exception("Error processing newUpdate")

    def apply(self, notification: UpdateNotification) -> str:
        """Apply a parsed notification and announce the resulting version."""
        with self.state.locked() as state:
            if notification.image_versions is not None:
                self._apply_images(state, notification.image_versions)

            if notification.subco_version:
                state.set_current(notification.subco_version)
                logger.info("Version set to: %s from version file", notification.subco_version)
            else:
                try:
                    state.set_current(increment_version(state.current))
                    logger.info("Version incremented to: %s", state.current)
                except VersionFormatError as exc:
                    logger.warning("Version not incremented, keeping %r: %s", state.current, exc)

            current = state.current
            self.publisher.publish(self.topics.version(), current)
            logger.info("Published new version: %s", current)
            return current

    def _apply_images(self, state: VersionState, images: tuple[str, ...]) -> None:
        state.replace_known_images(images)
        logger.info("Known image versions replaced: %s", list(images))
        own = next((i for i in images if self.image_family and self.image_family in i), None)
        if own is not None:
            state.set_current_image(own)
            logger.info("Current image version set to: %s", own)

    def on_version_query(self, payload: bytes | str = b"") -> None:
        try:
            with self.state.locked() as state:
                current = state.current
                self.publisher.publish(self.topics.version(), current)
            logger.info("Responded with version: %s", current)
        except Exception:
            logger.exception("Error answering getVersion")
