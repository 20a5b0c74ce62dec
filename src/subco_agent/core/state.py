"""
Version state owned by the agent core.

One VersionState is created at startup and passed by reference to the
reconciler (sole writer), the heartbeat scheduler and the HTTP surface
(readers). One re-entrant lock guards every field; the reconciler holds it
across the whole reconcile-and-publish sequence, readers only long enough
to take a VersionView copy.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterable, Iterator

from subco_agent.versioning import DETECTING

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VersionView:
    """Point-in-time copy of VersionState."""

    current: str
    current_image_version: str
    known_image_versions: tuple[str, ...]


class VersionState:
    def __init__(
        self,
        current: str,
        current_image_version: str = DETECTING,
        known_image_versions: Iterable[str] = (),
    ) -> None:
        self._lock = threading.RLock()
        self._current = current
        self._current_image_version = current_image_version
        self._known_image_versions: list[str] = list(known_image_versions)

    @contextmanager
    def locked(self) -> Iterator["VersionState"]:
        with self._lock:
            yield self

    # -------------------------
    # Readers
    # -------------------------
    @property
    def current(self) -> str:
        with self._lock:
            return self._current

    @property
    def current_image_version(self) -> str:
        with self._lock:
            return self._current_image_version

    @property
    def known_image_versions(self) -> list[str]:
        with self._lock:
            return list(self._known_image_versions)

    def view(self) -> VersionView:
        with self._lock:
            return VersionView(
                current=self._current,
                current_image_version=self._current_image_version,
                known_image_versions=tuple(self._known_image_versions),
            )

    # -------------------------
    # Writers (reconciler + startup discovery only)
    # -------------------------
    def set_current(self, version: str) -> None:
        with self._lock:
            self._current = version

    def replace_known_images(self, images: Iterable[str]) -> None:
        with self._lock:
            self._known_image_versions = list(images)

    def set_current_image(self, tag: str) -> None:
        with self._lock:
            self._current_image_version = tag

    def set_detected_image(self, tag: str) -> bool:
        """
        Store an image discovery result unless a controller announcement already
        set currentImageVersion while discovery was running.
        """
        with self._lock:
            if self._current_image_version != DETECTING:
                logger.info(
                    "Discarding detected image %s; current image already %s",
                    tag,
                    self._current_image_version,
                )
                return False
            self._current_image_version = tag
            return True
