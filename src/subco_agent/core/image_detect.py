"""
Container image discovery via the docker CLI.

Returns the image tag of the running container whose image name contains
the service's image family, or a sentinel (not-running, detection-failed).
"""

from __future__ import annotations

import logging
import subprocess
import threading
from typing import Callable

from subco_agent.core.state import VersionState
from subco_agent.versioning import DETECTION_FAILED, NOT_RUNNING

logger = logging.getLogger(__name__)

_DOCKER_PS = ["docker", "ps", "--format", "{{.Image}}"]


def detect_image_version(
    family: str,
    *,
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    timeout_s: float = 10.0,
) -> str:
    try:
        r = runner(
            _DOCKER_PS,
            capture_output=True,
            text=True,
            timeout=timeout_s,
            check=False,
        )
    except FileNotFoundError:
        logger.warning("Image detection failed: docker CLI not found")
        return DETECTION_FAILED
    except subprocess.TimeoutExpired:
        logger.warning("Image detection failed: docker ps timed out after %.0fs", timeout_s)
        return DETECTION_FAILED
    except OSError as exc:
        logger.warning("Image detection failed: %s", exc)
        return DETECTION_FAILED

    if r.returncode != 0:
        logger.warning(
            "Image detection failed: %s",
            (r.stderr or r.stdout or "").strip() or r.returncode,
        )
        return DETECTION_FAILED

    for line in (r.stdout or "").splitlines():
        image = line.strip()
        if image and family in image:
            logger.info("Detected running image: %s", image)
            return image

    logger.info("No running container image matches %r", family)
    return NOT_RUNNING


def start_image_detection(
    state: VersionState,
    family: str,
    *,
    detector: Callable[[str], str] = detect_image_version,
) -> threading.Thread:
    """Run discovery on a daemon thread and store the result in state."""

    def _run() -> None:
        try:
            tag = detector(family)
        except Exception:
            logger.exception("Image detection crashed")
            tag = DETECTION_FAILED
        state.set_detected_image(tag)

    t = threading.Thread(target=_run, daemon=True, name="image-detect")
    t.start()
    return t
