"""
Version strings: MAJOR.MINOR.PATCH triples and opaque sentinel tokens.

Only a well-formed triple is eligible for increment. Anything else
(detecting..., not-running, a free-form tag) is opaque and never parsed.
"""

from __future__ import annotations

import re

DETECTING = "detecting..."
NOT_RUNNING = "not-running"
DETECTION_FAILED = "detection-failed"
UNKNOWN = "unknown"

SENTINELS = frozenset({DETECTING, NOT_RUNNING, DETECTION_FAILED, UNKNOWN})

_TRIPLE_RE = re.compile(r"([0-9]+)\.([0-9]+)\.([0-9]+)")


class VersionFormatError(ValueError):
    """Raised when a version string is not a MAJOR.MINOR.PATCH triple."""


def is_semver(value: object) -> bool:
    return isinstance(value, str) and _TRIPLE_RE.fullmatch(value) is not None


def increment_version(current: str) -> str:
    """
    Return MAJOR.MINOR.(PATCH+1) for a well-formed triple.

    MAJOR and MINOR are passed through as written (no zero-padding changes).
    Raises VersionFormatError for sentinels and any other opaque token.
    """
    m = _TRIPLE_RE.fullmatch(current) if isinstance(current, str) else None
    if m is None:
        raise VersionFormatError(f"not a MAJOR.MINOR.PATCH version: {current!r}")
    major, minor, patch = m.groups()
    return f"{major}.{minor}.{int(patch) + 1}"
