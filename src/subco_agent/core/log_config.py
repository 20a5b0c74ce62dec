"""
Apply log level from env.

Single log level for all scopes. SUBCO_LOG_LEVEL accepts a level name or number.
"""

from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _parse_level(raw: str) -> int:
    if not raw or not str(raw).strip():
        return logging.INFO
    raw = str(raw).strip().upper()
    if raw.isdigit():
        return int(raw)
    level = getattr(logging, raw, None)
    return level if isinstance(level, int) else logging.INFO


def level_from_env() -> int:
    """Resolve log level: SUBCO_LOG_LEVEL env, else INFO."""
    return _parse_level(os.environ.get("SUBCO_LOG_LEVEL", ""))


def configure_logging() -> None:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    logging.getLogger().setLevel(level_from_env())
