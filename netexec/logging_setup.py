from __future__ import annotations

import logging
import sys


def resolve_level(level: str | int = "INFO") -> int:
    """Map a level name (``WARN``, ``debug``...) to its number; unknown names fall back to INFO."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(level: str | int = "INFO") -> None:
    logging.basicConfig(
        level=resolve_level(level),
        format="%(asctime)s %(levelname)s %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
