"""Logging helpers for codeprobe."""

from __future__ import annotations

import logging
from typing import Literal

Verbosity = Literal["quiet", "normal", "verbose"]

_LEVEL_BY_VERBOSITY: dict[str, int] = {
    "quiet": logging.WARNING,
    "normal": logging.INFO,
    "verbose": logging.DEBUG,
    "debug": logging.DEBUG,
}


def configure_logging(verbosity: Verbosity | str = "normal") -> None:
    """Configure root logging for a codeprobe session."""

    level = _LEVEL_BY_VERBOSITY.get(verbosity, logging.INFO)
    logging.basicConfig(
        level=level,
        format="[%(levelname).1s] %(threadName)s %(name)s: %(message)s",
    )
    logging.getLogger("codeprobe").setLevel(level)
    logging.debug("Logging configured with level %s", logging.getLevelName(level))
