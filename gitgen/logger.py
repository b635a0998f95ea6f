"""
Logging setup based on loguru.

Library modules only do ``from loguru import logger``; sinks are installed by
the CLI through configure_logging() so importing gitgen never prints anything
on its own.

Level precedence: explicit argument > GITGEN_LOG_LEVEL > WARNING
(DEBUG when verbose).
"""

from __future__ import annotations

import os
import sys

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<level>{message}</level>"
)

DEFAULT_LEVEL = "WARNING"


def resolve_level(level: str | None = None, verbose: bool = False) -> str:
    if level:
        return level.upper()
    env_level = os.environ.get("GITGEN_LOG_LEVEL")
    if env_level:
        return env_level.upper()
    return "DEBUG" if verbose else DEFAULT_LEVEL


def configure_logging(level: str | None = None, verbose: bool = False) -> int:
    """Replace loguru's default sink with a single stderr sink. Returns the sink id."""
    logger.remove()
    return logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=resolve_level(level, verbose),
        colorize=None,
        backtrace=False,
        diagnose=False,
    )


__all__ = ["logger", "configure_logging", "resolve_level"]
