"""Centralized logging configuration for the ``txflow`` package.

Library modules only call ``logging.getLogger(__name__)``; entrypoints such as
the CLI call ``configure_logging`` once at startup. Until then the package
logger carries a ``NullHandler`` so library use stays silent.
"""

import logging
import os
import sys
from typing import IO, Optional, Union

_PKG_LOGGER_NAME = "txflow"
LOG_LEVEL_ENV = "TXFLOW_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def _level_from(value: Union[int, str, None]) -> Optional[int]:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        value = value.strip().upper()
        if value.isdigit():
            return int(value)
        numeric = getattr(logging, value, None)
        if isinstance(numeric, int):
            return numeric
    return None


def parse_level(level: Union[int, str, None]) -> int:
    """Resolve a level given as int, numeric string or level name.

    Unset or unknown levels fall back to the ``TXFLOW_LOG_LEVEL``
    environment variable, then to WARNING.
    """
    resolved = _level_from(level)
    if resolved is None:
        resolved = _level_from(os.getenv(LOG_LEVEL_ENV))
    return logging.WARNING if resolved is None else resolved


def configure_logging(
    level: Union[int, str, None] = None,
    fmt: Optional[str] = None,
    stream: IO[str] = sys.stderr,
) -> logging.Logger:
    """Attach a single stream handler to the package logger.

    Calling it again replaces the handler instead of adding another one.

    Args:
        level: Logging level as int or name; see ``parse_level``
        fmt: Log format string
        stream: Output stream for the handler

    Returns:
        The package logger
    """
    logger = logging.getLogger(_PKG_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    resolved = parse_level(level)
    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))

    logger.setLevel(resolved)
    logger.addHandler(handler)
    # Avoid double emission via the root logger.
    logger.propagate = False
    return logger
