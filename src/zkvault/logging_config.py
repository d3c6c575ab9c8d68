"""Logging setup for applications embedding zkvault."""

import logging
import os
import sys
from typing import Optional, Union

from .core.exceptions import ValidationError

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def _resolve_level(level: Union[int, str, None]) -> int:
    if level is None:
        level = os.environ.get("ZKVAULT_LOG_LEVEL") or logging.INFO
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValidationError(f"unknown log level: {level!r}")
    return resolved


def configure_logging(level: Optional[Union[int, str]] = None) -> logging.Logger:
    """
    Configure the root logger once and return the ``zkvault`` logger.

    ``level`` may be a number or a level name; when omitted it is read from
    ``ZKVAULT_LOG_LEVEL`` and defaults to INFO.
    """
    resolved = _resolve_level(level)
    logging.basicConfig(level=resolved, format=LOG_FORMAT, datefmt="%H:%M:%S", stream=sys.stdout)
    # lock/unlock events stay visible even when the rest is at WARNING
    logging.getLogger("zkvault.security.session").setLevel(min(resolved, logging.INFO))
    return logging.getLogger("zkvault")
