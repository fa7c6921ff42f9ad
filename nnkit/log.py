"""
Logging Setup

Modules log through ``logging.getLogger(__name__)`` and long-running
components accept a ``logger`` argument so callers can hand them their own.
``setup_logging`` wires a handler onto the package logger exactly once per
process; later calls only adjust the level.
"""

import logging
import threading
from typing import Optional, Union

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

PACKAGE_LOGGER_NAME = "nnkit"
DEFAULT_FORMAT = "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"

_setup_lock = threading.Lock()
_handler: Optional[logging.Handler] = None


def setup_logging(
    level: Union[int, str] = logging.INFO, fmt: str = DEFAULT_FORMAT
) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        level: Logging level, as a number or a name such as "DEBUG" or "TRACE"
        fmt: Format string for the stream handler

    Returns:
        The configured package logger
    """
    global _handler

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"unknown logging level: {level}")

    package_logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    with _setup_lock:
        if _handler is None:
            _handler = logging.StreamHandler()
            _handler.setFormatter(logging.Formatter(fmt))
            package_logger.addHandler(_handler)
            package_logger.propagate = False
        package_logger.setLevel(level)

    return package_logger


def get_logger(name: str, logger: Optional[logging.Logger] = None) -> logging.Logger:
    """Return the injected logger if given, otherwise the module logger."""
    if logger is not None:
        return logger
    return logging.getLogger(name)
