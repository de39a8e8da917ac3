"""Tagged console logging shared by the bridge and the viewer.

Lines read ``[LEVEL][Tag] message | key=value``. ``configure_logging``
installs the single handler; ``log_event`` is the only call sites use.
"""
from __future__ import annotations

import logging
from typing import Any, Optional, TextIO

LOGGER_NAME = "wordwheel"
LOG_FORMAT = "[%(levelname)s][%(tag)s] %(message)s"

# Short spellings accepted alongside the stdlib level names
_LEVEL_ALIASES = {
    "WARN": "WARNING",
    "ERR": "ERROR",
    "FATAL": "CRITICAL",
}

_logger = logging.getLogger(LOGGER_NAME)


def _level_value(level: Optional[str]) -> int:
    name = (level or "INFO").strip().upper()
    name = _LEVEL_ALIASES.get(name, name)
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def configure_logging(level: Optional[str] = "INFO", stream: Optional[TextIO] = None) -> None:
    """Install the tagged stream handler and set the threshold."""
    for handler in list(_logger.handlers):
        _logger.removeHandler(handler)
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    _logger.addHandler(handler)
    _logger.setLevel(_level_value(level))
    _logger.propagate = False


if not _logger.handlers:
    configure_logging()


def log_event(level: str, tag: str, message: str, **fields: Any) -> None:
    if fields:
        message = f"{message} | " + " ".join(f"{k}={v}" for k, v in fields.items())
    _logger.log(_level_value(level), message, extra={"tag": tag})
