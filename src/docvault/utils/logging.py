"""
Logging utilities.

All docvault loggers live under the ``docvault`` namespace. A single stderr
handler is attached to the namespace root; child loggers propagate to it.
Redaction audit records go to ``docvault.audit`` and never carry
the redacted values.
"""

import logging
import sys

ROOT_LOGGER = "docvault"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _configure_root() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        root.setLevel(logging.INFO)
    return root


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger inside the docvault namespace.

    Args:
        name: Logger name (usually __name__); names outside the namespace
            are nested under it

    Returns:
        Logger whose records reach the docvault stderr handler
    """
    _configure_root()

    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


def set_log_level(level: int | str) -> None:
    """
    Set the level of every docvault logger.

    Args:
        level: Log level number or name (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Raises:
        ValueError: If the level name is unknown
    """
    if isinstance(level, str):
        name = level.upper()
        resolved = logging.getLevelName(name)
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level}")
        level = resolved

    _configure_root().setLevel(level)
