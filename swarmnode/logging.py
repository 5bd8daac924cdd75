"""
SwarmNode logging utilities.

All loggers live under the ``swarmnode`` hierarchy so applications can tune
each component independently, e.g. ``swarmnode.market`` or
``swarmnode.transport``.
"""

import logging

_package_logger = logging.getLogger("swarmnode")

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(
    level: int | str = logging.INFO,
    handler: logging.Handler | None = None,
    format_string: str | None = None,
) -> logging.Logger:
    """
    Configure SwarmNode logging.

    Args:
        level: Log level for all package loggers (default: INFO)
        handler: Custom handler to use (default: StreamHandler to stderr)
        format_string: Custom format string (default: timestamp, name, level)

    Returns:
        The package logger
    """
    if handler is None:
        handler = logging.StreamHandler()

    handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT))

    _package_logger.setLevel(level)
    _package_logger.addHandler(handler)

    return _package_logger


def get_logger(name: str | None = None) -> logging.Logger:
    """
    Get a SwarmNode logger.

    Args:
        name: Logger name suffix (e.g., "market"). If None, returns the package logger.
    """
    if name is None:
        return _package_logger
    return logging.getLogger(f"swarmnode.{name}")
