"""Logging setup for the feynman command line.

Library modules only ever call ``logging.getLogger(__name__)``; handlers
are attached here, once, to the ``feynman`` package logger so that log
lines go to stderr and never mix with the CLI's own stdout output.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "feynman"
LOG_FORMAT = "%(name)s | %(message)s"

# openai talks through httpx; its request logs drown out ours
NOISY_LOGGERS = ("httpx", "httpcore", "openai")


def configure_logging(
    level: Optional[int] = None,
    quiet: bool = False,
    console: Optional[Console] = None,
) -> logging.Logger:
    """Attach a single stderr handler to the package logger.

    Calling this again replaces the handler instead of adding another.

    Args:
        level: Log level. If None, uses FEYNMAN_LOG_LEVEL from settings.
        quiet: If True, only show warnings and errors
        console: Rich console to write to (a stderr console if None)

    Returns:
        The configured package logger
    """
    if level is None:
        from .config import get_settings
        level = get_settings().log_level_int
    if quiet:
        level = max(level, logging.WARNING)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=False,
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for existing in list(package_logger.handlers):
        if isinstance(existing, RichHandler):
            package_logger.removeHandler(existing)
    package_logger.addHandler(handler)
    package_logger.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return package_logger
