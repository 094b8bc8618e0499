"""Logging setup for the command line.

Library modules only create module loggers; handlers are installed here,
once, by the CLI.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "mgit"


def level_for(verbose: bool = False, debug: bool = False, quiet: bool = False) -> int:
    """Map the global CLI flags to a logging level."""
    if quiet:
        return logging.CRITICAL + 1
    if debug:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    return logging.WARNING


def configure_logging(level: int = logging.WARNING, console: Console | None = None) -> logging.Logger:
    """Send ``mgit.*`` records to stderr through rich.

    Calling this again replaces the handler instead of stacking a second one.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=level <= logging.DEBUG,
        show_path=level <= logging.DEBUG,
        markup=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger
