"""Rich logging setup for applications embedding the store."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "conversation_state"


def setup_rich_logging(
    log_level: str = "info",
    *,
    console: Console | None = None,
    library_only: bool = False,
) -> logging.Logger:
    """Send log records to a Rich handler.

    The store only emits records through ``logging.getLogger(__name__)``
    loggers; calling this is optional and changes nothing but presentation.

    Args:
        log_level: Logging level name (debug, info, warning, error). Unknown
            names mean info.
        console: Rich console to write to. Defaults to a new stderr console.
        library_only: Configure only the ``conversation_state`` logger (and
            stop it propagating) instead of replacing the root logger's
            handlers. Use this when the host application owns logging.

    Returns:
        The logger that received the handler.

    """
    level = logging.getLevelNamesMapping().get(log_level.upper(), logging.INFO)
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    target = logging.getLogger(PACKAGE_LOGGER if library_only else None)
    for existing in list(target.handlers):
        target.removeHandler(existing)
    target.addHandler(handler)
    target.setLevel(level)
    if library_only:
        target.propagate = False
    return target
