"""Logging configuration for the storyreel CLI."""

import logging

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "%(name)s | %(message)s"
LOG_DATEFMT = "%H:%M:%S"


def configure_logging(
    level: int = logging.INFO,
    console: Console | None = None,
    force: bool = False,
) -> logging.Logger:
    """Send storyreel logs to the console through rich."""
    root = logging.getLogger()
    if getattr(root, "_storyreel_logging_configured", False) and not force:
        return root

    if force:
        for handler in list(root.handlers):
            root.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        log_time_format=LOG_DATEFMT,
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level)
    # httpx logs every polling request at INFO.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
    logging.captureWarnings(True)
    root._storyreel_logging_configured = True  # type: ignore[attr-defined]
    return root
