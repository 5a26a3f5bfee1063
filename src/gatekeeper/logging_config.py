"""Console logging for the CLI and API entry points."""

from __future__ import annotations

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

ENV_LOG_LEVEL = "GATEKEEPER_LOG_LEVEL"
DEFAULT_LEVEL = "WARNING"


def setup_logging(level: str | int | None = None, console: Console | None = None) -> None:
    """Attach a RichHandler to the ``gatekeeper`` logger.

    ``level`` falls back to ``GATEKEEPER_LOG_LEVEL`` and then WARNING.
    Calling this again only changes the level.
    """
    resolved = level if level is not None else os.getenv(ENV_LOG_LEVEL, DEFAULT_LEVEL)
    if isinstance(resolved, str):
        resolved = resolved.upper()

    package_logger = logging.getLogger("gatekeeper")
    package_logger.setLevel(resolved)
    if not any(isinstance(h, RichHandler) for h in package_logger.handlers):
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        package_logger.addHandler(handler)
