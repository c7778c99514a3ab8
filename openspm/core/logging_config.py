"""Logging setup for the openspm command-line tool."""
from __future__ import annotations

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "openspm"

http_logger = logging.getLogger("openspm.http")


def setup_logging(debug: bool = False, color: bool = True, console: Optional[Console] = None) -> None:
    """
    Configure the ``openspm`` logger.

    With colour enabled records go through a RichHandler; otherwise a plain
    stderr handler prints ``LEVEL: message``.
    """
    level = logging.DEBUG if debug else logging.INFO
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    if color:
        handler: logging.Handler = RichHandler(
            console=console or Console(stderr=True),
            show_time=debug,
            show_path=debug,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))

    handler.setLevel(level)
    logger.addHandler(handler)
    logger.debug(f"Logging initialized at {logging.getLevelName(level)} level")


def log_http_request(method: str, url: str, status: Optional[int]) -> None:
    """Log one outbound request; a missing status means no response was received."""
    if status is None:
        http_logger.error(f"{method} {url} [no response]")
    elif status >= 400:
        http_logger.error(f"{method} {url} [{status}]")
    else:
        http_logger.info(f"{method} {url} [{status}]")
