"""
Logging setup for the CLI.

Library modules only ever do ``logging.getLogger(__name__)``; handlers are
installed once, here, by the entry point:

- a ``RichHandler`` on stderr (warnings and above unless verbose)
- an optional ``RotatingFileHandler`` with a plain formatter
"""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

_HANDLER_MARK = "_wrench_handler"


def _mark(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _HANDLER_MARK, True)
    return handler


def setup_logging(
    level: str = "WARNING",
    *,
    verbose: bool = False,
    file: str | None = None,
    max_size_mb: int = 10,
    keep_files: int = 3,
    console: Console | None = None,
) -> logging.Logger:
    """
    Configure the ``wrench`` logger tree.

    Calling it again replaces the handlers it installed before.
    """
    console_level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.WARNING)

    app_logger = logging.getLogger("wrench")
    for h in list(app_logger.handlers):
        if getattr(h, _HANDLER_MARK, False):
            app_logger.removeHandler(h)
            h.close()

    rich_handler = RichHandler(
        console=console or Console(stderr=True),
        show_time=verbose,
        show_path=verbose,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
        markup=False,
    )
    rich_handler.setFormatter(logging.Formatter("%(message)s"))
    rich_handler.setLevel(console_level)
    app_logger.addHandler(_mark(rich_handler))

    lowest = console_level
    if file:
        path = Path(file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=path,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=keep_files,
            encoding="utf-8",
        )
        file_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        file_handler.setLevel(logging.DEBUG)
        app_logger.addHandler(_mark(file_handler))
        lowest = logging.DEBUG

    app_logger.setLevel(lowest)
    app_logger.propagate = False
    return app_logger
