"""Logging setup for the CLI.

Core modules log through `logging.getLogger(__name__)`; the CLI routes those
records to stderr through rich so they don't interleave with result tables.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(verbose: int = 0) -> None:
    """
    Configure the root logger once per invocation.

    Args:
        verbose: 0 shows warnings, 1 adds phase progress (INFO),
            2 or more adds diagnostic reasoning (DEBUG).
    """
    if verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(
        RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
            markup=False,
        )
    )
