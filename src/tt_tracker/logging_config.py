"""Logging setup for the tt command line."""

import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from tt_tracker.config import DEBUG_LOG_NAME

LOGGER_NAME = "tt_tracker"


def setup_logging(verbose: bool = False, debug_log_dir: Optional[Path] = None) -> logging.Logger:
    """Route package logs to stderr through rich.

    With ``debug_log_dir`` every record, DEBUG included, is also appended to
    ``tt-debug.log`` in that directory.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=verbose,
        markup=False,
    )
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logger.addHandler(console_handler)

    if debug_log_dir is not None:
        debug_log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(debug_log_dir / DEBUG_LOG_NAME)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
