"""Logging configuration shared by every wpstack command."""

import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

console = Console()

LOGGER_NAME = "wpstack"
FILE_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# extra= for records whose text is already printed with console.print
FILE_ONLY = {"console": False}


class ConsoleFilter(logging.Filter):
    def filter(self, record):
        return getattr(record, "console", True)


def setup_logging(log_file: Optional[Path] = None, verbose: Optional[bool] = None) -> logging.Logger:
    """Attach a rich console handler and, when given, a file handler.

    Safe to call more than once; handlers are only added once per target.
    The level is only changed when ``verbose`` is given or nothing set it yet.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if verbose is not None or logger.level == logging.NOTSET:
        logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(console=console, show_path=False, log_time_format=DATE_FORMAT)
        handler.addFilter(ConsoleFilter())
        logger.addHandler(handler)

    if log_file is not None:
        target = str(Path(log_file).resolve())
        existing = [
            h for h in logger.handlers
            if isinstance(h, logging.FileHandler) and h.baseFilename == target
        ]
        if not existing:
            try:
                Path(target).parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(target)
            except OSError as e:
                logger.warning("Cannot write log file %s: %s", target, e)
            else:
                file_handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
                logger.addHandler(file_handler)

    return logger
