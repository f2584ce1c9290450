"""
Logging setup - every step goes to stdout and is appended to the setup log.
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console

console = Console(stderr=True)

LOGGER_NAME = "deck_exporter"
LOG_FORMAT = "[%(asctime)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Handlers installed by configure_logging(), so a second call can replace them
_installed: List[logging.Handler] = []


def configure_logging(log_file: Optional[str], level: int = logging.INFO) -> Optional[str]:
    """Attach console and log-file handlers to the deck_exporter logger.

    Returns the log file actually in use, or None if it could not be opened
    (console logging still works in that case).
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    reset_logging()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    _installed.append(stream_handler)

    chosen: Optional[str] = None
    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        except OSError as e:
            console.print(f"[yellow]⚠[/yellow] Cannot write log file {log_file}: {e}")
        else:
            file_handler.setFormatter(formatter)
            _installed.append(file_handler)
            chosen = log_file

    for handler in _installed:
        logger.addHandler(handler)

    return chosen


def reset_logging():
    """Detach and close handlers installed by configure_logging()."""
    logger = logging.getLogger(LOGGER_NAME)
    while _installed:
        handler = _installed.pop()
        logger.removeHandler(handler)
        handler.close()
