"""
Logging setup shared by every engine module.
"""
import logging

from rich.console import Console
from rich.logging import RichHandler

import config


def setup_logger(name: str, level: str = None) -> logging.Logger:
    """Configure and return a logger with Rich formatting."""
    logger = logging.getLogger(name)

    if logger.hasHandlers():
        return logger

    logger.setLevel((level or config.LOG_LEVEL).upper())

    console = Console(stderr=True)
    handler = RichHandler(console=console, show_time=False, show_path=False)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger.addHandler(handler)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get an existing logger or create a new one."""
    return setup_logger(name)
