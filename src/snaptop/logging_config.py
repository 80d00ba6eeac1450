"""
Logging configuration for snaptop.

The screen belongs to the frame, so log output goes either to a file, to the
Textual devtools console, or to stderr in plain mode.
"""

import logging
import sys
from pathlib import Path

from textual.logging import TextualHandler

LOGGER_NAME = "snaptop"


def setup_logging(
    level: int | str = logging.WARNING,
    log_file: Path | None = None,
    textual: bool = False,
) -> logging.Logger:
    """
    Configure and return the snaptop package logger.

    Args:
        level: Logging level name or number (default: WARNING)
        log_file: Optional file path for log output
        textual: Route console output through Textual instead of stderr

    Returns:
        Configured logger instance
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.WARNING)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    if textual:
        console_handler: logging.Handler = TextualHandler()
    else:
        console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(fmt="[%(levelname)s] %(message)s"))
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(file_handler)

    # Prevent propagation to root logger
    logger.propagate = False

    return logger
