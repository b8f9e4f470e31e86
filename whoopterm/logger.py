"""Logging configuration for whoopterm."""

import logging
import sys
from datetime import datetime

from whoopterm.config import Config

PACKAGE_LOGGER = "whoopterm"


def setup_logging(console: bool = False) -> logging.Logger:
    """Configure the package logger.

    The dashboard owns the terminal, so it logs to file only; the one-shot
    commands also echo to stderr.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)

    # Avoid adding handlers if they already exist
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO))
    logger.propagate = False

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)
        console_format = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_handler.setFormatter(console_format)
        logger.addHandler(console_handler)

    # File handler
    Config.ensure_directories()
    log_file = Config.logs_dir() / f"whoopterm_{datetime.now().strftime('%Y%m%d')}.log"
    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_format = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    file_handler.setFormatter(file_format)
    logger.addHandler(file_handler)

    return logger
