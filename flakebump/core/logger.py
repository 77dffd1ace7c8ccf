# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Logging setup for flakebump.

Diagnostics go to stderr (and optionally a rotating file) through the
"flakebump" logger hierarchy. The interactive review itself is rendered
with click and never goes through logging.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

ROOT_LOGGER = "flakebump"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def parse_level(level: str) -> int:
    """Convert string level to logging constant"""
    return _LEVELS.get(level.upper(), logging.WARNING)


def setup_logging(
    level: str = "WARNING",
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Configure the flakebump logger hierarchy.

    Args:
        level: Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file that receives everything at DEBUG, rotated
            after 10MB with 5 backups

    Returns:
        The root "flakebump" logger
    """
    logger = logging.getLogger(ROOT_LOGGER)

    # Clear any existing handlers
    logger.handlers.clear()
    logger.setLevel(logging.DEBUG if log_file else parse_level(level))
    logger.propagate = False

    console_formatter = logging.Formatter(
        fmt="[%(asctime)s] [%(name)s:%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(console_formatter)
    console_handler.setLevel(parse_level(level))
    logger.addHandler(console_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s | %(name)s | %(levelname)s | %(filename)s:%(lineno)d | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        file_handler.setLevel(logging.DEBUG)
        logger.addHandler(file_handler)

    return logger


def get_logger(component: str) -> logging.Logger:
    """Get the logger for one component, e.g. get_logger("oracle")"""
    return logging.getLogger(f"{ROOT_LOGGER}.{component}")
