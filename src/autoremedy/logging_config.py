"""
Centralized logging configuration for the repair pipeline.

Every phase transition, diagnosis, fix selection and escalation is written both
to the console and to a persistent, append-only log file so that escalations
can be audited after the fact.

Usage:
    from autoremedy.logging_config import configure_logging

    configure_logging(log_dir=Path("data"), log_filename="autoremedy.log")

Environment Variables:
    AUTOREMEDY_LOG_DIR - Override the log directory
    AUTOREMEDY_LOG_LEVEL - Set log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Optional

LOGGER_NAME = "autoremedy"
DEFAULT_LOG_FILENAME = "autoremedy.log"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_default_log_dir(workspace: Optional[Path] = None) -> Path:
    """
    Get the default log directory for a project.

    Args:
        workspace: Project root (defaults to current working directory)

    Returns:
        Default log directory path
    """
    if "AUTOREMEDY_LOG_DIR" in os.environ:
        return Path(os.environ["AUTOREMEDY_LOG_DIR"])

    if workspace is None:
        workspace = Path.cwd()
    return workspace / "data"


def configure_logging(
    workspace: Optional[Path] = None,
    log_dir: Optional[Path] = None,
    log_level: Optional[str] = None,
    log_to_console: bool = True,
    log_to_file: bool = True,
    log_filename: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the ``autoremedy`` logger.

    Args:
        workspace: Project root (used to derive the default log directory)
        log_dir: Log directory (overrides default)
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_to_console: Whether to log to stdout
        log_to_file: Whether to append to the persistent log file
        log_filename: Log file name (default: autoremedy.log)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Clear existing handlers to avoid duplicates on repeated configuration
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    if log_level is None:
        log_level = os.environ.get("AUTOREMEDY_LOG_LEVEL", "INFO")
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_to_file:
        if log_dir is None:
            log_dir = get_default_log_dir(workspace)
        log_dir.mkdir(parents=True, exist_ok=True)

        log_path = log_dir / (log_filename or DEFAULT_LOG_FILENAME)

        # Append mode: the log is the audit trail across invocations
        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        logger.debug(f"Logging to: {log_path}")

    return logger
