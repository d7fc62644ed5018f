"""
Logging configuration for Data Searches.

This module provides centralized logging configuration for console, debug file
and per-search log output. Console displays INFO-level messages for user
feedback, the debug file captures DEBUG-level details for troubleshooting, and
each search writes a plain-text log into its own output folder for the analyst.

Functions:
    setup_logging: Initialize logging handlers and return debug log file path
    get_logger: Get a logger instance for a specific module
    attach_search_log: Start writing INFO messages to a search log file
    detach_search_log: Stop writing to a search log file

Example:
    >>> from utils.logger import setup_logging, get_logger
    >>> log_file = setup_logging()
    >>> logger = get_logger(__name__)
    >>> logger.info("Processing started")
"""

import logging
import sys
from pathlib import Path
from datetime import datetime
from typing import Optional

ROOT_LOGGER_NAME = 'datasearches'


def setup_logging(log_dir: Optional[Path] = None, console: bool = True) -> Path:
    """
    Setup logging to console and file.

    Creates two handlers:
    - Console: INFO level with clean formatting
    - File: DEBUG level with timestamps and module names

    Parameters:
    -----------
    log_dir : Optional[Path]
        Directory for debug log files. Defaults to PROJECT_ROOT/logs
    console : bool
        Whether to echo INFO messages to stdout

    Returns:
    --------
    Path
        Path to the created debug log file
    """
    if log_dir is None:
        log_dir = Path(__file__).parent.parent / 'logs'
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f'datasearches_{timestamp}.log'

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    # Remove existing handlers to avoid duplicates
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(logging.Formatter('%(message)s'))
        logger.addHandler(console_handler)

    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    logger.addHandler(file_handler)

    logger.debug(f"Logging initialized: {log_file}")

    return log_file


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Parameters:
    -----------
    name : str
        Module name (typically __name__)

    Returns:
    --------
    logging.Logger
        Configured logger instance
    """
    return logging.getLogger(f'{ROOT_LOGGER_NAME}.{name}')


def attach_search_log(log_file: Path, clear: bool = False) -> logging.Handler:
    """
    Start writing INFO-level messages to the analyst's search log.

    The search log is appended to across runs of the same search unless
    ``clear`` is set, in which case any existing file is removed first.

    Raises:
        OSError: If an existing log file cannot be cleared (e.g. it is open
            in another program).
    """
    log_file = Path(log_file)
    if clear and log_file.exists():
        log_file.unlink()

    handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        '%(asctime)s : %(message)s',
        datefmt='%d/%m/%Y %H:%M:%S'
    ))
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    if logger.level == logging.NOTSET:
        logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    return handler


def detach_search_log(handler: Optional[logging.Handler]) -> None:
    """Stop writing to a search log started by attach_search_log."""
    if handler is None:
        return
    logging.getLogger(ROOT_LOGGER_NAME).removeHandler(handler)
    handler.close()
