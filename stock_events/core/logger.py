"""Logging setup: one ``stock_events`` logger shared by every module."""

import logging
import os
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(module)s.%(funcName)s | %(message)s"

# Libraries whose INFO/DEBUG output drowns the pipeline's own messages.
NOISY_LOGGERS = ("yfinance", "urllib3", "peewee", "transformers")


def setup_logger(
    name: str = "stock_events",
    log_file: str = os.getenv("STOCK_EVENTS_LOG_FILE", "output/stock_events.log"),
    level: str = os.getenv("STOCK_EVENTS_LOG_LEVEL", "INFO"),
    console_level: str = os.getenv("STOCK_EVENTS_CONSOLE_LEVEL", "INFO"),
) -> logging.Logger:
    """
    Configure and return the pipeline logger.

    The file handler records everything at ``level``; the console (stderr)
    handler can be made quieter with ``console_level``. Calling it again
    returns the already configured logger.

    Args:
        name (str): Logger name.
        log_file (str): Path of the log file.
        level (str): Level name for the logger and its file handler.
        console_level (str): Level name for the console handler.

    Returns:
        logging.Logger: The configured logger instance.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, console_level.upper(), logging.INFO))
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger


logger = setup_logger()
