#!/usr/bin/env python3

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

# --- Logging Configuration ---
LOGGER_NAME = "vpnguard"
MAX_LOG_SIZE = 5 * 1024 * 1024  # 5MB, one backup kept

FATAL = -1

LOG_LEVELS = {
    5: logging.DEBUG,      # DEBUG
    4: logging.DEBUG,      # VARIABLES (Mapped to DEBUG)
    3: logging.INFO,       # INFO
    2: logging.INFO,       # SUCCESS (Mapped to INFO)
    1: logging.ERROR,      # ERROR
    0: logging.INFO,       # STATUS (Mapped to INFO)
    FATAL: logging.CRITICAL,
}

LEVEL_PREFIXES = {
    4: "(VARIABLES) ",
    2: "(SUCCESS) ",
    0: "(STATUS) ",
}

LOG_FORMAT = '%(asctime)s [{tag}] %(levelname)s: %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def get_logger():
    return logging.getLogger(LOGGER_NAME)


def setup_logging(tag, log_file, verbosity_level=3, console=True):
    """Configures the monitor's logger: one rotating file plus stdout.

    Every line carries the timestamp and the monitor tag so a single line is
    meaningful on its own when tailing or grepping.
    """
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    log_level = LOG_LEVELS.get(verbosity_level, logging.ERROR)  # Default to ERROR

    logger = get_logger()
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(log_level)
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT.format(tag=tag), datefmt=LOG_DATE_FORMAT)

    file_handler = RotatingFileHandler(log_file, maxBytes=MAX_LOG_SIZE, backupCount=1)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # launchd captures stdout into its own log; keep the same line format there
    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    log_message(3, f"Logging initialized with verbosity level {verbosity_level} ({logging.getLevelName(log_level)}).")
    return log_message


def log_message(level, message):
    """Log using the numeric verbosity scale (0=STATUS .. 5=DEBUG, -1=FATAL)."""
    actual_level = LOG_LEVELS.get(level)
    if actual_level is None:
        actual_level = logging.INFO
    get_logger().log(actual_level, f"{LEVEL_PREFIXES.get(level, '')}{message}")


def log_event(level, event, outcome, **fields):
    """Log a state transition as ``event=<name> outcome=<result> key=value ...``."""
    parts = [f"event={event}", f"outcome={outcome}"]
    parts.extend(f"{key}={value}" for key, value in fields.items())
    log_message(level, " ".join(parts))
