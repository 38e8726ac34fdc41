# logger_setup.py
import logging
import os
from logging.handlers import TimedRotatingFileHandler

# --------------------------------------------------------------------
# CONFIGURE THESE AS YOU WISH
# --------------------------------------------------------------------
LOG_DIR = "_logs"              # Directory where logfiles will go
BASE_LOG_NAME = "crash_tracker"  # Base log name => _logs/crash_tracker.log, etc.
LOG_LEVEL_CONSOLE = logging.INFO
LOG_LEVEL_FILE = logging.DEBUG
BACKUP_COUNT = 30              # Keep up to x old log files
# Rotate the file at midnight; add a new file each day
ROTATE_WHEN = "midnight"
ROTATE_INTERVAL = 1

# All modules share this logger so they inherit the same handlers.
LOGGER_NAME = "CrashTracker"

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

def get_logger():
    """Return a logger configured to log to console and a rotating file."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # The logger's own threshold

    # If it already has handlers, avoid adding them again
    if logger.handlers:
        return logger

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(LOG_LEVEL_CONSOLE)
    console_formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    # File handler with rotation
    try:
        os.makedirs(LOG_DIR, exist_ok=True)
        file_path = os.path.join(LOG_DIR, f"{BASE_LOG_NAME}.log")
        file_handler = TimedRotatingFileHandler(
            filename=file_path,
            when=ROTATE_WHEN,
            interval=ROTATE_INTERVAL,
            backupCount=BACKUP_COUNT,
            encoding="utf-8"
        )
    except OSError as e:
        logger.warning(f"File logging disabled, could not open {LOG_DIR}: {e}")
        return logger
    file_handler.setLevel(LOG_LEVEL_FILE)
    file_formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler.setFormatter(file_formatter)
    logger.addHandler(file_handler)

    return logger

def configure_logging(debug_config):
    """
    Apply the debug section of the config to the console handler.
    Debug mode lowers the console threshold to the configured log level,
    otherwise the console stays at INFO.
    """
    logger = get_logger()
    level = LOG_LEVEL_CONSOLE
    if debug_config.enabled:
        level = LEVELS.get(str(debug_config.log_level).lower(), logging.INFO)
    for handler in logger.handlers:
        if not isinstance(handler, TimedRotatingFileHandler):
            handler.setLevel(level)
    return logger
