import os
import logging
from logging.handlers import RotatingFileHandler

LOGGER_NAMESPACE = "kitroom"


def get_logger(area: str) -> logging.Logger:
    """Child logger under the app namespace, e.g. ``kitroom.transactions``."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{area}")


def setup_logger(name: str, log_file: str, level: int = logging.INFO, console: bool = False) -> logging.Logger:
    """
    Create and return a logger that writes to `log_file`.
    - Ensures the directory exists.
    - Uses a rotating handler to avoid giant files.
    - Optionally echoes to stderr (debug runs).
    """
    # 1) Make sure the directory for the log file exists
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    # 2) Get (or create) the logger by name
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid adding multiple handlers if setup_logger is called twice
    if not logger.handlers:
        # 3) Format: timestamp level loggername message
        formatter = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")

        # 4) Rotating file handler (1 MB per file, keep 3 backups)
        handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        handler.setFormatter(formatter)
        logger.addHandler(handler)

        if console:
            stream = logging.StreamHandler()
            stream.setFormatter(formatter)
            logger.addHandler(stream)

    return logger
