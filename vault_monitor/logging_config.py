"""
Logging Configuration for the Vault Monitor.
"""

import logging
import logging.handlers
from pathlib import Path

from .config import Config


def setup_logging(
    level: str = Config.LOG_LEVEL,
    log_file: str = Config.LOG_FILE,
    log_format: str = Config.LOG_FORMAT,
    max_bytes: int = Config.LOG_MAX_BYTES,
    backup_count: int = Config.LOG_BACKUP_COUNT,
) -> None:
    """
    Configure logging with file and console handlers.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    # Create logger
    logger = logging.getLogger()
    logger.setLevel(log_level)

    # Clear any existing handlers
    logger.handlers.clear()

    # Create formatter
    formatter = logging.Formatter(log_format)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Ensure log directory exists
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    # File handler with rotation
    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # Reduce noise from external libraries
    for name in ("web3", "urllib3", "aiohttp", "httpx", "telegram", "apprise"):
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info("=" * 80)
    logger.info("Vault Monitor - Logging Initialized")
    logger.info(f"Log level: {level}")
    logger.info(f"Log file: {log_file}")
    logger.info("=" * 80)
