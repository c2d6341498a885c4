"""
============================================================================
PINGMASTER - LOGGING UTILITY
============================================================================
loguru-based logging: a colorized console sink, an optional rotating
file sink and a separate error file. Components obtain a bound logger
with ``get_logger("Scheduler")`` and tag their lines ``[Scheduler]``.

``setup_logging()`` is called once by the application entry point;
importing this module has no side effects so tests keep loguru's
default stderr handler.

Author: PingMaster Team
Version: 1.0.0
License: MIT
============================================================================
"""

import sys
from typing import Optional

from loguru import logger

from config.settings import LoggingSettings, get_settings


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | "
    "{extra[name]} | {name}:{function}:{line} - {message}"
)


# ============================================================================
# LOGGER CONFIGURATION
# ============================================================================

def setup_logging(config: Optional[LoggingSettings] = None) -> None:
    """
    Configure loguru sinks from ``LoggingSettings``.

    Safe to call more than once; previously added sinks are removed.
    """
    config = config or get_settings().logging

    # Remove default loguru handler
    logger.remove()
    logger.configure(extra={"name": "pingmaster"})

    log_level = config.level.value

    # Console Handler
    if config.console_enabled:
        logger.add(
            sys.stdout,
            format=CONSOLE_FORMAT,
            level=log_level,
            colorize=config.console_colored,
            backtrace=True,
            diagnose=False,
        )

    # File Handler
    if config.file_enabled:
        config.file_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            config.file_path,
            format=FILE_FORMAT,
            level=log_level,
            rotation=config.file_rotation,
            retention=config.file_retention,
            compression="zip",
            serialize=config.json_enabled,
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

    # Error log file (separate file for errors)
    if config.error_file_enabled:
        config.error_file_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            config.error_file_path,
            format=FILE_FORMAT,
            level="ERROR",
            rotation="1 day",
            retention="7 days",
            compression="zip",
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

    log = get_logger("Logging")
    log.info("[Logging] Logging system initialized")
    log.info(f"[Logging] Log level: {log_level}")
    log.info(f"[Logging] Console logging: {config.console_enabled}")
    log.info(f"[Logging] File logging: {config.file_enabled}")


def get_logger(name: Optional[str] = None):
    """
    Get logger instance with optional name.

    Args:
        name: Component name bound into every record

    Returns:
        Logger instance
    """
    if name:
        return logger.bind(name=name)
    return logger
