# Logging_Config.py
# Description: Configuration for logging
#
# Imports
import logging
import os
import sys
from typing import Optional
#
# 3rd-Party Imports
from loguru import logger
#
# Local Imports
from studyvault.config import get_log_file_path, get_setting
#
########################################################################################################################
#
# Functions:

class InterceptHandler(logging.Handler):
    """Forwards standard `logging` records (e.g. from the DB layer) into loguru."""

    def emit(self, record: logging.LogRecord):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller outside the logging module.
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _ensure_log_dir_exists(file_path: str) -> str:
    expanded_path = os.path.expanduser(file_path)
    log_dir = os.path.dirname(expanded_path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    return expanded_path


def setup_logger(
    log_level: str = "INFO",
    app_log_path: Optional[str] = None,
    console: bool = True,
    console_format: str = "{time:YYYY-MM-DD HH:mm:ss} - {level} - {name} - {message}",
    rotation: str = "10 MB",
    retention: str = "7 days",
):
    """
    Sets up loguru sinks for the console and an optional rotating application log,
    and routes standard `logging` through loguru.

    Args:
        log_level: Minimum level to output (e.g. "DEBUG", "INFO").
        app_log_path: Path for the text log file. If None, no file sink is added.
        console: Whether to log to stdout.

    Returns:
        The configured logger instance.
    """
    logger.remove()

    if console:
        logger.add(sys.stdout, level=log_level.upper(), format=console_format)

    if app_log_path:
        path = _ensure_log_dir_exists(str(app_log_path))
        logger.add(
            path,
            level=log_level.upper(),
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            rotation=rotation,
            retention=retention,
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )
        logger.info(f"Application logs will be written to: {path}")

    logging.basicConfig(handlers=[InterceptHandler()], level=logging.getLevelName(log_level.upper()), force=True)
    for noisy in ("requests", "urllib3", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger


def configure_logging_from_settings():
    """Applies the [general] and [logging] sections of the loaded settings."""
    return setup_logger(
        log_level=get_setting("general", "log_level", "INFO"),
        app_log_path=str(get_log_file_path()),
        console=bool(get_setting("logging", "log_to_console", True)),
        rotation=get_setting("logging", "rotation", "10 MB"),
        retention=get_setting("logging", "retention", "7 days"),
    )

#
# End of Logging_Config.py
########################################################################################################################
