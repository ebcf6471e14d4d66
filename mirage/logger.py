"""
Logging helpers for Mirage.

Every service class mixes in LoggerMixin so log records carry the class name.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'


def _attach_handlers(logger: logging.Logger, log_file: Optional[Path]) -> None:
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)


def get_logger(
    name: str,
    level: Optional[str] = None,
    log_file: Optional[Path] = None
) -> logging.Logger:
    """
    Get a logger for a Mirage component.

    Loggers under the ``mirage`` namespace propagate to the root logger
    configured by setup_root_logger; handlers are only attached when a
    level or log file is requested explicitly.

    Args:
        name: Logger name (usually __name__ or a class name)
        level: Optional log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file to write logs to

    Returns:
        Logger instance
    """
    logger = logging.getLogger(name if name.startswith("mirage") else f"mirage.{name}")

    if level:
        logger.setLevel(getattr(logging, level.upper()))
    if log_file and not logger.handlers:
        _attach_handlers(logger, log_file)

    return logger


def setup_root_logger(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """
    Configure the root logger for the CLI.

    Args:
        level: Log level for root logger
        log_file: Optional file to write all logs to
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    _attach_handlers(root_logger, log_file)


class LoggerMixin:
    """Mixin class to add logging capability to any class."""

    @property
    def logger(self) -> logging.Logger:
        return get_logger(self.__class__.__name__)

    def log_debug(self, message: str, *args, **kwargs) -> None:
        self.logger.debug(message, *args, **kwargs)

    def log_info(self, message: str, *args, **kwargs) -> None:
        self.logger.info(message, *args, **kwargs)

    def log_warning(self, message: str, *args, **kwargs) -> None:
        self.logger.warning(message, *args, **kwargs)

    def log_error(self, message: str, *args, **kwargs) -> None:
        self.logger.error(message, *args, **kwargs)
