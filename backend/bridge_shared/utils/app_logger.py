"""
Logging utilities for the vendor bridge
Centralized logging configuration for all services
"""

import logging
import sys
from typing import Optional

from pythonjsonlogger import jsonlogger

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def _build_formatter(fmt: str) -> logging.Formatter:
    if fmt.lower() == "json":
        return jsonlogger.JsonFormatter(JSON_FORMAT)
    return logging.Formatter(TEXT_FORMAT)


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a logger instance.

    Handlers are only attached at the root by configure_logging(); module
    loggers propagate so one switch changes the whole service's output.

    Args:
        name: Logger name (typically __name__)
        level: Optional log level override
    """
    logger = logging.getLogger(name)
    if level:
        logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    return logger


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """
    Configure global logging settings.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        fmt: 'text' for human-readable lines, 'json' for structured records
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.root.setLevel(log_level)

    formatter = _build_formatter(fmt)
    if not logging.root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        logging.root.addHandler(handler)
    else:
        for handler in logging.root.handlers:
            handler.setFormatter(formatter)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))
