"""
Service logger setup

Every microservice calls setup_service_logger() once at import time of its
main module; other modules simply use logging.getLogger(__name__).
"""

import logging
import sys
from typing import Optional

from .config import LoggingConfig

_configured = set()


def setup_service_logger(
    service_name: str,
    level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configure root handlers for a service and return its named logger.

    Args:
        service_name: Logger name, also tagged on every record
        level: Log level name, defaults to LOG_LEVEL from the environment
        log_file: Optional file to mirror console output into
    """
    settings = LoggingConfig.from_env()
    level_name = (level or settings.log_level or "INFO").upper()
    log_level = getattr(logging, level_name, logging.INFO)
    log_file = log_file or settings.log_file

    if service_name not in _configured:
        formatter = logging.Formatter(
            f"%(asctime)s - [{service_name}] %(name)s - %(levelname)s - %(message)s"
        )
        root = logging.getLogger()
        root.setLevel(log_level)

        if settings.enable_console:
            console = logging.StreamHandler(sys.stdout)
            console.setFormatter(formatter)
            root.addHandler(console)

        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

        # Quiet chatty libraries
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("asyncpg").setLevel(logging.WARNING)
        logging.getLogger("nats").setLevel(logging.WARNING)

        _configured.add(service_name)

    logger = logging.getLogger(service_name)
    logger.setLevel(log_level)
    return logger


__all__ = ["setup_service_logger"]
