#!/usr/bin/env python3
"""
Service logger setup

Usage:
    from core.logger import setup_service_logger

    logger = setup_service_logger("shipment_service", level="INFO")
"""

import logging
import sys
from typing import Optional

from core.config import LoggingConfig

_configured = False


def setup_service_logger(service_name: str, level: Optional[str] = None) -> logging.Logger:
    """Configure root logging once and return the service's logger"""
    global _configured

    log_config = LoggingConfig.from_env()
    log_level = getattr(logging, (level or log_config.log_level).upper(), logging.INFO)

    if not _configured:
        formatter = logging.Formatter(log_config.log_format)
        root = logging.getLogger()
        root.setLevel(log_level)

        if log_config.enable_console:
            console = logging.StreamHandler(sys.stdout)
            console.setFormatter(formatter)
            root.addHandler(console)

        if log_config.log_file:
            file_handler = logging.FileHandler(log_config.log_file)
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

        # Quiet noisy libraries
        logging.getLogger("asyncpg").setLevel(logging.WARNING)
        logging.getLogger("nats").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)
        _configured = True

    logger = logging.getLogger(service_name)
    logger.setLevel(log_level)
    return logger
