"""
Service logging setup

Every service calls `setup_service_logger` once at import of its main module;
library modules just use `logging.getLogger(__name__)`.
"""

import logging
import sys
from typing import Optional

from core.config import LoggingConfig
from core.config.logging_config import DEFAULT_FORMAT

_configured = set()


def setup_service_logger(
    service_name: str,
    level: Optional[str] = None,
    config: Optional[LoggingConfig] = None,
) -> logging.Logger:
    """
    Configure root handlers for a service and return its named logger.

    Args:
        service_name: Logger name and identity in every record
        level: Overrides the configured level (e.g. "DEBUG")
        config: Logging settings; loaded from environment when omitted
    """
    config = config or LoggingConfig.from_env()
    log_level = getattr(logging, (level or config.log_level).upper(), logging.INFO)

    root = logging.getLogger()
    if service_name not in _configured:
        formatter = logging.Formatter(
            f"%(asctime)s - {service_name} - %(name)s - %(levelname)s - %(message)s"
            if config.log_format == DEFAULT_FORMAT
            else config.log_format
        )
        if config.enable_console and not any(
            getattr(h, "_commerce_handler", False) for h in root.handlers
        ):
            console = logging.StreamHandler(sys.stdout)
            console.setFormatter(formatter)
            console._commerce_handler = True
            root.addHandler(console)
        if config.log_file:
            file_handler = logging.FileHandler(config.log_file)
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
        _configured.add(service_name)

    root.setLevel(log_level)
    floor = getattr(logging, config.third_party_level.upper(), logging.WARNING)
    for name in config.third_party_loggers:
        logging.getLogger(name).setLevel(max(log_level, floor))

    logger = logging.getLogger(service_name)
    logger.setLevel(log_level)
    return logger
