#!/usr/bin/env python3
"""Logging configuration"""
import os
from dataclasses import dataclass, field
from typing import List

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class LoggingConfig:
    log_level: str = "INFO"
    log_format: str = DEFAULT_FORMAT
    log_file: str = ""
    enable_console: bool = True

    # Client libraries are held at this level or above
    third_party_level: str = "WARNING"
    third_party_loggers: List[str] = field(
        default_factory=lambda: ["asyncpg", "nats", "httpx", "httpcore", "stripe"]
    )

    @classmethod
    def from_env(cls) -> 'LoggingConfig':
        """Load logging config from environment variables"""
        env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
        quiet = os.getenv("LOG_THIRD_PARTY_LOGGERS")
        config = cls(
            log_level=os.getenv("LOG_LEVEL", "DEBUG" if env == "development" else "INFO"),
            log_format=os.getenv("LOG_FORMAT", DEFAULT_FORMAT),
            log_file=os.getenv("LOG_FILE", ""),
            enable_console=os.getenv("LOG_CONSOLE", "true").lower() == "true",
            third_party_level=os.getenv("LOG_THIRD_PARTY_LEVEL", "WARNING"),
        )
        if quiet:
            config.third_party_loggers = [name.strip() for name in quiet.split(",") if name.strip()]
        return config
