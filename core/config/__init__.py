#!/usr/bin/env python3
"""Modular configuration system for the commerce services

Configuration hierarchy:
- infra_config: PostgreSQL and NATS endpoints
- messaging_config: delivery, retry and outbox settings
- service_config: ports, peer URLs, business defaults
- logging_config: logging configuration
"""
import os
from dotenv import load_dotenv
from .logging_config import LoggingConfig
from .infra_config import InfraConfig
from .messaging_config import MessagingConfig
from .service_config import ServiceConfig
from .commerce_config import CommerceConfig

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)

# Create global settings instance
settings = CommerceConfig.from_env()

def get_settings() -> CommerceConfig:
    """Get global settings instance"""
    return settings

def reload_settings() -> CommerceConfig:
    """Reload settings from environment"""
    global settings
    settings = CommerceConfig.from_env()
    return settings

__all__ = [
    'CommerceConfig',
    'get_settings',
    'reload_settings',
    'settings',
    'LoggingConfig',
    'InfraConfig',
    'MessagingConfig',
    'ServiceConfig',
]
