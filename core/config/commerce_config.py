#!/usr/bin/env python3
"""Combined settings object for the commerce services"""
import os
from dataclasses import dataclass, field

from .infra_config import InfraConfig
from .logging_config import LoggingConfig
from .messaging_config import MessagingConfig
from .service_config import ServiceConfig


@dataclass
class CommerceConfig:
    """Top-level settings; services pick the sections they need"""
    environment: str = "development"
    debug: bool = False
    infrastructure: InfraConfig = field(default_factory=InfraConfig)
    messaging: MessagingConfig = field(default_factory=MessagingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    services: ServiceConfig = field(default_factory=ServiceConfig)

    @property
    def is_production(self) -> bool:
        return self.environment in ("production", "prod")

    def infra_for(self, service_name: str) -> InfraConfig:
        """Infra settings honouring <SERVICE>_POSTGRES_* overrides"""
        prefix = service_name.replace("_service", "").upper()
        return InfraConfig.from_env(prefix=prefix)

    @classmethod
    def from_env(cls) -> 'CommerceConfig':
        env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
        return cls(
            environment=env,
            debug=os.getenv("DEBUG", "false").lower() == "true",
            infrastructure=InfraConfig.from_env(),
            messaging=MessagingConfig.from_env(),
            logging=LoggingConfig.from_env(),
            services=ServiceConfig.from_env(),
        )
