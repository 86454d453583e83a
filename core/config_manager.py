#!/usr/bin/env python3
"""
Centralized configuration access for microservices.

Wraps the dataclass configs in core.config and resolves peer endpoints from
environment variables with defaults.

Usage:
    from core.config_manager import ConfigManager

    config_manager = ConfigManager("shipment_service")
    config = config_manager.get_service_config()
"""

import logging
import os
from typing import Optional, Tuple

from core.config import InfraConfig, LoggingConfig, ServiceConfig

logger = logging.getLogger(__name__)


class ConfigManager:
    """Configuration entry point for one service"""

    def __init__(self, service_name: str, default_port: Optional[int] = None):
        self.service_name = service_name
        self._service_config = ServiceConfig.from_env(service_name, default_port=default_port)
        self._infra_config = InfraConfig.from_env()
        self._logging_config = LoggingConfig.from_env()

    def get_service_config(self) -> ServiceConfig:
        return self._service_config

    def get_infra_config(self) -> InfraConfig:
        return self._infra_config

    def get_logging_config(self) -> LoggingConfig:
        return self._logging_config

    def discover_service(
        self,
        service_name: str,
        default_host: str,
        default_port: int,
        env_host_key: Optional[str] = None,
        env_port_key: Optional[str] = None,
    ) -> Tuple[str, int]:
        """
        Resolve host and port for a peer service.

        Priority: explicit env keys, then <SERVICE_NAME>_HOST/_PORT, then defaults.
        """
        prefix = service_name.upper()
        host = (
            (os.getenv(env_host_key) if env_host_key else None)
            or os.getenv(f"{prefix}_HOST")
            or default_host
        )
        port_raw = (
            (os.getenv(env_port_key) if env_port_key else None)
            or os.getenv(f"{prefix}_PORT")
        )
        try:
            port = int(port_raw) if port_raw else default_port
        except ValueError:
            logger.warning(f"Invalid port {port_raw!r} for {service_name}, using {default_port}")
            port = default_port
        return host, port

    def print_config_summary(self, show_secrets: bool = False):
        """Log the effective configuration"""
        svc = self._service_config
        infra = self._infra_config
        password = infra.postgres_password if show_secrets else "***"
        logger.info(f"[{self.service_name}] env={svc.environment} port={svc.service_port} debug={svc.debug}")
        logger.info(
            f"[{self.service_name}] postgres={infra.postgres_user}:{password}@"
            f"{infra.postgres_host}:{infra.postgres_port}/{infra.postgres_db}"
        )
        logger.info(f"[{self.service_name}] nats={infra.nats_servers} enabled={infra.nats_enabled}")
        logger.info(f"[{self.service_name}] organization_service={svc.organization_service_url}")
