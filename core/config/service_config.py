#!/usr/bin/env python3
"""Per-service runtime configuration

Port, log level and the peer service endpoints a microservice needs. Values
are read from prefixed environment variables first (SHIPMENT_SERVICE_PORT),
then from the unprefixed ones (SERVICE_PORT).
"""
import os
from dataclasses import dataclass
from typing import Optional

def _bool(val: str) -> bool:
    return val.lower() == "true"

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default


@dataclass
class ServiceConfig:
    """Runtime settings for one microservice"""

    service_name: str = "shipment_service"
    service_host: str = "0.0.0.0"
    service_port: int = 8260
    log_level: str = "INFO"
    debug: bool = False
    environment: str = "development"

    # ===========================================
    # Peer services
    # ===========================================
    organization_service_url: str = "http://localhost:8212"
    http_timeout: float = 10.0

    @classmethod
    def from_env(cls, service_name: str, default_port: Optional[int] = None) -> 'ServiceConfig':
        """Load service configuration from environment variables"""
        prefix = service_name.upper()

        def _get(key: str, default: str) -> str:
            return os.getenv(f"{prefix}_{key}") or os.getenv(key) or default

        env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
        port_default = default_port or cls.service_port
        try:
            timeout = float(_get("HTTP_TIMEOUT", "10"))
        except ValueError:
            timeout = 10.0
        return cls(
            service_name=service_name,
            service_host=_get("SERVICE_HOST", "0.0.0.0"),
            service_port=_int(_get("SERVICE_PORT", str(port_default)), port_default),
            log_level=_get("LOG_LEVEL", "INFO"),
            debug=_bool(_get("DEBUG", "false")),
            environment=env,
            organization_service_url=_get("ORGANIZATION_SERVICE_URL", "http://localhost:8212"),
            http_timeout=timeout,
        )
