#!/usr/bin/env python3
"""
Core Module for Microservices Architecture

Shared infrastructure for the platform's microservices.

COMPONENTS:
    - config/: Dataclass configuration loaded from the environment
    - config_manager.py: Per-service configuration access
    - logger.py: Service logger setup
    - postgres_client.py: asyncpg pool wrapper
    - nats_client.py: NATS JetStream event bus
    - service_client_base.py: Base HTTP client for peer services

USAGE:
    from core.config_manager import ConfigManager

    config = ConfigManager("shipment_service")
"""

__version__ = "1.0.0"
