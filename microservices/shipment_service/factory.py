"""
Shipment Service Factory

Factory for creating ShipmentService with real dependencies.
This is the ONLY module that imports concrete implementations.
"""

import logging
from typing import Optional

from core.config_manager import ConfigManager

from .clients import OrganizationClient
from .protocols import OrganizationDirectoryProtocol
from .shipment_repository import ShipmentRepository
from .shipment_service import ShipmentService

logger = logging.getLogger(__name__)


def create_shipment_service(
    config: Optional[ConfigManager] = None,
    event_bus=None,
    organization_directory: Optional[OrganizationDirectoryProtocol] = None,
) -> ShipmentService:
    """
    Create ShipmentService with all real dependencies

    Args:
        config: Optional config manager (creates default if not provided)
        event_bus: Optional event bus for event publishing
        organization_directory: Optional directory override (defaults to the HTTP client)

    Returns:
        ShipmentService instance; call initialize() before use
    """
    if config is None:
        config = ConfigManager("shipment_service")
    service_config = config.get_service_config()

    repository = ShipmentRepository(config=config)

    if organization_directory is None:
        organization_directory = OrganizationClient(
            base_url=service_config.organization_service_url,
            timeout=service_config.http_timeout,
        )

    logger.info("ShipmentService created with real dependencies")

    return ShipmentService(
        repository=repository,
        organization_directory=organization_directory,
        event_bus=event_bus,
    )


__all__ = ["create_shipment_service"]
