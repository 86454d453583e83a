"""
Shipment Service Event Publishers

Functions to publish events from shipment service
"""

import logging
from typing import Optional

from core.nats_client import Event, EventType, ServiceSource
from ..models import Shipment
from .models import (
    ShipmentEventBase,
    ShipmentCreatedEvent,
    ShipmentSubmittedEvent,
    ShipmentSubmissionCanceledEvent,
    ShipmentAcceptedEvent,
    ShipmentRejectedEvent,
    ShipmentDeletedEvent,
    ShipmentTransferInconsistentEvent,
)

logger = logging.getLogger(__name__)


def _base_fields(shipment: Shipment, actor_user_id: Optional[str]) -> dict:
    return {
        "shipment_id": shipment.id,
        "shipment_code": shipment.shipment_code,
        "from_organisation_id": shipment.from_organisation_id,
        "to_organisation_id": shipment.to_organisation_id,
        "actor_user_id": actor_user_id,
    }


async def _publish(event_bus, event_type: EventType, event_data: ShipmentEventBase) -> bool:
    if not event_bus:
        logger.warning(f"Event bus not available, skipping {event_type.value} event")
        return False

    try:
        event = Event(
            event_type=event_type,
            source=ServiceSource.SHIPMENT_SERVICE,
            data=event_data.model_dump(mode='json'),
            subject=event_data.shipment_id,
        )
        published = await event_bus.publish_event(event)
        if published is False:
            logger.warning(f"Event bus refused {event_type.value} for shipment {event_data.shipment_id}")
            return False
        logger.info(f"Published {event_type.value} event for shipment {event_data.shipment_id}")
        return True

    except Exception as e:
        logger.error(f"Failed to publish {event_type.value} event: {e}")
        return False


async def publish_shipment_created(
    event_bus, shipment: Shipment, actor_user_id: Optional[str] = None, incoming: bool = False
) -> bool:
    """Publish shipment.created event"""
    event_data = ShipmentCreatedEvent(
        **_base_fields(shipment, actor_user_id),
        shipment_number=shipment.shipment_number,
        incoming=incoming,
    )
    return await _publish(event_bus, EventType.SHIPMENT_CREATED, event_data)


async def publish_shipment_submitted(
    event_bus, shipment: Shipment, package_count: int, actor_user_id: Optional[str] = None
) -> bool:
    """Publish shipment.submitted event"""
    event_data = ShipmentSubmittedEvent(**_base_fields(shipment, actor_user_id), package_count=package_count)
    return await _publish(event_bus, EventType.SHIPMENT_SUBMITTED, event_data)


async def publish_submission_canceled(event_bus, shipment: Shipment, actor_user_id: Optional[str] = None) -> bool:
    """Publish shipment.submission_canceled event"""
    event_data = ShipmentSubmissionCanceledEvent(**_base_fields(shipment, actor_user_id))
    return await _publish(event_bus, EventType.SHIPMENT_SUBMISSION_CANCELED, event_data)


async def publish_shipment_accepted(
    event_bus, shipment: Shipment, packages_transferred: Optional[int] = None, actor_user_id: Optional[str] = None
) -> bool:
    """Publish shipment.accepted event"""
    event_data = ShipmentAcceptedEvent(
        **_base_fields(shipment, actor_user_id), packages_transferred=packages_transferred
    )
    return await _publish(event_bus, EventType.SHIPMENT_ACCEPTED, event_data)


async def publish_shipment_rejected(
    event_bus, shipment: Shipment, reason: str, actor_user_id: Optional[str] = None
) -> bool:
    """Publish shipment.rejected event"""
    event_data = ShipmentRejectedEvent(**_base_fields(shipment, actor_user_id), reason=reason)
    return await _publish(event_bus, EventType.SHIPMENT_REJECTED, event_data)


async def publish_shipment_deleted(
    event_bus, shipment: Shipment, packages_deleted: bool, actor_user_id: Optional[str] = None
) -> bool:
    """Publish shipment.deleted event"""
    event_data = ShipmentDeletedEvent(**_base_fields(shipment, actor_user_id), packages_deleted=packages_deleted)
    return await _publish(event_bus, EventType.SHIPMENT_DELETED, event_data)


async def publish_transfer_inconsistent(
    event_bus, shipment: Shipment, error: str, actor_user_id: Optional[str] = None
) -> bool:
    """Publish shipment.transfer_inconsistent event for operator follow-up"""
    event_data = ShipmentTransferInconsistentEvent(**_base_fields(shipment, actor_user_id), error=error)
    return await _publish(event_bus, EventType.SHIPMENT_TRANSFER_INCONSISTENT, event_data)
