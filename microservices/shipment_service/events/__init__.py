"""
Shipment Service Events Module

Exports all event-related functionality for shipment service
"""

from .models import (
    ShipmentCreatedEvent,
    ShipmentSubmittedEvent,
    ShipmentSubmissionCanceledEvent,
    ShipmentAcceptedEvent,
    ShipmentRejectedEvent,
    ShipmentDeletedEvent,
    ShipmentTransferInconsistentEvent,
)

from .publishers import (
    publish_shipment_created,
    publish_shipment_submitted,
    publish_submission_canceled,
    publish_shipment_accepted,
    publish_shipment_rejected,
    publish_shipment_deleted,
    publish_transfer_inconsistent,
)

__all__ = [
    # Event Models
    "ShipmentCreatedEvent",
    "ShipmentSubmittedEvent",
    "ShipmentSubmissionCanceledEvent",
    "ShipmentAcceptedEvent",
    "ShipmentRejectedEvent",
    "ShipmentDeletedEvent",
    "ShipmentTransferInconsistentEvent",
    # Publishers
    "publish_shipment_created",
    "publish_shipment_submitted",
    "publish_submission_canceled",
    "publish_shipment_accepted",
    "publish_shipment_rejected",
    "publish_shipment_deleted",
    "publish_transfer_inconsistent",
]
