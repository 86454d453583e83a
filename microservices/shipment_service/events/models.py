"""
Shipment Service Event Models

Pydantic models for events published by shipment service
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime


# =============================================================================
# Event Data Models
# =============================================================================

class ShipmentEventBase(BaseModel):
    """Fields shared by every shipment event"""
    shipment_id: str
    shipment_code: str
    from_organisation_id: str
    to_organisation_id: str
    actor_user_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ShipmentCreatedEvent(ShipmentEventBase):
    """Draft created"""
    shipment_number: int
    incoming: bool = False


class ShipmentSubmittedEvent(ShipmentEventBase):
    """Draft submitted for review"""
    package_count: int = 0


class ShipmentSubmissionCanceledEvent(ShipmentEventBase):
    """Pending shipment returned to draft"""
    pass


class ShipmentAcceptedEvent(ShipmentEventBase):
    """Receiver accepted; package ownership moved to the receiver"""
    packages_transferred: Optional[int] = None


class ShipmentRejectedEvent(ShipmentEventBase):
    """Receiver rejected; no ownership change"""
    reason: str


class ShipmentDeletedEvent(ShipmentEventBase):
    """Draft deleted"""
    packages_deleted: bool = False


class ShipmentTransferInconsistentEvent(ShipmentEventBase):
    """Packages were transferred but neither completion nor compensation succeeded"""
    error: str
