"""
Shipment Service Protocols

Defines interfaces for dependency injection and testing.
Following the protocol-based architecture pattern.
"""

from typing import Any, Dict, List, Optional, Protocol, Tuple

from .models import (
    ErrorCode,
    Organization,
    Package,
    Pallet,
    Shipment,
    ShipmentDirection,
    ShipmentStatus,
)


# ====================
# Repository Protocol
# ====================


class ShipmentRepositoryProtocol(Protocol):
    """Protocol for shipment data repository"""

    # True when transfer_and_complete runs in a single database transaction
    supports_transactions: bool

    async def initialize(self) -> None:
        """Initialize repository connection"""
        ...

    async def close(self) -> None:
        """Close repository connection"""
        ...

    # Shipments
    async def last_shipment_sequence(self, from_org_id: str, to_org_id: str) -> int:
        """Highest numeric code suffix used by an ordered organization pair, 0 when none"""
        ...

    async def next_shipment_number(self) -> int:
        """Draw the next value from the global shipment number sequence"""
        ...

    async def create_shipment(self, shipment_data: Dict[str, Any]) -> Shipment:
        """Insert a shipment; raises DuplicateShipmentCodeError on code collision"""
        ...

    async def get_shipment(self, shipment_id: str) -> Optional[Shipment]:
        """Get shipment by ID"""
        ...

    async def list_shipments(
        self,
        organisation_id: str,
        direction: ShipmentDirection = ShipmentDirection.ALL,
        status: Optional[ShipmentStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Shipment]:
        """List shipments where the organization is sender and/or receiver"""
        ...

    async def update_shipment_status(
        self,
        shipment_id: str,
        expected_status: ShipmentStatus,
        new_status: ShipmentStatus,
        fields: Optional[Dict[str, Any]] = None,
    ) -> Optional[Shipment]:
        """Conditionally move a shipment between statuses; None when the expected status no longer holds"""
        ...

    async def update_draft_fields(self, shipment_id: str, fields: Dict[str, Any]) -> Optional[Shipment]:
        """Update editable columns of a shipment that is still a draft"""
        ...

    async def delete_shipment(self, shipment_id: str, delete_packages: bool) -> bool:
        """Delete a draft shipment, unlinking or deleting its packages"""
        ...

    # Ownership transfer
    async def transfer_package_ownership(self, shipment_id: str, to_org_id: str) -> int:
        """Set the owner of every package linked to the shipment in one statement"""
        ...

    async def restore_package_owners(self, owners: Dict[str, str]) -> int:
        """Set each package (id -> owner) back to the given owner in one statement"""
        ...

    async def transfer_and_complete(
        self,
        shipment_id: str,
        to_org_id: str,
        fields: Dict[str, Any],
    ) -> Optional[Shipment]:
        """Transfer packages and mark the shipment completed in one transaction"""
        ...

    # Packages
    async def get_package(self, package_id: str) -> Optional[Package]:
        """Get package by ID"""
        ...

    async def get_packages(self, package_ids: List[str]) -> List[Package]:
        """Get packages by IDs; unknown IDs are absent from the result"""
        ...

    async def list_shipment_packages(self, shipment_id: str) -> List[Package]:
        """Packages linked to a shipment, ordered by sequence"""
        ...

    async def count_shipment_packages(self, shipment_id: str) -> int:
        """Number of packages linked to a shipment"""
        ...

    async def list_available_packages(self, organisation_id: str, exclude_shipment_id: Optional[str] = None) -> List[Package]:
        """Packages owned by the organization in status available or produced that no open shipment holds"""
        ...

    async def allocate_package_sequences(self, shipment_id: str, count: int) -> int:
        """Atomically reserve count sequence numbers; returns the first one"""
        ...

    async def link_packages(self, shipment_id: str, assignments: List[Tuple[str, int, str]]) -> int:
        """Link (package_id, sequence, package_number) triples to a shipment"""
        ...

    async def create_package(self, package_data: Dict[str, Any]) -> Package:
        """Insert a package"""
        ...

    async def update_package(self, package_id: str, fields: Dict[str, Any]) -> Optional[Package]:
        """Update package columns"""
        ...

    async def delete_package(self, package_id: str) -> bool:
        """Hard delete a package"""
        ...

    async def count_production_inputs(self, package_ids: List[str]) -> int:
        """Number of production inputs that reference any of the packages"""
        ...

    # Pallets
    async def create_pallet(self, shipment_id: str, notes: Optional[str] = None) -> Pallet:
        """Create the next-numbered pallet of a shipment"""
        ...

    async def get_pallet(self, pallet_id: str) -> Optional[Pallet]:
        """Get pallet by ID"""
        ...

    async def list_pallets(self, shipment_id: str) -> List[Pallet]:
        """Pallets of a shipment, ordered by number"""
        ...

    async def delete_pallet(self, pallet_id: str) -> bool:
        """Delete a pallet; its packages become loose"""
        ...

    async def assign_package_to_pallet(self, package_id: str, pallet_id: Optional[str]) -> bool:
        """Set or clear the pallet of a package"""
        ...


# ====================
# Event Bus Protocol
# ====================


class EventBusProtocol(Protocol):
    """Protocol for event bus operations"""

    async def publish_event(self, event: Any) -> bool:
        """Publish event to NATS"""
        ...

    async def close(self) -> None:
        """Close event bus connection"""
        ...


# ====================
# Service Client Protocols
# ====================


class OrganizationDirectoryProtocol(Protocol):
    """Protocol for the organization directory"""

    async def get_organization(self, organisation_id: str) -> Optional[Organization]:
        """Get organization by ID"""
        ...

    async def is_trading_partner(self, organisation_id: str, partner_id: str) -> bool:
        """Whether partner_id is registered as a trading partner of organisation_id"""
        ...


# ====================
# Custom Exceptions
# ====================


class ShipmentServiceError(Exception):
    """Base exception for shipment service errors"""
    pass


class DuplicateShipmentCodeError(ShipmentServiceError):
    """Raised when the generated shipment code is already taken"""

    def __init__(self, message: str, shipment_code: str = ""):
        super().__init__(message)
        self.shipment_code = shipment_code


class OrganizationLookupError(ShipmentServiceError):
    """Raised when the organization directory cannot be reached"""
    pass


class ShipmentActionError(ShipmentServiceError):
    """An operation was refused or failed with a specific error code"""

    def __init__(self, message: str, error_code: ErrorCode):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


__all__ = [
    "ShipmentRepositoryProtocol",
    "EventBusProtocol",
    "OrganizationDirectoryProtocol",
    "ShipmentServiceError",
    "DuplicateShipmentCodeError",
    "OrganizationLookupError",
    "ShipmentActionError",
]
