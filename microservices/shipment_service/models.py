"""
Shipment Service Data Models

Pydantic models for shipments, inventory packages, pallets and the
organization directory view, plus request/response models for the API.
"""

import re
from enum import Enum
from typing import Optional, Dict, Any, List
from datetime import date, datetime
from decimal import Decimal
from pydantic import BaseModel, Field, field_validator


DIMENSION_PATTERN = re.compile(r"^[\d.,]+(-[\d.,]+)?$")
PIECES_PATTERN = re.compile(r"^$|^-$|^\d+(-\d+)?$")


# ====================
# Enum Types
# ====================

class ShipmentStatus(str, Enum):
    """Shipment lifecycle status"""
    DRAFT = "draft"
    PENDING = "pending"
    ACCEPTED = "accepted"  # reserved, never entered
    COMPLETED = "completed"
    REJECTED = "rejected"


class PackageStatus(str, Enum):
    """Inventory package status"""
    AVAILABLE = "available"
    PRODUCED = "produced"
    CONSUMED = "consumed"


class ShipmentDirection(str, Enum):
    """Which side of a shipment the caller's organization is on"""
    OUTGOING = "outgoing"
    INCOMING = "incoming"
    ALL = "all"


# Packages linked to a shipment in one of these states may join another draft
CLOSED_SHIPMENT_STATUSES = frozenset({ShipmentStatus.COMPLETED, ShipmentStatus.REJECTED})


class ErrorCode(str, Enum):
    """Machine-readable failure codes returned by every operation"""
    # Auth
    UNAUTHENTICATED = "UNAUTHENTICATED"
    NO_ORGANISATION = "NO_ORGANISATION"
    FORBIDDEN = "FORBIDDEN"
    # State
    NOT_DRAFT = "NOT_DRAFT"
    NOT_PENDING = "NOT_PENDING"
    # Validation
    SAME_ORG = "SAME_ORG"
    REASON_REQUIRED = "REASON_REQUIRED"
    NO_PACKAGES = "NO_PACKAGES"
    NO_VALID_PACKAGES = "NO_VALID_PACKAGES"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    NOT_EXTERNAL = "NOT_EXTERNAL"
    ORG_INACTIVE = "ORG_INACTIVE"
    NOT_PARTNER = "NOT_PARTNER"
    # Referential
    NOT_FOUND = "NOT_FOUND"
    ORG_NOT_FOUND = "ORG_NOT_FOUND"
    PALLET_NOT_FOUND = "PALLET_NOT_FOUND"
    WRONG_SHIPMENT = "WRONG_SHIPMENT"
    NO_SHIPMENT = "NO_SHIPMENT"
    # Storage
    TRANSFER_FAILED = "TRANSFER_FAILED"
    UPDATE_FAILED = "UPDATE_FAILED"
    DELETE_FAILED = "DELETE_FAILED"
    COUNT_FAILED = "COUNT_FAILED"
    SEQ_FAILED = "SEQ_FAILED"
    DUPLICATE_CODE = "DUPLICATE_CODE"
    INSERT_FAILED = "INSERT_FAILED"
    QUERY_FAILED = "QUERY_FAILED"
    SAVE_FAILED = "SAVE_FAILED"
    COMPENSATION_FAILED = "COMPENSATION_FAILED"


# ====================
# Core Data Models
# ====================

class CallerContext(BaseModel):
    """Identity of the caller, resolved by the session layer"""
    organisation_id: Optional[str] = None
    user_id: Optional[str] = None


class Organization(BaseModel):
    """Organization directory entry"""
    id: str
    code: str
    name: str
    is_external: bool = False
    is_active: bool = True


class Shipment(BaseModel):
    """Shipment entity model"""
    id: str = Field(..., description="Shipment ID")
    shipment_code: str = Field(..., description="Human-readable code, FROM-TO-NNN")
    shipment_number: int = Field(..., ge=1, description="Global monotonic number")

    from_organisation_id: str
    to_organisation_id: str
    status: ShipmentStatus = ShipmentStatus.DRAFT

    # Lifecycle
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    completed_at: Optional[datetime] = None

    # Details
    transport_cost_eur: Optional[Decimal] = Field(default=None, ge=0)
    shipment_date: Optional[date] = None
    notes: Optional[str] = None

    version: int = 1
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Package(BaseModel):
    """Inventory package entity model"""
    id: str = Field(..., description="Package ID")
    package_number: Optional[str] = None
    package_sequence: Optional[int] = None

    organisation_id: str = Field(..., description="Current owner")
    shipment_id: Optional[str] = None
    pallet_id: Optional[str] = None
    status: PackageStatus = PackageStatus.AVAILABLE

    # Reference data
    product_name_id: Optional[str] = None
    wood_species_id: Optional[str] = None
    humidity_id: Optional[str] = None
    type_id: Optional[str] = None
    processing_id: Optional[str] = None
    fsc_id: Optional[str] = None
    quality_id: Optional[str] = None

    # Dimensions (mm); numbers or ranges such as "40-50"
    thickness: Optional[str] = None
    width: Optional[str] = None
    length: Optional[str] = None
    pieces: Optional[str] = None
    volume_m3: Optional[Decimal] = None
    volume_is_calculated: bool = False

    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Pallet(BaseModel):
    """Pallet grouping within a shipment"""
    id: str
    shipment_id: str
    pallet_number: int = Field(..., ge=1)
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


# ====================
# Request Models
# ====================

class CreateShipmentDraftRequest(BaseModel):
    """Outgoing draft: the caller's organization ships to another organization"""
    to_organisation_id: str = Field(..., min_length=1)
    transport_cost_eur: Optional[Decimal] = Field(default=None, ge=0)
    shipment_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class CreateIncomingShipmentDraftRequest(BaseModel):
    """Incoming draft: an external partner ships to the caller's organization"""
    from_organisation_id: str = Field(..., min_length=1)
    transport_cost_eur: Optional[Decimal] = Field(default=None, ge=0)
    shipment_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class AddPackagesRequest(BaseModel):
    """Link inventory packages to a draft"""
    package_ids: List[str] = Field(default_factory=list)


class RejectShipmentRequest(BaseModel):
    """Reject a pending shipment"""
    reason: str = Field(default="", max_length=2000)


class AssignPalletRequest(BaseModel):
    """Move a package onto a pallet, or make it loose with None"""
    pallet_id: Optional[str] = None


class UpdateTransportCostRequest(BaseModel):
    """Change the transport cost of a draft"""
    transport_cost_eur: Optional[Decimal] = Field(default=None, ge=0)


class IncomingPackageInput(BaseModel):
    """One row of the incoming-shipment package editor"""
    id: Optional[str] = None
    is_new: bool = False
    package_number: Optional[str] = Field(default=None, max_length=100)

    product_name_id: Optional[str] = None
    wood_species_id: Optional[str] = None
    humidity_id: Optional[str] = None
    type_id: Optional[str] = None
    processing_id: Optional[str] = None
    fsc_id: Optional[str] = None
    quality_id: Optional[str] = None

    thickness: Optional[str] = None
    width: Optional[str] = None
    length: Optional[str] = None
    pieces: Optional[str] = None
    volume_m3: Optional[Decimal] = Field(default=None, ge=0)
    volume_is_calculated: bool = False
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("thickness", "width", "length")
    @classmethod
    def validate_dimension(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v.strip() == "":
            return None
        v = v.strip()
        if not DIMENSION_PATTERN.match(v):
            raise ValueError("must be a number or a range like 40-50")
        return v

    @field_validator("pieces")
    @classmethod
    def validate_pieces(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not PIECES_PATTERN.match(v):
            raise ValueError("must be a whole number, '-' or a range")
        return v or None

    @property
    def is_new_row(self) -> bool:
        return self.is_new or not self.id or self.id.startswith("new-")


class SaveIncomingPackagesRequest(BaseModel):
    """Batch save for the incoming-shipment package editor"""
    packages: List[IncomingPackageInput] = Field(default_factory=list)
    deleted_package_ids: List[str] = Field(default_factory=list)


# ====================
# Response Models
# ====================

class ShipmentActionResponse(BaseModel):
    """Outcome of any shipment operation"""
    success: bool
    message: str
    error_code: Optional[ErrorCode] = None


class ShipmentResponse(ShipmentActionResponse):
    """Single shipment response"""
    shipment: Optional[Shipment] = None


class ShipmentDetailResponse(ShipmentActionResponse):
    """Shipment with its packages and pallets"""
    shipment: Optional[Shipment] = None
    packages: List[Package] = Field(default_factory=list)
    pallets: List[Pallet] = Field(default_factory=list)


class ShipmentListResponse(ShipmentActionResponse):
    """List of shipments"""
    shipments: List[Shipment] = Field(default_factory=list)
    count: int = 0
    limit: int = 50
    offset: int = 0


class ShipmentCodePreviewResponse(ShipmentActionResponse):
    """Code the next shipment between two organizations would receive"""
    shipment_code: Optional[str] = None


class AddPackagesResponse(ShipmentActionResponse):
    """Result of linking packages to a draft"""
    added: int = 0
    skipped_package_ids: List[str] = Field(default_factory=list)


class SaveIncomingPackagesResponse(ShipmentActionResponse):
    """Result of a batch save; partial success is success"""
    created: int = 0
    updated: int = 0
    deleted: int = 0
    errors: List[str] = Field(default_factory=list)


class PalletResponse(ShipmentActionResponse):
    """Single pallet response"""
    pallet: Optional[Pallet] = None


class PackageListResponse(ShipmentActionResponse):
    """List of packages"""
    packages: List[Package] = Field(default_factory=list)


# ====================
# System Models
# ====================

class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    service: str
    port: int
    version: str
    dependencies: Dict[str, str]


class ServiceInfo(BaseModel):
    """Service information"""
    service: str
    version: str
    description: str
    capabilities: List[str]


__all__ = [
    # Enums
    "ShipmentStatus",
    "PackageStatus",
    "ShipmentDirection",
    "ErrorCode",
    "CLOSED_SHIPMENT_STATUSES",
    # Core Models
    "CallerContext",
    "Organization",
    "Shipment",
    "Package",
    "Pallet",
    # Request Models
    "CreateShipmentDraftRequest",
    "CreateIncomingShipmentDraftRequest",
    "AddPackagesRequest",
    "RejectShipmentRequest",
    "AssignPalletRequest",
    "UpdateTransportCostRequest",
    "IncomingPackageInput",
    "SaveIncomingPackagesRequest",
    # Response Models
    "ShipmentActionResponse",
    "ShipmentResponse",
    "ShipmentDetailResponse",
    "ShipmentListResponse",
    "ShipmentCodePreviewResponse",
    "AddPackagesResponse",
    "SaveIncomingPackagesResponse",
    "PalletResponse",
    "PackageListResponse",
    # System Models
    "HealthResponse",
    "ServiceInfo",
]
