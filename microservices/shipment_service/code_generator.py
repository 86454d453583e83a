"""
Shipment code generation.

Codes read "{FROM}-{TO}-{NNN}": the two organization codes and a per-pair
counter padded to three digits. Uniqueness is enforced by the storage layer;
a collision surfaces as DuplicateShipmentCodeError on insert.
"""

import logging
from typing import Optional, Tuple

from .models import ErrorCode, Organization
from .protocols import OrganizationDirectoryProtocol, ShipmentActionError, ShipmentRepositoryProtocol

logger = logging.getLogger(__name__)


def format_shipment_code(from_code: str, to_code: str, sequence: int) -> str:
    return f"{from_code}-{to_code}-{sequence:03d}"


def format_package_number(shipment_number: int, sequence: int) -> str:
    """Number for a package linked from inventory"""
    return f"TWP-{shipment_number:03d}-{sequence:03d}"


def format_incoming_package_number(shipment_code: str, sequence: int) -> str:
    """Number for a package entered by hand on an incoming shipment"""
    return f"{shipment_code}-{sequence:03d}"


class ShipmentCodeGenerator:
    """Computes the next shipment code for an organization pair"""

    def __init__(
        self,
        repository: ShipmentRepositoryProtocol,
        organization_directory: OrganizationDirectoryProtocol,
    ):
        self.repository = repository
        self.organization_directory = organization_directory

    async def resolve_pair(self, from_org_id: str, to_org_id: str) -> Tuple[Organization, Organization]:
        if from_org_id == to_org_id:
            raise ShipmentActionError("Cannot ship to the same organization", ErrorCode.SAME_ORG)

        from_org = await self._lookup(from_org_id)
        if not from_org:
            raise ShipmentActionError("Sender organization not found", ErrorCode.ORG_NOT_FOUND)

        to_org = await self._lookup(to_org_id)
        if not to_org:
            raise ShipmentActionError("Receiver organization not found", ErrorCode.ORG_NOT_FOUND)

        return from_org, to_org

    async def _lookup(self, organisation_id: str) -> Optional[Organization]:
        try:
            return await self.organization_directory.get_organization(organisation_id)
        except Exception as e:
            logger.error(f"Organization lookup failed for {organisation_id}: {e}", exc_info=True)
            raise ShipmentActionError("Failed to look up organization", ErrorCode.QUERY_FAILED) from e

    async def next_code(self, from_org: Organization, to_org: Organization) -> str:
        try:
            last = await self.repository.last_shipment_sequence(from_org.id, to_org.id)
        except Exception as e:
            logger.error(f"Failed to count shipments {from_org.code}->{to_org.code}: {e}", exc_info=True)
            raise ShipmentActionError("Failed to generate shipment code", ErrorCode.COUNT_FAILED) from e
        return format_shipment_code(from_org.code, to_org.code, last + 1)

    async def preview(self, from_org_id: str, to_org_id: str) -> str:
        """Code the next shipment for the pair would get; no side effects"""
        from_org, to_org = await self.resolve_pair(from_org_id, to_org_id)
        return await self.next_code(from_org, to_org)
