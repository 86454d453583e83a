"""
Organization Service Client for Shipment Service

HTTP client for the organization directory (identity, active/external
flags and trading-partner relationships).
"""

import httpx
import logging
from typing import Any, Dict, Optional

from core.service_client_base import BaseServiceClient
from ..models import Organization
from ..protocols import OrganizationLookupError

logger = logging.getLogger(__name__)


class OrganizationClient(BaseServiceClient):
    """Client for organization_service"""

    service_name = "organization_service"
    default_port = 8212

    async def get_organization(self, organisation_id: str) -> Optional[Organization]:
        """
        Get organization by ID

        Returns:
            Organization if found, None on 404

        Raises:
            OrganizationLookupError: the directory could not answer
        """
        try:
            response = await self.get(f"/api/v1/organizations/{organisation_id}")
            if response.status_code == 404:
                logger.warning(f"Organization {organisation_id} not found")
                return None
            response.raise_for_status()
            return self._to_organization(response.json())

        except httpx.HTTPError as e:
            logger.error(f"Error getting organization {organisation_id}: {e}")
            raise OrganizationLookupError(f"Organization directory unavailable: {e}") from e

    async def is_trading_partner(self, organisation_id: str, partner_id: str) -> bool:
        """Whether partner_id is a registered trading partner of organisation_id"""
        try:
            response = await self.get(f"/api/v1/organizations/{organisation_id}/trading-partners/{partner_id}")
            if response.status_code == 404:
                return False
            response.raise_for_status()
            return bool(response.json().get("is_partner", True))

        except httpx.HTTPError as e:
            logger.error(f"Error checking trading partner {organisation_id}/{partner_id}: {e}")
            raise OrganizationLookupError(f"Organization directory unavailable: {e}") from e

    @staticmethod
    def _to_organization(payload: Dict[str, Any]) -> Organization:
        # The directory wraps single records as {"organization": {...}}
        data = payload.get("organization", payload)
        return Organization(
            id=str(data.get("id") or data.get("organization_id")),
            code=data.get("code", ""),
            name=data.get("name", ""),
            is_external=bool(data.get("is_external", False)),
            is_active=bool(data.get("is_active", data.get("status", "active") == "active")),
        )
