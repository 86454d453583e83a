"""
Base Service Client for Internal Microservice Communication

Base class for HTTP clients of peer services. Handles base URL resolution,
internal-service headers and httpx client lifetime.
"""

import httpx
import logging
import os
from typing import Optional, Dict, Any
from abc import ABC

logger = logging.getLogger(__name__)

INTERNAL_SERVICE_HEADER = "X-Internal-Service"
INTERNAL_SERVICE_SECRET_HEADER = "X-Internal-Service-Secret"


class BaseServiceClient(ABC):
    """
    Base class for peer service clients.

    Example:
        class OrganizationServiceClient(BaseServiceClient):
            service_name = "organization_service"
            default_port = 8212

            async def get_organization(self, org_id: str):
                response = await self.get(f"/api/v1/organizations/{org_id}")
                return response.json()
    """

    service_name: str = None
    default_port: int = None

    def __init__(
        self,
        base_url: Optional[str] = None,
        use_internal_auth: bool = True,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not self.service_name:
            raise ValueError(f"{self.__class__.__name__} must define 'service_name'")

        if base_url:
            self.base_url = base_url.rstrip('/')
        else:
            self.base_url = self._discover_service()

        self.client = httpx.AsyncClient(
            timeout=timeout,
            headers=self._build_default_headers(use_internal_auth),
            transport=transport,
        )

        logger.debug(
            f"Initialized {self.service_name} client: {self.base_url} "
            f"(internal_auth={'enabled' if use_internal_auth else 'disabled'})"
        )

    def _discover_service(self) -> str:
        """Resolve the service URL from the environment, falling back to localhost"""
        from core.config_manager import ConfigManager

        host, port = ConfigManager(self.service_name).discover_service(
            service_name=self.service_name,
            default_host="localhost",
            default_port=self.default_port or 8000,
        )
        url = f"http://{host}:{port}"
        logger.debug(f"Resolved {self.service_name} at {url}")
        return url

    def _build_default_headers(self, use_internal_auth: bool) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"internal-client/{self.service_name}"
        }

        if use_internal_auth:
            headers[INTERNAL_SERVICE_HEADER] = "true"
            headers[INTERNAL_SERVICE_SECRET_HEADER] = os.getenv(
                "INTERNAL_SERVICE_SECRET", "dev-internal-secret-change-in-production"
            )

        return headers

    async def close(self):
        await self.client.aclose()
        logger.debug(f"Closed {self.service_name} client")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # ========================================
    # HTTP methods
    # ========================================

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        return await self.client.get(url, params=params, headers=headers)

    async def post(
        self,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        return await self.client.post(url, json=json, headers=headers)

    async def health_check(self) -> bool:
        try:
            response = await self.get("/health")
            return response.status_code == 200
        except Exception as e:
            logger.warning(f"{self.service_name} health check failed: {e}")
            return False


__all__ = ["BaseServiceClient"]
