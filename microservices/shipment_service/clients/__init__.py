"""
Shipment Service Clients

HTTP clients for external service calls.
"""

from .organization_client import OrganizationClient

__all__ = ["OrganizationClient"]
