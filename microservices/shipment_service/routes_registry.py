"""
Shipment Service Routes Registry

Defines service metadata and the route table served by the API.
"""

SERVICE_METADATA = {
    "service_name": "shipment_service",
    "version": "1.0.0",
    "tags": ["v1", "shipment", "inventory", "microservice"],
    "capabilities": [
        "shipment_drafts",
        "shipment_code_generation",
        "submission_review",
        "ownership_transfer",
        "pallet_management",
        "incoming_packages",
    ],
}

BASE_PATH = "/api/v1/shipments"

# Route definitions for API documentation
ROUTES = [
    # Health endpoints
    {"path": "/health", "methods": ["GET"], "description": "Health check"},
    {"path": f"{BASE_PATH}/health", "methods": ["GET"], "description": "Service health check (API v1)"},

    # Service info
    {"path": f"{BASE_PATH}/info", "methods": ["GET"], "description": "Service information"},

    # Shipments
    {"path": f"{BASE_PATH}/code-preview", "methods": ["GET"], "description": "Preview next shipment code"},
    {"path": BASE_PATH, "methods": ["POST"], "description": "Create outgoing draft"},
    {"path": f"{BASE_PATH}/incoming", "methods": ["POST"], "description": "Create incoming draft"},
    {"path": BASE_PATH, "methods": ["GET"], "description": "List shipments"},
    {"path": f"{BASE_PATH}/{{shipment_id}}", "methods": ["GET"], "description": "Get shipment"},
    {"path": f"{BASE_PATH}/{{shipment_id}}", "methods": ["DELETE"], "description": "Delete draft"},
    {"path": f"{BASE_PATH}/{{shipment_id}}/transport-cost", "methods": ["PUT"], "description": "Update transport cost"},

    # Lifecycle
    {"path": f"{BASE_PATH}/{{shipment_id}}/submit", "methods": ["POST"], "description": "Submit draft"},
    {"path": f"{BASE_PATH}/{{shipment_id}}/cancel", "methods": ["POST"], "description": "Cancel submission"},
    {"path": f"{BASE_PATH}/{{shipment_id}}/accept", "methods": ["POST"], "description": "Accept shipment"},
    {"path": f"{BASE_PATH}/{{shipment_id}}/reject", "methods": ["POST"], "description": "Reject shipment"},

    # Packages
    {"path": f"{BASE_PATH}/{{shipment_id}}/available-packages", "methods": ["GET"], "description": "Packages that can be added"},
    {"path": f"{BASE_PATH}/{{shipment_id}}/packages", "methods": ["POST"], "description": "Add packages to draft"},
    {"path": f"{BASE_PATH}/{{shipment_id}}/packages/{{package_id}}", "methods": ["DELETE"], "description": "Remove package"},
    {"path": f"{BASE_PATH}/{{shipment_id}}/incoming-packages", "methods": ["PUT"], "description": "Save incoming packages"},
    {"path": f"{BASE_PATH}/packages/{{package_id}}/pallet", "methods": ["PUT"], "description": "Assign package to pallet"},

    # Pallets
    {"path": f"{BASE_PATH}/{{shipment_id}}/pallets", "methods": ["POST"], "description": "Create pallet"},
    {"path": f"{BASE_PATH}/pallets/{{pallet_id}}", "methods": ["DELETE"], "description": "Delete pallet"},
]


def get_route_summary():
    """Route metadata for the service info endpoint"""
    return {
        "route_count": len(ROUTES),
        "api_version": "v1",
        "base_path": BASE_PATH,
    }


__all__ = ["SERVICE_METADATA", "ROUTES", "BASE_PATH", "get_route_summary"]
