"""
Shipment Microservice API

Shipment lifecycle between organizations: drafts, submission review,
ownership transfer on accept, pallets and incoming package entry.
"""

import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

# Add parent directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../.."))
from core.config_manager import ConfigManager
from core.logger import setup_service_logger
from core.nats_client import get_event_bus

from .shipment_repository import ShipmentRepository
from .shipment_service import ShipmentService
from .factory import create_shipment_service
from .models import (
    AddPackagesRequest,
    AddPackagesResponse,
    AssignPalletRequest,
    CallerContext,
    CreateIncomingShipmentDraftRequest,
    CreateShipmentDraftRequest,
    ErrorCode,
    HealthResponse,
    PackageListResponse,
    PalletResponse,
    RejectShipmentRequest,
    SaveIncomingPackagesRequest,
    SaveIncomingPackagesResponse,
    ServiceInfo,
    ShipmentActionResponse,
    ShipmentCodePreviewResponse,
    ShipmentDetailResponse,
    ShipmentDirection,
    ShipmentListResponse,
    ShipmentResponse,
    ShipmentStatus,
    UpdateTransportCostRequest,
)
from .routes_registry import SERVICE_METADATA, get_route_summary

# Initialize config manager
config_manager = ConfigManager("shipment_service", default_port=8260)
config = config_manager.get_service_config()

# Configure logger
logger = setup_service_logger("shipment_service", level=config.log_level.upper())

# Print config info (development)
if config.debug:
    config_manager.print_config_summary(show_secrets=False)

# Global variables
shipment_service: Optional[ShipmentService] = None
repository: Optional[ShipmentRepository] = None
event_bus = None
SERVICE_PORT = config.service_port or 8260


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    global shipment_service, repository, event_bus

    try:
        # Initialize NATS JetStream event bus
        if config_manager.get_infra_config().nats_enabled:
            try:
                event_bus = await get_event_bus("shipment_service", config=config_manager)
                logger.info("Event bus initialized successfully")
            except Exception as e:
                logger.warning(f"Failed to initialize event bus: {e}. Continuing without event publishing.")
                event_bus = None

        # Create shipment service using factory
        shipment_service = create_shipment_service(config=config_manager, event_bus=event_bus)

        # Initialize repository connection
        repository = shipment_service.repository
        await repository.initialize()

        logger.info(
            f"Shipment service started on port {SERVICE_PORT} "
            f"({get_route_summary()['route_count']} routes)"
        )
        yield

    except Exception as e:
        logger.error(f"Failed to initialize shipment service: {e}")
        raise
    finally:
        if event_bus:
            try:
                await event_bus.close()
                logger.info("Shipment event bus closed")
            except Exception as e:
                logger.error(f"Error closing event bus: {e}")

        if shipment_service:
            try:
                await shipment_service.organization_directory.close()
            except Exception as e:
                logger.error(f"Error closing organization client: {e}")

        if repository:
            await repository.close()
            logger.info("Shipment service database connections closed")


# Create FastAPI app
app = FastAPI(
    title="Shipment Service",
    description="Shipment lifecycle and inventory ownership transfer between organizations",
    version="1.0.0",
    lifespan=lifespan,
)


# ====================
# Dependency Injection
# ====================


async def get_shipment_service() -> ShipmentService:
    """Get shipment service instance"""
    if not shipment_service:
        raise HTTPException(status_code=503, detail="Shipment service not initialized")
    return shipment_service


async def get_caller_context(
    x_organisation_id: Optional[str] = Header(default=None),
    x_user_id: Optional[str] = Header(default=None),
) -> CallerContext:
    """Caller identity as resolved by the gateway"""
    return CallerContext(organisation_id=x_organisation_id, user_id=x_user_id)


# ====================
# Error Mapping
# ====================

_STATUS_BY_ERROR = {
    ErrorCode.UNAUTHENTICATED: 401,
    ErrorCode.NO_ORGANISATION: 401,
    ErrorCode.FORBIDDEN: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.ORG_NOT_FOUND: 404,
    ErrorCode.PALLET_NOT_FOUND: 404,
    ErrorCode.NOT_DRAFT: 409,
    ErrorCode.NOT_PENDING: 409,
    ErrorCode.DUPLICATE_CODE: 409,
    ErrorCode.SAME_ORG: 422,
    ErrorCode.REASON_REQUIRED: 422,
    ErrorCode.NO_PACKAGES: 422,
    ErrorCode.NO_VALID_PACKAGES: 422,
    ErrorCode.VALIDATION_FAILED: 422,
    ErrorCode.NOT_EXTERNAL: 422,
    ErrorCode.ORG_INACTIVE: 422,
    ErrorCode.NOT_PARTNER: 422,
    ErrorCode.WRONG_SHIPMENT: 422,
    ErrorCode.NO_SHIPMENT: 422,
    ErrorCode.SAVE_FAILED: 422,
}


def _check(result: ShipmentActionResponse) -> ShipmentActionResponse:
    """Raise the HTTP error matching a failed result; storage failures are 500"""
    if not result.success:
        status_code = _STATUS_BY_ERROR.get(result.error_code, 500)
        detail = {
            "message": result.message,
            "error_code": result.error_code.value if result.error_code else None,
        }
        if isinstance(result, SaveIncomingPackagesResponse):
            detail["errors"] = result.errors
        raise HTTPException(status_code=status_code, detail=detail)
    return result


# ====================
# Health Check and Service Info
# ====================


@app.get("/api/v1/shipments/health")
@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check"""
    dependencies = {}

    try:
        if repository and repository.db:
            is_healthy = await repository.db.health_check()
            dependencies["database"] = "healthy" if is_healthy else "unhealthy"
        else:
            dependencies["database"] = "unhealthy"
    except Exception:
        dependencies["database"] = "unhealthy"

    dependencies["event_bus"] = "healthy" if event_bus and event_bus.is_connected else "disabled"

    return HealthResponse(
        status="healthy" if dependencies["database"] == "healthy" else "degraded",
        service="shipment_service",
        port=SERVICE_PORT,
        version=SERVICE_METADATA["version"],
        dependencies=dependencies,
    )


@app.get("/api/v1/shipments/info", response_model=ServiceInfo)
async def get_service_info():
    """Get service information"""
    return ServiceInfo(
        service="shipment_service",
        version=SERVICE_METADATA["version"],
        description="Shipment lifecycle and inventory ownership transfer between organizations",
        capabilities=SERVICE_METADATA["capabilities"],
    )


# ====================
# Shipment API
# ====================


@app.get("/api/v1/shipments/code-preview", response_model=ShipmentCodePreviewResponse)
async def preview_shipment_code(
    from_organisation_id: str = Query(...),
    to_organisation_id: str = Query(...),
    ctx: CallerContext = Depends(get_caller_context),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Preview the code the next shipment between two organizations would get"""
    result = await service.preview_shipment_code(ctx, from_organisation_id, to_organisation_id)
    return _check(result)


@app.post("/api/v1/shipments", response_model=ShipmentResponse, status_code=201)
async def create_shipment_draft(
    request: CreateShipmentDraftRequest,
    ctx: CallerContext = Depends(get_caller_context),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Create an outgoing shipment draft"""
    return _check(await service.create_shipment_draft(ctx, request))


@app.post("/api/v1/shipments/incoming", response_model=ShipmentResponse, status_code=201)
async def create_incoming_shipment_draft(
    request: CreateIncomingShipmentDraftRequest,
    ctx: CallerContext = Depends(get_caller_context),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Create an incoming draft from an external trading partner"""
    return _check(await service.create_incoming_shipment_draft(ctx, request))


@app.get("/api/v1/shipments", response_model=ShipmentListResponse)
async def list_shipments(
    direction: ShipmentDirection = Query(default=ShipmentDirection.ALL),
    status: Optional[ShipmentStatus] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    ctx: CallerContext = Depends(get_caller_context),
    service: ShipmentService = Depends(get_shipment_service),
):
    """List shipments of the caller's organization"""
    result = await service.list_shipments(ctx, direction=direction, status=status, limit=limit, offset=offset)
    return _check(result)


@app.get("/api/v1/shipments/{shipment_id}", response_model=ShipmentDetailResponse)
async def get_shipment(
    shipment_id: str,
    ctx: CallerContext = Depends(get_caller_context),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Get shipment with packages and pallets"""
    return _check(await service.get_shipment(ctx, shipment_id))


@app.delete("/api/v1/shipments/{shipment_id}", response_model=ShipmentActionResponse)
async def delete_shipment(
    shipment_id: str,
    ctx: CallerContext = Depends(get_caller_context),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Delete a draft shipment"""
    return _check(await service.delete_shipment(ctx, shipment_id))


@app.put("/api/v1/shipments/{shipment_id}/transport-cost", response_model=ShipmentResponse)
async def update_transport_cost(
    shipment_id: str,
    request: UpdateTransportCostRequest,
    ctx: CallerContext = Depends(get_caller_context),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Update transport cost of a draft"""
    return _check(await service.update_transport_cost(ctx, shipment_id, request.transport_cost_eur))


# ====================
# Lifecycle API
# ====================


@app.post("/api/v1/shipments/{shipment_id}/submit", response_model=ShipmentResponse)
async def submit_shipment(
    shipment_id: str,
    ctx: CallerContext = Depends(get_caller_context),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Submit a draft for review"""
    return _check(await service.submit_shipment(ctx, shipment_id))


@app.post("/api/v1/shipments/{shipment_id}/cancel", response_model=ShipmentResponse)
async def cancel_submission(
    shipment_id: str,
    ctx: CallerContext = Depends(get_caller_context),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Return a pending shipment to draft"""
    return _check(await service.cancel_submission(ctx, shipment_id))


@app.post("/api/v1/shipments/{shipment_id}/accept", response_model=ShipmentResponse)
async def accept_shipment(
    shipment_id: str,
    ctx: CallerContext = Depends(get_caller_context),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Accept a pending shipment and take ownership of its packages"""
    return _check(await service.accept_shipment(ctx, shipment_id))


@app.post("/api/v1/shipments/{shipment_id}/reject", response_model=ShipmentResponse)
async def reject_shipment(
    shipment_id: str,
    request: RejectShipmentRequest,
    ctx: CallerContext = Depends(get_caller_context),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Reject a pending shipment"""
    return _check(await service.reject_shipment(ctx, shipment_id, request.reason))


# ====================
# Package API
# ====================


@app.get("/api/v1/shipments/{shipment_id}/available-packages", response_model=PackageListResponse)
async def get_available_packages(
    shipment_id: str,
    ctx: CallerContext = Depends(get_caller_context),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Packages the sender can still add"""
    return _check(await service.get_available_packages(ctx, shipment_id))


@app.post("/api/v1/shipments/{shipment_id}/packages", response_model=AddPackagesResponse)
async def add_packages(
    shipment_id: str,
    request: AddPackagesRequest,
    ctx: CallerContext = Depends(get_caller_context),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Add inventory packages to a draft"""
    return _check(await service.add_packages_to_shipment(ctx, shipment_id, request.package_ids))


@app.delete("/api/v1/shipments/{shipment_id}/packages/{package_id}", response_model=ShipmentActionResponse)
async def remove_package(
    shipment_id: str,
    package_id: str,
    ctx: CallerContext = Depends(get_caller_context),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Remove a package from a draft"""
    return _check(await service.remove_package_from_shipment(ctx, shipment_id, package_id))


@app.put("/api/v1/shipments/{shipment_id}/incoming-packages", response_model=SaveIncomingPackagesResponse)
async def save_incoming_packages(
    shipment_id: str,
    request: SaveIncomingPackagesRequest,
    ctx: CallerContext = Depends(get_caller_context),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Batch save packages of an incoming draft"""
    return _check(await service.save_incoming_packages(ctx, shipment_id, request))


@app.put("/api/v1/shipments/packages/{package_id}/pallet", response_model=ShipmentActionResponse)
async def assign_package_to_pallet(
    package_id: str,
    request: AssignPalletRequest,
    ctx: CallerContext = Depends(get_caller_context),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Put a package on a pallet, or make it loose"""
    return _check(await service.assign_package_to_pallet(ctx, package_id, request.pallet_id))


# ====================
# Pallet API
# ====================


@app.post("/api/v1/shipments/{shipment_id}/pallets", response_model=PalletResponse, status_code=201)
async def create_pallet(
    shipment_id: str,
    ctx: CallerContext = Depends(get_caller_context),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Create the next pallet of a draft"""
    return _check(await service.create_pallet(ctx, shipment_id))


@app.delete("/api/v1/shipments/pallets/{pallet_id}", response_model=ShipmentActionResponse)
async def delete_pallet(
    pallet_id: str,
    ctx: CallerContext = Depends(get_caller_context),
    service: ShipmentService = Depends(get_shipment_service),
):
    """Delete a pallet; its packages become loose"""
    return _check(await service.delete_pallet(ctx, pallet_id))


# ====================
# Error Handling
# ====================


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception in {request.url}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error occurred"}
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "microservices.shipment_service.main:app",
        host=config.service_host,
        port=SERVICE_PORT,
        reload=config.debug,
        log_level=config.log_level.lower(),
    )
