"""
Shipment Service Business Logic

Shipment lifecycle (draft -> pending -> completed/rejected, pending -> draft),
the package ownership transfer on accept, and the draft mutation rules for
packages and pallets.

Every public operation returns a response model; failures carry an
ErrorCode and a human-readable message and are never raised to the caller.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Set, Tuple, Type, TypeVar

from .code_generator import (
    ShipmentCodeGenerator,
    format_incoming_package_number,
    format_package_number,
)
from .events.publishers import (
    publish_shipment_accepted,
    publish_shipment_created,
    publish_shipment_deleted,
    publish_shipment_rejected,
    publish_shipment_submitted,
    publish_submission_canceled,
    publish_transfer_inconsistent,
)
from .models import (
    CLOSED_SHIPMENT_STATUSES,
    AddPackagesResponse,
    CallerContext,
    CreateIncomingShipmentDraftRequest,
    CreateShipmentDraftRequest,
    ErrorCode,
    IncomingPackageInput,
    Organization,
    Package,
    PackageListResponse,
    PackageStatus,
    PalletResponse,
    SaveIncomingPackagesRequest,
    SaveIncomingPackagesResponse,
    Shipment,
    ShipmentActionResponse,
    ShipmentCodePreviewResponse,
    ShipmentDetailResponse,
    ShipmentDirection,
    ShipmentListResponse,
    ShipmentResponse,
    ShipmentStatus,
)
from .protocols import (
    DuplicateShipmentCodeError,
    EventBusProtocol,
    OrganizationDirectoryProtocol,
    ShipmentActionError,
    ShipmentRepositoryProtocol,
)
from .volume import VolumeState, derive_volume

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=ShipmentActionResponse)


class ShipmentService:
    """Shipment service core business logic"""

    def __init__(
        self,
        repository: ShipmentRepositoryProtocol,
        organization_directory: OrganizationDirectoryProtocol,
        event_bus: Optional[EventBusProtocol] = None,
    ):
        """
        Initialize shipment service with injected dependencies

        Args:
            repository: Repository for shipment, package and pallet storage
            organization_directory: Organization lookups and partner checks
            event_bus: Optional event bus for publishing events
        """
        self.repository = repository
        self.organization_directory = organization_directory
        self.event_bus = event_bus
        self.code_generator = ShipmentCodeGenerator(repository, organization_directory)

        # Serializes accepts of the same shipment within this process
        self._accept_locks: Dict[str, asyncio.Lock] = {}
        self._accept_waiters: Dict[str, int] = {}

        logger.info("ShipmentService initialized with dependency injection")

    async def initialize(self):
        await self.repository.initialize()
        logger.info("ShipmentService initialized")

    # ====================
    # Shared Helpers
    # ====================

    @staticmethod
    def _failure(response_cls: Type[R], error: ShipmentActionError) -> R:
        return response_cls(success=False, message=error.message, error_code=error.error_code)

    @staticmethod
    def _require_org(ctx: Optional[CallerContext]) -> str:
        if ctx is None or not ctx.user_id:
            raise ShipmentActionError("Not authenticated", ErrorCode.UNAUTHENTICATED)
        if not ctx.organisation_id:
            raise ShipmentActionError("No organization assigned", ErrorCode.NO_ORGANISATION)
        return ctx.organisation_id

    async def _load_shipment(self, shipment_id: str) -> Shipment:
        try:
            shipment = await self.repository.get_shipment(shipment_id)
        except Exception as e:
            logger.error(f"Failed to load shipment {shipment_id}: {e}", exc_info=True)
            raise ShipmentActionError("Failed to load shipment", ErrorCode.QUERY_FAILED) from e
        if not shipment:
            raise ShipmentActionError("Shipment not found", ErrorCode.NOT_FOUND)
        return shipment

    async def _get_organization(self, organisation_id: str) -> Optional[Organization]:
        try:
            return await self.organization_directory.get_organization(organisation_id)
        except Exception as e:
            logger.error(f"Organization lookup failed for {organisation_id}: {e}", exc_info=True)
            raise ShipmentActionError("Failed to look up organization", ErrorCode.QUERY_FAILED) from e

    async def _sender_is_external(self, shipment: Shipment) -> bool:
        sender = await self._get_organization(shipment.from_organisation_id)
        return bool(sender and sender.is_external)

    async def _can_manage(self, shipment: Shipment, org_id: str) -> bool:
        """Sender manages its shipments; the receiver manages those from external senders"""
        if shipment.from_organisation_id == org_id:
            return True
        if shipment.to_organisation_id == org_id:
            return await self._sender_is_external(shipment)
        return False

    @staticmethod
    def _require_status(shipment: Shipment, status: ShipmentStatus, message: str):
        if shipment.status != status:
            code = ErrorCode.NOT_DRAFT if status == ShipmentStatus.DRAFT else ErrorCode.NOT_PENDING
            raise ShipmentActionError(message, code)

    async def _load_sender_draft(self, shipment_id: str, org_id: str, message: str) -> Shipment:
        shipment = await self._load_shipment(shipment_id)
        if shipment.from_organisation_id != org_id:
            raise ShipmentActionError("Access denied", ErrorCode.FORBIDDEN)
        self._require_status(shipment, ShipmentStatus.DRAFT, message)
        return shipment

    async def _open_shipment_ids(self, shipment_ids: Set[str]) -> Set[str]:
        """Subset of shipment_ids still in draft or pending"""
        open_ids: Set[str] = set()
        for other_id in shipment_ids:
            try:
                other = await self.repository.get_shipment(other_id)
            except Exception as e:
                logger.error(f"Failed to load shipment {other_id}: {e}", exc_info=True)
                raise ShipmentActionError("Failed to verify packages", ErrorCode.QUERY_FAILED) from e
            if other is not None and other.status not in CLOSED_SHIPMENT_STATUSES:
                open_ids.add(other_id)
        return open_ids

    @asynccontextmanager
    async def _accept_guard(self, shipment_id: str):
        """Hold the per-shipment accept lock; the entry is dropped once nobody waits on it"""
        lock = self._accept_locks.get(shipment_id)
        if lock is None:
            lock = asyncio.Lock()
            self._accept_locks[shipment_id] = lock
        self._accept_waiters[shipment_id] = self._accept_waiters.get(shipment_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._accept_waiters[shipment_id] - 1
            if remaining:
                self._accept_waiters[shipment_id] = remaining
            else:
                del self._accept_waiters[shipment_id]
                self._accept_locks.pop(shipment_id, None)

    # ====================
    # Code Preview
    # ====================

    async def preview_shipment_code(
        self, ctx: CallerContext, from_organisation_id: str, to_organisation_id: str
    ) -> ShipmentCodePreviewResponse:
        """Code the next shipment between two organizations would receive"""
        try:
            self._require_org(ctx)
            code = await self.code_generator.preview(from_organisation_id, to_organisation_id)
            return ShipmentCodePreviewResponse(success=True, message="Shipment code preview", shipment_code=code)
        except ShipmentActionError as e:
            return self._failure(ShipmentCodePreviewResponse, e)
        except Exception as e:
            logger.error(f"Error previewing shipment code: {e}", exc_info=True)
            return ShipmentCodePreviewResponse(
                success=False, message="Failed to generate shipment code", error_code=ErrorCode.COUNT_FAILED
            )

    # ====================
    # Draft Creation
    # ====================

    async def create_shipment_draft(self, ctx: CallerContext, request: CreateShipmentDraftRequest) -> ShipmentResponse:
        """Create an outgoing draft from the caller's organization"""
        try:
            org_id = self._require_org(ctx)
            from_org, to_org = await self.code_generator.resolve_pair(org_id, request.to_organisation_id)
            if not from_org.is_active or not to_org.is_active:
                raise ShipmentActionError("Organization is not active", ErrorCode.ORG_INACTIVE)

            shipment = await self._create_draft(
                ctx, from_org, to_org, request.transport_cost_eur, request.shipment_date, request.notes
            )
            await publish_shipment_created(self.event_bus, shipment, actor_user_id=ctx.user_id)
            return ShipmentResponse(success=True, message="Shipment draft created", shipment=shipment)

        except ShipmentActionError as e:
            logger.warning(f"Draft creation refused: {e.error_code.value} {e.message}")
            return self._failure(ShipmentResponse, e)
        except Exception as e:
            logger.error(f"Error creating shipment draft: {e}", exc_info=True)
            return ShipmentResponse(success=False, message="Failed to create shipment", error_code=ErrorCode.INSERT_FAILED)

    async def create_incoming_shipment_draft(
        self, ctx: CallerContext, request: CreateIncomingShipmentDraftRequest
    ) -> ShipmentResponse:
        """Create a draft for goods arriving from an external trading partner"""
        try:
            org_id = self._require_org(ctx)
            from_org, to_org = await self.code_generator.resolve_pair(request.from_organisation_id, org_id)
            if not from_org.is_external:
                raise ShipmentActionError("Sender is not an external organization", ErrorCode.NOT_EXTERNAL)
            if not from_org.is_active or not to_org.is_active:
                raise ShipmentActionError("Organization is not active", ErrorCode.ORG_INACTIVE)

            try:
                is_partner = await self.organization_directory.is_trading_partner(org_id, from_org.id)
            except Exception as e:
                logger.error(f"Trading partner check failed for {org_id}/{from_org.id}: {e}", exc_info=True)
                raise ShipmentActionError("Failed to verify trading partner", ErrorCode.QUERY_FAILED) from e
            if not is_partner:
                raise ShipmentActionError("Organization is not a trading partner", ErrorCode.NOT_PARTNER)

            shipment = await self._create_draft(
                ctx, from_org, to_org, request.transport_cost_eur, request.shipment_date, request.notes
            )
            await publish_shipment_created(self.event_bus, shipment, actor_user_id=ctx.user_id, incoming=True)
            return ShipmentResponse(success=True, message="Incoming shipment draft created", shipment=shipment)

        except ShipmentActionError as e:
            logger.warning(f"Incoming draft creation refused: {e.error_code.value} {e.message}")
            return self._failure(ShipmentResponse, e)
        except Exception as e:
            logger.error(f"Error creating incoming shipment draft: {e}", exc_info=True)
            return ShipmentResponse(success=False, message="Failed to create shipment", error_code=ErrorCode.INSERT_FAILED)

    async def _create_draft(
        self,
        ctx: CallerContext,
        from_org: Organization,
        to_org: Organization,
        transport_cost_eur: Optional[Decimal],
        shipment_date: Optional[date],
        notes: Optional[str],
    ) -> Shipment:
        shipment_code = await self.code_generator.next_code(from_org, to_org)

        try:
            shipment_number = await self.repository.next_shipment_number()
        except Exception as e:
            logger.error(f"Failed to draw shipment number: {e}", exc_info=True)
            raise ShipmentActionError("Failed to generate shipment number", ErrorCode.SEQ_FAILED) from e

        try:
            shipment = await self.repository.create_shipment({
                "shipment_code": shipment_code,
                "shipment_number": shipment_number,
                "from_organisation_id": from_org.id,
                "to_organisation_id": to_org.id,
                "transport_cost_eur": transport_cost_eur,
                "shipment_date": shipment_date or datetime.now(timezone.utc).date(),
                "notes": notes,
                "created_by": ctx.user_id,
            })
        except DuplicateShipmentCodeError as e:
            logger.warning(f"Shipment code collision on {shipment_code}")
            raise ShipmentActionError(
                "Shipment code already exists, please try again", ErrorCode.DUPLICATE_CODE
            ) from e
        except Exception as e:
            logger.error(f"Failed to insert shipment {shipment_code}: {e}", exc_info=True)
            raise ShipmentActionError("Failed to create shipment", ErrorCode.INSERT_FAILED) from e

        logger.info(f"Created draft {shipment.shipment_code} ({from_org.code} -> {to_org.code})")
        return shipment

    # ====================
    # Queries
    # ====================

    async def get_shipment(self, ctx: CallerContext, shipment_id: str) -> ShipmentDetailResponse:
        """Shipment with its packages and pallets; visible to sender and receiver only"""
        try:
            org_id = self._require_org(ctx)
            shipment = await self._load_shipment(shipment_id)
            if org_id not in (shipment.from_organisation_id, shipment.to_organisation_id):
                raise ShipmentActionError("Access denied", ErrorCode.FORBIDDEN)

            packages = await self.repository.list_shipment_packages(shipment_id)
            pallets = await self.repository.list_pallets(shipment_id)
            return ShipmentDetailResponse(
                success=True,
                message="Shipment retrieved",
                shipment=shipment,
                packages=packages,
                pallets=pallets,
            )
        except ShipmentActionError as e:
            return self._failure(ShipmentDetailResponse, e)
        except Exception as e:
            logger.error(f"Error getting shipment {shipment_id}: {e}", exc_info=True)
            return ShipmentDetailResponse(success=False, message="Failed to load shipment", error_code=ErrorCode.QUERY_FAILED)

    async def list_shipments(
        self,
        ctx: CallerContext,
        direction: ShipmentDirection = ShipmentDirection.ALL,
        status: Optional[ShipmentStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> ShipmentListResponse:
        try:
            org_id = self._require_org(ctx)
            shipments = await self.repository.list_shipments(
                organisation_id=org_id, direction=direction, status=status, limit=limit, offset=offset
            )
            return ShipmentListResponse(
                success=True,
                message=f"Found {len(shipments)} shipments",
                shipments=shipments,
                count=len(shipments),
                limit=limit,
                offset=offset,
            )
        except ShipmentActionError as e:
            return self._failure(ShipmentListResponse, e)
        except Exception as e:
            logger.error(f"Error listing shipments: {e}", exc_info=True)
            return ShipmentListResponse(success=False, message="Failed to list shipments", error_code=ErrorCode.QUERY_FAILED)

    async def get_available_packages(self, ctx: CallerContext, shipment_id: str) -> PackageListResponse:
        """Inventory the sender could still add to this shipment"""
        try:
            org_id = self._require_org(ctx)
            shipment = await self._load_shipment(shipment_id)
            if shipment.from_organisation_id != org_id:
                raise ShipmentActionError("Access denied", ErrorCode.FORBIDDEN)

            packages = await self.repository.list_available_packages(org_id, exclude_shipment_id=shipment_id)
            return PackageListResponse(success=True, message=f"Found {len(packages)} packages", packages=packages)
        except ShipmentActionError as e:
            return self._failure(PackageListResponse, e)
        except Exception as e:
            logger.error(f"Error listing available packages for {shipment_id}: {e}", exc_info=True)
            return PackageListResponse(success=False, message="Failed to load packages", error_code=ErrorCode.QUERY_FAILED)

    # ====================
    # Transitions
    # ====================

    async def submit_shipment(self, ctx: CallerContext, shipment_id: str) -> ShipmentResponse:
        """draft -> pending"""
        try:
            org_id = self._require_org(ctx)
            shipment = await self._load_shipment(shipment_id)
            if not await self._can_manage(shipment, org_id):
                raise ShipmentActionError("Access denied", ErrorCode.FORBIDDEN)
            self._require_status(shipment, ShipmentStatus.DRAFT, "Can only submit draft shipments")

            try:
                package_count = await self.repository.count_shipment_packages(shipment_id)
            except Exception as e:
                logger.error(f"Failed to count packages of {shipment_id}: {e}", exc_info=True)
                raise ShipmentActionError("Failed to verify packages", ErrorCode.COUNT_FAILED) from e
            if package_count == 0:
                raise ShipmentActionError("At least one package is required", ErrorCode.NO_PACKAGES)

            updated = await self._transition(
                shipment_id,
                ShipmentStatus.DRAFT,
                ShipmentStatus.PENDING,
                {"submitted_at": datetime.now(timezone.utc)},
                "Can only submit draft shipments",
                "Failed to submit shipment",
            )
            logger.info(f"Shipment {updated.shipment_code} submitted with {package_count} packages")
            await publish_shipment_submitted(self.event_bus, updated, package_count, actor_user_id=ctx.user_id)
            return ShipmentResponse(success=True, message="Shipment submitted", shipment=updated)

        except ShipmentActionError as e:
            logger.warning(f"Submit of {shipment_id} refused: {e.error_code.value}")
            return self._failure(ShipmentResponse, e)
        except Exception as e:
            logger.error(f"Error submitting shipment {shipment_id}: {e}", exc_info=True)
            return ShipmentResponse(success=False, message="Failed to submit shipment", error_code=ErrorCode.UPDATE_FAILED)

    async def cancel_submission(self, ctx: CallerContext, shipment_id: str) -> ShipmentResponse:
        """pending -> draft, before the receiver has reviewed"""
        try:
            org_id = self._require_org(ctx)
            shipment = await self._load_shipment(shipment_id)
            if not await self._can_manage(shipment, org_id):
                raise ShipmentActionError("Access denied", ErrorCode.FORBIDDEN)
            self._require_status(shipment, ShipmentStatus.PENDING, "Can only cancel pending shipments")

            updated = await self._transition(
                shipment_id,
                ShipmentStatus.PENDING,
                ShipmentStatus.DRAFT,
                {"submitted_at": None},
                "Can only cancel pending shipments",
                "Failed to cancel submission",
            )
            logger.info(f"Submission of {updated.shipment_code} canceled")
            await publish_submission_canceled(self.event_bus, updated, actor_user_id=ctx.user_id)
            return ShipmentResponse(success=True, message="Submission canceled", shipment=updated)

        except ShipmentActionError as e:
            logger.warning(f"Cancel of {shipment_id} refused: {e.error_code.value}")
            return self._failure(ShipmentResponse, e)
        except Exception as e:
            logger.error(f"Error canceling submission of {shipment_id}: {e}", exc_info=True)
            return ShipmentResponse(success=False, message="Failed to cancel submission", error_code=ErrorCode.UPDATE_FAILED)

    async def reject_shipment(self, ctx: CallerContext, shipment_id: str, reason: Optional[str]) -> ShipmentResponse:
        """pending -> rejected; packages are not touched"""
        try:
            self._require_org(ctx)
            reason = (reason or "").strip()
            if not reason:
                raise ShipmentActionError("Rejection reason is required", ErrorCode.REASON_REQUIRED)

            shipment = await self._load_shipment(shipment_id)
            if shipment.to_organisation_id != ctx.organisation_id:
                raise ShipmentActionError("Access denied", ErrorCode.FORBIDDEN)
            self._require_status(shipment, ShipmentStatus.PENDING, "Can only reject pending shipments")

            now = datetime.now(timezone.utc)
            updated = await self._transition(
                shipment_id,
                ShipmentStatus.PENDING,
                ShipmentStatus.REJECTED,
                {"reviewed_at": now, "reviewed_by": ctx.user_id, "rejection_reason": reason},
                "Can only reject pending shipments",
                "Failed to reject shipment",
            )
            logger.info(f"Shipment {updated.shipment_code} rejected by {ctx.user_id}")
            await publish_shipment_rejected(self.event_bus, updated, reason, actor_user_id=ctx.user_id)
            return ShipmentResponse(success=True, message="Shipment rejected", shipment=updated)

        except ShipmentActionError as e:
            logger.warning(f"Reject of {shipment_id} refused: {e.error_code.value}")
            return self._failure(ShipmentResponse, e)
        except Exception as e:
            logger.error(f"Error rejecting shipment {shipment_id}: {e}", exc_info=True)
            return ShipmentResponse(success=False, message="Failed to reject shipment", error_code=ErrorCode.UPDATE_FAILED)

    async def _transition(
        self,
        shipment_id: str,
        expected: ShipmentStatus,
        target: ShipmentStatus,
        fields: Dict,
        lost_race_message: str,
        failure_message: str,
    ) -> Shipment:
        try:
            updated = await self.repository.update_shipment_status(shipment_id, expected, target, fields)
        except Exception as e:
            logger.error(f"Status update {expected.value}->{target.value} failed for {shipment_id}: {e}", exc_info=True)
            raise ShipmentActionError(failure_message, ErrorCode.UPDATE_FAILED) from e
        if updated is None:
            code = ErrorCode.NOT_DRAFT if expected == ShipmentStatus.DRAFT else ErrorCode.NOT_PENDING
            raise ShipmentActionError(lost_race_message, code)
        return updated

    # ====================
    # Accept / Ownership Transfer
    # ====================

    async def accept_shipment(self, ctx: CallerContext, shipment_id: str) -> ShipmentResponse:
        """
        pending -> completed, moving every linked package to the receiver.

        With a transactional repository the transfer and the status change
        commit together. Otherwise the transfer runs first and is reverted
        if the status change fails.
        """
        try:
            org_id = self._require_org(ctx)

            async with self._accept_guard(shipment_id):
                shipment = await self._load_shipment(shipment_id)
                if shipment.to_organisation_id != org_id:
                    raise ShipmentActionError("Access denied", ErrorCode.FORBIDDEN)
                self._require_status(shipment, ShipmentStatus.PENDING, "Can only accept pending shipments")

                now = datetime.now(timezone.utc)
                fields = {"reviewed_at": now, "reviewed_by": ctx.user_id, "completed_at": now}

                if getattr(self.repository, "supports_transactions", False):
                    completed, moved = await self._accept_transactional(shipment, fields)
                else:
                    completed, moved = await self._accept_with_compensation(shipment, fields, ctx)

            logger.info(f"Shipment {completed.shipment_code} accepted by {ctx.user_id}")
            await publish_shipment_accepted(self.event_bus, completed, moved, actor_user_id=ctx.user_id)
            return ShipmentResponse(success=True, message="Shipment accepted", shipment=completed)

        except ShipmentActionError as e:
            log = logger.critical if e.error_code == ErrorCode.COMPENSATION_FAILED else logger.warning
            log(f"Accept of {shipment_id} failed: {e.error_code.value} {e.message}")
            return self._failure(ShipmentResponse, e)
        except Exception as e:
            logger.error(f"Error accepting shipment {shipment_id}: {e}", exc_info=True)
            return ShipmentResponse(
                success=False, message="Failed to complete shipment acceptance", error_code=ErrorCode.UPDATE_FAILED
            )

    async def _accept_transactional(self, shipment: Shipment, fields: Dict) -> Tuple[Shipment, Optional[int]]:
        try:
            completed = await self.repository.transfer_and_complete(
                shipment.id, shipment.to_organisation_id, fields
            )
        except Exception as e:
            logger.error(f"Transactional accept failed for {shipment.id}: {e}", exc_info=True)
            raise ShipmentActionError("Failed to transfer inventory", ErrorCode.TRANSFER_FAILED) from e
        if completed is None:
            raise ShipmentActionError("Can only accept pending shipments", ErrorCode.NOT_PENDING)
        return completed, None

    async def _accept_with_compensation(
        self, shipment: Shipment, fields: Dict, ctx: CallerContext
    ) -> Tuple[Shipment, int]:
        # Owners before the transfer, used to undo it
        try:
            packages = await self.repository.list_shipment_packages(shipment.id)
            previous_owners = {p.id: p.organisation_id for p in packages}
            moved = await self.repository.transfer_package_ownership(shipment.id, shipment.to_organisation_id)
        except Exception as e:
            logger.error(f"Inventory transfer failed for {shipment.id}: {e}", exc_info=True)
            raise ShipmentActionError("Failed to transfer inventory", ErrorCode.TRANSFER_FAILED) from e

        try:
            completed = await self.repository.update_shipment_status(
                shipment.id, ShipmentStatus.PENDING, ShipmentStatus.COMPLETED, fields
            )
        except Exception as e:
            logger.error(f"Completing {shipment.id} failed after transfer: {e}", exc_info=True)
            await self._compensate_transfer(shipment, previous_owners, str(e), ctx)
            raise ShipmentActionError(
                "Failed to complete shipment acceptance", ErrorCode.UPDATE_FAILED
            ) from e

        if completed is None:
            try:
                current = await self.repository.get_shipment(shipment.id)
            except Exception as e:
                logger.error(f"Failed to re-read {shipment.id} after lost accept: {e}", exc_info=True)
                current = None
            if current is None or current.status != ShipmentStatus.COMPLETED:
                # Left pending by another transition: the transfer must not stand
                await self._compensate_transfer(shipment, previous_owners, "status changed during accept", ctx)
            raise ShipmentActionError("Can only accept pending shipments", ErrorCode.NOT_PENDING)

        return completed, moved

    async def _compensate_transfer(
        self, shipment: Shipment, previous_owners: Dict[str, str], cause: str, ctx: CallerContext
    ):
        try:
            await self.repository.restore_package_owners(previous_owners)
            logger.warning(f"Reverted ownership of {len(previous_owners)} packages for {shipment.id}")
        except Exception as e:
            logger.critical(
                f"Inventory of shipment {shipment.id} left with receiver {shipment.to_organisation_id}: "
                f"completion failed ({cause}) and compensation failed ({e})",
                exc_info=True,
            )
            await publish_transfer_inconsistent(
                self.event_bus, shipment, error=f"{cause}; compensation: {e}", actor_user_id=ctx.user_id
            )
            raise ShipmentActionError(
                "Shipment acceptance failed and inventory could not be restored; manual intervention required",
                ErrorCode.COMPENSATION_FAILED,
            ) from e

    # ====================
    # Deletion
    # ====================

    async def delete_shipment(self, ctx: CallerContext, shipment_id: str) -> ShipmentActionResponse:
        """Delete a draft; own inventory is unlinked, packages of incoming external drafts are deleted"""
        try:
            org_id = self._require_org(ctx)
            shipment = await self._load_shipment(shipment_id)

            if shipment.from_organisation_id == org_id:
                delete_packages = False
            elif shipment.to_organisation_id == org_id and await self._sender_is_external(shipment):
                delete_packages = True
            else:
                raise ShipmentActionError("Access denied", ErrorCode.FORBIDDEN)
            self._require_status(shipment, ShipmentStatus.DRAFT, "Can only delete draft shipments")

            try:
                packages = await self.repository.list_shipment_packages(shipment_id)
                used = await self.repository.count_production_inputs([p.id for p in packages])
            except Exception as e:
                logger.error(f"Failed to check production inputs for {shipment_id}: {e}", exc_info=True)
                raise ShipmentActionError("Failed to verify packages", ErrorCode.QUERY_FAILED) from e
            if used > 0:
                raise ShipmentActionError(
                    "Cannot delete: packages from this shipment are used as production inputs",
                    ErrorCode.VALIDATION_FAILED,
                )

            try:
                deleted = await self.repository.delete_shipment(shipment_id, delete_packages=delete_packages)
            except Exception as e:
                logger.error(f"Failed to delete shipment {shipment_id}: {e}", exc_info=True)
                raise ShipmentActionError("Failed to delete shipment", ErrorCode.DELETE_FAILED) from e
            if not deleted:
                raise ShipmentActionError("Can only delete draft shipments", ErrorCode.NOT_DRAFT)

            logger.info(
                f"Deleted draft {shipment.shipment_code} "
                f"({'deleted' if delete_packages else 'unlinked'} {len(packages)} packages)"
            )
            await publish_shipment_deleted(self.event_bus, shipment, delete_packages, actor_user_id=ctx.user_id)
            return ShipmentActionResponse(success=True, message="Shipment deleted")

        except ShipmentActionError as e:
            logger.warning(f"Delete of {shipment_id} refused: {e.error_code.value}")
            return self._failure(ShipmentActionResponse, e)
        except Exception as e:
            logger.error(f"Error deleting shipment {shipment_id}: {e}", exc_info=True)
            return ShipmentActionResponse(success=False, message="Failed to delete shipment", error_code=ErrorCode.DELETE_FAILED)

    # ====================
    # Draft Packages
    # ====================

    async def add_packages_to_shipment(
        self, ctx: CallerContext, shipment_id: str, package_ids: List[str]
    ) -> AddPackagesResponse:
        """Link the sender's own inventory to a draft"""
        try:
            org_id = self._require_org(ctx)
            if not package_ids:
                raise ShipmentActionError("No packages selected", ErrorCode.NO_PACKAGES)

            shipment = await self._load_sender_draft(shipment_id, org_id, "Can only add packages to draft shipments")

            requested = list(dict.fromkeys(package_ids))
            try:
                found = {p.id: p for p in await self.repository.get_packages(requested)}
            except Exception as e:
                logger.error(f"Failed to verify packages for {shipment_id}: {e}", exc_info=True)
                raise ShipmentActionError("Failed to verify packages", ErrorCode.QUERY_FAILED) from e

            held = await self._open_shipment_ids(
                {p.shipment_id for p in found.values() if p.shipment_id and p.shipment_id != shipment_id}
            )

            valid: List[str] = []
            skipped: List[str] = []
            for package_id in requested:
                package = found.get(package_id)
                if (
                    package is None
                    or package.organisation_id != org_id
                    or package.status == PackageStatus.CONSUMED
                    or package.shipment_id == shipment_id
                    or package.shipment_id in held
                ):
                    skipped.append(package_id)
                else:
                    valid.append(package_id)

            if not valid:
                raise ShipmentActionError("No valid packages to add", ErrorCode.NO_VALID_PACKAGES)
            if skipped:
                logger.warning(f"Skipped {len(skipped)} packages not eligible for {shipment.shipment_code}")

            try:
                first = await self.repository.allocate_package_sequences(shipment_id, len(valid))
            except Exception as e:
                logger.error(f"Failed to allocate package numbers for {shipment_id}: {e}", exc_info=True)
                raise ShipmentActionError("Failed to allocate package numbers", ErrorCode.SEQ_FAILED) from e

            assignments = [
                (package_id, first + i, format_package_number(shipment.shipment_number, first + i))
                for i, package_id in enumerate(valid)
            ]
            try:
                await self.repository.link_packages(shipment_id, assignments)
            except Exception as e:
                logger.error(f"Failed to link packages to {shipment_id}: {e}", exc_info=True)
                raise ShipmentActionError("Failed to add packages", ErrorCode.UPDATE_FAILED) from e

            return AddPackagesResponse(
                success=True,
                message=f"Added {len(valid)} packages",
                added=len(valid),
                skipped_package_ids=skipped,
            )

        except ShipmentActionError as e:
            return self._failure(AddPackagesResponse, e)
        except Exception as e:
            logger.error(f"Error adding packages to {shipment_id}: {e}", exc_info=True)
            return AddPackagesResponse(success=False, message="Failed to add packages", error_code=ErrorCode.UPDATE_FAILED)

    async def remove_package_from_shipment(
        self, ctx: CallerContext, shipment_id: str, package_id: str
    ) -> ShipmentActionResponse:
        """Remove a package from a draft (hard delete)"""
        try:
            org_id = self._require_org(ctx)
            await self._load_sender_draft(shipment_id, org_id, "Can only remove packages from draft shipments")

            package = await self.repository.get_package(package_id)
            if not package:
                raise ShipmentActionError("Package not found", ErrorCode.NOT_FOUND)
            if package.shipment_id != shipment_id:
                raise ShipmentActionError("Package not in this shipment", ErrorCode.WRONG_SHIPMENT)

            try:
                await self.repository.delete_package(package_id)
            except Exception as e:
                logger.error(f"Failed to remove package {package_id}: {e}", exc_info=True)
                raise ShipmentActionError("Failed to remove package", ErrorCode.DELETE_FAILED) from e

            return ShipmentActionResponse(success=True, message="Package removed")

        except ShipmentActionError as e:
            return self._failure(ShipmentActionResponse, e)
        except Exception as e:
            logger.error(f"Error removing package {package_id} from {shipment_id}: {e}", exc_info=True)
            return ShipmentActionResponse(success=False, message="Failed to remove package", error_code=ErrorCode.DELETE_FAILED)

    async def save_incoming_packages(
        self, ctx: CallerContext, shipment_id: str, request: SaveIncomingPackagesRequest
    ) -> SaveIncomingPackagesResponse:
        """
        Batch delete/update/create packages of an incoming draft from an
        external sender.

        Items are processed independently; the call fails only when every
        item failed.
        """
        try:
            org_id = self._require_org(ctx)
            shipment = await self._load_shipment(shipment_id)
            if shipment.to_organisation_id != org_id:
                raise ShipmentActionError("Access denied", ErrorCode.FORBIDDEN)
            if not await self._sender_is_external(shipment):
                raise ShipmentActionError(
                    "Packages can only be edited on shipments from external organizations", ErrorCode.NOT_EXTERNAL
                )
            self._require_status(shipment, ShipmentStatus.DRAFT, "Can only edit packages of draft shipments")
        except ShipmentActionError as e:
            return self._failure(SaveIncomingPackagesResponse, e)
        except Exception as e:
            logger.error(f"Error preparing package save for {shipment_id}: {e}", exc_info=True)
            return SaveIncomingPackagesResponse(success=False, message="Failed to save packages", error_code=ErrorCode.SAVE_FAILED)

        errors: List[str] = []
        deleted = await self._delete_incoming(shipment_id, request.deleted_package_ids, errors)

        existing_rows = [row for row in request.packages if not row.is_new_row]
        new_rows = [row for row in request.packages if row.is_new_row]
        updated = await self._update_incoming(shipment_id, existing_rows, errors)
        created = await self._create_incoming(shipment, org_id, new_rows, errors)

        if errors and created + updated + deleted == 0:
            logger.warning(f"Package save for {shipment.shipment_code} failed entirely: {errors}")
            return SaveIncomingPackagesResponse(
                success=False,
                message="Failed to save packages",
                error_code=ErrorCode.SAVE_FAILED,
                errors=errors,
            )

        logger.info(
            f"Saved packages of {shipment.shipment_code}: "
            f"created={created} updated={updated} deleted={deleted} errors={len(errors)}"
        )
        return SaveIncomingPackagesResponse(
            success=True,
            message="Packages saved" if not errors else "Packages saved with errors",
            created=created,
            updated=updated,
            deleted=deleted,
            errors=errors,
        )

    async def _verify_in_shipment(self, shipment_id: str, package_id: str) -> Package:
        package = await self.repository.get_package(package_id)
        if not package or package.shipment_id != shipment_id:
            raise ShipmentActionError("Package not in this shipment", ErrorCode.WRONG_SHIPMENT)
        return package

    async def _delete_incoming(self, shipment_id: str, package_ids: List[str], errors: List[str]) -> int:
        deleted = 0
        for package_id in package_ids:
            try:
                await self._verify_in_shipment(shipment_id, package_id)
                await self.repository.delete_package(package_id)
                deleted += 1
            except ShipmentActionError as e:
                errors.append(f"Delete {package_id}: {e.message}")
            except Exception as e:
                logger.error(f"Failed to delete package {package_id}: {e}", exc_info=True)
                errors.append(f"Delete {package_id}: failed to delete package")
        return deleted

    async def _update_incoming(self, shipment_id: str, rows: List[IncomingPackageInput], errors: List[str]) -> int:
        updated = 0
        for row in rows:
            try:
                await self._verify_in_shipment(shipment_id, row.id)
                fields = self._package_fields(row)
                if row.package_number:
                    fields["package_number"] = row.package_number
                await self.repository.update_package(row.id, fields)
                updated += 1
            except ShipmentActionError as e:
                errors.append(f"Update {row.id}: {e.message}")
            except Exception as e:
                logger.error(f"Failed to update package {row.id}: {e}", exc_info=True)
                errors.append(f"Update {row.id}: failed to update package")
        return updated

    async def _create_incoming(
        self, shipment: Shipment, org_id: str, rows: List[IncomingPackageInput], errors: List[str]
    ) -> int:
        if not rows:
            return 0
        try:
            first = await self.repository.allocate_package_sequences(shipment.id, len(rows))
        except Exception as e:
            logger.error(f"Failed to allocate package numbers for {shipment.id}: {e}", exc_info=True)
            errors.extend(f"Create {row.id or 'new'}: failed to allocate package number" for row in rows)
            return 0

        created = 0
        for i, row in enumerate(rows):
            sequence = first + i
            data = self._package_fields(row)
            data.update({
                "package_number": row.package_number or format_incoming_package_number(shipment.shipment_code, sequence),
                "package_sequence": sequence,
                "organisation_id": org_id,
                "shipment_id": shipment.id,
                "status": PackageStatus.AVAILABLE,
            })
            try:
                await self.repository.create_package(data)
                created += 1
            except Exception as e:
                logger.error(f"Failed to create package for {shipment.id}: {e}", exc_info=True)
                errors.append(f"Create {row.id or 'new'}: failed to create package")
        return created

    @staticmethod
    def _package_fields(row: IncomingPackageInput) -> Dict:
        volume = derive_volume(VolumeState(
            thickness=row.thickness,
            width=row.width,
            length=row.length,
            pieces=row.pieces,
            volume_m3=row.volume_m3,
            volume_is_calculated=row.volume_is_calculated,
        ))
        return {
            "product_name_id": row.product_name_id,
            "wood_species_id": row.wood_species_id,
            "humidity_id": row.humidity_id,
            "type_id": row.type_id,
            "processing_id": row.processing_id,
            "fsc_id": row.fsc_id,
            "quality_id": row.quality_id,
            "thickness": row.thickness,
            "width": row.width,
            "length": row.length,
            "pieces": row.pieces,
            "volume_m3": volume.volume_m3,
            "volume_is_calculated": volume.volume_is_calculated,
            "notes": row.notes,
        }

    async def update_transport_cost(
        self, ctx: CallerContext, shipment_id: str, transport_cost_eur: Optional[Decimal]
    ) -> ShipmentResponse:
        try:
            org_id = self._require_org(ctx)
            if transport_cost_eur is not None and transport_cost_eur < 0:
                raise ShipmentActionError("Transport cost cannot be negative", ErrorCode.VALIDATION_FAILED)
            shipment = await self._load_shipment(shipment_id)
            if not await self._can_manage(shipment, org_id):
                raise ShipmentActionError("Access denied", ErrorCode.FORBIDDEN)
            self._require_status(shipment, ShipmentStatus.DRAFT, "Can only edit draft shipments")

            try:
                updated = await self.repository.update_draft_fields(
                    shipment_id, {"transport_cost_eur": transport_cost_eur}
                )
            except Exception as e:
                logger.error(f"Failed to update transport cost of {shipment_id}: {e}", exc_info=True)
                raise ShipmentActionError("Failed to update shipment", ErrorCode.UPDATE_FAILED) from e
            if updated is None:
                raise ShipmentActionError("Can only edit draft shipments", ErrorCode.NOT_DRAFT)
            return ShipmentResponse(success=True, message="Transport cost updated", shipment=updated)

        except ShipmentActionError as e:
            return self._failure(ShipmentResponse, e)
        except Exception as e:
            logger.error(f"Error updating transport cost of {shipment_id}: {e}", exc_info=True)
            return ShipmentResponse(success=False, message="Failed to update shipment", error_code=ErrorCode.UPDATE_FAILED)

    # ====================
    # Pallets
    # ====================

    async def create_pallet(self, ctx: CallerContext, shipment_id: str, notes: Optional[str] = None) -> PalletResponse:
        try:
            org_id = self._require_org(ctx)
            await self._load_sender_draft(shipment_id, org_id, "Can only add pallets to draft shipments")

            try:
                pallet = await self.repository.create_pallet(shipment_id, notes=notes)
            except Exception as e:
                logger.error(f"Failed to create pallet for {shipment_id}: {e}", exc_info=True)
                raise ShipmentActionError("Failed to create pallet", ErrorCode.INSERT_FAILED) from e

            return PalletResponse(success=True, message=f"Pallet {pallet.pallet_number} created", pallet=pallet)

        except ShipmentActionError as e:
            return self._failure(PalletResponse, e)
        except Exception as e:
            logger.error(f"Error creating pallet for {shipment_id}: {e}", exc_info=True)
            return PalletResponse(success=False, message="Failed to create pallet", error_code=ErrorCode.INSERT_FAILED)

    async def delete_pallet(self, ctx: CallerContext, pallet_id: str) -> ShipmentActionResponse:
        """Delete a pallet; its packages become loose"""
        try:
            org_id = self._require_org(ctx)
            pallet = await self.repository.get_pallet(pallet_id)
            if not pallet:
                raise ShipmentActionError("Pallet not found", ErrorCode.NOT_FOUND)
            await self._load_sender_draft(pallet.shipment_id, org_id, "Can only delete pallets from draft shipments")

            try:
                deleted = await self.repository.delete_pallet(pallet_id)
            except Exception as e:
                logger.error(f"Failed to delete pallet {pallet_id}: {e}", exc_info=True)
                raise ShipmentActionError("Failed to delete pallet", ErrorCode.DELETE_FAILED) from e
            if not deleted:
                raise ShipmentActionError("Pallet not found", ErrorCode.PALLET_NOT_FOUND)

            return ShipmentActionResponse(success=True, message="Pallet deleted")

        except ShipmentActionError as e:
            return self._failure(ShipmentActionResponse, e)
        except Exception as e:
            logger.error(f"Error deleting pallet {pallet_id}: {e}", exc_info=True)
            return ShipmentActionResponse(success=False, message="Failed to delete pallet", error_code=ErrorCode.DELETE_FAILED)

    async def assign_package_to_pallet(
        self, ctx: CallerContext, package_id: str, pallet_id: Optional[str]
    ) -> ShipmentActionResponse:
        """Put a package on a pallet of the same shipment, or make it loose"""
        try:
            org_id = self._require_org(ctx)
            package = await self.repository.get_package(package_id)
            if not package:
                raise ShipmentActionError("Package not found", ErrorCode.NOT_FOUND)
            if not package.shipment_id:
                raise ShipmentActionError("Package not in a shipment", ErrorCode.NO_SHIPMENT)
            await self._load_sender_draft(package.shipment_id, org_id, "Can only assign pallets in draft shipments")

            if pallet_id is not None:
                pallet = await self.repository.get_pallet(pallet_id)
                if not pallet:
                    raise ShipmentActionError("Pallet not found", ErrorCode.PALLET_NOT_FOUND)
                if pallet.shipment_id != package.shipment_id:
                    raise ShipmentActionError("Pallet belongs to a different shipment", ErrorCode.WRONG_SHIPMENT)

            try:
                await self.repository.assign_package_to_pallet(package_id, pallet_id)
            except Exception as e:
                logger.error(f"Failed to assign package {package_id} to pallet {pallet_id}: {e}", exc_info=True)
                raise ShipmentActionError("Failed to assign package", ErrorCode.UPDATE_FAILED) from e

            return ShipmentActionResponse(
                success=True, message="Package assigned to pallet" if pallet_id else "Package is now loose"
            )

        except ShipmentActionError as e:
            return self._failure(ShipmentActionResponse, e)
        except Exception as e:
            logger.error(f"Error assigning package {package_id}: {e}", exc_info=True)
            return ShipmentActionResponse(success=False, message="Failed to assign package", error_code=ErrorCode.UPDATE_FAILED)
