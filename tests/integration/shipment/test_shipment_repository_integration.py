"""
Integration Tests for ShipmentRepository

Exercises the SQL paths the in-memory mocks cannot: unique codes,
compare-and-swap transitions, the transactional accept and pallet numbering.
"""

import os
import sys
import uuid

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.shipment_service.models import ShipmentDirection, ShipmentStatus
from microservices.shipment_service.protocols import DuplicateShipmentCodeError


class TestShipmentRows:
    """Shipment inserts, lookups and listing"""

    @pytest.mark.asyncio
    async def test_duplicate_code_is_rejected(self, repository, org_pair):
        sender, receiver = org_pair
        code = f"DUP-{uuid.uuid4().hex[:8].upper()}-001"
        data = {
            "shipment_code": code,
            "shipment_number": await repository.next_shipment_number(),
            "from_organisation_id": sender,
            "to_organisation_id": receiver,
        }
        await repository.create_shipment(data)

        with pytest.raises(DuplicateShipmentCodeError):
            await repository.create_shipment({**data, "shipment_number": await repository.next_shipment_number()})

    @pytest.mark.asyncio
    async def test_pair_sequence_and_direction_filter(self, repository, pending_with_packages, org_pair):
        sender, receiver = org_pair

        assert await repository.last_shipment_sequence(sender, receiver) == 1
        assert await repository.last_shipment_sequence(receiver, sender) == 0

        outgoing = await repository.list_shipments(sender, ShipmentDirection.OUTGOING)
        incoming = await repository.list_shipments(sender, ShipmentDirection.INCOMING)
        assert len(outgoing) == 1
        assert incoming == []

    @pytest.mark.asyncio
    async def test_sequence_is_monotonic(self, repository):
        first = await repository.next_shipment_number()
        second = await repository.next_shipment_number()
        assert second > first


    @pytest.mark.asyncio
    async def test_pair_sequence_uses_highest_suffix(self, repository, org_pair):
        sender, receiver = org_pair
        prefix = f"SEQ-{uuid.uuid4().hex[:8].upper()}"
        for suffix in ("001", "003"):
            await repository.create_shipment({
                "shipment_code": f"{prefix}-{suffix}",
                "shipment_number": await repository.next_shipment_number(),
                "from_organisation_id": sender,
                "to_organisation_id": receiver,
            })

        assert await repository.last_shipment_sequence(sender, receiver) == 3


class TestTransitions:
    """Compare-and-swap status updates"""

    @pytest.mark.asyncio
    async def test_stale_expected_status_returns_none(self, repository, pending_with_packages):
        shipment, _ = pending_with_packages

        result = await repository.update_shipment_status(shipment.id, ShipmentStatus.DRAFT, ShipmentStatus.PENDING)

        assert result is None
        assert (await repository.get_shipment(shipment.id)).status == ShipmentStatus.PENDING

    @pytest.mark.asyncio
    async def test_version_increments(self, repository, pending_with_packages):
        shipment, _ = pending_with_packages

        back = await repository.update_shipment_status(
            shipment.id, ShipmentStatus.PENDING, ShipmentStatus.DRAFT, {"submitted_at": None}
        )

        assert back.version == shipment.version + 1


class TestOwnershipTransfer:
    """Two-step and transactional ownership transfer"""

    @pytest.mark.asyncio
    async def test_transfer_and_restore(self, repository, pending_with_packages, org_pair):
        sender, receiver = org_pair
        shipment, packages = pending_with_packages

        moved = await repository.transfer_package_ownership(shipment.id, receiver)
        assert moved == 2

        restored = await repository.restore_package_owners({p.id: sender for p in packages})
        assert restored == 2
        for package in await repository.get_packages([p.id for p in packages]):
            assert package.organisation_id == sender

    @pytest.mark.asyncio
    async def test_transfer_and_complete_is_atomic(self, repository, pending_with_packages, org_pair):
        _, receiver = org_pair
        shipment, packages = pending_with_packages

        completed = await repository.transfer_and_complete(shipment.id, receiver, {"reviewed_by": "usr_int"})

        assert completed.status == ShipmentStatus.COMPLETED
        assert completed.reviewed_by == "usr_int"
        for package in await repository.list_shipment_packages(shipment.id):
            assert package.organisation_id == receiver

    @pytest.mark.asyncio
    async def test_transfer_and_complete_requires_pending(self, repository, pending_with_packages, org_pair):
        sender, receiver = org_pair
        shipment, packages = pending_with_packages
        await repository.update_shipment_status(shipment.id, ShipmentStatus.PENDING, ShipmentStatus.DRAFT)

        assert await repository.transfer_and_complete(shipment.id, receiver, {}) is None
        for package in await repository.get_packages([p.id for p in packages]):
            assert package.organisation_id == sender


class TestDraftContents:
    """Sequences, pallets and deletion"""

    @pytest.mark.asyncio
    async def test_available_packages_skip_open_shipments(self, repository, pending_with_packages, org_pair):
        sender, _ = org_pair
        shipment, packages = pending_with_packages
        loose = await repository.create_package({"organisation_id": sender, "thickness": "40"})

        held = await repository.list_available_packages(sender)
        await repository.update_shipment_status(shipment.id, ShipmentStatus.PENDING, ShipmentStatus.REJECTED)
        released = await repository.list_available_packages(sender)

        assert [p.id for p in held] == [loose.id]
        assert {p.id for p in released} == {loose.id} | {p.id for p in packages}

    @pytest.mark.asyncio
    async def test_sequence_allocation_continues(self, repository, pending_with_packages):
        shipment, _ = pending_with_packages
        assert await repository.allocate_package_sequences(shipment.id, 3) == 3

    @pytest.mark.asyncio
    async def test_pallet_numbers_follow_max(self, repository, pending_with_packages):
        shipment, packages = pending_with_packages

        first = await repository.create_pallet(shipment.id)
        second = await repository.create_pallet(shipment.id)
        await repository.assign_package_to_pallet(packages[0].id, second.id)
        assert await repository.delete_pallet(first.id) is True
        third = await repository.create_pallet(shipment.id)

        assert (first.pallet_number, second.pallet_number, third.pallet_number) == (1, 2, 3)
        assert (await repository.get_package(packages[0].id)).pallet_id == second.id

    @pytest.mark.asyncio
    async def test_delete_refuses_non_draft(self, repository, pending_with_packages):
        shipment, packages = pending_with_packages

        assert await repository.delete_shipment(shipment.id, delete_packages=False) is False
        assert (await repository.get_package(packages[0].id)).shipment_id == shipment.id

    @pytest.mark.asyncio
    async def test_delete_draft_unlinks_packages(self, repository, pending_with_packages):
        shipment, packages = pending_with_packages
        await repository.update_shipment_status(shipment.id, ShipmentStatus.PENDING, ShipmentStatus.DRAFT)

        assert await repository.delete_shipment(shipment.id, delete_packages=False) is True
        package = await repository.get_package(packages[0].id)
        assert package.shipment_id is None
        assert package.package_sequence is None
