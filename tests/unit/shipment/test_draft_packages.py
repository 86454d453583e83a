"""
Unit Tests for Draft Package Management

Tests adding and removing inventory packages on a draft.
"""

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.shipment_service.models import (
    CreateShipmentDraftRequest,
    ErrorCode,
    PackageStatus,
    ShipmentStatus,
)
from tests.fixtures.shipment_fixtures import OTHER_ORG, RECEIVER_ORG, SENDER_ORG


async def _second_draft(shipment_service, sender_ctx):
    result = await shipment_service.create_shipment_draft(
        sender_ctx, CreateShipmentDraftRequest(to_organisation_id=RECEIVER_ORG)
    )
    return result.shipment


class TestAddPackages:
    """Tests for add_packages_to_shipment"""

    @pytest.mark.asyncio
    async def test_add_packages_numbers_in_order(self, shipment_service, sender_ctx, draft_shipment, mock_repository):
        a = mock_repository.add_package(SENDER_ORG, id="pkg_a")
        b = mock_repository.add_package(SENDER_ORG, id="pkg_b", status=PackageStatus.PRODUCED)

        result = await shipment_service.add_packages_to_shipment(sender_ctx, draft_shipment.id, [a.id, b.id])

        assert result.success is True
        assert result.added == 2
        assert result.skipped_package_ids == []
        linked = await mock_repository.list_shipment_packages(draft_shipment.id)
        assert [p.package_number for p in linked] == ["TWP-001-001", "TWP-001-002"]

    @pytest.mark.asyncio
    async def test_numbering_continues_after_existing(
        self, shipment_service, sender_ctx, draft_with_packages, mock_repository
    ):
        c = mock_repository.add_package(SENDER_ORG, id="pkg_c")

        await shipment_service.add_packages_to_shipment(sender_ctx, draft_with_packages.id, [c.id])

        assert mock_repository.packages["pkg_c"].package_sequence == 3

    @pytest.mark.asyncio
    async def test_foreign_and_consumed_packages_skipped(
        self, shipment_service, sender_ctx, draft_shipment, mock_repository
    ):
        own = mock_repository.add_package(SENDER_ORG, id="pkg_own")
        mock_repository.add_package(OTHER_ORG, id="pkg_foreign")
        mock_repository.add_package(SENDER_ORG, id="pkg_used", status=PackageStatus.CONSUMED)

        result = await shipment_service.add_packages_to_shipment(
            sender_ctx, draft_shipment.id, [own.id, "pkg_foreign", "pkg_used", "pkg_missing"]
        )

        assert result.success is True
        assert result.added == 1
        assert result.skipped_package_ids == ["pkg_foreign", "pkg_used", "pkg_missing"]
        assert mock_repository.packages["pkg_foreign"].shipment_id is None

    @pytest.mark.asyncio
    async def test_empty_selection(self, shipment_service, sender_ctx, draft_shipment):
        result = await shipment_service.add_packages_to_shipment(sender_ctx, draft_shipment.id, [])

        assert result.error_code == ErrorCode.NO_PACKAGES
        assert result.message == "No packages selected"

    @pytest.mark.asyncio
    async def test_nothing_valid(self, shipment_service, sender_ctx, draft_shipment, mock_repository):
        mock_repository.add_package(OTHER_ORG, id="pkg_foreign")

        result = await shipment_service.add_packages_to_shipment(sender_ctx, draft_shipment.id, ["pkg_foreign"])

        assert result.error_code == ErrorCode.NO_VALID_PACKAGES
        assert result.message == "No valid packages to add"

    @pytest.mark.asyncio
    async def test_pending_shipment_rejected(self, shipment_service, sender_ctx, pending_shipment, mock_repository):
        mock_repository.add_package(SENDER_ORG, id="pkg_late")

        result = await shipment_service.add_packages_to_shipment(sender_ctx, pending_shipment.id, ["pkg_late"])

        assert result.error_code == ErrorCode.NOT_DRAFT
        assert result.message == "Can only add packages to draft shipments"

    @pytest.mark.asyncio
    async def test_receiver_cannot_add(self, shipment_service, receiver_ctx, draft_shipment):
        result = await shipment_service.add_packages_to_shipment(receiver_ctx, draft_shipment.id, ["pkg_x"])

        assert result.error_code == ErrorCode.FORBIDDEN

    @pytest.mark.asyncio
    async def test_verification_failure(self, shipment_service, sender_ctx, draft_shipment, mock_repository):
        mock_repository.fail_on["get_packages"] = RuntimeError("db down")

        result = await shipment_service.add_packages_to_shipment(sender_ctx, draft_shipment.id, ["pkg_x"])

        assert result.error_code == ErrorCode.QUERY_FAILED
        assert result.message == "Failed to verify packages"

    @pytest.mark.asyncio
    async def test_package_of_pending_shipment_skipped(
        self, shipment_service, sender_ctx, pending_shipment, mock_repository
    ):
        """A package stays with the open shipment it is linked to"""
        other = await _second_draft(shipment_service, sender_ctx)
        own = mock_repository.add_package(SENDER_ORG, id="pkg_free")

        result = await shipment_service.add_packages_to_shipment(sender_ctx, other.id, ["pkg_linked_1", own.id])

        assert result.success is True
        assert result.added == 1
        assert result.skipped_package_ids == ["pkg_linked_1"]
        moved = mock_repository.packages["pkg_linked_1"]
        assert moved.shipment_id == pending_shipment.id
        assert moved.package_sequence == 1

    @pytest.mark.asyncio
    async def test_package_of_other_draft_skipped(
        self, shipment_service, sender_ctx, draft_with_packages, mock_repository
    ):
        other = await _second_draft(shipment_service, sender_ctx)

        result = await shipment_service.add_packages_to_shipment(sender_ctx, other.id, ["pkg_linked_2"])

        assert result.error_code == ErrorCode.NO_VALID_PACKAGES
        assert mock_repository.packages["pkg_linked_2"].shipment_id == draft_with_packages.id

    @pytest.mark.asyncio
    async def test_package_of_rejected_shipment_can_be_reused(
        self, shipment_service, sender_ctx, draft_with_packages, mock_repository
    ):
        mock_repository.shipments[draft_with_packages.id] = draft_with_packages.model_copy(
            update={"status": ShipmentStatus.REJECTED}
        )
        other = await _second_draft(shipment_service, sender_ctx)

        result = await shipment_service.add_packages_to_shipment(sender_ctx, other.id, ["pkg_linked_1"])

        assert result.added == 1
        assert mock_repository.packages["pkg_linked_1"].shipment_id == other.id

    @pytest.mark.asyncio
    async def test_linked_shipment_lookup_failure(
        self, shipment_service, sender_ctx, draft_with_packages, mock_repository, monkeypatch
    ):
        other = await _second_draft(shipment_service, sender_ctx)
        load = mock_repository.get_shipment

        async def get_shipment(shipment_id):
            if shipment_id == draft_with_packages.id:
                raise RuntimeError("db down")
            return await load(shipment_id)

        monkeypatch.setattr(mock_repository, "get_shipment", get_shipment)

        result = await shipment_service.add_packages_to_shipment(sender_ctx, other.id, ["pkg_linked_1"])

        assert result.error_code == ErrorCode.QUERY_FAILED
        assert result.message == "Failed to verify packages"
        assert mock_repository.packages["pkg_linked_1"].shipment_id == draft_with_packages.id


class TestAvailablePackages:
    """Tests for get_available_packages"""

    @pytest.mark.asyncio
    async def test_lists_own_unconsumed_packages(
        self, shipment_service, sender_ctx, draft_with_packages, mock_repository
    ):
        mock_repository.add_package(SENDER_ORG, id="pkg_free")
        mock_repository.add_package(SENDER_ORG, id="pkg_gone", status=PackageStatus.CONSUMED)
        mock_repository.add_package(OTHER_ORG, id="pkg_theirs")

        result = await shipment_service.get_available_packages(sender_ctx, draft_with_packages.id)

        assert [p.id for p in result.packages] == ["pkg_free"]

    @pytest.mark.asyncio
    async def test_packages_of_open_shipments_excluded(
        self, shipment_service, sender_ctx, pending_shipment, mock_repository
    ):
        other = await _second_draft(shipment_service, sender_ctx)
        mock_repository.add_package(SENDER_ORG, id="pkg_free")

        result = await shipment_service.get_available_packages(sender_ctx, other.id)

        assert [p.id for p in result.packages] == ["pkg_free"]

    @pytest.mark.asyncio
    async def test_packages_of_rejected_shipment_listed(
        self, shipment_service, sender_ctx, draft_with_packages, mock_repository
    ):
        mock_repository.shipments[draft_with_packages.id] = draft_with_packages.model_copy(
            update={"status": ShipmentStatus.REJECTED}
        )
        other = await _second_draft(shipment_service, sender_ctx)

        result = await shipment_service.get_available_packages(sender_ctx, other.id)

        assert sorted(p.id for p in result.packages) == ["pkg_linked_1", "pkg_linked_2"]


class TestRemovePackage:
    """Tests for remove_package_from_shipment"""

    @pytest.mark.asyncio
    async def test_remove_deletes_package(self, shipment_service, sender_ctx, draft_with_packages, mock_repository):
        result = await shipment_service.remove_package_from_shipment(sender_ctx, draft_with_packages.id, "pkg_linked_1")

        assert result.success is True
        assert "pkg_linked_1" not in mock_repository.packages

    @pytest.mark.asyncio
    async def test_remove_unknown_package(self, shipment_service, sender_ctx, draft_shipment):
        result = await shipment_service.remove_package_from_shipment(sender_ctx, draft_shipment.id, "pkg_missing")

        assert result.error_code == ErrorCode.NOT_FOUND
        assert result.message == "Package not found"

    @pytest.mark.asyncio
    async def test_remove_package_of_other_shipment(self, shipment_service, sender_ctx, draft_shipment, mock_repository):
        mock_repository.add_package(SENDER_ORG, id="pkg_loose")

        result = await shipment_service.remove_package_from_shipment(sender_ctx, draft_shipment.id, "pkg_loose")

        assert result.error_code == ErrorCode.WRONG_SHIPMENT
        assert result.message == "Package not in this shipment"

    @pytest.mark.asyncio
    async def test_remove_delete_failure(self, shipment_service, sender_ctx, draft_with_packages, mock_repository):
        mock_repository.fail_on["delete_package"] = RuntimeError("db down")

        result = await shipment_service.remove_package_from_shipment(sender_ctx, draft_with_packages.id, "pkg_linked_1")

        assert result.error_code == ErrorCode.DELETE_FAILED
