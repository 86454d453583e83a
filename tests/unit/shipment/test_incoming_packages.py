"""
Unit Tests for Incoming Package Entry

Tests the batch save of hand-entered packages on incoming drafts.
"""

import pytest
from decimal import Decimal

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.shipment_service.models import CallerContext, ErrorCode, SaveIncomingPackagesRequest
from tests.fixtures.shipment_fixtures import (
    EXTERNAL_ORG,
    RECEIVER_ORG,
    make_incoming_package_row,
    make_save_incoming_request,
)


def _request(**kwargs) -> SaveIncomingPackagesRequest:
    return SaveIncomingPackagesRequest(**make_save_incoming_request(**kwargs))


class TestSaveIncomingPackages:
    """Tests for save_incoming_packages"""

    @pytest.mark.asyncio
    async def test_create_rows_with_calculated_volume(
        self, shipment_service, receiver_ctx, incoming_draft, mock_repository
    ):
        request = _request(rows=[
            make_incoming_package_row(row_id="new-1"),
            make_incoming_package_row(row_id="new-2", thickness="40-50", volume_m3="1.2"),
        ])

        result = await shipment_service.save_incoming_packages(receiver_ctx, incoming_draft.id, request)

        assert result.success is True
        assert result.created == 2
        packages = await mock_repository.list_shipment_packages(incoming_draft.id)
        assert [p.package_number for p in packages] == ["EXT-BRV-001-001", "EXT-BRV-001-002"]
        assert packages[0].volume_m3 == Decimal("0.300")
        assert packages[0].volume_is_calculated is True
        assert packages[1].volume_m3 == Decimal("1.2")
        assert packages[1].volume_is_calculated is False
        assert all(p.organisation_id == RECEIVER_ORG for p in packages)

    @pytest.mark.asyncio
    async def test_small_package_volume_is_stored_exactly(
        self, shipment_service, receiver_ctx, incoming_draft, mock_repository
    ):
        request = _request(rows=[
            make_incoming_package_row(row_id="new-1", thickness="5", width="5", length="5", pieces="1"),
        ])

        await shipment_service.save_incoming_packages(receiver_ctx, incoming_draft.id, request)

        package = (await mock_repository.list_shipment_packages(incoming_draft.id))[0]
        assert package.volume_m3 == Decimal("0.000000125")
        assert package.volume_is_calculated is True

    @pytest.mark.asyncio
    async def test_update_and_delete_existing(self, shipment_service, receiver_ctx, incoming_draft, mock_repository):
        keep = mock_repository.add_package(RECEIVER_ORG, id="pkg_keep", shipment_id=incoming_draft.id, package_sequence=1)
        mock_repository.add_package(RECEIVER_ORG, id="pkg_drop", shipment_id=incoming_draft.id, package_sequence=2)

        request = _request(
            rows=[make_incoming_package_row(row_id=keep.id, pieces="20")],
            deleted_package_ids=["pkg_drop"],
        )
        result = await shipment_service.save_incoming_packages(receiver_ctx, incoming_draft.id, request)

        assert result.success is True
        assert (result.created, result.updated, result.deleted) == (0, 1, 1)
        assert "pkg_drop" not in mock_repository.packages
        assert mock_repository.packages["pkg_keep"].volume_m3 == Decimal("0.600")

    @pytest.mark.asyncio
    async def test_partial_failure_is_success(self, shipment_service, receiver_ctx, incoming_draft):
        request = _request(
            rows=[make_incoming_package_row(row_id="new-1")],
            deleted_package_ids=["pkg_not_here"],
        )

        result = await shipment_service.save_incoming_packages(receiver_ctx, incoming_draft.id, request)

        assert result.success is True
        assert result.created == 1
        assert len(result.errors) == 1

    @pytest.mark.asyncio
    async def test_all_failed_is_save_failed(self, shipment_service, receiver_ctx, incoming_draft, mock_repository):
        mock_repository.fail_on["create_package"] = RuntimeError("db down")

        result = await shipment_service.save_incoming_packages(
            receiver_ctx, incoming_draft.id, _request(rows=[make_incoming_package_row()])
        )

        assert result.success is False
        assert result.error_code == ErrorCode.SAVE_FAILED
        assert result.errors

    @pytest.mark.asyncio
    async def test_internal_sender_rejected(self, shipment_service, receiver_ctx, draft_shipment):
        result = await shipment_service.save_incoming_packages(
            receiver_ctx, draft_shipment.id, _request(rows=[make_incoming_package_row()])
        )

        assert result.error_code == ErrorCode.NOT_EXTERNAL

    @pytest.mark.asyncio
    async def test_sender_cannot_edit(self, shipment_service, incoming_draft):
        ctx = CallerContext(organisation_id=EXTERNAL_ORG, user_id="user_ext")
        result = await shipment_service.save_incoming_packages(ctx, incoming_draft.id, _request())

        assert result.error_code == ErrorCode.FORBIDDEN
