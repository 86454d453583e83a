"""
Unit Test Fixtures for Shipment Service

Service, caller and shipment fixtures over the in-memory mocks.
"""

import pytest
from datetime import date
from decimal import Decimal

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.shipment_service.models import CallerContext, Shipment, ShipmentStatus
from microservices.shipment_service.shipment_service import ShipmentService
from tests.fixtures.shipment_fixtures import EXTERNAL_ORG, OTHER_ORG, RECEIVER_ORG, SENDER_ORG
from tests.fixtures.shipment_mocks import (
    MockEventBus,
    MockOrganizationDirectory,
    MockShipmentRepository,
    TransactionalMockShipmentRepository,
)


# ====================
# Fixtures
# ====================


@pytest.fixture
def mock_repository():
    """Create mock repository"""
    return MockShipmentRepository()


@pytest.fixture
def mock_directory():
    """Directory with an internal sender, an internal receiver and an external partner"""
    directory = MockOrganizationDirectory()
    directory.add(SENDER_ORG, "ALF")
    directory.add(RECEIVER_ORG, "BRV")
    directory.add(OTHER_ORG, "OTH")
    directory.add(EXTERNAL_ORG, "EXT", is_external=True)
    directory.partners.add((RECEIVER_ORG, EXTERNAL_ORG))
    return directory


@pytest.fixture
def mock_event_bus():
    """Create mock event bus"""
    return MockEventBus()


@pytest.fixture
def shipment_service(mock_repository, mock_directory, mock_event_bus):
    """Create shipment service with mocks"""
    return ShipmentService(
        repository=mock_repository,
        organization_directory=mock_directory,
        event_bus=mock_event_bus,
    )


@pytest.fixture
def sender_ctx():
    return CallerContext(organisation_id=SENDER_ORG, user_id="user_sender")


@pytest.fixture
def receiver_ctx():
    return CallerContext(organisation_id=RECEIVER_ORG, user_id="user_receiver")


@pytest.fixture
def other_ctx():
    return CallerContext(organisation_id=OTHER_ORG, user_id="user_other")


async def _make_shipment(repository, from_org, to_org, code, status=ShipmentStatus.DRAFT) -> Shipment:
    shipment = await repository.create_shipment({
        "shipment_code": code,
        "shipment_number": await repository.next_shipment_number(),
        "from_organisation_id": from_org,
        "to_organisation_id": to_org,
        "shipment_date": date(2026, 3, 1),
        "transport_cost_eur": Decimal("150.00"),
    })
    if status != ShipmentStatus.DRAFT:
        shipment = shipment.model_copy(update={"status": status})
        repository.shipments[shipment.id] = shipment
    repository.calls.clear()
    return shipment


@pytest.fixture
async def draft_shipment(mock_repository):
    """Outgoing draft ALF -> BRV"""
    return await _make_shipment(mock_repository, SENDER_ORG, RECEIVER_ORG, "ALF-BRV-001")


@pytest.fixture
async def draft_with_packages(mock_repository, draft_shipment):
    """Draft with two linked packages owned by the sender"""
    for seq in (1, 2):
        mock_repository.add_package(
            SENDER_ORG,
            id=f"pkg_linked_{seq}",
            shipment_id=draft_shipment.id,
            package_sequence=seq,
            package_number=f"TWP-{draft_shipment.shipment_number:03d}-{seq:03d}",
        )
    mock_repository.package_counters[draft_shipment.id] = 2
    return draft_shipment


@pytest.fixture
async def pending_shipment(mock_repository, draft_with_packages):
    """Pending shipment with two packages"""
    shipment = draft_with_packages.model_copy(update={"status": ShipmentStatus.PENDING})
    mock_repository.shipments[shipment.id] = shipment
    return shipment


@pytest.fixture
async def incoming_draft(mock_repository):
    """Incoming draft EXT -> BRV"""
    return await _make_shipment(mock_repository, EXTERNAL_ORG, RECEIVER_ORG, "EXT-BRV-001")


@pytest.fixture
def tx_repository():
    """Repository that accepts in a single transaction"""
    return TransactionalMockShipmentRepository()


@pytest.fixture
def tx_service(tx_repository, mock_directory, mock_event_bus):
    """Shipment service over the transactional repository"""
    return ShipmentService(
        repository=tx_repository,
        organization_directory=mock_directory,
        event_bus=mock_event_bus,
    )
