"""
Component Test Fixtures for Shipment Service

Provides fixtures for component testing with FastAPI TestClient.
The service runs over in-memory mocks; the app lifespan is not started.
"""

import pytest
from datetime import date
from unittest.mock import patch
import sys
import os

os.environ.setdefault("NATS_ENABLED", "false")

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.shipment_service.models import Shipment, ShipmentStatus
from microservices.shipment_service.shipment_service import ShipmentService
from tests.fixtures.shipment_fixtures import (
    EXTERNAL_ORG,
    OTHER_ORG,
    RECEIVER_ORG,
    SENDER_ORG,
    make_caller_headers,
)
from tests.fixtures.shipment_mocks import (
    MockEventBus,
    MockOrganizationDirectory,
    MockShipmentRepository,
)


@pytest.fixture
def mock_repository():
    """Fresh mock repository for each test"""
    return MockShipmentRepository()


@pytest.fixture
def mock_directory():
    directory = MockOrganizationDirectory()
    directory.add(SENDER_ORG, "ALF")
    directory.add(RECEIVER_ORG, "BRV")
    directory.add(OTHER_ORG, "OTH")
    directory.add(EXTERNAL_ORG, "EXT", is_external=True)
    directory.partners.add((RECEIVER_ORG, EXTERNAL_ORG))
    return directory


@pytest.fixture
def client(mock_repository, mock_directory):
    """Create FastAPI test client with mocked dependencies"""
    from fastapi.testclient import TestClient

    service = ShipmentService(
        repository=mock_repository,
        organization_directory=mock_directory,
        event_bus=MockEventBus(),
    )

    # Patch the globals in main module
    with patch("microservices.shipment_service.main.shipment_service", service), \
         patch("microservices.shipment_service.main.repository", None), \
         patch("microservices.shipment_service.main.event_bus", None):

        from microservices.shipment_service.main import app

        # Not used as a context manager, so the lifespan does not connect to real infrastructure
        yield TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def sender_headers():
    return make_caller_headers(SENDER_ORG, "user_sender")


@pytest.fixture
def receiver_headers():
    return make_caller_headers(RECEIVER_ORG, "user_receiver")


@pytest.fixture
def draft_shipment(mock_repository):
    """Outgoing draft ALF -> BRV with two linked packages"""
    shipment = Shipment(
        id="shp_component_1",
        shipment_code="ALF-BRV-001",
        shipment_number=1,
        from_organisation_id=SENDER_ORG,
        to_organisation_id=RECEIVER_ORG,
        shipment_date=date(2026, 3, 1),
    )
    mock_repository.shipments[shipment.id] = shipment
    for seq in (1, 2):
        mock_repository.add_package(
            SENDER_ORG, id=f"pkg_linked_{seq}", shipment_id=shipment.id, package_sequence=seq
        )
    mock_repository.package_counters[shipment.id] = 2
    return shipment


@pytest.fixture
def pending_shipment(mock_repository, draft_shipment):
    shipment = draft_shipment.model_copy(update={"status": ShipmentStatus.PENDING})
    mock_repository.shipments[shipment.id] = shipment
    return shipment
