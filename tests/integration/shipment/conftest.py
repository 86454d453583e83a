"""
Integration Test Fixtures for Shipment Service

Provides a ShipmentRepository connected to a real PostgreSQL. Every test
works under freshly generated organization ids so runs never collide.
"""

import os
import sys
import uuid
from typing import AsyncGenerator

import pytest
import pytest_asyncio

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from core.config_manager import ConfigManager
from microservices.shipment_service.models import ShipmentStatus
from microservices.shipment_service.shipment_repository import ShipmentRepository


@pytest_asyncio.fixture
async def repository() -> AsyncGenerator[ShipmentRepository, None]:
    """Repository with the shipments schema in place"""
    repo = ShipmentRepository(config=ConfigManager("shipment_service"))
    await repo.initialize()
    yield repo
    await repo.close()


@pytest.fixture
def org_pair():
    """Unique (sender, receiver) organization ids"""
    suffix = uuid.uuid4().hex[:8]
    return f"org_int_from_{suffix}", f"org_int_to_{suffix}"


@pytest_asyncio.fixture
async def pending_with_packages(repository, org_pair):
    """Pending shipment with two linked packages owned by the sender"""
    sender, receiver = org_pair
    number = await repository.next_shipment_number()
    shipment = await repository.create_shipment({
        "shipment_code": f"INT-{uuid.uuid4().hex[:8].upper()}-001",
        "shipment_number": number,
        "from_organisation_id": sender,
        "to_organisation_id": receiver,
    })
    first = await repository.allocate_package_sequences(shipment.id, 2)
    packages = []
    for _ in range(2):
        packages.append(await repository.create_package({"organisation_id": sender, "thickness": "50"}))
    await repository.link_packages(
        shipment.id,
        [(p.id, first + i, f"{shipment.shipment_code}-{first + i:03d}") for i, p in enumerate(packages)],
    )
    shipment = await repository.update_shipment_status(shipment.id, ShipmentStatus.DRAFT, ShipmentStatus.PENDING)
    return shipment, packages
