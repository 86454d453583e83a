"""
Shared Test Fixtures

Centralized factories, generators, and mocks
used across all test layers.

Structure:
    - common.py: Base ID generators, timestamps
    - generators.py: Random data generators
    - shipment_fixtures.py: Organization ids, request factories
    - shipment_mocks.py: In-memory repository, directory and event bus
"""

# Common utilities
from .common import (
    make_user_id,
    make_org_id,
    make_timestamp,
)

# Random generators
from .generators import (
    random_string,
)

# Shipment service fixtures
from .shipment_fixtures import (
    SENDER_ORG,
    RECEIVER_ORG,
    EXTERNAL_ORG,
    OTHER_ORG,
    make_caller_headers,
    make_organization,
    make_incoming_package_row,
    make_save_incoming_request,
)

__all__ = [
    "make_user_id",
    "make_org_id",
    "make_timestamp",
    "random_string",
    "SENDER_ORG",
    "RECEIVER_ORG",
    "EXTERNAL_ORG",
    "OTHER_ORG",
    "make_caller_headers",
    "make_organization",
    "make_incoming_package_row",
    "make_save_incoming_request",
]
