"""
Unit Test Layer Configuration

Structure:
    tests/unit/
    └── shipment/    Shipment service logic, codes, volume, clients

Usage:
    pytest tests/unit -v
    pytest tests/unit/shipment -v
"""
import os
import sys

import pytest

# Add project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))


def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )


def pytest_collection_modifyitems(config, items):
    """Mark every test under tests/unit as a unit test"""
    for item in items:
        if "tests/unit" in str(item.fspath).replace(os.sep, "/"):
            item.add_marker(pytest.mark.unit)
