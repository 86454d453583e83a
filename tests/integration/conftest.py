"""
Integration Test Layer Configuration

Runs against a real PostgreSQL. Disabled unless RUN_DB_TESTS=true.

Usage:
    RUN_DB_TESTS=true POSTGRES_HOST=localhost pytest tests/integration -v
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../.."))


def pytest_collection_modifyitems(config, items):
    """Every integration test needs the database"""
    for item in items:
        if "tests/integration" in str(item.fspath).replace(os.sep, "/"):
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.requires_db)
