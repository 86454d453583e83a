"""
Root conftest.py - Global fixtures and configuration for all test layers.

Test Layers:
    - integration/: Repository tests against a real PostgreSQL
    - component/  : API tests (FastAPI TestClient, mocked dependencies)
    - unit/       : Service logic and pure functions, no I/O
"""
import os
import sys
from typing import Dict, List

import pytest

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)


# =============================================================================
# Test Configuration
# =============================================================================

class TestConfig:
    """Centralized test configuration"""

    SERVICES = {
        "organization_service": 8212,
        "shipment_service": 8260,
    }

    @classmethod
    def get_service_url(cls, service_name: str) -> str:
        host = os.getenv(f"{service_name.upper()}_HOST", "localhost")
        return f"http://{host}:{cls.SERVICES[service_name]}"


@pytest.fixture(scope="session")
def test_config() -> TestConfig:
    """Provide test configuration"""
    return TestConfig()


# =============================================================================
# Assertion Helpers
# =============================================================================

class AssertionHelpers:
    """Custom assertion helpers for tests"""

    @staticmethod
    def assert_http_success(response, expected_status: int = 200):
        """Assert HTTP response is successful"""
        assert response.status_code == expected_status, \
            f"Expected {expected_status}, got {response.status_code}: {response.text}"

    @staticmethod
    def assert_has_fields(data: Dict, fields: List[str]):
        """Assert dict has required fields"""
        missing = [f for f in fields if f not in data]
        assert not missing, f"Missing fields: {missing}"

    @staticmethod
    def assert_error_code(response, expected_status: int, error_code: str):
        """Assert a failed API response carries the expected error code"""
        assert response.status_code == expected_status, \
            f"Expected {expected_status}, got {response.status_code}: {response.text}"
        assert response.json()["detail"]["error_code"] == error_code


@pytest.fixture
def assertions() -> AssertionHelpers:
    """Provide assertion helpers"""
    return AssertionHelpers()


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "component: Component tests")
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "requires_db: needs a running PostgreSQL")


def pytest_collection_modifyitems(config, items):
    """Skip infrastructure tests unless explicitly enabled"""
    skip_db = pytest.mark.skip(reason="PostgreSQL tests disabled (set RUN_DB_TESTS=true)")

    for item in items:
        if "requires_db" in item.keywords and os.getenv("RUN_DB_TESTS", "false").lower() != "true":
            item.add_marker(skip_db)
