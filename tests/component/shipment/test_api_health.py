"""
Component Tests for Shipment Health and Info API
"""

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))


class TestHealthEndpoints:
    """Tests for health and info endpoints"""

    def test_health_without_database_is_degraded(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "shipment_service"
        assert data["status"] == "degraded"
        assert data["dependencies"]["event_bus"] == "disabled"

    def test_service_info(self, client):
        response = client.get("/api/v1/shipments/info")

        assert response.status_code == 200
        assert "ownership_transfer" in response.json()["capabilities"]
