# CREATE FILE: services/pricing_service/tests/test_app.py

import pytest
from unittest.mock import patch
from fastapi.testclient import TestClient

from services.pricing_service.app import (
    app, DeliveryPriceRequest, DistanceRequest, PickupTimeRequest, AvailabilityRequest
)


@pytest.fixture
def client(monkeypatch):
    # No API key: distance comes from the city heuristic
    monkeypatch.delenv('GOOGLE_MAPS_API_KEY', raising=False)
    return TestClient(app)


class TestPricingApi:

    def test_health(self, client):
        assert client.get("/health").json() == {"ok": True}

    def test_delivery_price_camel_case_payload(self, client):
        response = client.post("/price/delivery", json={
            "pickupAddress": "123 Main St, San Francisco, CA",
            "dropoffAddress": "456 Oak Ave, San Francisco, CA",
            "headCount": 20,
            "foodCost": 250,
            "includeTip": True
        })

        assert response.status_code == 200
        body = response.json()
        assert body["deliveryPrice"] == 35.0
        assert "Standard" in body["tier"]
        assert body["breakdown"]["tipIncluded"] is True

    def test_delivery_price_defaults_to_tip_included(self, client):
        response = client.post("/price/delivery", json={
            "pickupAddress": "123 Main St, Oakland, CA",
            "dropoffAddress": "456 Oak Ave, Oakland, CA",
            "headCount": 120,
            "foodCost": 2000
        })

        assert response.json()["deliveryPrice"] == 180.0

    def test_cross_city_uses_default_distance(self, client):
        response = client.post("/price/delivery", json={
            "pickupAddress": "123 Main St, San Francisco, CA",
            "dropoffAddress": "456 Oak Ave, San Jose, CA",
            "headCount": 20,
            "foodCost": 250
        })

        assert "Over 10 Miles" in response.json()["tier"]

    def test_city_with_zip_stays_standard(self, client):
        response = client.post("/price/delivery", json={
            "pickupAddress": "500 Market St, San Francisco CA 94105",
            "dropoffAddress": "1 Main St, San Francisco, CA",
            "headCount": 20,
            "foodCost": 250
        })

        body = response.json()
        assert body["deliveryPrice"] == 35.0
        assert "Standard" in body["tier"]

    def test_snake_case_field_names_accepted(self, client):
        response = client.post("/price/delivery", json={
            "pickup_address": "123 Main St, Oakland, CA",
            "dropoff_address": "456 Oak Ave, Oakland, CA",
            "head_count": 20,
            "food_cost": 250,
            "include_tip": False
        })

        assert response.status_code == 200
        assert response.json()["deliveryPrice"] == 42.5

    def test_request_models_populate_by_name(self):
        for model in (DeliveryPriceRequest, DistanceRequest, PickupTimeRequest, AvailabilityRequest):
            assert model.model_config["populate_by_name"] is True

        request = DistanceRequest(pickup_address="1 A St, Oakland", delivery_address="2 B St, Oakland")
        assert request.delivery_address == "2 B St, Oakland"

    def test_negative_head_count_rejected(self, client):
        response = client.post("/price/delivery", json={
            "pickupAddress": "a", "dropoffAddress": "b", "headCount": -1, "foodCost": 10
        })

        assert response.status_code == 422

    def test_distance_endpoint_never_fails(self, client):
        with patch('services.pricing_service.distance.requests.get', side_effect=RuntimeError("boom")):
            response = client.post("/distance", json={
                "pickupAddress": "Unknown Address Format",
                "deliveryAddress": "Somewhere else"
            })

        assert response.status_code == 200
        assert response.json() == {"distanceMiles": 25.0}

    def test_pickup_time(self, client):
        response = client.post("/schedule/pickup-time", json={
            "deliveryDate": "2024-01-15", "deliveryTime": "14:00", "bufferMinutes": 60
        })

        # Configured zone is America/Los_Angeles (UTC-8 in January)
        assert response.json() == {"pickupTime": "2024-01-15T21:00:00.000Z"}

    def test_pickup_time_invalid_input(self, client):
        response = client.post("/schedule/pickup-time", json={
            "deliveryDate": "2024-13-45", "deliveryTime": "14:00"
        })

        assert response.status_code == 400

    def test_availability_past_slot(self, client):
        response = client.post("/schedule/availability", json={
            "deliveryDate": "2020-01-15", "deliveryTime": "12:00"
        })

        assert response.json() == {"available": False}

    def test_config(self, client):
        config = client.get("/config").json()
        assert [band["name"] for band in config["bands"]] == ["Standard", "Over 10 Miles", "Over 30 Miles"]
