"""Tests for the HTTP surface."""

from contextlib import asynccontextmanager

import pytest
from fastapi.testclient import TestClient

from fleet_monitor.core.service import TrackingService
from fleet_monitor.main import create_app

from conftest import live_payload, point


@asynccontextmanager
async def no_lifespan(app):
    yield


@pytest.fixture
def service(mappings, result_cache, engine) -> TrackingService:
    return TrackingService(mappings, result_cache, engine)


@pytest.fixture
def client(service) -> TestClient:
    app = create_app(lifespan_handler=no_lifespan)
    app.state.service = service
    return TestClient(app)


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}


def test_vehicles_camel_case_payload(client, history):
    history.points = [point("d7", 12.9, 77.6, "2025-03-09 08:15:00", vehicle_number="KA77")]
    resp = client.get("/api/vehicles", params={
        "startTime": "2025-03-09 08:00:00",
        "endTime": "2025-03-09 09:00:00",
    })
    assert resp.status_code == 200
    assert resp.json() == [{
        "deviceId": "d7",
        "vehicleNumber": "KA77",
        "routeNumber": "500A",
        "provider": "amnex",
        "routeId": None,
        "trail": [{"lat": 12.9, "lng": 77.6, "timestamp": "2025-03-09 08:15:00"}],
    }]


def test_vehicles_device_filter_and_bypass(client, history, result_cache):
    history.points = [point("d1", 12.9, 77.6, "2025-03-09 08:15:00")]
    resp = client.get("/api/vehicles", params={
        "startTime": "2025-03-09 08:00:00",
        "endTime": "2025-03-09 09:00:00",
        "deviceId": "d1",
        "bypassCache": "true",
    })
    assert resp.status_code == 200
    assert [v["deviceId"] for v in resp.json()] == ["d1"]
    assert history.window_calls[0][2] == "d1"
    assert len(result_cache) == 0


def test_vehicles_bad_timestamp_is_400(client):
    resp = client.get("/api/vehicles", params={"startTime": "soon"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid query"


def test_vehicles_store_failure_is_structured_error(client, history):
    history.fail = True
    resp = client.get("/api/vehicles", params={
        "startTime": "2025-03-09 08:00:00",
        "endTime": "2025-03-09 09:00:00",
    })
    assert resp.status_code == 502
    body = resp.json()
    assert body["error"] == "Failed to fetch vehicle data"
    assert "unreachable" in body["message"]


def test_route_vehicles(client, fake_redis):
    fake_redis.put("route:R1", "KA03", live_payload("dev-3"))
    resp = client.get("/api/route-vehicles/R1")
    assert resp.status_code == 200
    body = resp.json()
    assert body[0]["vehicleNumber"] == "KA03"
    assert body[0]["etaData"][0] == {
        "stopName": "Silk Board", "arrivalTime": 1741588500, "stopLat": None, "stopLon": None,
    }
    assert body[0]["location"] == {"lat": 12.91, "lng": 77.62}


def test_route_vehicles_unknown_route_is_empty_list(client):
    resp = client.get("/api/route-vehicles/nowhere")
    assert resp.status_code == 200
    assert resp.json() == []


def test_mapping_refresh(client, mapping_source):
    resp = client.post("/api/mappings/refresh")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["stats"]["deviceVehicleMappings"] == 1
    assert body["stats"]["routeShortNames"] == 1
    assert body["stats"]["lastUpdated"] is not None
    client.post("/api/mappings/refresh")
    assert mapping_source.fetches == 2


def test_mapping_refresh_failure_reported(client, mapping_source):
    mapping_source.fail_table = "route"
    resp = client.post("/api/mappings/refresh")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is False
    assert body["stats"]["deviceVehicleMappings"] == 0


def test_cache_invalidate_single_key(client, result_cache):
    result_cache.set("a", [], 30)
    result_cache.set("b", [], 30)
    resp = client.post("/api/cache/invalidate", json={"key": "a"})
    assert resp.json() == {"success": True, "message": "Cache for a invalidated"}
    assert "a" not in result_cache
    assert "b" in result_cache


def test_cache_invalidate_all(client, result_cache):
    result_cache.set("a", [], 30)
    resp = client.post("/api/cache/invalidate")
    assert resp.json()["message"] == "All cache invalidated"
    assert len(result_cache) == 0


def test_daily_coverage(client, history):
    history.coverage_counts = [("amnex", 50)]
    body = client.get("/api/coverage/daily").json()
    assert body["totalDevices"] == 200
    assert body["providerCoverage"] == [{"provider": "amnex", "deviceCount": 50, "coverage": 25.0}]
