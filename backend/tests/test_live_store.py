"""Tests for live record parsing and LiveStore hash reads."""

import pytest

from fleet_monitor.core.errors import MalformedLiveRecord, UpstreamQueryError
from fleet_monitor.core.live_store import LiveStore, parse_live_record, route_key

from conftest import live_payload


def test_route_key():
    assert route_key("500A") == "route:500A"


def test_parse_valid_record():
    record = parse_live_record("KA03", b'{"device_id": 42, "route_id": "R1", "latitude": 12.9, "longitude": 77.6}')
    assert record.device_id == "42"
    assert record.eta_data == []
    assert record.route_name is None


def test_parse_rejects_bad_json():
    with pytest.raises(MalformedLiveRecord) as exc:
        parse_live_record("KA02", "{not json")
    assert exc.value.field == "KA02"


def test_parse_rejects_non_object():
    with pytest.raises(MalformedLiveRecord):
        parse_live_record("KA02", "[1, 2]")


def test_parse_rejects_missing_coordinates():
    with pytest.raises(MalformedLiveRecord):
        parse_live_record("KA02", '{"device_id": "d", "route_id": "R1"}')


@pytest.mark.asyncio
async def test_malformed_field_is_skipped(fake_redis):
    fake_redis.put("route:R1", "KA02", "{broken")
    fake_redis.put("route:R1", "KA03", live_payload())
    vehicles = await LiveStore(fake_redis).route_vehicles("R1")
    assert list(vehicles) == ["KA03"]
    assert vehicles["KA03"].eta_data[0].stop_name == "Silk Board"


@pytest.mark.asyncio
async def test_missing_key_is_empty(fake_redis):
    assert await LiveStore(fake_redis).route_vehicles("nope") == {}


@pytest.mark.asyncio
async def test_connection_failure_raises_upstream_error(fake_redis):
    fake_redis.fail = True
    with pytest.raises(UpstreamQueryError) as exc:
        await LiveStore(fake_redis).route_vehicles("R1")
    assert exc.value.store == "live"
