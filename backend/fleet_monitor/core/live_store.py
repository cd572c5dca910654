"""Live vehicle state held in Redis hashes keyed ``route:<routeId>``."""

import logging

import orjson
import redis.asyncio as aioredis
from pydantic import BaseModel, ConfigDict, ValidationError
from redis.exceptions import RedisError

from fleet_monitor.core.errors import MalformedLiveRecord, UpstreamQueryError

logger = logging.getLogger(__name__)

ROUTE_KEY_PREFIX = "route:"


def route_key(route_id: str) -> str:
    return f"{ROUTE_KEY_PREFIX}{route_id}"


class LiveEta(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    stop_name: str
    arrival_time: float  # seconds since epoch
    stop_lat: float | None = None
    stop_lon: float | None = None


class LiveVehicleRecord(BaseModel):
    """One hash field value: the latest state of a single vehicle."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    device_id: str
    route_id: str
    route_name: str | None = None
    provider: str | None = None
    last_seen: float | str | None = None
    eta_data: list[LiveEta] = []
    latitude: float
    longitude: float


def parse_live_record(field: str, raw: str | bytes) -> LiveVehicleRecord:
    """Decode and validate one hash value; raises MalformedLiveRecord."""
    try:
        payload = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise MalformedLiveRecord(f"Invalid JSON for vehicle {field}: {e}", field=field) from e
    if not isinstance(payload, dict):
        raise MalformedLiveRecord(f"Expected an object for vehicle {field}", field=field)
    try:
        return LiveVehicleRecord.model_validate(payload)
    except ValidationError as e:
        raise MalformedLiveRecord(
            f"Invalid payload for vehicle {field}: {e.error_count()} error(s)", field=field,
        ) from e


class LiveStore:
    """Reads per-route vehicle hashes from the live-state store."""

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    async def route_vehicles(self, route_id: str) -> dict[str, LiveVehicleRecord]:
        """vehicle number -> parsed record for ``route:<route_id>``.

        Fields whose payload fails to parse are logged and skipped.
        """
        key = route_key(route_id)
        try:
            raw = await self._redis.hgetall(key)
        except (RedisError, OSError) as e:
            logger.exception("Failed to read %s from live store", key)
            raise UpstreamQueryError(f"Live store read failed for {key}: {e}", store="live") from e

        vehicles: dict[str, LiveVehicleRecord] = {}
        for field, value in (raw or {}).items():
            name = field.decode() if isinstance(field, bytes) else str(field)
            try:
                vehicles[name] = parse_live_record(name, value)
            except MalformedLiveRecord as e:
                logger.warning("Skipping live record in %s: %s", key, e)
        logger.debug("Read %d vehicles from %s", len(vehicles), key)
        return vehicles
