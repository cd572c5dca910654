"""In-memory stand-ins for the three external stores."""

import datetime

import orjson
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from fleet_monitor.core.aggregator import AggregationEngine
from fleet_monitor.core.errors import MappingRefreshError, UpstreamQueryError
from fleet_monitor.core.history_client import RawTrailPoint
from fleet_monitor.core.identity_mapping import IdentityMappingCache
from fleet_monitor.core.live_store import LiveStore
from fleet_monitor.core.result_cache import TieredResultCache
from fleet_monitor.models.base import Base
from fleet_monitor.models.tables import Route, trail_samples

NOW = datetime.datetime(2025, 3, 10, 12, 0, 0)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeMappingSource:
    def __init__(self, devices=None, routes=None, codes=None) -> None:
        self.devices = dict(devices or {})
        self.routes = dict(routes or {})
        self.codes = dict(codes or {})
        self.fail_table: str | None = None
        self.fetches = 0

    def _check(self, table: str) -> None:
        if self.fail_table == table:
            raise MappingRefreshError(f"{table} unavailable", table=table)

    async def fetch_device_vehicles(self):
        self.fetches += 1
        self._check("device_vehicle_mapping")
        return dict(self.devices)

    async def fetch_vehicle_routes(self):
        self._check("vehicle_route_mapping")
        return dict(self.routes)

    async def fetch_route_codes(self):
        self._check("route")
        return {k: tuple(v) for k, v in self.codes.items()}


class FakeRedis:
    """Just enough of redis.asyncio.Redis for hash reads."""

    def __init__(self) -> None:
        self.hashes: dict[str, dict[str, str]] = {}
        self.reads: list[str] = []
        self.fail = False

    def put(self, key: str, field: str, value) -> None:
        raw = value if isinstance(value, str) else orjson.dumps(value).decode()
        self.hashes.setdefault(key, {})[field] = raw

    async def hgetall(self, key: str) -> dict[str, str]:
        self.reads.append(key)
        if self.fail:
            raise OSError("connection refused")
        return dict(self.hashes.get(key, {}))


class FakeHistoryStore:
    def __init__(self, points=None) -> None:
        self.points: list[RawTrailPoint] = list(points or [])
        self.window_calls: list[tuple] = []
        self.device_calls: list[tuple] = []
        self.coverage_counts: list[tuple[str, int]] = []
        self.fail = False

    def _maybe_fail(self) -> None:
        if self.fail:
            raise UpstreamQueryError("trail store unreachable", store="history")

    async def fetch_window(self, start, end, device_id=None):
        self.window_calls.append((start, end, device_id))
        self._maybe_fail()
        lo = datetime.datetime.strptime(start, "%Y-%m-%d %H:%M:%S")
        hi = datetime.datetime.strptime(end, "%Y-%m-%d %H:%M:%S")
        rows = [
            p for p in self.points
            if lo <= p.timestamp <= hi and (device_id is None or p.device_id == device_id)
        ]
        return sorted(rows, key=lambda p: p.timestamp, reverse=True)

    async def fetch_recent_for_devices(self, device_ids, since, limit):
        self.device_calls.append((list(device_ids), since, limit))
        self._maybe_fail()
        lo = datetime.datetime.strptime(since, "%Y-%m-%d %H:%M:%S")
        rows = [p for p in self.points if p.device_id in device_ids and p.timestamp >= lo]
        return sorted(rows, key=lambda p: p.timestamp, reverse=True)[:limit]

    async def fetch_provider_device_counts(self, start, end):
        self._maybe_fail()
        return list(self.coverage_counts)


def point(device_id, lat, lng, ts, vehicle_number=None, route_number="500A", provider="amnex"):
    if isinstance(ts, str):
        ts = datetime.datetime.strptime(ts, "%Y-%m-%d %H:%M:%S")
    return RawTrailPoint(
        device_id=device_id,
        vehicle_number=vehicle_number,
        route_number=route_number,
        provider=provider,
        lat=lat,
        lng=lng,
        timestamp=ts,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mapping_source() -> FakeMappingSource:
    return FakeMappingSource(
        devices={"d1": "KA01"},
        routes={"KA01": "route9"},
        codes={"500A": ["R1", "R2"]},
    )


@pytest.fixture
def mappings(mapping_source, clock) -> IdentityMappingCache:
    return IdentityMappingCache(mapping_source, clock=clock)


@pytest.fixture
def result_cache(clock) -> TieredResultCache:
    return TieredResultCache(clock=clock)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def history() -> FakeHistoryStore:
    return FakeHistoryStore()


@pytest.fixture
def engine(mappings, result_cache, fake_redis, history) -> AggregationEngine:
    return AggregationEngine(
        mappings,
        result_cache,
        LiveStore(fake_redis),
        history,
        total_fleet_size=200,
        now=lambda: NOW,
    )


def live_payload(device_id="dev-3", **overrides):
    payload = {
        "device_id": device_id,
        "route_id": "R1",
        "route_name": "Majestic - Electronic City",
        "provider": "amnex",
        "last_seen": 1741588200,
        "eta_data": [{"stop_name": "Silk Board", "arrival_time": 1741588500}],
        "latitude": 12.91,
        "longitude": 77.62,
    }
    payload.update(overrides)
    return payload


def _sqlite_engine():
    # sqlite has no schemas; map the configured ones onto the default
    translate = {Route.__table__.schema: None, trail_samples.schema: None}
    return create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        execution_options={"schema_translate_map": translate},
    )


@pytest_asyncio.fixture
async def sqlite_engine():
    db = _sqlite_engine()
    async with db.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def empty_sqlite_engine():
    """An engine with no tables created, so every query fails."""
    db = _sqlite_engine()
    yield db
    await db.dispose()


@pytest.fixture
def sqlite_session(sqlite_engine):
    return async_sessionmaker(sqlite_engine, expire_on_commit=False)
