"""Merges live state, trail history and identity mappings into API responses."""

import asyncio
import datetime
import logging
import math
from collections.abc import Callable
from dataclasses import dataclass

from fleet_monitor.core.errors import InvalidQueryError, UpstreamQueryError
from fleet_monitor.core.history_client import HistoryStore, RawTrailPoint
from fleet_monitor.core.identity_mapping import IdentityMappingCache
from fleet_monitor.core.live_store import LiveStore, LiveVehicleRecord
from fleet_monitor.core.result_cache import (
    RECENT_WINDOW,
    SingleFlight,
    TieredResultCache,
    classify,
    key_for,
)
from fleet_monitor.core.timeutil import epoch_to_wire, format_wire_timestamp, local_now, parse_request_timestamp
from fleet_monitor.schemas.ops import DailyCoverage, ProviderCoverage
from fleet_monitor.schemas.vehicle import EtaEntry, Location, RouteVehicle, TrailPoint, VehicleView

logger = logging.getLogger(__name__)

ROUTE_TRAIL_WINDOW = datetime.timedelta(minutes=30)
ROUTE_TRAIL_ROW_LIMIT = 5000
ROUTE_TTL_SECONDS = 10
COVERAGE_TTL_SECONDS = 5 * 60
COVERAGE_WINDOW = datetime.timedelta(days=1)
COVERAGE_KEY = "coverage_daily"


@dataclass
class VehicleQuery:
    """A time-windowed vehicles request, bounds exactly as received."""

    start: str | None = None
    end: str | None = None
    device_id: str | None = None
    bypass_cache: bool = False


def is_valid_fix(lat: float | None, lng: float | None) -> bool:
    """False for the upstream "no fix" sentinel (0 or null on either axis)."""
    if lat is None or lng is None:
        return False
    if math.isnan(lat) or math.isnan(lng):
        return False
    return lat != 0 and lng != 0


def build_trail(points: list[RawTrailPoint]) -> list[TrailPoint]:
    """Valid points sorted ascending by timestamp."""
    valid = [p for p in points if is_valid_fix(p.lat, p.lng)]
    valid.sort(key=lambda p: p.timestamp)
    return [
        TrailPoint(lat=p.lat, lng=p.lng, timestamp=format_wire_timestamp(p.timestamp))
        for p in valid
    ]


def _last_seen(value: float | str | None) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return value
    seconds = float(value)
    # Values above 1e11 are milliseconds.
    if seconds > 1e11:
        seconds /= 1000.0
    return epoch_to_wire(seconds)


class AggregationEngine:
    """Answers the two query shapes, filling the result cache on misses."""

    def __init__(
        self,
        mappings: IdentityMappingCache,
        cache: TieredResultCache,
        live: LiveStore,
        history: HistoryStore,
        *,
        recent_window: datetime.timedelta = RECENT_WINDOW,
        route_trail_window: datetime.timedelta = ROUTE_TRAIL_WINDOW,
        route_trail_row_limit: int = ROUTE_TRAIL_ROW_LIMIT,
        route_ttl: float = ROUTE_TTL_SECONDS,
        coverage_ttl: float = COVERAGE_TTL_SECONDS,
        total_fleet_size: int = 0,
        now: Callable[[], datetime.datetime] = local_now,
    ) -> None:
        self.mappings = mappings
        self.cache = cache
        self.live = live
        self.history = history
        self.recent_window = recent_window
        self.route_trail_window = route_trail_window
        self.route_trail_row_limit = route_trail_row_limit
        self.route_ttl = route_ttl
        self.coverage_ttl = coverage_ttl
        self.total_fleet_size = total_fleet_size
        self._now = now
        self._flights = SingleFlight()
        self._background: set[asyncio.Task] = set()

    def _schedule_mapping_refresh(self) -> None:
        """Kick off a throttled mapping refresh without waiting for it."""
        task = asyncio.create_task(self.mappings.refresh())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Time-windowed multi-vehicle query
    # ------------------------------------------------------------------

    async def vehicles(self, query: VehicleQuery) -> list[VehicleView]:
        now = self._now()
        start_dt = parse_request_timestamp(query.start) if query.start else None
        end_dt = parse_request_timestamp(query.end) if query.end else None

        tier = classify(end_dt, now, self.recent_window)
        window_end = end_dt or now
        window_start = start_dt or window_end - self.recent_window
        if window_start > window_end:
            raise InvalidQueryError("startTime must not be after endTime")

        key = key_for(tier, query.start, query.end, query.device_id)

        if query.bypass_cache:
            logger.info("Cache bypass requested for key: %s", key)
        else:
            cached = self.cache.get(key)
            if cached is not None:
                logger.info("Returning cached vehicle data (%d vehicles) for key: %s", len(cached), key)
                return cached
            if query.device_id:
                aggregate = self.cache.get(key_for(tier, query.start, query.end))
                if aggregate is not None:
                    matches = [v for v in aggregate if v.device_id == query.device_id]
                    if matches:
                        return matches

        start_wire = format_wire_timestamp(window_start)
        end_wire = format_wire_timestamp(window_end)

        async def load() -> list[VehicleView]:
            self._schedule_mapping_refresh()
            points = await self.history.fetch_window(start_wire, end_wire, query.device_id)
            views = self._build_views(points)
            if not query.bypass_cache:
                ttl = self.cache.ttl_for(tier, device_scoped=bool(query.device_id))
                logger.info("Caching %d vehicles with TTL %ss for key: %s", len(views), ttl, key)
                self.cache.set(key, views, ttl)
            return views

        if query.bypass_cache:
            return await load()
        return await self._flights.run(key, load)

    def _build_views(self, points: list[RawTrailPoint]) -> list[VehicleView]:
        # Metadata comes from each device's first valid point in store order.
        meta: dict[str, RawTrailPoint] = {}
        grouped: dict[str, list[RawTrailPoint]] = {}
        for point in points:
            if not is_valid_fix(point.lat, point.lng):
                continue
            if point.device_id not in meta:
                meta[point.device_id] = point
                grouped[point.device_id] = []
            grouped[point.device_id].append(point)

        views = []
        for device_id, first in meta.items():
            vehicle_number = self.mappings.vehicle_for(device_id) or first.vehicle_number
            route_id = self.mappings.route_for(vehicle_number) if vehicle_number else None
            views.append(VehicleView(
                device_id=device_id,
                vehicle_number=vehicle_number,
                route_number=first.route_number,
                provider=first.provider,
                route_id=route_id,
                trail=build_trail(grouped[device_id]),
            ))
        return views

    # ------------------------------------------------------------------
    # Route-scoped live + trail query
    # ------------------------------------------------------------------

    async def route_vehicles(self, route_id: str) -> list[RouteVehicle]:
        key = f"route_vehicles_{route_id}"
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        return await self._flights.run(key, lambda: self._load_route(route_id, key))

    async def _load_route(self, route_id: str, key: str) -> list[RouteVehicle]:
        live = await self.live.route_vehicles(route_id)

        if not live:
            codes = [c for c in self.mappings.codes_for(route_id) if c != route_id]
            if codes:
                logger.info("No vehicles under route:%s, trying route codes %s", route_id, codes)
                results = await asyncio.gather(*(self.live.route_vehicles(c) for c in codes))
                for found in results:
                    for vehicle_number, record in found.items():
                        live.setdefault(vehicle_number, record)

        if not live:
            logger.info("No live vehicles found for route %s", route_id)
            self.cache.set(key, [], self.route_ttl)
            return []

        trails = await self._route_trails(list(live.values()))
        vehicles = [
            self._route_vehicle(vehicle_number, record, (trails or {}).get(record.device_id, []))
            for vehicle_number, record in live.items()
        ]
        if trails is not None:
            self.cache.set(key, vehicles, self.route_ttl)
        return vehicles

    async def _route_trails(
        self, records: list[LiveVehicleRecord],
    ) -> dict[str, list[TrailPoint]] | None:
        """device id -> ascending trail, or None if the trail store failed."""
        device_ids = list(dict.fromkeys(r.device_id for r in records if r.device_id))
        since = format_wire_timestamp(self._now() - self.route_trail_window)
        try:
            points = await self.history.fetch_recent_for_devices(device_ids, since, self.route_trail_row_limit)
        except UpstreamQueryError as e:
            logger.warning("Trail lookup failed, serving vehicles without trails: %s", e)
            return None

        grouped: dict[str, list[RawTrailPoint]] = {}
        for point in points:
            grouped.setdefault(point.device_id, []).append(point)
        return {device_id: build_trail(group) for device_id, group in grouped.items()}

    @staticmethod
    def _route_vehicle(
        vehicle_number: str, record: LiveVehicleRecord, trail: list[TrailPoint],
    ) -> RouteVehicle:
        return RouteVehicle(
            device_id=record.device_id,
            vehicle_number=vehicle_number,
            route_id=record.route_id,
            route_name=record.route_name or "",
            provider=record.provider,
            last_seen=_last_seen(record.last_seen),
            eta_data=[
                EtaEntry(
                    stop_name=eta.stop_name,
                    arrival_time=int(eta.arrival_time),
                    stop_lat=eta.stop_lat,
                    stop_lon=eta.stop_lon,
                )
                for eta in record.eta_data
            ],
            location=Location(lat=record.latitude, lng=record.longitude),
            trail=trail,
        )

    # ------------------------------------------------------------------
    # Provider coverage
    # ------------------------------------------------------------------

    async def daily_coverage(self) -> DailyCoverage:
        cached = self.cache.get(COVERAGE_KEY)
        if cached is not None:
            return cached
        return await self._flights.run(COVERAGE_KEY, self._load_coverage)

    async def _load_coverage(self) -> DailyCoverage:
        end = self._now()
        start = end - COVERAGE_WINDOW
        logger.info("Fetching daily coverage from %s to %s", format_wire_timestamp(start), format_wire_timestamp(end))
        counts = await self.history.fetch_provider_device_counts(
            format_wire_timestamp(start), format_wire_timestamp(end),
        )

        providers = []
        for provider, device_count in counts:
            coverage = 0.0
            if self.total_fleet_size > 0:
                coverage = round(device_count / self.total_fleet_size * 100, 2)
            providers.append(ProviderCoverage(provider=provider, device_count=device_count, coverage=coverage))

        result = DailyCoverage(
            total_devices=self.total_fleet_size,
            total_coverage=round(sum(p.coverage for p in providers), 2),
            provider_coverage=providers,
            timestamp=datetime.datetime.now(datetime.timezone.utc).isoformat(),
        )
        self.cache.set(COVERAGE_KEY, result, self.coverage_ttl)
        return result
