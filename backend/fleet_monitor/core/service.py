"""Process-wide owner of the mapping snapshot, the result cache and the store clients."""

import datetime
import logging

import redis.asyncio as aioredis

from fleet_monitor.config import Settings
from fleet_monitor.core.aggregator import AggregationEngine, VehicleQuery
from fleet_monitor.core.history_client import HistoryStore
from fleet_monitor.core.identity_mapping import IdentityMappingCache, RefreshResult
from fleet_monitor.core.live_store import LiveStore
from fleet_monitor.core.mapping_source import MappingSource
from fleet_monitor.core.result_cache import TieredResultCache
from fleet_monitor.schemas.ops import DailyCoverage, MappingStats
from fleet_monitor.schemas.vehicle import RouteVehicle, VehicleView

logger = logging.getLogger(__name__)


class TrackingService:
    """Constructed once at startup and handed to request handlers."""

    def __init__(
        self,
        mappings: IdentityMappingCache,
        cache: TieredResultCache,
        engine: AggregationEngine,
    ) -> None:
        self.mappings = mappings
        self.cache = cache
        self.engine = engine

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        redis: aioredis.Redis,
        mapping_session_factory,
        history_session_factory,
    ) -> "TrackingService":
        mappings = IdentityMappingCache(
            MappingSource(mapping_session_factory, route_config_id=settings.route_config_id),
            refresh_interval=settings.mapping_refresh_minutes * 60,
        )
        cache = TieredResultCache(
            device_ttl=settings.device_cache_ttl_seconds,
            recent_ttl=settings.recent_cache_ttl_seconds,
            historical_ttl=settings.historical_cache_ttl_seconds,
        )
        engine = AggregationEngine(
            mappings,
            cache,
            LiveStore(redis),
            HistoryStore(history_session_factory, excluded_data_states=settings.excluded_data_states),
            recent_window=datetime.timedelta(minutes=settings.recent_window_minutes),
            route_trail_window=datetime.timedelta(minutes=settings.route_trail_minutes),
            route_trail_row_limit=settings.route_trail_row_limit,
            route_ttl=settings.route_cache_ttl_seconds,
            coverage_ttl=settings.coverage_cache_ttl_seconds,
            total_fleet_size=settings.total_fleet_size,
        )
        return cls(mappings, cache, engine)

    async def vehicles(self, query: VehicleQuery) -> list[VehicleView]:
        return await self.engine.vehicles(query)

    async def route_vehicles(self, route_id: str) -> list[RouteVehicle]:
        return await self.engine.route_vehicles(route_id)

    async def daily_coverage(self) -> DailyCoverage:
        return await self.engine.daily_coverage()

    async def refresh_mappings(self, force: bool = False) -> RefreshResult:
        return await self.mappings.refresh(force=force)

    async def scheduled_refresh(self) -> None:
        """Timer-driven refresh; failures are already logged by the mapping cache."""
        await self.mappings.refresh(force=True)

    def mapping_stats(self) -> MappingStats:
        snapshot = self.mappings.snapshot
        last = self.mappings.last_refreshed
        return MappingStats(
            device_vehicle_mappings=len(snapshot.device_to_vehicle),
            vehicle_route_mappings=len(snapshot.vehicle_to_route),
            route_short_names=len(snapshot.route_short_name_to_codes),
            last_updated=last.isoformat() if last else None,
        )

    def invalidate_cache(self, key: str | None = None) -> str:
        if key:
            self.cache.invalidate(key)
            return f"Cache for {key} invalidated"
        self.cache.invalidate_all()
        return "All cache invalidated"
