"""Device -> vehicle -> route resolution backed by the relational store.

Lookups always answer from the last successfully loaded snapshot. A refresh
loads all three tables and swaps them in together; if any read fails the
previous snapshot stays in place.
"""

import asyncio
import datetime
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

logger = logging.getLogger(__name__)

REFRESH_INTERVAL_SECONDS = 15 * 60


@dataclass(frozen=True)
class IdentityMapping:
    device_to_vehicle: Mapping[str, str] = field(default_factory=dict)
    vehicle_to_route: Mapping[str, str] = field(default_factory=dict)
    route_short_name_to_codes: Mapping[str, tuple[str, ...]] = field(default_factory=dict)


@dataclass
class RefreshResult:
    refreshed: bool
    mapping: IdentityMapping
    last_refreshed: datetime.datetime | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class IdentityMappingCache:
    """Holds the current IdentityMapping snapshot and refreshes it fail-soft."""

    def __init__(
        self,
        source,
        refresh_interval: float = REFRESH_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self.refresh_interval = refresh_interval
        self._clock = clock
        self._snapshot = IdentityMapping()
        self._refreshed_at: float | None = None  # clock() of last successful refresh
        self._last_refreshed: datetime.datetime | None = None
        self._lock = asyncio.Lock()

    @property
    def snapshot(self) -> IdentityMapping:
        return self._snapshot

    @property
    def last_refreshed(self) -> datetime.datetime | None:
        return self._last_refreshed

    def _is_fresh(self) -> bool:
        if self._refreshed_at is None:
            return False
        return self._clock() - self._refreshed_at < self.refresh_interval

    def _result(self, refreshed: bool, error: str | None = None) -> RefreshResult:
        return RefreshResult(
            refreshed=refreshed,
            mapping=self._snapshot,
            last_refreshed=self._last_refreshed,
            error=error,
        )

    async def refresh(self, force: bool = False) -> RefreshResult:
        """Reload all three tables unless a refresh happened within the interval."""
        if not force and self._is_fresh():
            logger.debug("Mapping tables recently refreshed, skipping update")
            return self._result(refreshed=False)

        async with self._lock:
            # Another caller may have completed a refresh while we waited.
            if not force and self._is_fresh():
                return self._result(refreshed=False)

            logger.info("Refreshing mapping tables")
            try:
                device_to_vehicle = await self.source.fetch_device_vehicles()
                vehicle_to_route = await self.source.fetch_vehicle_routes()
                route_codes = await self.source.fetch_route_codes()
            except Exception as e:
                logger.exception("Error refreshing mapping tables, keeping previous snapshot")
                return self._result(refreshed=False, error=str(e))

            self._snapshot = IdentityMapping(
                device_to_vehicle=MappingProxyType(dict(device_to_vehicle)),
                vehicle_to_route=MappingProxyType(dict(vehicle_to_route)),
                route_short_name_to_codes=MappingProxyType(
                    {name: tuple(codes) for name, codes in route_codes.items()}
                ),
            )
            self._refreshed_at = self._clock()
            self._last_refreshed = datetime.datetime.now(datetime.timezone.utc)

        logger.info(
            "Loaded %d device-to-vehicle, %d vehicle-to-route, %d route short-name mappings",
            len(device_to_vehicle), len(vehicle_to_route), len(route_codes),
        )
        return self._result(refreshed=True)

    def vehicle_for(self, device_id: str) -> str | None:
        return self._snapshot.device_to_vehicle.get(device_id)

    def route_for(self, vehicle_number: str) -> str | None:
        return self._snapshot.vehicle_to_route.get(vehicle_number)

    def codes_for(self, short_name: str) -> tuple[str, ...]:
        return self._snapshot.route_short_name_to_codes.get(short_name, ())
