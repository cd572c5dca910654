"""Reads the identity-mapping tables from the relational store."""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from fleet_monitor.core.errors import MappingRefreshError
from fleet_monitor.models.tables import DeviceVehicleMapping, Route, VehicleRouteMapping

logger = logging.getLogger(__name__)


class MappingSource:
    """Async reader for device_vehicle_mapping, vehicle_route_mapping and route."""

    def __init__(self, session_factory, route_config_id: str | None = None) -> None:
        self.session_factory = session_factory
        self.route_config_id = route_config_id

    async def _fetch(self, stmt, table: str) -> list[tuple]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                rows = [tuple(row) for row in result.all()]
                logger.debug("Read %d rows from %s", len(rows), table)
                return rows
        except (SQLAlchemyError, OSError) as e:
            raise MappingRefreshError(f"Failed to read {table}: {e}", table=table) from e

    async def fetch_device_vehicles(self) -> dict[str, str]:
        rows = await self._fetch(
            select(DeviceVehicleMapping.device_id, DeviceVehicleMapping.vehicle_no),
            "device_vehicle_mapping",
        )
        return {str(device_id): str(vehicle_no) for device_id, vehicle_no in rows if device_id and vehicle_no}

    async def fetch_vehicle_routes(self) -> dict[str, str]:
        rows = await self._fetch(
            select(VehicleRouteMapping.vehicle_no, VehicleRouteMapping.route_id),
            "vehicle_route_mapping",
        )
        return {str(vehicle_no): str(route_id) for vehicle_no, route_id in rows if vehicle_no and route_id}

    async def fetch_route_codes(self) -> dict[str, tuple[str, ...]]:
        """short_name -> route codes sorted by code, without duplicates."""
        stmt = select(Route.short_name, Route.code).order_by(Route.short_name, Route.code)
        if self.route_config_id:
            stmt = stmt.where(Route.config_id == self.route_config_id)
        rows = await self._fetch(stmt, "route")

        codes: dict[str, list[str]] = {}
        for short_name, code in rows:
            if not short_name or not code:
                continue
            bucket = codes.setdefault(str(short_name), [])
            if str(code) not in bucket:
                bucket.append(str(code))
        return {name: tuple(values) for name, values in codes.items()}
