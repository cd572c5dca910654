"""Range scans against the historical trail store."""

import datetime
import logging
from dataclasses import dataclass

from sqlalchemy import distinct, func, or_, select
from sqlalchemy.exc import SQLAlchemyError

from fleet_monitor.core.errors import UpstreamQueryError
from fleet_monitor.core.timeutil import parse_wire_timestamp, to_local
from fleet_monitor.models.tables import trail_samples

logger = logging.getLogger(__name__)

_c = trail_samples.c


@dataclass
class RawTrailPoint:
    device_id: str
    vehicle_number: str | None
    route_number: str | None
    provider: str | None
    lat: float | None
    lng: float | None
    timestamp: datetime.datetime  # naive local civil time


def _to_float(value) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_timestamp(value) -> datetime.datetime | None:
    if isinstance(value, datetime.datetime):
        return to_local(value).replace(microsecond=0)
    if isinstance(value, str):
        try:
            return parse_wire_timestamp(value)
        except ValueError:
            try:
                return to_local(datetime.datetime.fromisoformat(value)).replace(microsecond=0)
            except ValueError:
                return None
    return None


def row_to_point(row) -> RawTrailPoint | None:
    """Convert one result row; rows without a device id or timestamp are dropped."""
    device_id, vehicle_number, route_number, provider, lat, lng, ts = row
    timestamp = _to_timestamp(ts)
    if not device_id or timestamp is None:
        return None
    return RawTrailPoint(
        device_id=str(device_id),
        vehicle_number=str(vehicle_number) if vehicle_number else None,
        route_number=str(route_number) if route_number else None,
        provider=str(provider) if provider else None,
        lat=_to_float(lat),
        lng=_to_float(lng),
        timestamp=timestamp,
    )


class HistoryStore:
    """Async reader for the trail sample table.

    Range bounds are wire-format strings (``YYYY-MM-DD HH:MM:SS``, local civil
    time); they are bound as naive datetimes so the store compares them
    against its zone-less ``timestamp`` column unchanged.
    """

    def __init__(self, session_factory, excluded_data_states: list[str] | None = None) -> None:
        self.session_factory = session_factory
        self.excluded_data_states = list(excluded_data_states or [])

    def _without_excluded_states(self, stmt):
        if self.excluded_data_states:
            stmt = stmt.where(or_(_c.dataState.is_(None), _c.dataState.not_in(self.excluded_data_states)))
        return stmt

    def _point_query(self):
        return self._without_excluded_states(select(
            _c.deviceId, _c.vehicleNumber, _c.routeNumber, _c.provider,
            _c.lat, _c["long"], _c.timestamp,
        ))

    async def _execute(self, stmt, label: str) -> list:
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                return list(result.all())
        except (SQLAlchemyError, OSError) as e:
            logger.exception("Trail store query failed: %s", label)
            raise UpstreamQueryError(f"Trail store query failed ({label}): {e}", store="history") from e

    def _points(self, rows: list) -> list[RawTrailPoint]:
        points = []
        for row in rows:
            point = row_to_point(row)
            if point is not None:
                points.append(point)
        return points

    async def fetch_window(
        self, start: str, end: str, device_id: str | None = None,
    ) -> list[RawTrailPoint]:
        """All samples in [start, end], newest first."""
        stmt = self._point_query().where(
            _c.timestamp >= parse_wire_timestamp(start),
            _c.timestamp <= parse_wire_timestamp(end),
        )
        if device_id:
            stmt = stmt.where(_c.deviceId == device_id)
        stmt = stmt.order_by(_c.timestamp.desc())

        logger.info("Querying trail data from %s to %s%s", start, end, f" for {device_id}" if device_id else "")
        rows = await self._execute(stmt, "window")
        logger.info("Got %d points from trail store", len(rows))
        return self._points(rows)

    async def fetch_recent_for_devices(
        self, device_ids: list[str], since: str, limit: int,
    ) -> list[RawTrailPoint]:
        """Samples for the given devices since ``since``, newest first, at most ``limit`` rows."""
        if not device_ids:
            return []
        stmt = (
            self._point_query()
            .where(
                _c.deviceId.in_(device_ids),
                _c.timestamp >= parse_wire_timestamp(since),
            )
            .order_by(_c.timestamp.desc())
            .limit(limit)
        )
        rows = await self._execute(stmt, "devices")
        logger.debug("Got %d trail points for %d devices", len(rows), len(device_ids))
        return self._points(rows)

    async def fetch_provider_device_counts(self, start: str, end: str) -> list[tuple[str, int]]:
        """(provider, distinct device count) over [start, end], largest first."""
        device_count = func.count(distinct(_c.deviceId)).label("device_count")
        stmt = (
            self._without_excluded_states(select(_c.provider, device_count))
            .where(
                _c.timestamp >= parse_wire_timestamp(start),
                _c.timestamp <= parse_wire_timestamp(end),
                _c.lat != 0,
                _c["long"] != 0,
                _c.deviceId != "",
            )
            .group_by(_c.provider)
            .order_by(device_count.desc())
        )
        rows = await self._execute(stmt, "coverage")
        return [(provider or "unknown", int(count)) for provider, count in rows]
