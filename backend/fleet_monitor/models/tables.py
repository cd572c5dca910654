from sqlalchemy import Column, DateTime, Float, String, Table
from sqlalchemy.orm import Mapped, mapped_column

from fleet_monitor.config import settings
from fleet_monitor.models.base import Base

_MAPPING_SCHEMA = settings.mapping_schema or None
_HISTORY_SCHEMA = settings.history_schema or None


class DeviceVehicleMapping(Base):
    __tablename__ = "device_vehicle_mapping"
    __table_args__ = {"schema": _MAPPING_SCHEMA}

    device_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    vehicle_no: Mapped[str] = mapped_column(String(32), nullable=False)


class VehicleRouteMapping(Base):
    """Legacy vehicle -> route assignment."""

    __tablename__ = "vehicle_route_mapping"
    __table_args__ = {"schema": _MAPPING_SCHEMA}

    vehicle_no: Mapped[str] = mapped_column(String(32), primary_key=True)
    route_id: Mapped[str] = mapped_column(String(64), nullable=False)


class Route(Base):
    __tablename__ = "route"
    __table_args__ = {"schema": _MAPPING_SCHEMA}

    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    short_name: Mapped[str] = mapped_column(String(32), nullable=False)
    config_id: Mapped[str | None] = mapped_column(String(64), nullable=True)


# Time-series table written by the ingestion pipeline; it has no primary key,
# so it is declared as a Core table. Column names are camelCase upstream.
trail_samples = Table(
    settings.history_table,
    Base.metadata,
    Column("deviceId", String),
    Column("vehicleNumber", String),
    Column("routeNumber", String),
    Column("provider", String),
    Column("lat", Float),
    Column("long", Float),
    Column("timestamp", DateTime),  # local civil time, no zone
    Column("dataState", String),
    Column("serverTime", DateTime),
    schema=_HISTORY_SCHEMA,
)
