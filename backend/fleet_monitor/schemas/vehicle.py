from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Response model serialised with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TrailPoint(WireModel):
    lat: float
    lng: float
    timestamp: str  # YYYY-MM-DD HH:MM:SS, local civil time


class VehicleView(WireModel):
    device_id: str
    vehicle_number: str | None = None
    route_number: str | None = None
    provider: str | None = None
    route_id: str | None = None
    trail: list[TrailPoint] = []


class EtaEntry(WireModel):
    stop_name: str
    arrival_time: int  # seconds since epoch
    stop_lat: float | None = None
    stop_lon: float | None = None


class Location(WireModel):
    lat: float
    lng: float


class RouteVehicle(WireModel):
    device_id: str
    vehicle_number: str
    route_id: str
    route_name: str
    provider: str | None = None
    last_seen: str | None = None
    eta_data: list[EtaEntry] = []
    location: Location
    trail: list[TrailPoint] = []
