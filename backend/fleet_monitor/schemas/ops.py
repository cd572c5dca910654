from fleet_monitor.schemas.vehicle import WireModel


class MappingStats(WireModel):
    device_vehicle_mappings: int
    vehicle_route_mappings: int
    route_short_names: int
    last_updated: str | None = None


class MappingRefreshResponse(WireModel):
    success: bool
    message: str
    stats: MappingStats


class CacheInvalidateRequest(WireModel):
    key: str | None = None


class CacheInvalidateResponse(WireModel):
    success: bool
    message: str


class ProviderCoverage(WireModel):
    provider: str
    device_count: int
    coverage: float


class DailyCoverage(WireModel):
    total_devices: int
    total_coverage: float
    provider_coverage: list[ProviderCoverage] = []
    timestamp: str


class ErrorResponse(WireModel):
    error: str
    message: str
