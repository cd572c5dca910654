"""Time-windowed vehicle trail endpoint."""

from fastapi import APIRouter, Depends, Query

from fleet_monitor.api.deps import get_service
from fleet_monitor.core.aggregator import VehicleQuery
from fleet_monitor.core.service import TrackingService
from fleet_monitor.schemas.vehicle import VehicleView

router = APIRouter(prefix="/api/vehicles", tags=["vehicles"])


@router.get("", response_model=list[VehicleView])
async def list_vehicles(
    start_time: str | None = Query(None, alias="startTime"),
    end_time: str | None = Query(None, alias="endTime"),
    device_id: str | None = Query(None, alias="deviceId"),
    bypass_cache: bool = Query(False, alias="bypassCache"),
    service: TrackingService = Depends(get_service),
):
    """Get every vehicle with a trail inside [startTime, endTime]."""
    query = VehicleQuery(
        start=start_time or None,
        end=end_time or None,
        device_id=device_id or None,
        bypass_cache=bypass_cache,
    )
    return await service.vehicles(query)
