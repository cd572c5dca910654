"""Route-scoped live vehicle endpoint."""

from fastapi import APIRouter, Depends

from fleet_monitor.api.deps import get_service
from fleet_monitor.core.service import TrackingService
from fleet_monitor.schemas.vehicle import RouteVehicle

router = APIRouter(prefix="/api/route-vehicles", tags=["routes"])


@router.get("/{route_id}", response_model=list[RouteVehicle])
async def get_route_vehicles(route_id: str, service: TrackingService = Depends(get_service)):
    """Get live vehicles on a route (code or short name) with their recent trails."""
    return await service.route_vehicles(route_id)
