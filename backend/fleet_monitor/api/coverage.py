"""Provider coverage statistics."""

from fastapi import APIRouter, Depends

from fleet_monitor.api.deps import get_service
from fleet_monitor.core.service import TrackingService
from fleet_monitor.schemas.ops import DailyCoverage

router = APIRouter(prefix="/api/coverage", tags=["coverage"])


@router.get("/daily", response_model=DailyCoverage)
async def get_daily_coverage(service: TrackingService = Depends(get_service)):
    """Distinct reporting devices per provider over the last 24 hours."""
    return await service.daily_coverage()
