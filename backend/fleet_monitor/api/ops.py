"""Operator endpoints: mapping refresh and cache invalidation."""

from fastapi import APIRouter, Body, Depends

from fleet_monitor.api.deps import get_service
from fleet_monitor.core.service import TrackingService
from fleet_monitor.schemas.ops import CacheInvalidateRequest, CacheInvalidateResponse, MappingRefreshResponse

router = APIRouter(prefix="/api", tags=["ops"])


@router.post("/mappings/refresh", response_model=MappingRefreshResponse)
async def refresh_mappings(service: TrackingService = Depends(get_service)):
    """Force a reload of the identity mapping tables."""
    result = await service.refresh_mappings(force=True)
    if result.ok:
        message = "Mapping tables refreshed successfully"
    else:
        message = f"Mapping refresh failed, previous mappings kept: {result.error}"
    return MappingRefreshResponse(success=result.ok, message=message, stats=service.mapping_stats())


@router.post("/cache/invalidate", response_model=CacheInvalidateResponse)
async def invalidate_cache(
    body: CacheInvalidateRequest | None = Body(None),
    service: TrackingService = Depends(get_service),
):
    """Drop one cache entry, or all of them when no key is given."""
    message = service.invalidate_cache(body.key if body else None)
    return CacheInvalidateResponse(success=True, message=message)
