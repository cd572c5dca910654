from fastapi import Request

from fleet_monitor.core.service import TrackingService


def get_service(request: Request) -> TrackingService:
    """The TrackingService built during application startup."""
    return request.app.state.service
