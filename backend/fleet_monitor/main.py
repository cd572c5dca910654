"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fleet_monitor.api import coverage, ops, routes, vehicles
from fleet_monitor.config import settings
from fleet_monitor.core.errors import InvalidQueryError, UpstreamQueryError
from fleet_monitor.core.scheduler import create_scheduler
from fleet_monitor.core.service import TrackingService
from fleet_monitor.db.session import async_session, engine, history_engine, history_session

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    redis = aioredis.from_url(settings.redis_url, decode_responses=True)
    service = TrackingService.from_settings(settings, redis, async_session, history_session)
    app.state.service = service

    # Initial mapping load; lookups fall back to store-reported values if it fails
    result = await service.refresh_mappings(force=True)
    if not result.ok:
        logger.warning("Initial mapping load failed - will retry on schedule")

    scheduler = create_scheduler(service)
    scheduler.start()
    logger.info("Fleet Monitor started - refreshing mappings every %d min", settings.mapping_refresh_minutes)

    yield

    # Shutdown
    scheduler.shutdown(wait=False)
    await redis.aclose()
    await engine.dispose()
    await history_engine.dispose()
    logger.info("Fleet Monitor shut down")


async def upstream_error_handler(request: Request, exc: UpstreamQueryError) -> JSONResponse:
    logger.error("Upstream failure on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=502,
        content={"error": "Failed to fetch vehicle data", "message": str(exc)},
    )


async def invalid_query_handler(request: Request, exc: InvalidQueryError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "Invalid query", "message": str(exc)})


def create_app(lifespan_handler=lifespan) -> FastAPI:
    app = FastAPI(
        title="Fleet Trail Monitor",
        version="0.1.0",
        lifespan=lifespan_handler,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(UpstreamQueryError, upstream_error_handler)
    app.add_exception_handler(InvalidQueryError, invalid_query_handler)

    app.include_router(vehicles.router)
    app.include_router(routes.router)
    app.include_router(coverage.router)
    app.include_router(ops.router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
