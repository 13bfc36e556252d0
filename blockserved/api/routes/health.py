"""Health check and Prometheus metrics endpoints.

/health probes Postgres, Redis and the TRON node concurrently and
reports aggregate status with per-probe latency.
"""

import asyncio
import time

import asyncpg
import httpx
import redis.asyncio as aioredis
import structlog
from fastapi import APIRouter, Depends
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from blockserved import __version__
from blockserved.api.dependencies import get_settings_from_app
from blockserved.core.config import Settings
from blockserved.models.responses import DependencyHealth, HealthResponse

router = APIRouter(tags=["observability"])
logger: structlog.stdlib.BoundLogger = structlog.get_logger()

_PROBE_TIMEOUT = 3.0
_start_time: float = time.time()


# ---------------------------------------------------------------------------
# Dependency probes
# ---------------------------------------------------------------------------


def _unhealthy(name: str, start: float, exc: Exception) -> DependencyHealth:
    latency = (time.perf_counter() - start) * 1000
    return DependencyHealth(
        name=name,
        status="unhealthy",
        latency_ms=round(latency, 2),
        details=str(exc)[:200] or type(exc).__name__,
    )


async def _probe_postgres(database_url: str) -> DependencyHealth:
    start = time.perf_counter()
    try:
        raw_url = database_url.replace("postgresql+asyncpg://", "postgresql://")
        conn = await asyncio.wait_for(asyncpg.connect(raw_url), timeout=_PROBE_TIMEOUT)
        try:
            await conn.execute("SELECT 1")
        finally:
            await conn.close()
    except Exception as exc:
        return _unhealthy("postgresql", start, exc)
    latency = (time.perf_counter() - start) * 1000
    return DependencyHealth(name="postgresql", status="healthy", latency_ms=round(latency, 2))


async def _probe_redis(redis_url: str) -> DependencyHealth:
    start = time.perf_counter()
    try:
        client = aioredis.from_url(redis_url, socket_connect_timeout=_PROBE_TIMEOUT)
        try:
            # redis-py stubs expose ping() as Awaitable[bool] | bool;
            # the async client always returns a coroutine at runtime.
            await client.ping()  # type: ignore[misc]
        finally:
            await client.aclose()
    except Exception as exc:
        return _unhealthy("redis", start, exc)
    latency = (time.perf_counter() - start) * 1000
    return DependencyHealth(name="redis", status="healthy", latency_ms=round(latency, 2))


async def _probe_tron(api_url: str) -> DependencyHealth:
    start = time.perf_counter()
    try:
        async with httpx.AsyncClient(timeout=_PROBE_TIMEOUT) as client:
            resp = await client.post(f"{api_url.rstrip('/')}/wallet/getnowblock")
            resp.raise_for_status()
    except Exception as exc:
        return _unhealthy("tron", start, exc)
    latency = (time.perf_counter() - start) * 1000
    return DependencyHealth(name="tron", status="healthy", latency_ms=round(latency, 2))


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse)
async def health_check(
    settings: Settings = Depends(get_settings_from_app),
) -> HealthResponse:
    """Check API and infrastructure dependency health.

    The TRON node is optional for the Record Store itself, so losing it
    degrades rather than fails the service.
    """
    postgres, redis_health, tron = await asyncio.gather(
        _probe_postgres(settings.database_url),
        _probe_redis(settings.redis_url),
        _probe_tron(settings.tron_api_url),
    )
    dependencies = [postgres, redis_health, tron]

    if postgres.status == "unhealthy":
        status = "unhealthy"
    elif all(d.status == "healthy" for d in dependencies):
        status = "healthy"
    else:
        status = "degraded"

    return HealthResponse(
        status=status,
        version=__version__,
        uptime_seconds=round(time.time() - _start_time, 2),
        dependencies=dependencies,
    )


@router.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
