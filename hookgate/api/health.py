"""
Health check endpoints - used by load balancers, Docker healthcheck, and monitoring.

- GET /health       - basic liveness (always 200 if app running)
- GET /health/ready - readiness check (DB + Redis + processor)
- GET /health/deep  - deep check (adds worker heartbeats, queue depth, counters)
"""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from hookgate.database import get_db
from hookgate.utils.metrics import get_counters
from hookgate.utils.redis_client import get_redis

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

WORKER_NAMES = ("retry_worker", "maintenance")


@router.get("/health")
async def health_check():
    """Basic liveness check - returns 200 if the app is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": "1.0.0",
    }


@router.get("/health/ready")
async def readiness_check(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Readiness check - verifies database and Redis connectivity and that the
    worker pool is accepting jobs.
    """
    checks = {
        "database": (await _check_database(db))["healthy"],
        "redis": (await _check_redis())["healthy"],
        "processor": _check_processor(request)["healthy"],
    }

    all_healthy = all(checks.values())
    return {
        "status": "ready" if all_healthy else "degraded",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/deep")
async def deep_health_check(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Deep health check - checks ALL dependencies.

    Checks:
    - Database: SELECT 1
    - Redis: PING
    - Processor: running + queue depth
    - Workers: heartbeat freshness
    """
    now = datetime.now(timezone.utc)
    checks = {
        "database": await _check_database(db),
        "redis": await _check_redis(),
        "processor": _check_processor(request),
        "workers": await _check_workers(),
    }

    # Database and processor are required to ingest; Redis only carries side data
    critical = ["database", "processor"]
    critical_healthy = all(checks[k].get("healthy", False) for k in critical)
    all_healthy = all(c.get("healthy", False) for c in checks.values())

    if all_healthy:
        status = "healthy"
    elif critical_healthy:
        status = "degraded"
    else:
        status = "unhealthy"

    return {
        "status": status,
        "checks": checks,
        "counters": await get_counters(),
        "timestamp": now.isoformat(),
        "version": "1.0.0",
    }


async def _check_database(db: AsyncSession) -> dict:
    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        return {"healthy": True}
    except Exception as e:
        logger.error("Health: database check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}


async def _check_redis() -> dict:
    try:
        redis = await get_redis()
        await redis.ping()
        return {"healthy": True}
    except Exception as e:
        logger.warning("Health: Redis check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}


def _check_processor(request: Request) -> dict:
    processor = getattr(request.app.state, "processor", None)
    if processor is None:
        return {"healthy": False, "error": "Processor not initialized"}
    return {
        "healthy": processor.running,
        "workers": processor.worker_count,
        "queue_depth": processor.queue_depth,
    }


async def _check_workers() -> dict:
    """Check worker heartbeat timestamps in Redis."""
    try:
        redis = await get_redis()

        workers = {}
        for name in WORKER_NAMES:
            heartbeat = await redis.get(f"hookgate:worker_health:{name}")
            workers[name] = {
                "healthy": heartbeat is not None,
                "last_heartbeat": heartbeat,
            }

        all_healthy = all(w["healthy"] for w in workers.values())
        return {"healthy": all_healthy, "workers": workers}
    except Exception as e:
        return {"healthy": True, "note": "Unable to check worker heartbeats"}
