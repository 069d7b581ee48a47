import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint for load balancer.

    Returns 503 during graceful shutdown so the balancer stops routing traffic.
    """
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(
            status_code=503,
            content={"status": "shutting_down", "service": "rendezvous-core"},
        )
    return {"status": "healthy", "service": "rendezvous-core"}


@router.get("/ready")
async def readiness_check():
    """Readiness check - verifies the database and Redis are reachable."""
    checks = {"database": False, "redis": False}

    try:
        from rendezvous.db.base import get_session_factory

        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as exc:
        logger.error("readiness_database_failed", error=str(exc))

    try:
        from rendezvous.db.redis import get_redis

        await get_redis().ping()
        checks["redis"] = True
    except Exception as exc:
        logger.error("readiness_redis_failed", error=str(exc))

    all_healthy = all(checks.values())
    return JSONResponse(
        status_code=200 if all_healthy else 503,
        content={"status": "ready" if all_healthy else "degraded", "checks": checks},
    )
