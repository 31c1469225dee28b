"""Health check endpoint.

Verifies connectivity to the ledger database and Redis, returns structured
status. Used by container healthchecks and load balancers.
"""

from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy import text

from escrow_market.infrastructure.database.engine import _get_engine
from escrow_market.infrastructure.redis_client import get_redis
from escrow_market.logging_config import get_logger
from escrow_market.schemas.market import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check() -> HealthResponse:
    """Check connectivity to the database and Redis.

    Redis only backs registration idempotency, so a missing Redis degrades
    the service instead of failing it.
    """
    db_status = "unknown"
    redis_status = "unknown"

    try:
        async with _get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    try:
        await get_redis().ping()
        redis_status = "healthy"
    except Exception as exc:
        redis_status = f"unhealthy: {exc}"
        logger.warning("health.redis_check_failed", error=str(exc))

    if db_status != "healthy":
        overall = "unhealthy"
    elif redis_status != "healthy":
        overall = "degraded"
    else:
        overall = "ok"

    return HealthResponse(
        status=overall,
        version="0.1.0",
        database=db_status,
        redis=redis_status,
    )
