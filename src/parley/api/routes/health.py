"""Health check endpoints."""

from fastapi import APIRouter, Request
from pydantic import BaseModel
from redis.exceptions import RedisError
from sqlalchemy import literal, select
from sqlalchemy.exc import SQLAlchemyError

from parley import __version__
from parley.api.deps import RuntimeDep
from parley.api.ratelimit import RATE_LIMIT_HEALTH, limiter
from parley.shared.exceptions import StorageError
from parley.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


class ReadyResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    checks: dict[str, bool]


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Basic health check - always returns OK if service is running."""
    return HealthResponse(status="healthy", version=__version__)


@router.get("/ready", response_model=ReadyResponse)
@limiter.limit(RATE_LIMIT_HEALTH)
async def readiness_check(request: Request, runtime: RuntimeDep) -> ReadyResponse:
    """Readiness check - verifies all dependencies are available."""
    checks: dict[str, bool] = {}

    try:
        async with runtime.engine.connect() as connection:
            await connection.execute(select(literal(1)))
        checks["database"] = True
    except SQLAlchemyError as e:
        logger.warning("database_health_check_failed", error=str(e))
        checks["database"] = False

    try:
        await runtime.redis.ping()
        checks["redis"] = True
    except RedisError as e:
        logger.warning("redis_health_check_failed", error=str(e))
        checks["redis"] = False

    try:
        await runtime.storage.check()
        checks["storage"] = True
    except StorageError as e:
        logger.warning("storage_health_check_failed", error=e.message)
        checks["storage"] = False

    return ReadyResponse(ready=all(checks.values()), checks=checks)
