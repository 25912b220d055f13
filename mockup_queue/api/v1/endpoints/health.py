"""Health check endpoints."""

from typing import Dict
from fastapi import APIRouter, Depends, Response
import redis.asyncio as redis
from mockup_queue.core.config import Settings, get_settings
from mockup_queue.core.logging import get_logger
from mockup_queue.core.timezone import utcnow
from mockup_queue.db.database import check_db_connection
from mockup_queue.schemas.common import HealthResponse

router = APIRouter()
logger = get_logger(__name__)


async def _broker_reachable(redis_url: str) -> bool:
    client = redis.from_url(redis_url)
    try:
        await client.ping()
        return True
    except (redis.RedisError, OSError) as e:
        logger.error("Broker health check failed", error=str(e))
        return False
    finally:
        await client.aclose()


@router.get("/health", response_model=HealthResponse)
async def health_check(settings: Settings = Depends(get_settings)) -> HealthResponse:
    """Report database and broker reachability.

    An unreachable dependency marks the service degraded; the endpoint still
    answers 200.
    """
    services: Dict[str, bool] = {
        "database": await check_db_connection(),
        "redis": await _broker_reachable(settings.redis_url),
    }

    return HealthResponse(
        status="healthy" if all(services.values()) else "degraded",
        version="1.0.0",
        environment=settings.app_env,
        services=services,
        provider_mode="live" if settings.replicate_api_token else "mock",
        dispatch_capacity=settings.dispatch_capacity,
        timestamp=utcnow().isoformat()
    )


@router.get("/health/live")
async def liveness_check() -> dict:
    """Kubernetes liveness check endpoint."""
    return {"status": "alive"}


@router.get("/health/ready", response_model=HealthResponse)
async def readiness_check(
    response: Response,
    settings: Settings = Depends(get_settings)
) -> HealthResponse:
    """Kubernetes readiness check; answers 503 while degraded."""
    health = await health_check(settings)
    if health.status != "healthy":
        response.status_code = 503
    return health
