from fastapi import APIRouter, Request

from relay.dependencies import get_ai_gateway, get_buffer, get_pipeline, get_redis
from relay.models import HealthResponse, ServiceChecks
from relay.store.redis_client import is_healthy

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    gateway = get_ai_gateway(request)
    ai_ok = await gateway.is_available()
    redis_ok = await is_healthy(get_redis(request))
    buffer = get_buffer(request)
    return HealthResponse(
        status="ok" if ai_ok and redis_ok else "degraded",
        checks=ServiceChecks(ai=ai_ok, redis=redis_ok, breaker=gateway.breaker_state),
        queues=get_pipeline(request).stats(),
        buffer={**buffer.stats, "pending": len(buffer.pending_users())},
    )
