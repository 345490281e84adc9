"""Liveness and readiness endpoints.

/health returns 200 even when Redis is unreachable; the status field says
"degraded". Restarting would not bring Redis back.

/ready answers 503 when Redis is configured but down: a callback that
reaches the registration branch could not store its token. Without
REDIS_URL tokens live in memory and the instance is always ready.
"""

from __future__ import annotations

from fastapi import APIRouter, Response, status
from pydantic import BaseModel

from keycloak_bridge.db.redis import redis_pool

router = APIRouter(tags=["health"])


class HealthOut(BaseModel):
    status: str
    checks: dict[str, str]


async def _redis_check() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except Exception:
        return "degraded"
    return "ok"


@router.get("/health", response_model=HealthOut)
async def health() -> HealthOut:
    redis_status = await _redis_check()
    overall = "degraded" if redis_status == "degraded" else "ok"
    return HealthOut(status=overall, checks={"redis": redis_status})


@router.get("/ready")
async def ready() -> Response:
    if await _redis_check() == "degraded":
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(status_code=status.HTTP_200_OK)
