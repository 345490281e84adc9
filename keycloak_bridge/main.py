from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from keycloak_bridge.api.health import router as health_router
from keycloak_bridge.api.keycloak_auth import router as keycloak_router
from keycloak_bridge.api.metrics_endpoint import router as metrics_router
from keycloak_bridge.core.config import SETTINGS
from keycloak_bridge.core.logging import setup_logging
from keycloak_bridge.db.redis import lifespan_redis
from keycloak_bridge.middleware.metrics import MetricsMiddleware
from keycloak_bridge.middleware.request_context import RequestContextMiddleware

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    async with lifespan_redis():
        yield


app = FastAPI(
    title="keycloak-bridge",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

# Last added runs first: RequestContext → Metrics → route handler.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(keycloak_router)

logger.info(
    "keycloak-bridge started  env=%s log_level=%s port=%d realm=%s redirect_uri=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    SETTINGS.keycloak.realm,
    SETTINGS.redirect_uri,
)


def run() -> None:
    import uvicorn

    uvicorn.run("keycloak_bridge.main:app", host="0.0.0.0", port=SETTINGS.port)
