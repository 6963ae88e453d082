"""Health Bridge API — FastAPI application entry point.

Run locally:
    uvicorn health_bridge.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from health_bridge.config import get_settings
from health_bridge.dependencies import get_bridge
from health_bridge.middleware.security import SecurityHeadersMiddleware
from health_bridge.routers import health, oauth, platforms

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("health_bridge")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info(
        "Starting Health Bridge API v%s [%s]",
        settings.app_version,
        settings.environment,
    )
    yield
    bridge = app.dependency_overrides.get(get_bridge, get_bridge)()
    result = await bridge.disconnect()
    if not result.is_success:
        logger.warning("Shutdown cleanup incomplete: %s", result.message)
    logger.info("Health Bridge API shut down")


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="Health Bridge API",
        description=(
            "One contract for Samsung Health, Apple HealthKit and Huawei Health "
            "(on-device and cloud): permissions, reads, writes and OAuth."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ---------- Middleware (outermost first) ----------

    # Security headers on every response
    app.add_middleware(SecurityHeadersMiddleware)

    # CORS: innermost middleware so it can handle preflight
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside the v1 prefix) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(platforms.router, prefix=v1_prefix)
    app.include_router(oauth.router, prefix=v1_prefix)

    return app


app = create_app()
