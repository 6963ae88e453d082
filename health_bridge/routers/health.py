"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from health_bridge.dependencies import AppSettings, Bridge

router = APIRouter(tags=["system"])
logger = logging.getLogger("health_bridge.routers.health")


@router.get("/health")
async def health_check(settings: AppSettings, bridge: Bridge) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also reports which platforms this process can reach.
    """
    try:
        platforms = [p.value for p in bridge.get_available_health_platforms()]
    except Exception as exc:
        logger.warning("Health check platform probe failed: %s", exc)
        platforms = []

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "platforms": platforms,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
