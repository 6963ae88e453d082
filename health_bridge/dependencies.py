"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from health_bridge.bridge.facade import HealthBridge
from health_bridge.config import Settings, get_settings


@lru_cache
def get_bridge() -> HealthBridge:
    """Return the process-wide HealthBridge.

    A server process has no native SDK bridges, so only cloud-backed
    platforms are available through it.  Tests override this dependency.
    """
    return HealthBridge(settings=get_settings())


# Annotated shortcuts for route signatures
Bridge = Annotated[HealthBridge, Depends(get_bridge)]
AppSettings = Annotated[Settings, Depends(get_settings)]
