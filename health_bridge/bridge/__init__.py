"""Health Bridge core: one contract over many health backends.

Subpackages:
    providers/ — Platform providers (Samsung Health, Apple HealthKit,
                 Huawei Health Kit on-device and cloud)

Core modules:
    base        — HealthProvider ABC and canonical data models
    catalog     — Load/validate/hot-reload capabilities.yaml
    native      — Callback-to-asyncio adaptation, native query tracking
    registry    — Construct-once provider cache and factory
    permissions — Three-state permission reconciliation
    dispatcher  — Detail vs. daily-statistics query planning
    normalizer  — Result envelopes for every provider outcome
    facade      — HealthBridge, the single entry point
"""

from health_bridge.bridge.base import (
    HealthData,
    HealthDataOperation,
    HealthDataResult,
    HealthDataStatus,
    HealthDataType,
    HealthPlatform,
    HealthProvider,
    PermissionStatus,
    PlatformCapability,
    QueryKind,
)
from health_bridge.bridge.catalog import CapabilityCatalog, get_catalog

__all__ = [
    "HealthProvider",
    "HealthData",
    "HealthDataResult",
    "HealthDataStatus",
    "HealthDataType",
    "HealthDataOperation",
    "HealthPlatform",
    "PermissionStatus",
    "PlatformCapability",
    "QueryKind",
    "CapabilityCatalog",
    "get_catalog",
]
