"""Request bodies for the platform endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from health_bridge.bridge.base import HealthDataOperation
from health_bridge.models.base import BridgeBase


# ---------- Permissions ----------

class PermissionCheckRequest(BridgeBase):
    data_types: list[str] = Field(min_length=1)
    operation: HealthDataOperation = HealthDataOperation.READ


class PermissionRequest(BridgeBase):
    data_types: list[str] = Field(min_length=1)
    operations: list[HealthDataOperation] = Field(
        default_factory=lambda: [HealthDataOperation.READ], min_length=1
    )
    reason: str | None = None


class RevokeRequest(BridgeBase):
    data_types: list[str] = Field(min_length=1)
    operations: list[HealthDataOperation] = Field(min_length=1)


# ---------- Records ----------

class HealthRecordIn(BridgeBase):
    """One record to write.  ``timestamp`` is epoch milliseconds."""

    type: str
    value: float | None = None
    unit: str | None = None
    timestamp: int
    source: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class BatchWriteRequest(BridgeBase):
    records: list[HealthRecordIn]
