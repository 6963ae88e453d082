"""Platform endpoints: capabilities, permissions, reads and writes.

Endpoints:
    GET    /platforms                                 — Platforms available to this process
    GET    /platforms/{platform}/capabilities         — Capability matrix rows
    GET    /platforms/{platform}/data-types           — Supported data types (optionally per operation)
    POST   /platforms/{platform}/initialize           — Connect to the backend
    POST   /platforms/{platform}/permissions/check    — Canonical status per data type
    POST   /platforms/{platform}/permissions/request  — Ask for access
    POST   /platforms/{platform}/permissions/revoke   — Revoke specific permissions
    DELETE /platforms/{platform}/permissions          — Revoke every permission
    GET    /platforms/{platform}/data/{data_type}     — Read records or daily statistics
    POST   /platforms/{platform}/data                 — Write one record
    POST   /platforms/{platform}/data/batch           — Write records sequentially

Result envelopes are returned as-is with an HTTP status derived from the
envelope's status code.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse

from health_bridge.bridge.base import (
    HealthDataOperation,
    HealthDataResult,
    HealthDataStatus,
    HealthPlatform,
)
from health_bridge.dependencies import Bridge
from health_bridge.models.platforms import (
    BatchWriteRequest,
    HealthRecordIn,
    PermissionCheckRequest,
    PermissionRequest,
    RevokeRequest,
)

logger = logging.getLogger("health_bridge.routers.platforms")

router = APIRouter(prefix="/platforms", tags=["platforms"])


HTTP_STATUS: dict[HealthDataStatus, int] = {
    HealthDataStatus.SUCCESS: 200,
    HealthDataStatus.INVALID_PARAMETERS: 400,
    HealthDataStatus.PERMISSION_DENIED: 403,
    HealthDataStatus.PLATFORM_NOT_SUPPORTED: 404,
    HealthDataStatus.INVALID_STATE: 409,
    HealthDataStatus.DATA_TYPE_NOT_SUPPORTED: 422,
    HealthDataStatus.NOT_SUPPORTED: 501,
    HealthDataStatus.NETWORK_ERROR: 502,
    HealthDataStatus.NOT_INITIALIZED: 503,
    HealthDataStatus.INITIALIZATION_FAILED: 503,
    HealthDataStatus.TEMPORARILY_DISABLED: 503,
}


def envelope(result: HealthDataResult) -> JSONResponse:
    return JSONResponse(
        status_code=HTTP_STATUS.get(result.status, 500),
        content=result.to_dict(),
    )


def _known_platform(platform: str) -> HealthPlatform:
    resolved = HealthPlatform.from_key(platform)
    if resolved is None:
        raise HTTPException(status_code=404, detail=f"Platform not supported: {platform}")
    return resolved


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

@router.get("")
async def list_platforms(bridge: Bridge) -> list[str]:
    return [p.value for p in bridge.get_available_health_platforms()]


@router.get("/{platform}/capabilities")
async def get_capabilities(platform: str, bridge: Bridge) -> list[dict]:
    resolved = _known_platform(platform)
    return [c.to_dict() for c in bridge.get_platform_capabilities(resolved)]


@router.get("/{platform}/data-types")
async def get_data_types(
    platform: str,
    bridge: Bridge,
    operation: HealthDataOperation | None = Query(default=None),
) -> list[str]:
    resolved = _known_platform(platform)
    return [t.value for t in bridge.get_supported_data_types(resolved, operation)]


@router.post("/{platform}/initialize")
async def initialize_platform(platform: str, bridge: Bridge) -> JSONResponse:
    return envelope(await bridge.initialize_health_platform(platform))


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------

@router.post("/{platform}/permissions/check")
async def check_permissions(
    platform: str, body: PermissionCheckRequest, bridge: Bridge
) -> dict[str, str]:
    statuses = await bridge.check_permissions(platform, body.data_types, body.operation)
    return {t.value: s.value for t, s in statuses.items()}


@router.post("/{platform}/permissions/request")
async def request_permissions(
    platform: str, body: PermissionRequest, bridge: Bridge
) -> JSONResponse:
    result = await bridge.request_permissions(
        platform, body.data_types, body.operations, body.reason
    )
    return envelope(result)


@router.post("/{platform}/permissions/revoke")
async def revoke_permissions(
    platform: str, body: RevokeRequest, bridge: Bridge
) -> JSONResponse:
    result = await bridge.revoke_authorizations(platform, body.data_types, body.operations)
    return envelope(result)


@router.delete("/{platform}/permissions")
async def revoke_all_permissions(platform: str, bridge: Bridge) -> JSONResponse:
    return envelope(await bridge.revoke_all_authorizations(platform))


# ---------------------------------------------------------------------------
# Data
# ---------------------------------------------------------------------------

@router.get("/{platform}/data/{data_type}")
async def read_data(
    platform: str,
    data_type: str,
    bridge: Bridge,
    start: int | None = Query(default=None, description="Window start, epoch ms"),
    end: int | None = Query(default=None, description="Window end, epoch ms"),
    limit: int | None = Query(default=None),
    kind: str | None = Query(default=None, description="detail, statistics or daily"),
) -> JSONResponse:
    result = await bridge.read_health_data(platform, data_type, start, end, limit, kind)
    return envelope(result)


@router.post("/{platform}/data")
async def write_data(platform: str, body: HealthRecordIn, bridge: Bridge) -> JSONResponse:
    return envelope(await bridge.write_health_data(platform, _payload(body)))


@router.post("/{platform}/data/batch")
async def write_batch(
    platform: str, body: BatchWriteRequest, bridge: Bridge
) -> JSONResponse:
    payloads = [_payload(r) for r in body.records]
    result = await bridge.write_batch_health_data(platform, payloads)
    if not result.is_success:
        logger.info("Batch write to %s failed: %s", platform, result.message)
    return envelope(result)


def _payload(record: HealthRecordIn) -> dict[str, Any]:
    return record.model_dump(exclude_none=True)
