"""Huawei ID authorization endpoints for the cloud platform.

Endpoints:
    GET /oauth/huawei/authorize  — Start a PKCE attempt, return the authorize URL
    GET /oauth/huawei/callback   — Redirect target; exchanges the code for tokens
    GET /oauth/huawei/consents   — Scopes the user has consented to
    POST /oauth/huawei/refresh   — Token refresh (currently disabled)

Responses never carry raw token material.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from health_bridge.dependencies import AppSettings, Bridge
from health_bridge.oauth.flow import AuthorizationFlow, OAuthFlowError
from health_bridge.oauth.models import OAuthResult

logger = logging.getLogger("health_bridge.routers.oauth")

router = APIRouter(prefix="/oauth/huawei", tags=["oauth"])

# OAuth error code → HTTP status
_ERROR_STATUS: dict[str, int] = {
    "invalid_state": 400,
    "invalid_request": 400,
    "access_denied": 403,
    "network_error": 502,
    "temporarily_disabled": 503,
}


@router.get("/authorize")
async def authorize(
    bridge: Bridge,
    state: str | None = Query(default=None, description="Caller-supplied anti-CSRF state"),
) -> dict[str, str]:
    try:
        url = bridge.start_cloud_authorization(state=state)
    except (ValueError, OAuthFlowError) as exc:
        logger.warning("Huawei authorization could not start: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"authorize_url": url}


@router.get("/callback")
async def callback(request: Request, bridge: Bridge, settings: AppSettings) -> JSONResponse:
    # Rebuild against the configured redirect URI so proxies do not change the prefix.
    callback_url = f"{settings.huawei_redirect_uri}?{request.url.query}"
    result = await bridge.complete_cloud_authorization(callback_url)
    if not result.is_success:
        return _error_response(result)

    content: dict[str, Any] = result.summary()
    claims = AuthorizationFlow.parse_id_token(result.id_token) if result.id_token else None
    if claims is not None:
        content["user"] = {"sub": claims.sub, "name": claims.name, "email": claims.email}
    return JSONResponse(status_code=200, content=content)


@router.get("/consents")
async def consents(bridge: Bridge) -> dict[str, Any]:
    info = await bridge.get_cloud_consents()
    if info is None:
        raise HTTPException(status_code=404, detail="No Huawei Cloud authorization")
    return {
        "app_name": info.app_name,
        "authorized_at": info.authorized_at.isoformat() if info.authorized_at else None,
        "scopes": info.authorized_scopes,
    }


@router.post("/refresh")
async def refresh(bridge: Bridge) -> JSONResponse:
    return _error_response(await bridge.refresh_cloud_token())


def _error_response(result: OAuthResult) -> JSONResponse:
    return JSONResponse(
        status_code=_ERROR_STATUS.get(result.error or "", 400),
        content=result.summary(),
    )
