"""Huawei ID OAuth 2.0 authorization with PKCE."""

from health_bridge.oauth.flow import AuthorizationFlow, OAuthFlowError
from health_bridge.oauth.models import (
    AuthorizationState,
    CallbackParams,
    IdTokenClaims,
    OAuthConfig,
    OAuthResult,
)

__all__ = [
    "AuthorizationFlow",
    "AuthorizationState",
    "CallbackParams",
    "IdTokenClaims",
    "OAuthConfig",
    "OAuthFlowError",
    "OAuthResult",
]
