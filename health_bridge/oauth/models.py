"""Data models for the Huawei ID OAuth 2.0 + PKCE flow."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from authlib.common.urls import add_params_to_uri

from health_bridge.oauth.pkce import (
    CHALLENGE_METHODS,
    create_code_challenge,
    generate_code_verifier,
    generate_state,
    is_valid_code_verifier,
)

HUAWEI_AUTHORIZE_URL = "https://oauth-login.cloud.huawei.com/oauth2/v3/authorize"
HUAWEI_TOKEN_URL = "https://oauth-login.cloud.huawei.com/oauth2/v3/token"

OPENID_SCOPE = "openid"


class AuthorizationState(str, Enum):
    """Lifecycle of one authorization attempt.

    CONFIGURED → AUTHORIZING → CALLBACK_RECEIVED → TOKEN_EXCHANGED, with an
    ERROR exit from any state.
    """

    CONFIGURED = "configured"
    AUTHORIZING = "authorizing"
    CALLBACK_RECEIVED = "callback_received"
    TOKEN_EXCHANGED = "token_exchanged"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OAuthConfig:
    """One authorization attempt's parameters.

    The verifier and its challenge are generated once, at construction, and
    never change; create a new config for a new attempt.

    Attributes:
        client_id:             Huawei app ID.
        redirect_uri:          Registered redirect URI.
        scopes:                Requested scopes; must include ``openid``.
        state:                 Anti-CSRF value echoed back on the redirect.
        code_verifier:         PKCE secret (43–128 unreserved characters).
        code_challenge_method: ``S256`` (default) or ``plain``.
        access_type:           ``offline`` asks for a refresh token.
        display:               Login page layout hint (``touch`` on mobile).
        nonce:                 Optional nonce bound into the ID token.
        authorize_url:         Authorization endpoint.
        code_challenge:        Derived from the verifier; not an init argument.
    """

    client_id: str
    redirect_uri: str
    scopes: tuple[str, ...] = (OPENID_SCOPE,)
    state: str = field(default_factory=generate_state)
    code_verifier: str = field(default_factory=generate_code_verifier, repr=False)
    code_challenge_method: str = "S256"
    access_type: str | None = "offline"
    display: str | None = "touch"
    nonce: str | None = None
    authorize_url: str = HUAWEI_AUTHORIZE_URL
    code_challenge: str = field(init=False, default="")

    def __post_init__(self) -> None:
        object.__setattr__(self, "scopes", tuple(self.scopes))
        if self.code_challenge_method in CHALLENGE_METHODS:
            object.__setattr__(
                self,
                "code_challenge",
                create_code_challenge(self.code_verifier, self.code_challenge_method),
            )

    def validate(self) -> list[str]:
        """Return every problem with this config (empty when valid)."""
        problems = []
        if not self.client_id:
            problems.append("client_id is required")
        if not self.redirect_uri:
            problems.append("redirect_uri is required")
        if OPENID_SCOPE not in self.scopes:
            problems.append("scopes must include 'openid'")
        if self.code_challenge_method not in CHALLENGE_METHODS:
            problems.append(
                f"code_challenge_method must be one of {', '.join(CHALLENGE_METHODS)}"
            )
        if not is_valid_code_verifier(self.code_verifier):
            problems.append("code_verifier must be 43-128 unreserved characters")
        return problems

    def build_authorize_url(self) -> str:
        """Build the URL the user opens to sign in and consent.

        Raises:
            ValueError: If the config does not validate.
        """
        problems = self.validate()
        if problems:
            raise ValueError("Invalid OAuth config: " + "; ".join(problems))

        params: list[tuple[str, str]] = [
            ("response_type", "code"),
            ("client_id", self.client_id),
            ("redirect_uri", self.redirect_uri),
            ("scope", " ".join(self.scopes)),
            ("code_challenge", self.code_challenge),
            ("code_challenge_method", self.code_challenge_method),
        ]
        if self.display:
            params.append(("display", self.display))
        if self.state:
            params.append(("state", self.state))
        if self.nonce:
            params.append(("nonce", self.nonce))
        if self.access_type:
            params.append(("access_type", self.access_type))
        return add_params_to_uri(self.authorize_url, params)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CallbackParams:
    """Parameters extracted from an accepted redirect."""

    code: str
    state: str | None = None


@dataclass(frozen=True)
class OAuthResult:
    """Outcome of a token exchange (or of a failed step before it).

    ``is_success`` holds exactly when an access token is present and no
    error code is set.
    """

    access_token: str | None = None
    id_token: str | None = None
    refresh_token: str | None = None
    expires_in: int | None = None
    scope: str | None = None
    token_type: str | None = None
    error: str | None = None
    error_description: str | None = None

    @property
    def is_success(self) -> bool:
        return bool(self.access_token) and self.error is None

    @property
    def scopes(self) -> list[str]:
        return self.scope.split() if self.scope else []

    @classmethod
    def from_token_response(cls, body: Mapping[str, Any]) -> "OAuthResult":
        error = body.get("error")
        expires_in = body.get("expires_in")
        return cls(
            access_token=body.get("access_token"),
            id_token=body.get("id_token"),
            refresh_token=body.get("refresh_token"),
            expires_in=int(expires_in) if expires_in is not None else None,
            scope=body.get("scope"),
            token_type=body.get("token_type"),
            error=str(error) if error is not None else None,
            error_description=body.get("error_description"),
        )

    @classmethod
    def failure(cls, error: str, description: str | None = None) -> "OAuthResult":
        return cls(error=error, error_description=description)

    def summary(self) -> dict:
        """Loggable view without any token material."""
        return {
            "success": self.is_success,
            "expires_in": self.expires_in,
            "scope": self.scope,
            "token_type": self.token_type,
            "has_refresh_token": self.refresh_token is not None,
            "has_id_token": self.id_token is not None,
            "error": self.error,
            "error_description": self.error_description,
        }


@dataclass(frozen=True)
class IdTokenClaims:
    """Claims read from an ID token payload (signature not verified)."""

    sub: str | None
    name: str | None = None
    email: str | None = None
    picture: str | None = None
    nonce: str | None = None
    issued_at: datetime | None = None
    expires_at: datetime | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "IdTokenClaims":
        def _ts(key: str) -> datetime | None:
            value = payload.get(key)
            if value is None:
                return None
            return datetime.fromtimestamp(int(value), tz=timezone.utc)

        return cls(
            sub=payload.get("sub"),
            name=payload.get("display_name") or payload.get("name"),
            email=payload.get("email"),
            picture=payload.get("picture"),
            nonce=payload.get("nonce"),
            issued_at=_ts("iat"),
            expires_at=_ts("exp"),
            raw=dict(payload),
        )
