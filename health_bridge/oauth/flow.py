"""Huawei ID authorization-code flow with PKCE.

Drives one authorization attempt through its states:

    CONFIGURED → AUTHORIZING → CALLBACK_RECEIVED → TOKEN_EXCHANGED
                     (any state) → ERROR

Protocol failures never raise: they move the flow to ERROR and come back as
an ``OAuthResult`` carrying the error code.  The CSRF state comparison runs
before any network call.  The user may take as long as they like on the
authorization page; only the token request itself is bounded by a timeout.

Token refresh is disabled upstream.  ``refresh_token`` answers
``temporarily_disabled`` and the caller must run the flow again.
"""

from __future__ import annotations

import logging
from urllib.parse import parse_qs, urlsplit

import httpx
import jwt

from health_bridge.oauth.models import (
    HUAWEI_TOKEN_URL,
    AuthorizationState,
    CallbackParams,
    IdTokenClaims,
    OAuthConfig,
    OAuthResult,
)

logger = logging.getLogger("health_bridge.oauth")

_DEFAULT_TIMEOUT_SECONDS = 30.0


class OAuthFlowError(RuntimeError):
    """An operation was called in a state that does not allow it."""


class AuthorizationFlow:
    """State machine for a single PKCE authorization attempt."""

    def __init__(
        self,
        config: OAuthConfig,
        token_url: str = HUAWEI_TOKEN_URL,
        timeout: float = _DEFAULT_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the flow.

        Args:
            config:      Parameters of this attempt (holds the verifier).
            token_url:   Token endpoint.
            timeout:     Network timeout for the token request, in seconds.
            http_client: Optional pre-configured httpx client (for testing).
        """
        self._config = config
        self._token_url = token_url
        self._timeout = timeout
        self._http_client = http_client
        self._state = AuthorizationState.CONFIGURED
        self._callback: CallbackParams | None = None
        self._result: OAuthResult | None = None

    @property
    def config(self) -> OAuthConfig:
        return self._config

    @property
    def state(self) -> AuthorizationState:
        return self._state

    @property
    def result(self) -> OAuthResult | None:
        """Last token or error result, if the flow has produced one."""
        return self._result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def authorization_url(self) -> str:
        """Return the URL to present to the user and enter AUTHORIZING.

        Calling again while authorizing returns the same URL.

        Raises:
            ValueError: The config is invalid.
            OAuthFlowError: The flow is past the authorizing step.
        """
        if self._state not in (AuthorizationState.CONFIGURED, AuthorizationState.AUTHORIZING):
            raise OAuthFlowError(
                f"Cannot build an authorization URL in state {self._state.value}"
            )
        url = self._config.build_authorize_url()
        self._state = AuthorizationState.AUTHORIZING
        logger.info("OAuth: authorization started for client %s", self._config.client_id)
        return url

    def is_callback_url(self, url: str) -> bool:
        redirect = self._config.redirect_uri
        return bool(redirect) and url.startswith(redirect)

    def handle_callback(self, url: str) -> CallbackParams | OAuthResult:
        """Accept the redirect that ends the authorization step.

        Args:
            url: Full redirect URL including its query string.

        Returns:
            CallbackParams on success, otherwise an error OAuthResult
            (``invalid_state`` on a CSRF state mismatch, the upstream
            ``error`` code when the server reported one).
        """
        if not self.is_callback_url(url):
            return OAuthResult.failure(
                "invalid_request", "URL does not match the configured redirect_uri"
            )
        if self._state != AuthorizationState.AUTHORIZING:
            return OAuthResult.failure(
                "invalid_request",
                f"Callback not expected in state {self._state.value}",
            )

        query = parse_qs(urlsplit(url).query)

        def _param(name: str) -> str | None:
            values = query.get(name)
            return values[0] if values else None

        error = _param("error")
        if error:
            return self._fail(error, _param("error_description"))

        code = _param("code")
        if not code:
            return self._fail("invalid_request", "Authorization code missing from callback")

        returned_state = _param("state")
        if returned_state is not None and returned_state != self._config.state:
            logger.warning("OAuth: callback state mismatch, rejecting")
            return self._fail("invalid_state", "State parameter mismatch")

        self._callback = CallbackParams(code=code, state=returned_state)
        self._state = AuthorizationState.CALLBACK_RECEIVED
        return self._callback

    async def exchange_code(self, code: str | None = None) -> OAuthResult:
        """Exchange the authorization code for tokens.

        Uses the verifier generated with the config; it is never regenerated.

        Args:
            code: Authorization code.  Defaults to the one from the accepted
                  callback.

        Returns:
            OAuthResult with tokens, or an error result carrying the upstream
            error code and description unmodified.
        """
        if self._state == AuthorizationState.ERROR and self._result is not None:
            return self._result
        if self._state != AuthorizationState.CALLBACK_RECEIVED or self._callback is None:
            return OAuthResult.failure(
                "invalid_request",
                f"Token exchange not allowed in state {self._state.value}",
            )

        form = {
            "grant_type": "authorization_code",
            "code": code or self._callback.code,
            "client_id": self._config.client_id,
            "code_verifier": self._config.code_verifier,
            "redirect_uri": self._config.redirect_uri,
        }

        try:
            response = await self._post_form(form)
        except httpx.HTTPError as exc:
            logger.warning("OAuth: token request failed: %s", exc)
            return self._fail("network_error", str(exc) or type(exc).__name__)

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.status_code != 200:
            error = body.get("error")
            return self._fail(
                str(error) if error is not None else "http_error",
                body.get("error_description") or f"HTTP {response.status_code}",
            )

        result = OAuthResult.from_token_response(body)
        if result.error is not None:
            return self._fail(result.error, result.error_description)
        if not result.is_success:
            return self._fail("invalid_response", "Token response has no access_token")

        self._result = result
        self._state = AuthorizationState.TOKEN_EXCHANGED
        logger.info("OAuth: token exchange succeeded (%s)", result.summary())
        return result

    async def complete(self, url: str) -> OAuthResult:
        """Handle the redirect and, if it is accepted, exchange the code."""
        params = self.handle_callback(url)
        if isinstance(params, OAuthResult):
            return params
        return await self.exchange_code(params.code)

    async def refresh_token(self, refresh_token: str | None = None) -> OAuthResult:
        """Refresh is not available; the caller must authorize again."""
        logger.info("OAuth: refresh requested but disabled")
        return OAuthResult.failure(
            "temporarily_disabled",
            "Token refresh is not currently supported; run the authorization flow again",
        )

    @staticmethod
    def parse_id_token(id_token: str) -> IdTokenClaims | None:
        """Read the claims of an ID token without verifying its signature."""
        try:
            payload = jwt.decode(id_token, options={"verify_signature": False})
        except jwt.PyJWTError as exc:
            logger.warning("OAuth: could not decode id_token: %s", exc)
            return None
        return IdTokenClaims.from_payload(payload)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fail(self, error: str, description: str | None) -> OAuthResult:
        logger.warning("OAuth: flow failed with %s: %s", error, description)
        self._state = AuthorizationState.ERROR
        self._result = OAuthResult.failure(error, description)
        return self._result

    async def _post_form(self, form: dict[str, str]) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.post(
                self._token_url, data=form, timeout=self._timeout
            )
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(self._token_url, data=form)
