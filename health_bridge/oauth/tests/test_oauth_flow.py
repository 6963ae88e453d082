"""Tests for the Huawei ID authorization-code flow state machine."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlsplit

import httpx
import jwt
import pytest

from health_bridge.bridge.tests.fakes import json_response
from health_bridge.oauth.flow import AuthorizationFlow, OAuthFlowError
from health_bridge.oauth.models import AuthorizationState, CallbackParams, OAuthConfig
from health_bridge.oauth.pkce import create_code_challenge

REDIRECT = "https://app.example.com/oauth/callback"
TOKEN_URL = "https://oauth.example.com/oauth2/v3/token"
STEP_SCOPE = "https://www.huawei.com/healthkit/step.read"


@pytest.fixture
def config() -> OAuthConfig:
    return OAuthConfig(
        client_id="test-client-id",
        redirect_uri=REDIRECT,
        scopes=("openid", STEP_SCOPE),
        state="state-123",
    )


@pytest.fixture
def http_client() -> MagicMock:
    client = MagicMock(spec=httpx.AsyncClient)
    client.post = AsyncMock(
        return_value=json_response(
            {
                "access_token": "access-123",
                "refresh_token": "refresh-456",
                "id_token": "id-789",
                "expires_in": 3600,
                "token_type": "Bearer",
                "scope": f"openid {STEP_SCOPE}",
            }
        )
    )
    return client


@pytest.fixture
def flow(config: OAuthConfig, http_client: MagicMock) -> AuthorizationFlow:
    return AuthorizationFlow(config, token_url=TOKEN_URL, timeout=5.0, http_client=http_client)


def authorized(flow: AuthorizationFlow) -> AuthorizationFlow:
    flow.authorization_url()
    return flow


# ---------------------------------------------------------------------------
# Authorization URL
# ---------------------------------------------------------------------------


class TestAuthorizationUrl:
    def test_url_parameters(self, flow: AuthorizationFlow, config: OAuthConfig) -> None:
        url = flow.authorization_url()
        query = parse_qs(urlsplit(url).query)
        assert query["response_type"] == ["code"]
        assert query["client_id"] == ["test-client-id"]
        assert query["redirect_uri"] == [REDIRECT]
        assert query["scope"] == [f"openid {STEP_SCOPE}"]
        assert query["code_challenge"] == [create_code_challenge(config.code_verifier)]
        assert query["code_challenge_method"] == ["S256"]
        assert query["state"] == ["state-123"]
        assert query["access_type"] == ["offline"]
        # The verifier itself never leaves the device in the URL.
        assert config.code_verifier not in url
        assert flow.state == AuthorizationState.AUTHORIZING

    def test_repeat_returns_same_url(self, flow: AuthorizationFlow) -> None:
        assert flow.authorization_url() == flow.authorization_url()

    def test_invalid_config(self, http_client: MagicMock) -> None:
        flow = AuthorizationFlow(
            OAuthConfig(client_id="", redirect_uri=REDIRECT, scopes=(STEP_SCOPE,)),
            http_client=http_client,
        )
        with pytest.raises(ValueError, match="client_id is required; scopes must include 'openid'"):
            flow.authorization_url()
        assert flow.state == AuthorizationState.CONFIGURED

    def test_not_allowed_after_callback(self, flow: AuthorizationFlow) -> None:
        authorized(flow).handle_callback(f"{REDIRECT}?code=abc&state=state-123")
        with pytest.raises(OAuthFlowError):
            flow.authorization_url()


# ---------------------------------------------------------------------------
# Callback
# ---------------------------------------------------------------------------


class TestCallback:
    def test_accepted(self, flow: AuthorizationFlow) -> None:
        params = authorized(flow).handle_callback(f"{REDIRECT}?code=abc&state=state-123")
        assert params == CallbackParams(code="abc", state="state-123")
        assert flow.state == AuthorizationState.CALLBACK_RECEIVED

    def test_missing_state_accepted(self, flow: AuthorizationFlow) -> None:
        params = authorized(flow).handle_callback(f"{REDIRECT}?code=abc")
        assert params == CallbackParams(code="abc", state=None)

    def test_state_mismatch(self, flow: AuthorizationFlow) -> None:
        result = authorized(flow).handle_callback(f"{REDIRECT}?code=abc&state=forged")
        assert not isinstance(result, CallbackParams)
        assert result.error == "invalid_state"
        assert flow.state == AuthorizationState.ERROR

    def test_before_authorization(self, flow: AuthorizationFlow) -> None:
        result = flow.handle_callback(f"{REDIRECT}?code=abc")
        assert not isinstance(result, CallbackParams)
        assert result.error == "invalid_request"
        assert flow.state == AuthorizationState.CONFIGURED

    def test_foreign_url(self, flow: AuthorizationFlow) -> None:
        authorized(flow)
        assert not flow.is_callback_url("https://evil.example.com/cb?code=abc")
        result = flow.handle_callback("https://evil.example.com/cb?code=abc")
        assert not isinstance(result, CallbackParams)
        assert result.error == "invalid_request"
        assert flow.state == AuthorizationState.AUTHORIZING

    def test_upstream_error(self, flow: AuthorizationFlow) -> None:
        result = authorized(flow).handle_callback(
            f"{REDIRECT}?error=access_denied&error_description=User+cancelled"
        )
        assert not isinstance(result, CallbackParams)
        assert result.error == "access_denied"
        assert result.error_description == "User cancelled"

    def test_missing_code(self, flow: AuthorizationFlow) -> None:
        result = authorized(flow).handle_callback(f"{REDIRECT}?state=state-123")
        assert not isinstance(result, CallbackParams)
        assert result.error == "invalid_request"

    def test_empty_redirect_never_matches(self, http_client: MagicMock) -> None:
        flow = AuthorizationFlow(OAuthConfig(client_id="id", redirect_uri=""), http_client=http_client)
        assert not flow.is_callback_url("https://anything.example.com")


# ---------------------------------------------------------------------------
# Token exchange
# ---------------------------------------------------------------------------


class TestTokenExchange:
    @pytest.mark.asyncio
    async def test_success(
        self, flow: AuthorizationFlow, http_client: MagicMock, config: OAuthConfig
    ) -> None:
        result = await authorized(flow).complete(f"{REDIRECT}?code=abc&state=state-123")

        assert result.is_success
        assert result.access_token == "access-123"
        assert result.refresh_token == "refresh-456"
        assert result.expires_in == 3600
        assert result.scopes == ["openid", STEP_SCOPE]
        assert flow.state == AuthorizationState.TOKEN_EXCHANGED
        assert flow.result is result

        args, kwargs = http_client.post.call_args
        assert args == (TOKEN_URL,)
        assert kwargs["timeout"] == 5.0
        assert kwargs["data"] == {
            "grant_type": "authorization_code",
            "code": "abc",
            "client_id": "test-client-id",
            "code_verifier": config.code_verifier,
            "redirect_uri": REDIRECT,
        }

    @pytest.mark.asyncio
    async def test_state_mismatch_makes_no_request(
        self, flow: AuthorizationFlow, http_client: MagicMock
    ) -> None:
        result = await authorized(flow).complete(f"{REDIRECT}?code=abc&state=forged")
        assert result.error == "invalid_state"
        http_client.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_exchange_before_callback(
        self, flow: AuthorizationFlow, http_client: MagicMock
    ) -> None:
        result = await authorized(flow).exchange_code("abc")
        assert result.error == "invalid_request"
        http_client.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_upstream_error_passed_through(
        self, flow: AuthorizationFlow, http_client: MagicMock
    ) -> None:
        http_client.post.return_value = json_response(
            {"error": 1101, "sub_error": 20155, "error_description": "invalid code"}, 400
        )
        result = await authorized(flow).complete(f"{REDIRECT}?code=abc&state=state-123")
        assert result.error == "1101"
        assert result.error_description == "invalid code"
        assert flow.state == AuthorizationState.ERROR

    @pytest.mark.asyncio
    async def test_non_json_error_body(
        self, flow: AuthorizationFlow, http_client: MagicMock
    ) -> None:
        response = json_response(None, 502)
        response.json.side_effect = ValueError("not json")
        http_client.post.return_value = response
        result = await authorized(flow).complete(f"{REDIRECT}?code=abc")
        assert result.error == "http_error"
        assert result.error_description == "HTTP 502"

    @pytest.mark.asyncio
    async def test_network_error(self, flow: AuthorizationFlow, http_client: MagicMock) -> None:
        http_client.post.side_effect = httpx.ConnectTimeout("timed out")
        result = await authorized(flow).complete(f"{REDIRECT}?code=abc")
        assert result.error == "network_error"
        assert not result.is_success

    @pytest.mark.asyncio
    async def test_missing_access_token(
        self, flow: AuthorizationFlow, http_client: MagicMock
    ) -> None:
        http_client.post.return_value = json_response({"token_type": "Bearer"})
        result = await authorized(flow).complete(f"{REDIRECT}?code=abc")
        assert result.error == "invalid_response"

    @pytest.mark.asyncio
    async def test_error_result_is_sticky(
        self, flow: AuthorizationFlow, http_client: MagicMock
    ) -> None:
        http_client.post.side_effect = httpx.ConnectError("unreachable")
        first = await authorized(flow).complete(f"{REDIRECT}?code=abc")
        second = await flow.exchange_code("abc")
        assert second is first
        assert http_client.post.await_count == 1

    @pytest.mark.asyncio
    async def test_refresh_disabled(self, flow: AuthorizationFlow, http_client: MagicMock) -> None:
        result = await flow.refresh_token("refresh-456")
        assert result.error == "temporarily_disabled"
        http_client.post.assert_not_called()


# ---------------------------------------------------------------------------
# ID token
# ---------------------------------------------------------------------------


class TestIdToken:
    def test_claims_read_without_verification(self) -> None:
        token = jwt.encode(
            {
                "sub": "user-1",
                "display_name": "Alex",
                "email": "alex@example.com",
                "nonce": "n-1",
                "iat": 1773100800,
                "exp": 1773104400,
            },
            "test-signing-key-long-enough-for-hs256",
            algorithm="HS256",
        )
        claims = AuthorizationFlow.parse_id_token(token)
        assert claims is not None
        assert claims.sub == "user-1"
        assert claims.name == "Alex"
        assert claims.email == "alex@example.com"
        assert claims.issued_at == datetime(2026, 3, 10, tzinfo=timezone.utc)
        assert claims.raw["nonce"] == "n-1"

    def test_garbage_token(self) -> None:
        assert AuthorizationFlow.parse_id_token("not-a-jwt") is None
