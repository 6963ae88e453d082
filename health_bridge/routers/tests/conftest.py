"""Fixtures for the HTTP API tests: a bridge over fakes wired into the app."""

from __future__ import annotations

from typing import Iterator
from unittest.mock import AsyncMock, MagicMock

import httpx
import jwt
import pytest
from fastapi.testclient import TestClient

from health_bridge.bridge.base import HealthPlatform
from health_bridge.bridge.catalog import load_catalog
from health_bridge.bridge.facade import HealthBridge
from health_bridge.bridge.tests.fakes import (
    FakeHealthKit,
    FakeHuaweiKit,
    FakeSamsungStore,
    at,
    json_response,
)
from health_bridge.config import Settings, get_settings
from health_bridge.dependencies import get_bridge
from health_bridge.main import app

REDIRECT = "https://app.example.com/oauth/callback"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        huawei_client_id="test-client-id",
        huawei_redirect_uri=REDIRECT,
        query_timeout_seconds=2.0,
    )


@pytest.fixture
def samsung_store() -> FakeSamsungStore:
    return FakeSamsungStore(
        granted={("STEPS", "read")},
        aggregates={
            "STEPS": [
                {"start_time": at(0, 0), "value": 2000},
                {"start_time": at(1, 0), "value": 3000},
            ],
        },
    )


@pytest.fixture
def http_client() -> MagicMock:
    id_token = jwt.encode(
        {"sub": "user-1", "display_name": "Alex"},
        "test-signing-key-long-enough-for-hs256",
        algorithm="HS256",
    )
    client = MagicMock(spec=httpx.AsyncClient)
    client.post = AsyncMock(
        return_value=json_response(
            {
                "access_token": "secret-access-token",
                "refresh_token": "secret-refresh-token",
                "id_token": id_token,
                "expires_in": 3600,
                "token_type": "Bearer",
            }
        )
    )
    client.request = AsyncMock(
        return_value=json_response(
            {
                "url2Desc": {"https://www.huawei.com/healthkit/step.read": "View step count data"},
                "authTime": "1773100800",
                "appName": "Health Bridge Demo",
            }
        )
    )
    return client


@pytest.fixture
def bridge(
    settings: Settings, samsung_store: FakeSamsungStore, http_client: MagicMock
) -> HealthBridge:
    return HealthBridge(
        bridges={
            HealthPlatform.SAMSUNG_HEALTH: samsung_store,
            HealthPlatform.APPLE_HEALTH: FakeHealthKit(),
            HealthPlatform.HUAWEI_HEALTH: FakeHuaweiKit(),
        },
        settings=settings,
        catalog=load_catalog(),
        http_client=http_client,
    )


@pytest.fixture
def client(bridge: HealthBridge, settings: Settings) -> Iterator[TestClient]:
    app.dependency_overrides[get_bridge] = lambda: bridge
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
