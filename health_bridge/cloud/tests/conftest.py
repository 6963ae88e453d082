"""Shared fixtures and recorded API responses for the cloud client tests."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from health_bridge.bridge.tests.fakes import daily_steps_group
from health_bridge.cloud.client import CloudDataClient

# Fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"


# ---------------------------------------------------------------------------
# JSON fixture loaders
# ---------------------------------------------------------------------------


@pytest.fixture
def consents_raw() -> dict:
    return json.loads((FIXTURES_DIR / "consents.json").read_text())


@pytest.fixture
def bp_detail_raw() -> dict:
    return json.loads((FIXTURES_DIR / "bp_detail.json").read_text())


@pytest.fixture
def privacy_records_raw() -> list:
    return json.loads((FIXTURES_DIR / "privacy_records.json").read_text())


@pytest.fixture
def daily_steps_raw() -> dict:
    """Three local days of step totals; the middle day has no samples."""
    empty_day = daily_steps_group(1, 0)
    empty_day["sampleSet"] = []
    return {"group": [daily_steps_group(0, 6500), empty_day, daily_steps_group(2, 9100)]}


# ---------------------------------------------------------------------------
# Client fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def http_client() -> MagicMock:
    """httpx.AsyncClient stand-in; tests set ``request.return_value``."""
    client = MagicMock(spec=httpx.AsyncClient)
    client.request = AsyncMock()
    return client


@pytest.fixture
def cloud_client(http_client: MagicMock) -> CloudDataClient:
    return CloudDataClient(
        access_token="test-access-token",
        client_id="test-client-id",
        base_url="https://health-api.example.com/healthkit/",
        timeout=5.0,
        http_client=http_client,
    )
