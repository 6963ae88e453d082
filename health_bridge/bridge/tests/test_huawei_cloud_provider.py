"""Tests for the Huawei cloud provider (consent-based permissions)."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from health_bridge.bridge.base import (
    HealthData,
    HealthDataOperation,
    HealthDataType,
    HealthPlatform,
    NotInitializedError,
    PermissionStatus,
    QueryKind,
)
from health_bridge.bridge.catalog import CapabilityCatalog
from health_bridge.bridge.providers.huawei_cloud import HuaweiCloudProvider
from health_bridge.bridge.tests.fakes import at, json_response
from health_bridge.config import Settings
from health_bridge.oauth.models import OAuthResult

CONSENTS = {
    "url2Desc": {
        "openid": "Huawei ID",
        "https://www.huawei.com/healthkit/step.read": "View step count data",
        "https://www.huawei.com/healthkit/bloodpressure.read": "View blood pressure data",
    },
    "authTime": "1773100800",
    "appName": "Health Bridge Demo",
}

TOKEN = OAuthResult(access_token="access-123", expires_in=3600, token_type="Bearer")


def steps_point(hour: int, steps: int) -> dict:
    start_ns = at(0, hour) * 1_000_000
    return {
        "startTime": start_ns,
        "endTime": start_ns + 60_000_000_000,
        "dataTypeName": "com.huawei.continuous.steps.delta",
        "value": [{"fieldName": "steps_delta", "integerValue": steps}],
    }


@pytest.fixture
def http_client() -> MagicMock:
    client = MagicMock(spec=httpx.AsyncClient)
    client.request = AsyncMock(return_value=json_response(CONSENTS))
    return client


@pytest.fixture
def provider(
    http_client: MagicMock, catalog: CapabilityCatalog, settings: Settings
) -> HuaweiCloudProvider:
    return HuaweiCloudProvider(http_client=http_client, catalog=catalog, settings=settings)


class TestWithoutToken:
    def test_available_only_with_client_id(self, settings: Settings) -> None:
        assert HuaweiCloudProvider.is_available(None, settings)
        assert not HuaweiCloudProvider.is_available(
            None, settings.model_copy(update={"huawei_client_id": ""})
        )

    @pytest.mark.asyncio
    async def test_initialize_fails(self, provider: HuaweiCloudProvider) -> None:
        assert not await provider.initialize()
        assert not provider.has_token

    @pytest.mark.asyncio
    async def test_permissions_not_determined(
        self, provider: HuaweiCloudProvider, http_client: MagicMock
    ) -> None:
        result = await provider.check_permissions([HealthDataType.STEPS], HealthDataOperation.READ)
        assert result == {HealthDataType.STEPS: PermissionStatus.NOT_DETERMINED}
        http_client.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_read_requires_token(self, provider: HuaweiCloudProvider) -> None:
        with pytest.raises(NotInitializedError):
            await provider.read_health_data(HealthDataType.STEPS, at(0), at(1), 10, QueryKind.DETAIL)

    def test_failed_oauth_result_rejected(self, provider: HuaweiCloudProvider) -> None:
        with pytest.raises(ValueError):
            provider.set_access_token(OAuthResult.failure("access_denied"))
        assert not provider.has_token


class TestConsentPermissions:
    @pytest.mark.asyncio
    async def test_consented_scopes_granted(self, provider: HuaweiCloudProvider) -> None:
        provider.set_access_token(TOKEN)
        assert provider.initialized
        result = await provider.check_permissions(
            [HealthDataType.STEPS, HealthDataType.BLOOD_PRESSURE, HealthDataType.GLUCOSE],
            HealthDataOperation.READ,
        )
        assert result == {
            HealthDataType.STEPS: PermissionStatus.GRANTED,
            HealthDataType.BLOOD_PRESSURE: PermissionStatus.GRANTED,
            HealthDataType.GLUCOSE: PermissionStatus.DENIED,
        }

    @pytest.mark.asyncio
    async def test_consent_lookup_failure(
        self, provider: HuaweiCloudProvider, http_client: MagicMock
    ) -> None:
        http_client.request.return_value = json_response({"error": "server"}, 500)
        provider.set_access_token(TOKEN)
        result = await provider.check_permissions([HealthDataType.STEPS], HealthDataOperation.READ)
        assert result == {HealthDataType.STEPS: PermissionStatus.NOT_DETERMINED}

    @pytest.mark.asyncio
    async def test_consent_lookup_network_error(
        self, provider: HuaweiCloudProvider, http_client: MagicMock
    ) -> None:
        http_client.request.side_effect = httpx.ConnectError("unreachable")
        provider.set_access_token(TOKEN)
        result = await provider.check_permissions([HealthDataType.STEPS], HealthDataOperation.READ)
        assert result == {HealthDataType.STEPS: PermissionStatus.NOT_DETERMINED}

    @pytest.mark.asyncio
    async def test_write_denied_without_lookup(
        self, provider: HuaweiCloudProvider, http_client: MagicMock
    ) -> None:
        provider.set_access_token(TOKEN)
        result = await provider.check_permissions([HealthDataType.STEPS], HealthDataOperation.WRITE)
        assert result == {HealthDataType.STEPS: PermissionStatus.DENIED}
        http_client.request.assert_not_called()

    @pytest.mark.asyncio
    async def test_request_reports_existing_consent(self, provider: HuaweiCloudProvider) -> None:
        provider.set_access_token(TOKEN)
        assert await provider.request_permissions([HealthDataType.STEPS], [HealthDataOperation.READ])
        assert not await provider.request_permissions(
            [HealthDataType.STEPS, HealthDataType.GLUCOSE], [HealthDataOperation.READ]
        )

    @pytest.mark.asyncio
    async def test_revoke_drops_token(
        self, provider: HuaweiCloudProvider, http_client: MagicMock
    ) -> None:
        provider.set_access_token(TOKEN)
        http_client.request.return_value = json_response(None)
        await provider.revoke_all_authorizations()

        args, kwargs = http_client.request.call_args
        assert args[0] == "DELETE"
        assert args[1].endswith("/v2/consents/test-client-id")
        assert not provider.has_token
        assert not provider.initialized


class TestReads:
    @pytest.mark.asyncio
    async def test_detail_sorted_and_limited(
        self, provider: HuaweiCloudProvider, http_client: MagicMock
    ) -> None:
        provider.set_access_token(TOKEN)
        http_client.request.return_value = json_response(
            {
                "group": [
                    {
                        "startTime": at(0, 0),
                        "endTime": at(1, 0),
                        "sampleSet": [
                            {"samplePoints": [steps_point(18, 700), steps_point(9, 500), steps_point(12, 90)]}
                        ],
                    }
                ]
            }
        )
        records = await provider.read_health_data(
            HealthDataType.STEPS, at(0, 0), at(1, 0), 2, QueryKind.DETAIL
        )
        assert records is not None
        assert [r.value for r in records] == [500.0, 90.0]
        assert all(r.platform == HealthPlatform.HUAWEI_CLOUD for r in records)

    @pytest.mark.asyncio
    async def test_writes_refused(self, provider: HuaweiCloudProvider) -> None:
        provider.set_access_token(TOKEN)
        record = HealthData(HealthDataType.STEPS, 1.0, "count", at(0), HealthPlatform.HUAWEI_CLOUD)
        assert not await provider.write_health_data(record)
