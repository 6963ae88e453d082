"""Huawei Health Kit cloud provider.

Permission model: server-side consent.  Access is granted out-of-band by the
OAuth authorization flow; the scopes the user consented to are listed by the
cloud consent API.  A scope present in the consent record is granted, an
absent one is denied, and a consent lookup that fails is not_determined.

The provider cannot show a consent dialog itself: ``request_permissions``
only reports whether consent already covers the request, and callers run
the OAuth flow (``HealthBridge.start_cloud_authorization``) otherwise.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

from health_bridge.bridge.base import (
    HealthData,
    HealthDataOperation,
    HealthDataType,
    HealthPlatform,
    HealthProvider,
    NotInitializedError,
    PermissionStatus,
    QueryKind,
)
from health_bridge.bridge.permissions import from_consent
from health_bridge.cloud.client import READ_SCOPES, CloudApiError, CloudDataClient
from health_bridge.cloud.models import UserConsentInfo
from health_bridge.oauth.models import OAuthResult

logger = logging.getLogger("health_bridge.providers.huawei_cloud")


class HuaweiCloudProvider(HealthProvider):
    """Cloud API adapter authenticated by an OAuth access token."""

    PLATFORM = HealthPlatform.HUAWEI_CLOUD
    DISPLAY_NAME = "Huawei Health Cloud"

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        catalog=None,
        settings=None,
    ) -> None:
        """Initialize the provider.

        Args:
            http_client: Optional pre-configured httpx client (for testing).
            catalog:     Capability catalog.
            settings:    Application settings (client id, API base, timeouts).
        """
        super().__init__(catalog=catalog, settings=settings)
        self._http_client = http_client
        self._token: OAuthResult | None = None
        self._client: CloudDataClient | None = None

    @classmethod
    def is_available(cls, bridge: Any, settings: Any) -> bool:
        return bool(settings.huawei_client_id)

    @property
    def has_token(self) -> bool:
        return self._client is not None

    def set_access_token(self, token: OAuthResult) -> None:
        """Install the token from a completed authorization flow.

        Raises:
            ValueError: The result carries no usable access token.
        """
        if not token.is_success or not token.access_token:
            raise ValueError("OAuth result has no access token")
        self._token = token
        self._client = CloudDataClient(
            access_token=token.access_token,
            client_id=self._settings.huawei_client_id,
            base_url=self._settings.huawei_cloud_base_url,
            timeout=self._settings.query_timeout_seconds,
            time_zone=self._settings.huawei_cloud_time_zone,
            http_client=self._http_client,
        )
        self._initialized = True
        logger.info("Huawei Cloud: access token installed (%s)", token.summary())

    async def _connect(self) -> bool:
        if self._client is None:
            logger.warning("Huawei Cloud: no access token, run the authorization flow first")
            return False
        return True

    async def cleanup(self) -> None:
        self._client = None
        self._token = None
        await super().cleanup()

    def _require_client(self) -> CloudDataClient:
        if self._client is None:
            raise NotInitializedError(
                "Huawei Cloud is not authorized; run the authorization flow first"
            )
        return self._client

    # ------------------------------------------------------------------
    # Consent
    # ------------------------------------------------------------------

    async def consents(self) -> UserConsentInfo:
        client = self._require_client()
        return await client.get_user_consents(
            self._settings.huawei_client_id, lang=self._settings.huawei_consent_lang
        )

    async def _consented_scopes(self) -> list[str] | None:
        try:
            return (await self.consents()).authorized_scopes
        except (CloudApiError, httpx.HTTPError) as exc:
            logger.warning("Huawei Cloud: consent lookup failed: %s", exc)
            return None

    async def check_permissions(
        self,
        data_types: Sequence[HealthDataType],
        operation: HealthDataOperation,
    ) -> dict[HealthDataType, PermissionStatus]:
        if operation == HealthDataOperation.WRITE:
            return {t: PermissionStatus.DENIED for t in data_types}
        if self._client is None:
            return {t: PermissionStatus.NOT_DETERMINED for t in data_types}

        scopes = await self._consented_scopes()
        return {t: from_consent(READ_SCOPES.get(t), scopes) for t in data_types}

    async def request_permissions(
        self,
        data_types: Sequence[HealthDataType],
        operations: Sequence[HealthDataOperation],
        reason: str | None = None,
    ) -> bool:
        self._require_client()
        statuses = await self.check_permissions(data_types, HealthDataOperation.READ)
        return all(s == PermissionStatus.GRANTED for s in statuses.values())

    async def revoke_all_authorizations(self) -> None:
        client = self._require_client()
        await client.revoke_consent(self._settings.huawei_client_id)
        await self.cleanup()

    # ------------------------------------------------------------------
    # Data access
    # ------------------------------------------------------------------

    async def read_health_data(
        self,
        data_type: HealthDataType,
        start_ms: int,
        end_ms: int,
        limit: int,
        query_kind: QueryKind,
    ) -> list[HealthData] | None:
        client = self._require_client()
        records = await client.read_health_data(data_type, start_ms, end_ms, query_kind)
        if query_kind == QueryKind.STATISTICS:
            return records
        records.sort(key=lambda r: r.timestamp)
        return records[:limit]

    async def write_health_data(self, record: HealthData) -> bool:
        logger.warning("Huawei Cloud: write of %s ignored, platform is read-only", record.type.value)
        return False
