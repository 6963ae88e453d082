"""HealthBridge: the single entry point for every health platform.

On-device access composes the provider registry, permission reconciler,
query dispatcher and response normalizer.  Cloud access composes the OAuth
PKCE flow with the cloud provider.

Every data and permission call returns a HealthDataResult (or, for
``check_permissions``, a complete status map) and never raises: provider
errors are translated at this boundary.  Unknown platform keys fail with
``platform_not_supported`` before any provider is constructed.

Usage::

    bridge = HealthBridge(bridges={HealthPlatform.APPLE_HEALTH: healthkit})
    await bridge.initialize_health_platform("apple_health")
    result = await bridge.read_health_data(
        "apple_health", "steps", start=week_ago, end=now, query_kind="statistics"
    )
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Awaitable, Mapping, Sequence, TypeVar, Union

import httpx

from health_bridge.bridge.base import (
    HealthData,
    HealthDataOperation,
    HealthDataResult,
    HealthDataStatus,
    HealthDataType,
    HealthPlatform,
    HealthProvider,
    PermissionStatus,
    PlatformCapability,
    ProviderError,
)
from health_bridge.bridge.catalog import CapabilityCatalog, get_catalog
from health_bridge.bridge.dispatcher import QueryDispatcher
from health_bridge.bridge.normalizer import ResponseNormalizer
from health_bridge.bridge.permissions import PermissionReconciler
from health_bridge.bridge.providers.huawei_cloud import HuaweiCloudProvider
from health_bridge.bridge.registry import ProviderFactory, ProviderRegistry
from health_bridge.cloud.models import UserConsentInfo
from health_bridge.config import Settings, get_settings
from health_bridge.oauth.flow import AuthorizationFlow
from health_bridge.oauth.models import OAuthConfig, OAuthResult

logger = logging.getLogger("health_bridge.bridge.facade")

T = TypeVar("T")

PlatformKey = Union[HealthPlatform, str]
DataTypeKey = Union[HealthDataType, str]
OperationKey = Union[HealthDataOperation, str]


class HealthBridge:
    """Platform-agnostic facade over every registered health backend."""

    def __init__(
        self,
        bridges: Mapping[HealthPlatform, Any] | None = None,
        settings: Settings | None = None,
        catalog: CapabilityCatalog | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the facade.

        Args:
            bridges:     Native bridge object per on-device platform, supplied
                         by the host application.
            settings:    Application settings (defaults to ``get_settings()``).
            catalog:     Capability catalog (defaults to the bundled YAML).
            http_client: Optional httpx client shared by the OAuth flow and
                         the cloud provider (for testing).
        """
        self._settings = settings or get_settings()
        self._catalog = catalog or get_catalog()
        self._http_client = http_client
        self._registry = ProviderRegistry(
            ProviderFactory(bridges, self._catalog, self._settings, http_client)
        )
        self._reconciler = PermissionReconciler(self._catalog)
        self._dispatcher = QueryDispatcher(self._catalog, self._settings)
        self._normalizer = ResponseNormalizer()
        self._cloud_flow: AuthorizationFlow | None = None

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    def set_ui_context(self, ui_context: Any) -> None:
        """Install the host's current foreground UI handle."""
        self._registry.set_ui_context(ui_context)

    # ------------------------------------------------------------------
    # Discovery & lifecycle
    # ------------------------------------------------------------------

    def get_available_health_platforms(self) -> list[HealthPlatform]:
        return [p for p in HealthPlatform if self._registry.factory.is_available(p)]

    async def initialize_health_platform(self, platform: PlatformKey) -> HealthDataResult:
        resolved, provider, failure = self._resolve(platform)
        if failure is not None:
            return failure

        try:
            ok = await self._timed(provider.initialize())
        except Exception as exc:
            logger.exception("Initialization of %s raised", resolved.value)
            return self._normalizer.from_error(
                resolved, exc, HealthDataStatus.INITIALIZATION_FAILED
            )
        if ok:
            return HealthDataResult.ok(resolved, message="Platform initialized successfully")
        return HealthDataResult.failure(
            HealthDataStatus.INITIALIZATION_FAILED,
            resolved,
            f"Failed to initialize {provider.DISPLAY_NAME}",
        )

    async def disconnect(self) -> HealthDataResult:
        """Clean up every provider and forget any cloud authorization in progress."""
        failures = await self._registry.disconnect_all()
        self._cloud_flow = None
        if failures:
            return HealthDataResult.failure(
                HealthDataStatus.ERROR,
                None,
                "Cleanup failed for: "
                + ", ".join(f"{p.value} ({exc})" for p, exc in failures),
            )
        return HealthDataResult.ok(None, message="Disconnected")

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    async def check_permissions(
        self,
        platform: PlatformKey,
        data_types: Sequence[DataTypeKey],
        operation: OperationKey,
    ) -> dict[HealthDataType, PermissionStatus]:
        """Return one canonical status per requested data type.

        Unknown data type keys are ignored.  On an unknown or unavailable
        platform, or an unknown operation, every type is denied.  If the backend cannot be asked, every
        supported type is not_determined.
        """
        types = self._parse_types(data_types)
        op = HealthDataOperation.from_key(operation)
        if op is None:
            logger.warning("Unknown operation %r; every type denied", operation)
            return {t: PermissionStatus.DENIED for t in types}
        resolved, provider, failure = self._resolve(platform)
        if failure is not None:
            return {t: PermissionStatus.DENIED for t in types}

        supported = [t for t in types if self._catalog.is_supported(resolved, t, op)]
        raw: Mapping[HealthDataType, Any] | None = None
        if supported:
            try:
                if await self._timed(provider.initialize()):
                    raw = await self._timed(provider.check_permissions(supported, op))
                else:
                    logger.warning("%s not initialized; permissions undetermined", resolved.value)
            except Exception:
                logger.exception("Permission check on %s raised", resolved.value)
        if raw is None:
            raw = {t: PermissionStatus.NOT_DETERMINED for t in supported}
        return self._reconciler.reconcile(resolved, types, op, raw)

    async def request_permissions(
        self,
        platform: PlatformKey,
        data_types: Sequence[DataTypeKey],
        operations: Sequence[OperationKey],
        reason: str | None = None,
    ) -> HealthDataResult:
        try:
            types = self._parse_types(data_types, strict=True)
            ops = [HealthDataOperation(o) for o in operations]
        except ValueError as exc:
            return HealthDataResult.failure(
                HealthDataStatus.INVALID_PARAMETERS, HealthPlatform.from_key(platform), str(exc)
            )

        resolved = HealthPlatform.from_key(platform)
        if resolved is None:
            return self._unsupported_platform(platform)

        forbidden = self._reconciler.unsupported_requests(resolved, types, ops)
        if forbidden:
            pairs = ", ".join(f"{t.value}/{o.value}" for t, o in forbidden)
            return HealthDataResult.failure(
                HealthDataStatus.PERMISSION_DENIED,
                resolved,
                f"Not supported on {resolved.value}: {pairs}",
            )

        resolved, provider, failure = self._resolve(resolved)
        if failure is not None:
            return failure

        try:
            if not await self._timed(provider.initialize()):
                return HealthDataResult.failure(
                    HealthDataStatus.INITIALIZATION_FAILED,
                    resolved,
                    f"Failed to initialize {provider.DISPLAY_NAME}",
                )
            granted = await provider.request_permissions(types, ops, reason)
        except Exception as exc:
            logger.exception("Permission request on %s raised", resolved.value)
            return self._normalizer.from_error(
                resolved, exc, HealthDataStatus.PERMISSION_DENIED
            )

        if granted:
            return HealthDataResult.ok(resolved, message="Permissions requested successfully")
        return HealthDataResult.failure(
            HealthDataStatus.PERMISSION_DENIED,
            resolved,
            "Not every requested permission was granted",
        )

    async def revoke_all_authorizations(self, platform: PlatformKey) -> HealthDataResult:
        resolved, provider, failure = self._resolve(platform)
        if failure is not None:
            return failure
        return await self._revoke(resolved, provider, provider.revoke_all_authorizations)

    async def revoke_authorizations(
        self,
        platform: PlatformKey,
        data_types: Sequence[DataTypeKey],
        operations: Sequence[OperationKey],
    ) -> HealthDataResult:
        try:
            types = self._parse_types(data_types, strict=True)
            ops = [HealthDataOperation(o) for o in operations]
        except ValueError as exc:
            return HealthDataResult.failure(
                HealthDataStatus.INVALID_PARAMETERS, HealthPlatform.from_key(platform), str(exc)
            )
        resolved, provider, failure = self._resolve(platform)
        if failure is not None:
            return failure
        return await self._revoke(
            resolved, provider, lambda: provider.revoke_authorizations(types, ops)
        )

    async def _revoke(self, platform: HealthPlatform, provider: HealthProvider, call) -> HealthDataResult:
        try:
            await self._timed(provider.initialize())
            await self._timed(call())
        except Exception as exc:
            logger.warning("Revoke on %s failed: %s", platform.value, exc)
            return self._normalizer.from_error(platform, exc)
        return HealthDataResult.ok(platform, message="Authorizations revoked")

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    def get_supported_data_types(
        self,
        platform: PlatformKey,
        operation: OperationKey | None = None,
    ) -> list[HealthDataType]:
        resolved = HealthPlatform.from_key(platform)
        if resolved is None:
            return []
        if operation is None:
            return self._catalog.supported_data_types(resolved)
        op = HealthDataOperation.from_key(operation)
        if op is None:
            return []
        return self._catalog.supported_data_types(resolved, op)

    def is_data_type_supported(
        self,
        platform: PlatformKey,
        data_type: DataTypeKey,
        operation: OperationKey,
    ) -> bool:
        resolved = HealthPlatform.from_key(platform)
        resolved_type = HealthDataType.from_key(data_type)
        op = HealthDataOperation.from_key(operation)
        if resolved is None or resolved_type is None or op is None:
            return False
        return self._catalog.is_supported(resolved, resolved_type, op)

    def get_platform_capabilities(self, platform: PlatformKey) -> list[PlatformCapability]:
        resolved = HealthPlatform.from_key(platform)
        if resolved is None:
            return []
        return self._catalog.capabilities(resolved)

    # ------------------------------------------------------------------
    # Data access
    # ------------------------------------------------------------------

    async def read_health_data(
        self,
        platform: PlatformKey,
        data_type: DataTypeKey,
        start: Any = None,
        end: Any = None,
        limit: int | None = None,
        query_kind: Any = None,
    ) -> HealthDataResult:
        """Read records or daily statistics.

        Args:
            platform:   Platform key.
            data_type:  Data type key.
            start:      Window start (epoch ms or datetime).  Defaults to
                        local midnight today.
            end:        Window end (epoch ms or datetime).  Defaults to now.
            limit:      Maximum detail records (default 1000).
            query_kind: ``detail`` (default), ``statistics`` or ``daily``.
                        Statistics on a non-cumulative type is downgraded
                        to detail and the result message says so.

        Returns:
            HealthDataResult with the records in provider order.
        """
        resolved = HealthPlatform.from_key(platform)
        if resolved is None:
            return self._unsupported_platform(platform)
        resolved_type = HealthDataType.from_key(data_type)
        if resolved_type is None:
            return HealthDataResult.failure(
                HealthDataStatus.INVALID_PARAMETERS, resolved, f"Unknown data type: {data_type!r}"
            )

        try:
            plan = self._dispatcher.plan(resolved, resolved_type, start, end, limit, query_kind)
        except (ProviderError, ValueError) as exc:
            return self._normalizer.from_error(resolved, exc)

        resolved, provider, failure = self._resolve(resolved)
        if failure is not None:
            return failure

        try:
            if not await self._timed(provider.initialize()):
                return self._not_initialized(resolved, provider)
            rows = await self._timed(
                provider.read_health_data(
                    plan.data_type, plan.start_ms, plan.end_ms, plan.limit, plan.kind
                )
            )
        except Exception as exc:
            logger.exception("Read of %s from %s failed", resolved_type.value, resolved.value)
            return self._normalizer.from_error(resolved, exc, HealthDataStatus.DATA_READ_FAILED)
        return self._normalizer.read_result(plan, rows)

    async def write_health_data(
        self, platform: PlatformKey, data: "HealthData | Mapping[str, Any]"
    ) -> HealthDataResult:
        resolved = HealthPlatform.from_key(platform)
        if resolved is None:
            return self._unsupported_platform(platform)
        try:
            record = self._to_record(resolved, data)
        except ValueError as exc:
            return HealthDataResult.failure(HealthDataStatus.INVALID_PARAMETERS, resolved, str(exc))
        if not self._catalog.is_supported(resolved, record.type, HealthDataOperation.WRITE):
            return HealthDataResult.failure(
                HealthDataStatus.DATA_TYPE_NOT_SUPPORTED,
                resolved,
                f"{record.type.value} cannot be written to {resolved.value}",
            )

        resolved, provider, failure = self._resolve(resolved)
        if failure is not None:
            return failure

        try:
            if not await self._timed(provider.initialize()):
                return self._not_initialized(resolved, provider)
            written = await self._timed(provider.write_health_data(record))
        except Exception as exc:
            logger.exception("Write of %s to %s failed", record.type.value, resolved.value)
            return self._normalizer.from_error(resolved, exc, HealthDataStatus.DATA_WRITE_FAILED)
        return self._normalizer.write_result(resolved, written, record)

    async def write_batch_health_data(
        self, platform: PlatformKey, data_list: Sequence["HealthData | Mapping[str, Any]"]
    ) -> HealthDataResult:
        """Write records sequentially, stopping at the first failure.

        Not atomic: records before the failing one stay written.  The result
        carries the failing position in ``failed_index``.
        """
        resolved = HealthPlatform.from_key(platform)
        if resolved is None:
            return self._unsupported_platform(platform)
        if not data_list:
            return HealthDataResult.failure(
                HealthDataStatus.INVALID_PARAMETERS, resolved, "No records to write"
            )

        records: list[HealthData] = []
        for index, item in enumerate(data_list):
            try:
                record = self._to_record(resolved, item)
            except ValueError as exc:
                return self._batch_rejected(resolved, index, str(exc))
            if not self._catalog.is_supported(resolved, record.type, HealthDataOperation.WRITE):
                return self._batch_rejected(
                    resolved, index, f"{record.type.value} cannot be written to {resolved.value}"
                )
            records.append(record)

        resolved, provider, failure = self._resolve(resolved)
        if failure is not None:
            return failure

        try:
            if not await self._timed(provider.initialize()):
                return self._not_initialized(resolved, provider)
            outcome = await provider.write_batch_health_data(records)
        except Exception as exc:
            logger.exception("Batch write to %s failed", resolved.value)
            return self._normalizer.from_error(resolved, exc, HealthDataStatus.BATCH_WRITE_FAILED)
        return self._normalizer.batch_result(resolved, outcome, len(records))

    # ------------------------------------------------------------------
    # Cloud authorization
    # ------------------------------------------------------------------

    def start_cloud_authorization(
        self, scopes: Sequence[str] | None = None, state: str | None = None
    ) -> str:
        """Begin a Huawei ID authorization attempt and return its URL.

        A new attempt replaces any attempt still in progress.

        Raises:
            ValueError: The OAuth settings are incomplete.
        """
        extra = {"state": state} if state else {}
        config = OAuthConfig(
            client_id=self._settings.huawei_client_id,
            redirect_uri=self._settings.huawei_redirect_uri,
            scopes=tuple(scopes or self._settings.huawei_scopes),
            authorize_url=self._settings.huawei_authorize_url,
            **extra,
        )
        flow = AuthorizationFlow(
            config,
            token_url=self._settings.huawei_token_url,
            timeout=self._settings.oauth_timeout_seconds,
            http_client=self._http_client,
        )
        url = flow.authorization_url()
        self._cloud_flow = flow
        return url

    def is_cloud_callback_url(self, url: str) -> bool:
        return self._cloud_flow is not None and self._cloud_flow.is_callback_url(url)

    async def complete_cloud_authorization(self, callback_url: str) -> OAuthResult:
        """Finish the attempt from its redirect URL and install the token.

        Returns:
            The OAuthResult; on success the huawei_cloud provider is ready.
        """
        flow = self._cloud_flow
        if flow is None:
            return OAuthResult.failure("invalid_request", "No authorization in progress")

        result = await flow.complete(callback_url)
        if not result.is_success:
            return result

        provider = self._registry.get_or_create(HealthPlatform.HUAWEI_CLOUD)
        if isinstance(provider, HuaweiCloudProvider):
            provider.set_access_token(result)
        self._cloud_flow = None
        return result

    async def refresh_cloud_token(self) -> OAuthResult:
        """Always ``temporarily_disabled``: authorize again when the token expires."""
        flow = self._cloud_flow or AuthorizationFlow(
            OAuthConfig(
                client_id=self._settings.huawei_client_id,
                redirect_uri=self._settings.huawei_redirect_uri,
            )
        )
        return await flow.refresh_token()

    async def get_cloud_consents(self) -> UserConsentInfo | None:
        provider = self._registry.cached(HealthPlatform.HUAWEI_CLOUD)
        if not isinstance(provider, HuaweiCloudProvider) or not provider.has_token:
            return None
        try:
            return await self._timed(provider.consents())
        except Exception:
            logger.exception("Consent lookup failed")
            return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve(
        self, platform: PlatformKey
    ) -> tuple[HealthPlatform | None, HealthProvider | None, HealthDataResult | None]:
        resolved = HealthPlatform.from_key(platform)
        if resolved is None:
            return None, None, self._unsupported_platform(platform)
        provider = self._registry.get_or_create(resolved)
        if provider is None:
            return resolved, None, HealthDataResult.failure(
                HealthDataStatus.PLATFORM_NOT_SUPPORTED,
                resolved,
                f"{resolved.value} is not available on this device",
            )
        return resolved, provider, None

    @staticmethod
    def _unsupported_platform(platform: Any) -> HealthDataResult:
        return HealthDataResult.failure(
            HealthDataStatus.PLATFORM_NOT_SUPPORTED, None, f"Platform not supported: {platform}"
        )

    @staticmethod
    def _not_initialized(platform: HealthPlatform, provider: HealthProvider) -> HealthDataResult:
        return HealthDataResult.failure(
            HealthDataStatus.NOT_INITIALIZED, platform, f"{provider.DISPLAY_NAME} is not initialized"
        )

    @staticmethod
    def _batch_rejected(platform: HealthPlatform, index: int, reason: str) -> HealthDataResult:
        return HealthDataResult.failure(
            HealthDataStatus.BATCH_WRITE_FAILED,
            platform,
            f"Item {index} failed: {reason} (0 written)",
            total_count=0,
            failed_index=index,
        )

    @staticmethod
    def _parse_types(
        data_types: Sequence[DataTypeKey], strict: bool = False
    ) -> list[HealthDataType]:
        parsed = []
        for key in data_types:
            data_type = HealthDataType.from_key(key)
            if data_type is None:
                if strict:
                    raise ValueError(f"Unknown data type: {key!r}")
                logger.warning("Ignoring unknown data type %r", key)
                continue
            if data_type not in parsed:
                parsed.append(data_type)
        return parsed

    @staticmethod
    def _to_record(platform: HealthPlatform, data: "HealthData | Mapping[str, Any]") -> HealthData:
        if isinstance(data, HealthData):
            if data.platform != platform:
                return dataclasses.replace(data, platform=platform)
            return data
        return HealthData.from_dict({**data, "platform": platform.value}, platform=platform)

    async def _timed(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, self._settings.query_timeout_seconds)
