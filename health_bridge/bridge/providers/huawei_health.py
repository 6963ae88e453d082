"""Huawei Health Kit (on-device) provider.

Read-only: steps, blood glucose and blood pressure.  Glucose and blood
pressure scopes need Huawei's manual review before they are granted.

Permission model: granted scope set, gated by the Health app's own
authorization switch.  Before this provider has asked for access in the
current session, a negative answer is reported as not_determined; after a
request, it is denied.

Before each read the Health app authorization is re-checked.  Windows longer
than ``huawei_max_query_days`` are clamped to the most recent
``huawei_clamp_days`` days, which the kit accepts.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Sequence

from health_bridge.bridge.base import (
    HealthData,
    HealthDataOperation,
    HealthDataType,
    HealthPlatform,
    HealthProvider,
    NativeCallError,
    PermissionDeniedError,
    PermissionStatus,
    QueryKind,
    UnsupportedDataTypeError,
)
from health_bridge.bridge.dispatcher import daily_buckets
from health_bridge.bridge.native import HuaweiHealthKit, await_callback
from health_bridge.bridge.permissions import from_granted_set
from health_bridge.cloud.client import DATA_TYPE_NAMES, READ_SCOPES

logger = logging.getLogger("health_bridge.providers.huawei_health")

_DAY_MS = int(timedelta(days=1).total_seconds() * 1000)

# Authorization failure codes reported by the kit
AUTH_ERRORS: dict[str, str] = {
    "HEALTH_APP_NOT_AUTHORISED": "The Huawei Health app has not authorized data sharing",
    "HUAWEI_ID_SIGNIN_ERROR": "Huawei ID sign-in failed",
    "NON_HEALTH_USER": "The user has not signed up for Huawei Health",
    "UNTRUST_COUNTRY_CODE": "Huawei Health is not available in this region",
    "NO_NETWORK": "No network connection",
    "UNKNOWN_AUTH_ERROR": "Unknown authorization error",
}


def describe_auth_error(code: str) -> str:
    return AUTH_ERRORS.get(code, AUTH_ERRORS["UNKNOWN_AUTH_ERROR"])


class HuaweiHealthProvider(HealthProvider):
    """Huawei Health Kit on-device adapter."""

    PLATFORM = HealthPlatform.HUAWEI_HEALTH
    DISPLAY_NAME = "Huawei Health"

    def __init__(self, kit: HuaweiHealthKit, catalog=None, settings=None) -> None:
        super().__init__(catalog=catalog, settings=settings)
        self._kit = kit
        self._timeout = self._settings.query_timeout_seconds
        self._requested = False

    async def _connect(self) -> bool:
        return self._kit is not None

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    async def _health_app_authorized(self) -> bool:
        try:
            authorized = await await_callback(
                self._kit.get_health_app_authorization, self._timeout
            )
        except NativeCallError as exc:
            raise NativeCallError(describe_auth_error(str(exc))) from exc
        return bool(authorized)

    async def _granted_scopes(self) -> set[str]:
        scopes = await await_callback(self._kit.get_granted_scopes, self._timeout)
        return set(scopes or ())

    def _negative(self) -> PermissionStatus:
        return PermissionStatus.DENIED if self._requested else PermissionStatus.NOT_DETERMINED

    async def check_permissions(
        self,
        data_types: Sequence[HealthDataType],
        operation: HealthDataOperation,
    ) -> dict[HealthDataType, PermissionStatus]:
        self._require_initialized()
        if operation == HealthDataOperation.WRITE:
            return {t: PermissionStatus.DENIED for t in data_types}

        if not await self._health_app_authorized():
            return {t: self._negative() for t in data_types}

        granted = await self._granted_scopes()
        result = {}
        for data_type in data_types:
            scope = READ_SCOPES.get(data_type)
            if scope is None:
                result[data_type] = PermissionStatus.DENIED
                continue
            status = from_granted_set({scope}, granted)
            if status == PermissionStatus.DENIED and not self._requested:
                status = PermissionStatus.NOT_DETERMINED
            result[data_type] = status
        return result

    async def request_permissions(
        self,
        data_types: Sequence[HealthDataType],
        operations: Sequence[HealthDataOperation],
        reason: str | None = None,
    ) -> bool:
        self._require_initialized()
        # Write scopes do not exist on this platform.
        scopes = sorted({READ_SCOPES[t] for t in data_types if t in READ_SCOPES})
        if not scopes:
            return False

        self._requested = True
        granted = await await_callback(
            lambda done: self._kit.request_authorization(scopes, self._ui_context, done),
            None,
        )
        return set(scopes) <= set(granted or ())

    async def revoke_all_authorizations(self) -> None:
        self._require_initialized()
        await await_callback(self._kit.cancel_authorization, self._timeout)
        self._requested = False
        logger.info("Huawei Health: authorization cancelled")

    # ------------------------------------------------------------------
    # Data access
    # ------------------------------------------------------------------

    def clamp_window(self, start_ms: int, end_ms: int) -> tuple[int, int]:
        max_span = self._settings.huawei_max_query_days * _DAY_MS
        if end_ms - start_ms > max_span:
            clamped = end_ms - self._settings.huawei_clamp_days * _DAY_MS
            logger.info(
                "Huawei Health: window longer than %d days, clamped to the last %d",
                self._settings.huawei_max_query_days, self._settings.huawei_clamp_days,
            )
            return clamped, end_ms
        return start_ms, end_ms

    async def read_health_data(
        self,
        data_type: HealthDataType,
        start_ms: int,
        end_ms: int,
        limit: int,
        query_kind: QueryKind,
    ) -> list[HealthData] | None:
        self._require_initialized()
        name = DATA_TYPE_NAMES.get(data_type)
        if name is None:
            raise UnsupportedDataTypeError(f"{data_type.value} is not available on Huawei Health")
        if not await self._health_app_authorized():
            raise PermissionDeniedError(describe_auth_error("HEALTH_APP_NOT_AUTHORISED"))

        start_ms, end_ms = self.clamp_window(start_ms, end_ms)
        points = await await_callback(
            lambda done: self._kit.read(name, start_ms, end_ms, done), self._timeout
        )

        records = []
        for point in points or []:
            record = self._to_record(data_type, point)
            if record is not None:
                records.append(record)
        records.sort(key=lambda r: r.timestamp)

        if query_kind == QueryKind.STATISTICS:
            return daily_buckets(records, data_type, self.PLATFORM, start_ms, end_ms)
        return records[:limit]

    async def write_health_data(self, record: HealthData) -> bool:
        logger.warning("Huawei Health: write of %s ignored, platform is read-only", record.type.value)
        return False

    def _to_record(self, data_type: HealthDataType, point: dict) -> HealthData | None:
        timestamp = self._safe_int(point.get("start_time"))
        if timestamp is None:
            return None
        fields: dict[str, Any] = dict(point.get("fields") or {})
        metadata: dict[str, Any] = {**fields, "end_time": point.get("end_time")}

        if data_type == HealthDataType.BLOOD_PRESSURE:
            systolic = fields.get("systolic_pressure")
            diastolic = fields.get("diastolic_pressure")
            if systolic is None or diastolic is None:
                return None
            metadata.update(systolic=systolic, diastolic=diastolic)
            value = None
        elif data_type == HealthDataType.STEPS:
            value = self._safe_float(fields.get("steps", fields.get("steps_delta")))
        else:
            value = self._safe_float(fields.get("level"))

        if value is None and not data_type.is_composite:
            return None

        return HealthData(
            type=data_type,
            value=value,
            unit=data_type.unit,
            timestamp=timestamp,
            platform=self.PLATFORM,
            source=point.get("source") or "huawei_health",
            metadata=metadata,
        )
