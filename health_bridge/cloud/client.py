"""Huawei Health Kit cloud API client.

Authenticates with an OAuth bearer token plus the app's client id, and
flattens the API's group → sampleSet → samplePoint responses into canonical
HealthData.  Every field of a sample point is preserved in the record's
metadata; only one value is promoted to ``HealthData.value``.

API base: https://health-api.cloud.huawei.com/healthkit

Endpoints used:
    POST   /v2/sampleSet:dailyPolymerize   — per-day statistics (yyyyMMdd window)
    POST   /v2/sampleSet:polymerize        — detail sample points (ms window)
    GET    /v2/profile/privacyRecords      — Health app privacy authorization
    GET    /v2/consents/{app_id}           — scopes the user consented to
    DELETE /v2/consents/{app_id}           — revoke the app's consent
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Sequence

import httpx

from health_bridge.bridge.base import (
    HealthData,
    HealthDataType,
    HealthPlatform,
    QueryKind,
    UnsupportedDataTypeError,
    millis_to_iso,
)
from health_bridge.cloud.models import (
    DailyPolymerizeRequest,
    Group,
    PolymerizeRequest,
    PolymerizeResponse,
    PolymerizeWith,
    PrivacyAuthStatus,
    PrivacyRecord,
    SamplePoint,
    UserConsentInfo,
)

logger = logging.getLogger("health_bridge.cloud")

HUAWEI_CLOUD_API_BASE = "https://health-api.cloud.huawei.com/healthkit"

MAX_DAILY_DATA_TYPES = 20

# Canonical type → cloud data type name
DATA_TYPE_NAMES: dict[HealthDataType, str] = {
    HealthDataType.STEPS: "com.huawei.continuous.steps.delta",
    HealthDataType.GLUCOSE: "com.huawei.instantaneous.blood_glucose",
    HealthDataType.BLOOD_PRESSURE: "com.huawei.instantaneous.blood_pressure",
}

# Canonical type → OAuth scope that grants read access
READ_SCOPES: dict[HealthDataType, str] = {
    HealthDataType.STEPS: "https://www.huawei.com/healthkit/step.read",
    HealthDataType.GLUCOSE: "https://www.huawei.com/healthkit/bloodglucose.read",
    HealthDataType.BLOOD_PRESSURE: "https://www.huawei.com/healthkit/bloodpressure.read",
}

# Field names inside sample points
_STEP_FIELDS = ("steps", "steps_delta")
_LEVEL_FIELD = "level"
_AVG_FIELD = "avg"
_SYSTOLIC_FIELD = "systolic_pressure"
_DIASTOLIC_FIELD = "diastolic_pressure"


class CloudApiError(Exception):
    """The cloud API answered with a non-success status or an unreadable body."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"HTTP {status_code}: {body}")
        self.status_code = status_code
        self.body = body


def format_day(timestamp_ms: int) -> str:
    """Local calendar day of ``timestamp_ms`` as ``yyyyMMdd``."""
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y%m%d")


class CloudDataClient:
    """Client for the Health Kit cloud sample-set API."""

    SOURCE = "huawei_cloud_api"

    def __init__(
        self,
        access_token: str,
        client_id: str,
        base_url: str = HUAWEI_CLOUD_API_BASE,
        timeout: float = 30.0,
        time_zone: str = "+0800",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            access_token: OAuth bearer token.
            client_id:    Huawei app ID, sent as ``x-client-id``.
            base_url:     API base URL.
            timeout:      Per-request timeout in seconds.
            time_zone:    Offset sent with per-day queries (e.g. ``+0800``).
            http_client:  Optional pre-configured httpx client (for testing).
        """
        self._access_token = access_token
        self._client_id = client_id
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._time_zone = time_zone
        self._http_client = http_client

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token}",
            "x-client-id": self._client_id,
            "Content-Type": "application/json",
        }

    # ------------------------------------------------------------------
    # Sample-set queries
    # ------------------------------------------------------------------

    async def daily_polymerize(
        self, data_type_names: Sequence[str], start_day: str, end_day: str
    ) -> PolymerizeResponse:
        """Per-day statistics for up to 20 data types.

        Args:
            data_type_names: Cloud data type names.
            start_day:       First day, ``yyyyMMdd``.
            end_day:         Last day, ``yyyyMMdd``.

        Raises:
            ValueError: More than 20 data types, none, or a malformed day.
            CloudApiError: Non-200 response.
        """
        if len(data_type_names) > MAX_DAILY_DATA_TYPES:
            raise ValueError(
                f"dailyPolymerize accepts at most {MAX_DAILY_DATA_TYPES} data types"
            )
        request = DailyPolymerizeRequest(
            data_types=list(data_type_names),
            start_day=start_day,
            end_day=end_day,
            time_zone=self._time_zone,
        )
        body = await self._request(
            "POST", "/v2/sampleSet:dailyPolymerize", json=request.model_dump(by_alias=True)
        )
        return PolymerizeResponse.model_validate(body or {})

    async def polymerize(
        self, data_type_name: str, start_ms: int, end_ms: int
    ) -> PolymerizeResponse:
        """Detail sample points of one data type in a millisecond window."""
        request = PolymerizeRequest(
            polymerize_with=[PolymerizeWith(data_type_name=data_type_name)],
            start_time=start_ms,
            end_time=end_ms,
        )
        body = await self._request(
            "POST", "/v2/sampleSet:polymerize", json=request.model_dump(by_alias=True)
        )
        return PolymerizeResponse.model_validate(body or {})

    async def read_health_data(
        self,
        data_type: HealthDataType,
        start_ms: int,
        end_ms: int,
        query_kind: QueryKind = QueryKind.DETAIL,
    ) -> list[HealthData]:
        """Read canonical records for one type.

        Raises:
            UnsupportedDataTypeError: The type has no cloud mapping.
            CloudApiError: Non-200 response.
        """
        name = DATA_TYPE_NAMES.get(data_type)
        if name is None:
            raise UnsupportedDataTypeError(
                f"Data type not supported by the cloud API: {data_type.value}"
            )

        logger.info(
            "Cloud: %s query for %s (%d → %d)",
            query_kind.value, data_type.value, start_ms, end_ms,
        )
        if query_kind == QueryKind.STATISTICS:
            response = await self.daily_polymerize(
                [name], format_day(start_ms), format_day(end_ms)
            )
            return self.flatten_daily(response, data_type)

        response = await self.polymerize(name, start_ms, end_ms)
        return self.flatten_detail(response, data_type)

    # ------------------------------------------------------------------
    # Consent / privacy
    # ------------------------------------------------------------------

    async def check_privacy_auth_status(self) -> PrivacyAuthStatus | None:
        """Whether the user has enabled Health data sharing in the Health app."""
        body = await self._request("GET", "/v2/profile/privacyRecords")
        records = body if isinstance(body, list) else (body or {}).get("privacyRecords", [])
        for raw in records:
            status = PrivacyRecord.model_validate(raw).auth_status
            if status is not None:
                return status
        return None

    async def get_user_consents(self, app_id: str, lang: str = "en-us") -> UserConsentInfo:
        body = await self._request("GET", f"/v2/consents/{app_id}", params={"lang": lang})
        return UserConsentInfo.model_validate(body or {})

    async def revoke_consent(self, app_id: str, delete_data_immediately: bool = False) -> None:
        """Revoke the app's consent.

        Data already collected is kept for three days unless
        ``delete_data_immediately`` is set.
        """
        await self._request(
            "DELETE",
            f"/v2/consents/{app_id}",
            params={"deleteDataImmediately": str(delete_data_immediately).lower()},
        )
        logger.info("Cloud: consent revoked for app %s", app_id)

    # ------------------------------------------------------------------
    # Flattening
    # ------------------------------------------------------------------

    def flatten_detail(
        self, response: PolymerizeResponse, data_type: HealthDataType
    ) -> list[HealthData]:
        records = []
        for group in response.group:
            for point in group.points():
                record = self._detail_record(point, data_type)
                if record is not None:
                    records.append(record)
        return records

    def flatten_daily(
        self, response: PolymerizeResponse, data_type: HealthDataType
    ) -> list[HealthData]:
        records = []
        for group in response.group:
            record = self._daily_record(group, data_type)
            if record is not None:
                records.append(record)
        return records

    def _detail_record(self, point: SamplePoint, data_type: HealthDataType) -> HealthData | None:
        fields = point.fields()
        metadata: dict[str, Any] = {
            **fields,
            "startTime": millis_to_iso(point.start_millis),
            "endTime": millis_to_iso(point.end_millis),
            "dataTypeName": point.data_type_name,
        }

        value: float | None
        if data_type == HealthDataType.BLOOD_PRESSURE:
            value = None
            _copy_pressure(fields, metadata)
        elif data_type == HealthDataType.STEPS:
            value = _first_number(fields, _STEP_FIELDS)
        else:
            value = _first_number(fields, (_LEVEL_FIELD,))

        if value is None and not data_type.is_composite:
            return None

        return HealthData(
            type=data_type,
            value=value,
            unit=data_type.unit,
            timestamp=point.start_millis,
            platform=HealthPlatform.HUAWEI_CLOUD,
            source=self.SOURCE,
            metadata=metadata,
        )

    def _daily_record(self, group: Group, data_type: HealthDataType) -> HealthData | None:
        points = group.points()
        if not points:
            return None

        day = datetime.fromtimestamp(group.start_time / 1000).date()
        day_start = datetime.combine(day, datetime.min.time())
        fields: dict[str, Any] = {}
        for point in points:
            fields.update(point.fields())
        metadata: dict[str, Any] = {
            **fields,
            "date": day.isoformat(),
            "dataTypeName": points[0].data_type_name,
        }

        value: float | None
        if data_type == HealthDataType.STEPS:
            total = 0.0
            for point in points:
                step_value = _first_number(point.fields(), _STEP_FIELDS)
                total += step_value or 0.0
            value = total
            metadata["steps"] = int(total)
        elif data_type == HealthDataType.BLOOD_PRESSURE:
            value = None
            _copy_pressure(fields, metadata)
        else:
            value = _first_number(fields, (_AVG_FIELD,))

        return HealthData(
            type=data_type,
            value=value,
            unit=data_type.unit,
            timestamp=int(day_start.timestamp() * 1000),
            platform=HealthPlatform.HUAWEI_CLOUD,
            source=self.SOURCE,
            metadata=metadata,
        )

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self._base_url}{path}"
        if self._http_client is not None:
            response = await self._http_client.request(
                method, url, headers=self.headers, timeout=self._timeout, **kwargs
            )
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.request(method, url, headers=self.headers, **kwargs)

        if response.status_code != 200:
            logger.warning("Cloud: %s %s → HTTP %d", method, path, response.status_code)
            raise CloudApiError(response.status_code, response.text)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            logger.warning("Cloud: %s %s returned a non-JSON body", method, path)
            raise CloudApiError(response.status_code, response.text) from exc


def _first_number(fields: dict[str, Any], names: Sequence[str]) -> float | None:
    for name in names:
        value = fields.get(name)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    return None


def _copy_pressure(fields: dict[str, Any], metadata: dict[str, Any]) -> None:
    if _SYSTOLIC_FIELD in fields:
        metadata["systolic"] = fields[_SYSTOLIC_FIELD]
    if _DIASTOLIC_FIELD in fields:
        metadata["diastolic"] = fields[_DIASTOLIC_FIELD]
