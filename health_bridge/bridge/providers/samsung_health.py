"""Samsung Health provider.

Permission model: explicit granted set.  The store reports which
``(data_type, access)`` permissions the user granted; comparing that set with
the permissions a metric needs is ground truth, so all three statuses are
reachable.

Requirements:
    Samsung Health app version 6.30.0 (6_300_000) or newer.
    A foreground UI context to show the permission dialog.

Daily statistics use the store's native aggregation and are summed per local
calendar day.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from health_bridge.bridge.base import (
    HealthData,
    HealthDataOperation,
    HealthDataType,
    HealthPlatform,
    HealthProvider,
    PermissionDeniedError,
    PermissionStatus,
    QueryKind,
    UnsupportedDataTypeError,
)
from health_bridge.bridge.dispatcher import daily_buckets
from health_bridge.bridge.native import SamsungHealthStore, await_callback
from health_bridge.bridge.permissions import from_granted_set

logger = logging.getLogger("health_bridge.providers.samsung_health")

MIN_HEALTH_APP_VERSION = 6_300_000

# Canonical type → (store data type, value field).  A None field means the
# record is composite and carries its values in metadata.
_NATIVE_TYPES: dict[HealthDataType, tuple[str, str | None]] = {
    HealthDataType.STEPS: ("STEPS", "count"),
    HealthDataType.HEART_RATE: ("HEART_RATE", "heart_rate"),
    HealthDataType.SLEEP_DURATION: ("SLEEP", "duration_minutes"),
    HealthDataType.SLEEP_DEEP: ("SLEEP", "deep_minutes"),
    HealthDataType.SLEEP_LIGHT: ("SLEEP", "light_minutes"),
    HealthDataType.SLEEP_REM: ("SLEEP", "rem_minutes"),
    HealthDataType.WORKOUT: ("EXERCISE", "duration_minutes"),
    HealthDataType.BLOOD_PRESSURE: ("BLOOD_PRESSURE", None),
    HealthDataType.GLUCOSE: ("BLOOD_GLUCOSE", "glucose"),
    HealthDataType.OXYGEN_SATURATION: ("BLOOD_OXYGEN", "oxygen_saturation"),
    HealthDataType.BODY_TEMPERATURE: ("BODY_TEMPERATURE", "temperature"),
    HealthDataType.WEIGHT: ("BODY_COMPOSITION", "weight"),
    HealthDataType.HEIGHT: ("BODY_COMPOSITION", "height"),
    HealthDataType.BODY_FAT: ("BODY_COMPOSITION", "body_fat"),
    HealthDataType.BMI: ("BODY_COMPOSITION", "bmi"),
    HealthDataType.WATER: ("WATER_INTAKE", "amount"),
    HealthDataType.ACTIVE_CALORIES: ("ACTIVITY_SUMMARY", "active_calories"),
    HealthDataType.DISTANCE: ("ACTIVITY_SUMMARY", "distance"),
}

_ACCESS = {
    HealthDataOperation.READ: "read",
    HealthDataOperation.WRITE: "write",
}


class SamsungHealthProvider(HealthProvider):
    """Samsung Health data store adapter."""

    PLATFORM = HealthPlatform.SAMSUNG_HEALTH
    DISPLAY_NAME = "Samsung Health"

    def __init__(self, store: SamsungHealthStore, catalog=None, settings=None) -> None:
        super().__init__(catalog=catalog, settings=settings)
        self._store = store
        self._timeout = self._settings.query_timeout_seconds

    @classmethod
    def is_available(cls, bridge: Any, settings: Any) -> bool:
        if bridge is None:
            return False
        version = bridge.installed_version()
        if version is None:
            logger.warning("Samsung Health app not found")
            return False
        return version >= MIN_HEALTH_APP_VERSION

    async def _connect(self) -> bool:
        if not self.is_available(self._store, self._settings):
            logger.warning("Samsung Health not available")
            return False
        connected = await await_callback(self._store.connect, self._timeout)
        return bool(connected)

    async def cleanup(self) -> None:
        if self._initialized:
            self._store.disconnect()
        await super().cleanup()
        logger.debug("Samsung Health provider cleaned up")

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    @staticmethod
    def _permission(
        data_type: HealthDataType, operation: HealthDataOperation
    ) -> tuple[str, str]:
        native_type, _ = _NATIVE_TYPES[data_type]
        return native_type, _ACCESS[operation]

    async def _granted(self, permissions: set[tuple[str, str]]) -> set[tuple[str, str]]:
        granted = await await_callback(
            lambda done: self._store.get_granted_permissions(permissions, done),
            self._timeout,
        )
        return set(granted or ())

    async def check_permissions(
        self,
        data_types: Sequence[HealthDataType],
        operation: HealthDataOperation,
    ) -> dict[HealthDataType, PermissionStatus]:
        self._require_initialized()
        wanted = {
            t: self._permission(t, operation) for t in data_types if t in _NATIVE_TYPES
        }
        granted = await self._granted(set(wanted.values()))
        return {
            t: from_granted_set({wanted[t]}, granted) if t in wanted else PermissionStatus.DENIED
            for t in data_types
        }

    async def request_permissions(
        self,
        data_types: Sequence[HealthDataType],
        operations: Sequence[HealthDataOperation],
        reason: str | None = None,
    ) -> bool:
        self._require_initialized()
        required = {
            self._permission(t, op)
            for t in data_types
            for op in operations
            if t in _NATIVE_TYPES
        }
        granted = await self._granted(required)
        missing = required - granted
        if not missing:
            return True

        if self._ui_context is None:
            raise PermissionDeniedError(
                "Samsung Health needs a UI context to show its permission dialog"
            )

        logger.info("Samsung Health: requesting %d missing permission(s)", len(missing))
        await await_callback(
            lambda done: self._store.request_permissions(missing, self._ui_context, done),
            None,  # the user may take as long as they need in the dialog
        )
        final = await self._granted(required)
        return required <= final

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
        self._require_initialized()
        if data_type not in _NATIVE_TYPES:
            raise UnsupportedDataTypeError(f"{data_type.value} is not available on Samsung Health")
        native_type, value_field = _NATIVE_TYPES[data_type]

        if query_kind == QueryKind.STATISTICS:
            groups = await await_callback(
                lambda done: self._store.aggregate_data(native_type, start_ms, end_ms, done),
                self._timeout,
            )
            segments = [
                self._to_record(data_type, row, "value") for row in groups or []
            ]
            points = daily_buckets(
                [s for s in segments if s is not None],
                data_type, self.PLATFORM, start_ms, end_ms,
            )
            logger.info("Samsung Health: %d daily %s point(s)", len(points), data_type.value)
            return points

        rows = await await_callback(
            lambda done: self._store.read_data(native_type, start_ms, end_ms, limit, done),
            self._timeout,
        )
        records = []
        for row in rows or []:
            record = self._to_record(data_type, row, value_field)
            if record is not None:
                records.append(record)
        records.sort(key=lambda r: r.timestamp)
        return records[:limit]

    async def write_health_data(self, record: HealthData) -> bool:
        self._require_initialized()
        if not self.is_data_type_supported(record.type, HealthDataOperation.WRITE):
            raise UnsupportedDataTypeError(
                f"{record.type.value} cannot be written to Samsung Health"
            )
        native_type, value_field = _NATIVE_TYPES[record.type]

        payload: dict[str, Any] = {
            **record.metadata,
            "start_time": record.timestamp,
            "end_time": record.metadata.get("end_time", record.timestamp),
        }
        if value_field is not None:
            payload[value_field] = record.value

        written = await await_callback(
            lambda done: self._store.insert_data(native_type, payload, done),
            self._timeout,
        )
        return bool(written)

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def _to_record(
        self, data_type: HealthDataType, row: dict, value_field: str | None
    ) -> HealthData | None:
        timestamp = self._safe_int(row.get("start_time"))
        if timestamp is None:
            return None

        metadata = {k: v for k, v in row.items() if k not in ("start_time", value_field)}
        if value_field is None:
            value = None
            if row.get("systolic") is None or row.get("diastolic") is None:
                return None
        else:
            value = self._safe_float(row.get(value_field))
            if value is None:
                return None

        return HealthData(
            type=data_type,
            value=value,
            unit=data_type.unit,
            timestamp=timestamp,
            platform=self.PLATFORM,
            source=row.get("source") or "samsung_health",
            metadata=metadata,
        )
