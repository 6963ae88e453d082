"""Apple HealthKit provider.

Permission model: write status + read probe.  HealthKit reports share
(write) authorization directly but deliberately hides read authorization:
an app that was denied read access simply sees no data.  Read status is
therefore inferred from a bounded historical probe query: data found means
granted, nothing found stays not_determined.  Read access is never reported
as denied because the probe cannot tell denial from an empty history.

Every native query is tracked and self-expires after the query timeout;
``cleanup`` stops whatever is still running.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Sequence

from health_bridge.bridge.base import (
    HealthData,
    HealthDataOperation,
    HealthDataType,
    HealthPlatform,
    HealthProvider,
    NativeCallError,
    PermissionStatus,
    QueryKind,
    UnsupportedDataTypeError,
    to_millis,
)
from health_bridge.bridge.dispatcher import local_day_start
from health_bridge.bridge.native import (
    ActiveQueryTracker,
    Completion,
    NO_LIMIT,
    HealthKitStore,
    await_callback,
)
from health_bridge.bridge.permissions import from_read_probe, from_write_authorization

logger = logging.getLogger("health_bridge.providers.apple_health")

_SLEEP_ANALYSIS = "HKCategoryTypeIdentifierSleepAnalysis"

_IDENTIFIERS: dict[HealthDataType, str] = {
    HealthDataType.STEPS: "HKQuantityTypeIdentifierStepCount",
    HealthDataType.DISTANCE: "HKQuantityTypeIdentifierDistanceWalkingRunning",
    HealthDataType.ACTIVE_CALORIES: "HKQuantityTypeIdentifierActiveEnergyBurned",
    HealthDataType.GLUCOSE: "HKQuantityTypeIdentifierBloodGlucose",
    HealthDataType.HEART_RATE: "HKQuantityTypeIdentifierHeartRate",
    HealthDataType.BLOOD_PRESSURE: "HKCorrelationTypeIdentifierBloodPressure",
    HealthDataType.WEIGHT: "HKQuantityTypeIdentifierBodyMass",
    HealthDataType.HEIGHT: "HKQuantityTypeIdentifierHeight",
    HealthDataType.BODY_FAT: "HKQuantityTypeIdentifierBodyFatPercentage",
    HealthDataType.BMI: "HKQuantityTypeIdentifierBodyMassIndex",
    HealthDataType.SLEEP_DURATION: _SLEEP_ANALYSIS,
    HealthDataType.SLEEP_DEEP: _SLEEP_ANALYSIS,
    HealthDataType.SLEEP_LIGHT: _SLEEP_ANALYSIS,
    HealthDataType.SLEEP_REM: _SLEEP_ANALYSIS,
    HealthDataType.WATER: "HKQuantityTypeIdentifierDietaryWater",
    HealthDataType.WORKOUT: "HKWorkoutTypeIdentifier",
    HealthDataType.OXYGEN_SATURATION: "HKQuantityTypeIdentifierOxygenSaturation",
    HealthDataType.BODY_TEMPERATURE: "HKQuantityTypeIdentifierBodyTemperature",
    HealthDataType.RESPIRATORY_RATE: "HKQuantityTypeIdentifierRespiratoryRate",
}

# Sleep analysis samples carry a stage; stage types keep only their own.
_SLEEP_STAGES: dict[HealthDataType, str] = {
    HealthDataType.SLEEP_DEEP: "deep",
    HealthDataType.SLEEP_LIGHT: "light",
    HealthDataType.SLEEP_REM: "rem",
}


class AppleHealthProvider(HealthProvider):
    """HealthKit adapter."""

    PLATFORM = HealthPlatform.APPLE_HEALTH
    DISPLAY_NAME = "Apple Health"

    def __init__(self, store: HealthKitStore, catalog=None, settings=None) -> None:
        super().__init__(catalog=catalog, settings=settings)
        self._store = store
        self._timeout = self._settings.query_timeout_seconds
        self._queries = ActiveQueryTracker(self._timeout)

    @classmethod
    def is_available(cls, bridge: Any, settings: Any) -> bool:
        return bridge is not None and bool(bridge.is_health_data_available())

    @property
    def active_queries(self) -> int:
        return len(self._queries)

    async def _connect(self) -> bool:
        return bool(self._store.is_health_data_available())

    async def cleanup(self) -> None:
        stopped = self._queries.stop_all(self._store.stop_query)
        if stopped:
            logger.info("Apple Health: stopped %d running queries", stopped)
        await super().cleanup()

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    async def check_permissions(
        self,
        data_types: Sequence[HealthDataType],
        operation: HealthDataOperation,
    ) -> dict[HealthDataType, PermissionStatus]:
        self._require_initialized()
        result: dict[HealthDataType, PermissionStatus] = {}
        for data_type in data_types:
            identifier = _IDENTIFIERS.get(data_type)
            if identifier is None:
                result[data_type] = PermissionStatus.DENIED
            elif operation == HealthDataOperation.WRITE:
                result[data_type] = from_write_authorization(
                    self._store.authorization_status(identifier)
                )
            else:
                result[data_type] = from_read_probe(await self._probe(data_type))
        return result

    async def _probe(self, data_type: HealthDataType) -> bool | None:
        """Look for any sample in the probe window.  None if the probe failed."""
        end = datetime.now()
        start = end - timedelta(days=self._settings.permission_probe_days)
        try:
            samples = await self._sample_query(data_type, to_millis(start), to_millis(end), 1)
        except (NativeCallError, asyncio.TimeoutError) as exc:
            logger.info("Apple Health: read probe for %s failed: %s", data_type.value, exc)
            return None
        return bool(samples)

    async def request_permissions(
        self,
        data_types: Sequence[HealthDataType],
        operations: Sequence[HealthDataOperation],
        reason: str | None = None,
    ) -> bool:
        self._require_initialized()
        share: set[str] = set()
        read: set[str] = set()
        for data_type in data_types:
            identifier = _IDENTIFIERS.get(data_type)
            if identifier is None:
                continue
            if HealthDataOperation.READ in operations:
                read.add(identifier)
            if HealthDataOperation.WRITE in operations:
                share.add(identifier)

        # HealthKit only shows the sheet for types not yet decided.
        presented = await await_callback(
            lambda done: self._store.request_authorization(share, read, done),
            None,
        )
        if not presented:
            return False
        # Only share access can be verified; read access stays unknowable.
        return all(
            self._store.authorization_status(identifier) == "sharingAuthorized"
            for identifier in share
        )

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
        if data_type not in _IDENTIFIERS:
            raise UnsupportedDataTypeError(f"{data_type.value} is not available in HealthKit")

        if query_kind == QueryKind.STATISTICS:
            return await self._daily_statistics(data_type, start_ms, end_ms)

        stage = _SLEEP_STAGES.get(data_type)
        # Stages share one native type, so the cap applies after filtering.
        native_limit = limit if stage is None else NO_LIMIT
        samples = await self._sample_query(data_type, start_ms, end_ms, native_limit)
        records = []
        for sample in samples or []:
            if stage is not None and sample.get("stage") != stage:
                continue
            record = self._to_record(data_type, sample)
            if record is not None:
                records.append(record)
        records.sort(key=lambda r: r.timestamp)
        return records[:limit]

    async def _daily_statistics(
        self, data_type: HealthDataType, start_ms: int, end_ms: int
    ) -> list[HealthData]:
        identifier = _IDENTIFIERS[data_type]
        anchor = local_day_start(datetime.fromtimestamp(start_ms / 1000))
        buckets = await self._execute(
            lambda done: self._store.statistics_query(
                identifier, start_ms, end_ms, to_millis(anchor), done
            )
        )
        points = []
        for bucket in buckets or []:
            bucket_start = self._safe_int(bucket.get("start_time"))
            if bucket_start is None:
                continue
            points.append(
                HealthData(
                    type=data_type,
                    value=self._safe_float(bucket.get("sum")) or 0.0,
                    unit=data_type.unit,
                    timestamp=bucket_start,
                    platform=self.PLATFORM,
                    source="apple_health",
                    metadata={
                        "date": datetime.fromtimestamp(bucket_start / 1000).date().isoformat(),
                        "end_time": bucket.get("end_time"),
                        "aggregation": "cumulativeSum",
                    },
                )
            )
        return points

    async def write_health_data(self, record: HealthData) -> bool:
        self._require_initialized()
        if not self.is_data_type_supported(record.type, HealthDataOperation.WRITE):
            raise UnsupportedDataTypeError(f"{record.type.value} cannot be written to HealthKit")

        sample: dict[str, Any] = {
            "type": _IDENTIFIERS[record.type],
            "unit": record.unit,
            "start_time": record.timestamp,
            "end_time": record.metadata.get("end_time", record.timestamp),
            "source": self._settings.write_source_name,
            "metadata": {k: v for k, v in record.metadata.items() if k != "end_time"},
        }
        if record.type.is_composite:
            sample["systolic"] = record.metadata["systolic"]
            sample["diastolic"] = record.metadata["diastolic"]
        else:
            sample["value"] = record.value
        if record.type in _SLEEP_STAGES:
            sample["stage"] = _SLEEP_STAGES[record.type]

        saved = await await_callback(
            lambda done: self._store.save(sample, done), self._timeout
        )
        return bool(saved)

    # ------------------------------------------------------------------
    # Native queries
    # ------------------------------------------------------------------

    async def _sample_query(
        self, data_type: HealthDataType, start_ms: int, end_ms: int, limit: int
    ) -> list[dict]:
        identifier = _IDENTIFIERS[data_type]
        return await self._execute(
            lambda done: self._store.sample_query(identifier, start_ms, end_ms, limit, done)
        )

    async def _execute(self, start: Callable[[Completion], Any]) -> Any:
        """Start a tracked native query and await its completion."""
        tokens: list[int] = []

        def register(done: Completion) -> None:
            tokens.append(self._queries.track(start(done)))

        try:
            return await await_callback(register, self._timeout)
        finally:
            for token in tokens:
                self._queries.release(token)

    def _to_record(self, data_type: HealthDataType, sample: dict) -> HealthData | None:
        timestamp = self._safe_int(sample.get("start_time"))
        if timestamp is None:
            return None

        metadata = {
            k: v for k, v in sample.items() if k not in ("start_time", "value", "metadata")
        }
        metadata.update(sample.get("metadata") or {})

        if data_type.is_composite:
            if sample.get("systolic") is None or sample.get("diastolic") is None:
                return None
            value = None
        else:
            value = self._safe_float(sample.get("value"))
            if value is None:
                return None

        return HealthData(
            type=data_type,
            value=value,
            unit=sample.get("unit") or data_type.unit,
            timestamp=timestamp,
            platform=self.PLATFORM,
            source=sample.get("source"),
            metadata=metadata,
        )
