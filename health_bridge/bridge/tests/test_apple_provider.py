"""Tests for the HealthKit provider against a fake store."""

from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from health_bridge.bridge.base import (
    HealthData,
    HealthDataOperation,
    HealthDataType,
    HealthPlatform,
    PermissionStatus,
    QueryKind,
    UnsupportedDataTypeError,
    to_millis,
)
from health_bridge.bridge.catalog import CapabilityCatalog
from health_bridge.bridge.providers.apple_health import AppleHealthProvider
from health_bridge.bridge.tests.fakes import TEST_DAY, FakeHealthKit, at
from health_bridge.config import Settings

STEP_COUNT = "HKQuantityTypeIdentifierStepCount"
BODY_MASS = "HKQuantityTypeIdentifierBodyMass"
SLEEP = "HKCategoryTypeIdentifierSleepAnalysis"


@pytest.fixture
def provider(
    healthkit: FakeHealthKit, catalog: CapabilityCatalog, settings: Settings
) -> AppleHealthProvider:
    return AppleHealthProvider(healthkit, catalog=catalog, settings=settings)


class TestPermissions:
    @pytest.mark.asyncio
    async def test_write_status_reported_directly(
        self, provider: AppleHealthProvider, healthkit: FakeHealthKit
    ) -> None:
        healthkit.share_status = {STEP_COUNT: "sharingAuthorized", BODY_MASS: "sharingDenied"}
        await provider.initialize()
        result = await provider.check_permissions(
            [HealthDataType.STEPS, HealthDataType.WEIGHT, HealthDataType.WATER],
            HealthDataOperation.WRITE,
        )
        assert result == {
            HealthDataType.STEPS: PermissionStatus.GRANTED,
            HealthDataType.WEIGHT: PermissionStatus.DENIED,
            HealthDataType.WATER: PermissionStatus.NOT_DETERMINED,
        }

    @pytest.mark.asyncio
    async def test_read_probe_finds_data(
        self, provider: AppleHealthProvider, healthkit: FakeHealthKit
    ) -> None:
        recent = to_millis(datetime.now()) - 3_600_000
        healthkit.samples = [{"type": STEP_COUNT, "start_time": recent, "value": 10}]
        await provider.initialize()
        result = await provider.check_permissions(
            [HealthDataType.STEPS, HealthDataType.WEIGHT], HealthDataOperation.READ
        )
        assert result[HealthDataType.STEPS] == PermissionStatus.GRANTED
        assert result[HealthDataType.WEIGHT] == PermissionStatus.NOT_DETERMINED
        assert all(call[3] == 1 for call in healthkit.sample_calls)

    @pytest.mark.asyncio
    async def test_failed_probe_is_not_determined(
        self, provider: AppleHealthProvider, healthkit: FakeHealthKit
    ) -> None:
        healthkit.fail_queries = "Authorization not determined"
        await provider.initialize()
        result = await provider.check_permissions([HealthDataType.STEPS], HealthDataOperation.READ)
        assert result == {HealthDataType.STEPS: PermissionStatus.NOT_DETERMINED}

    @pytest.mark.asyncio
    async def test_request_authorization(
        self, provider: AppleHealthProvider, healthkit: FakeHealthKit
    ) -> None:
        await provider.initialize()
        granted = await provider.request_permissions(
            [HealthDataType.WEIGHT], [HealthDataOperation.READ, HealthDataOperation.WRITE]
        )
        assert granted
        assert healthkit.authorization_requests == [({BODY_MASS}, {BODY_MASS})]

    @pytest.mark.asyncio
    async def test_read_only_request_is_not_verifiable_but_succeeds(
        self, provider: AppleHealthProvider, healthkit: FakeHealthKit
    ) -> None:
        await provider.initialize()
        assert await provider.request_permissions([HealthDataType.STEPS], [HealthDataOperation.READ])
        assert healthkit.authorization_requests == [(set(), {STEP_COUNT})]


class TestReadsAndWrites:
    @pytest.mark.asyncio
    async def test_weight_round_trip(
        self, provider: AppleHealthProvider, healthkit: FakeHealthKit, settings: Settings
    ) -> None:
        await provider.initialize()
        record = HealthData(HealthDataType.WEIGHT, 72.5, "kg", at(0, 8), HealthPlatform.APPLE_HEALTH)
        assert await provider.write_health_data(record)
        assert healthkit.saved[0]["source"] == settings.write_source_name

        records = await provider.read_health_data(
            HealthDataType.WEIGHT, at(0, 0), at(0, 23), 10, QueryKind.DETAIL
        )
        assert records is not None and len(records) == 1
        assert records[0].value == 72.5
        assert records[0].unit == "kg"
        assert records[0].timestamp == at(0, 8)
        assert records[0].source == "Health Bridge App"

    @pytest.mark.asyncio
    async def test_sleep_stage_filter(
        self, provider: AppleHealthProvider, healthkit: FakeHealthKit
    ) -> None:
        healthkit.samples = [
            {"type": SLEEP, "start_time": at(0, 1), "value": 90, "stage": "deep"},
            {"type": SLEEP, "start_time": at(0, 3), "value": 60, "stage": "rem"},
        ]
        await provider.initialize()
        records = await provider.read_health_data(
            HealthDataType.SLEEP_DEEP, at(0, 0), at(0, 23), 10, QueryKind.DETAIL
        )
        assert records is not None
        assert [r.value for r in records] == [90.0]

    @pytest.mark.asyncio
    async def test_sleep_stage_limit_counts_matching_stage_only(
        self, provider: AppleHealthProvider, healthkit: FakeHealthKit
    ) -> None:
        other = [
            {"type": SLEEP, "start_time": at(0, 0) + i * 60_000, "value": 5, "stage": stage}
            for i, stage in enumerate(["light", "rem"] * 5)
        ]
        deep = [
            {"type": SLEEP, "start_time": at(0, 2) + i * 60_000, "value": 30 + i, "stage": "deep"}
            for i in range(4)
        ]
        healthkit.samples = other + deep
        await provider.initialize()
        records = await provider.read_health_data(
            HealthDataType.SLEEP_DEEP, at(0, 0), at(0, 23), 3, QueryKind.DETAIL
        )
        assert records is not None
        assert [r.value for r in records] == [30.0, 31.0, 32.0]
        assert healthkit.sample_calls[-1][3] == 0

    @pytest.mark.asyncio
    async def test_statistics_anchor_is_local_midnight(
        self, provider: AppleHealthProvider, healthkit: FakeHealthKit
    ) -> None:
        healthkit.buckets = {
            STEP_COUNT: [
                {"start_time": at(0, 0), "end_time": at(1, 0), "sum": 4000},
                {"start_time": at(1, 0), "end_time": at(2, 0), "sum": None},
            ]
        }
        await provider.initialize()
        points = await provider.read_health_data(
            HealthDataType.STEPS, at(0, 15), at(1, 15), 1000, QueryKind.STATISTICS
        )
        assert healthkit.statistics_calls[0][3] == to_millis(TEST_DAY)
        assert points is not None
        assert [p.value for p in points] == [4000.0, 0.0]
        assert points[0].metadata["date"] == "2026-03-10"

    @pytest.mark.asyncio
    async def test_workout_write_refused(self, provider: AppleHealthProvider) -> None:
        await provider.initialize()
        record = HealthData(HealthDataType.WORKOUT, 30.0, "minutes", at(0), HealthPlatform.APPLE_HEALTH)
        with pytest.raises(UnsupportedDataTypeError):
            await provider.write_health_data(record)


class TestQueryTracking:
    @pytest.mark.asyncio
    async def test_cleanup_stops_running_queries(
        self, provider: AppleHealthProvider, healthkit: FakeHealthKit
    ) -> None:
        healthkit.hold_queries = True
        await provider.initialize()
        task = asyncio.create_task(
            provider.read_health_data(HealthDataType.STEPS, at(0), at(1), 10, QueryKind.DETAIL)
        )
        await asyncio.sleep(0)
        assert provider.active_queries == 1

        await provider.cleanup()
        assert healthkit.stopped == ["sample-1"]
        assert provider.active_queries == 0

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_query_released_after_completion(
        self, provider: AppleHealthProvider
    ) -> None:
        await provider.initialize()
        await provider.read_health_data(HealthDataType.STEPS, at(0), at(1), 10, QueryKind.DETAIL)
        assert provider.active_queries == 0
