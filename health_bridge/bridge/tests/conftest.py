"""Shared fixtures for the bridge tests."""

from __future__ import annotations

import pytest

from health_bridge.bridge.catalog import CapabilityCatalog, load_catalog
from health_bridge.bridge.tests.fakes import FakeHealthKit, FakeHuaweiKit, FakeSamsungStore, at
from health_bridge.config import Settings


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        huawei_client_id="test-client-id",
        huawei_redirect_uri="https://app.example.com/oauth/callback",
        query_timeout_seconds=2.0,
    )


@pytest.fixture
def catalog() -> CapabilityCatalog:
    """Load the real capability catalog for tests."""
    return load_catalog()


# ---------------------------------------------------------------------------
# Native bridge fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def samsung_store() -> FakeSamsungStore:
    return FakeSamsungStore(
        granted={("STEPS", "read"), ("HEART_RATE", "read")},
        records={
            "STEPS": [
                {"start_time": at(0, 9), "end_time": at(0, 10), "count": 1200},
                {"start_time": at(0, 8), "end_time": at(0, 9), "count": 800},
                {"start_time": at(1, 9), "end_time": at(1, 10), "count": 3000},
            ],
            "BLOOD_PRESSURE": [
                {"start_time": at(0, 7), "systolic": 121, "diastolic": 79},
                {"start_time": at(1, 7), "systolic": 118, "diastolic": 76},
            ],
        },
        aggregates={
            "STEPS": [
                {"start_time": at(0, 0), "value": 2000},
                {"start_time": at(1, 0), "value": 3000},
            ],
        },
    )


@pytest.fixture
def healthkit() -> FakeHealthKit:
    return FakeHealthKit()


@pytest.fixture
def huawei_kit() -> FakeHuaweiKit:
    return FakeHuaweiKit(
        granted_scopes={"https://www.huawei.com/healthkit/step.read"},
        points={
            "com.huawei.continuous.steps.delta": [
                {"start_time": at(0, 9), "end_time": at(0, 10), "fields": {"steps_delta": 500}},
                {"start_time": at(0, 18), "end_time": at(0, 19), "fields": {"steps_delta": 700}},
            ],
            "com.huawei.instantaneous.blood_pressure": [
                {
                    "start_time": at(0, 7),
                    "end_time": at(0, 7),
                    "fields": {"systolic_pressure": 125, "diastolic_pressure": 82},
                },
            ],
        },
    )
