"""Pydantic schemas for Huawei Health Kit cloud API payloads.

Responses nest as group → sampleSet → samplePoint → value.  Group times are
epoch milliseconds; sample-point times are epoch nanoseconds.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CloudBase(BaseModel):
    """Base model with shared config for all cloud API schemas."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ---------- Sample data ----------


class SampleValue(CloudBase):
    field_name: str = Field(alias="fieldName")
    integer_value: int | None = Field(default=None, alias="integerValue")
    float_value: float | None = Field(default=None, alias="floatValue")
    string_value: str | None = Field(default=None, alias="stringValue")

    @property
    def value(self) -> Any:
        if self.integer_value is not None:
            return self.integer_value
        if self.float_value is not None:
            return self.float_value
        return self.string_value


class SamplePoint(CloudBase):
    start_time: int = Field(alias="startTime")  # nanoseconds
    end_time: int = Field(alias="endTime")  # nanoseconds
    data_type_name: str = Field(default="", alias="dataTypeName")
    values: list[SampleValue] = Field(default_factory=list, alias="value")

    @property
    def start_millis(self) -> int:
        return self.start_time // 1_000_000

    @property
    def end_millis(self) -> int:
        return self.end_time // 1_000_000

    def fields(self) -> dict[str, Any]:
        """Every field of the point as ``{fieldName: value}``."""
        return {v.field_name: v.value for v in self.values}


class SampleSet(CloudBase):
    data_collector_id: str | None = Field(default=None, alias="dataCollectorId")
    sample_points: list[SamplePoint] = Field(default_factory=list, alias="samplePoints")


class Group(CloudBase):
    start_time: int = Field(alias="startTime")  # milliseconds
    end_time: int = Field(alias="endTime")  # milliseconds
    sample_set: list[SampleSet] = Field(default_factory=list, alias="sampleSet")

    def points(self) -> list[SamplePoint]:
        return [p for s in self.sample_set for p in s.sample_points]


class PolymerizeResponse(CloudBase):
    group: list[Group] = Field(default_factory=list)


# ---------- Requests ----------


class DailyPolymerizeRequest(CloudBase):
    data_types: list[str] = Field(alias="dataTypes", min_length=1, max_length=20)
    start_day: str = Field(alias="startDay", pattern=r"^\d{8}$")
    end_day: str = Field(alias="endDay", pattern=r"^\d{8}$")
    time_zone: str = Field(alias="timeZone")


class PolymerizeWith(CloudBase):
    data_type_name: str = Field(alias="dataTypeName")


class PolymerizeRequest(CloudBase):
    polymerize_with: list[PolymerizeWith] = Field(alias="polymerizeWith")
    start_time: int = Field(alias="startTime")
    end_time: int = Field(alias="endTime")


# ---------- Consent / privacy ----------


class PrivacyAuthStatus(IntEnum):
    """User's Huawei Health privacy authorization (the ``opinion`` field)."""

    AUTHORIZED = 1
    NOT_AUTHORIZED = 2
    NOT_HEALTH_USER = 3

    @property
    def is_authorized(self) -> bool:
        return self is PrivacyAuthStatus.AUTHORIZED


class PrivacyRecord(CloudBase):
    opinion: int
    status: int | None = None
    privacy_type: int | None = Field(default=None, alias="privacyType")

    @property
    def auth_status(self) -> PrivacyAuthStatus | None:
        try:
            return PrivacyAuthStatus(self.opinion)
        except ValueError:
            return None


class UserConsentInfo(CloudBase):
    """Scopes a user has consented to for one app."""

    scope_descriptions: dict[str, str] = Field(default_factory=dict, alias="url2Desc")
    auth_time: str | None = Field(default=None, alias="authTime")  # unix seconds
    app_name: str | None = Field(default=None, alias="appName")
    app_icon_path: str | None = Field(default=None, alias="appIconPath")

    @property
    def authorized_scopes(self) -> list[str]:
        return list(self.scope_descriptions)

    @property
    def scope_count(self) -> int:
        return len(self.scope_descriptions)

    @property
    def authorized_at(self) -> datetime | None:
        if not self.auth_time:
            return None
        try:
            return datetime.fromtimestamp(int(self.auth_time), tz=timezone.utc)
        except ValueError:
            return None

    def has_scope(self, scope: str) -> bool:
        return scope in self.scope_descriptions
