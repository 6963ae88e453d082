"""Query dispatch: legality checks and shaping of provider read calls.

Two query kinds exist.  **Detail** returns every atomic record in the window,
oldest first, capped at a limit.  **Statistics** returns one summed point per
local calendar day.

Statistics is legal only for cumulative types (steps, distance,
active_calories, water).  A statistics request for any other type is
downgraded to a detail request, always, and the plan records that it was.
Composite types (blood pressure) are routed to detail before the cumulative
check is even consulted: summing systolic and diastolic independently is
meaningless.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable

from health_bridge.bridge.base import (
    HealthData,
    HealthDataOperation,
    HealthDataType,
    HealthPlatform,
    QueryKind,
    UnsupportedDataTypeError,
    to_millis,
)
from health_bridge.bridge.catalog import CapabilityCatalog
from health_bridge.config import Settings

logger = logging.getLogger("health_bridge.bridge.dispatcher")


class InvalidQueryError(ValueError):
    """The query parameters can never produce a valid read."""


@dataclass(frozen=True)
class QueryPlan:
    """A validated read request, ready to hand to a provider.

    Attributes:
        platform:   Target platform.
        data_type:  Metric to read.
        kind:       Query kind that will actually be executed.
        start_ms:   Window start (inclusive), epoch ms.
        end_ms:     Window end (inclusive), epoch ms.
        limit:      Maximum detail records.
        downgraded: True if statistics was requested but detail will run.
    """

    platform: HealthPlatform
    data_type: HealthDataType
    kind: QueryKind
    start_ms: int
    end_ms: int
    limit: int
    downgraded: bool = False

    @property
    def note(self) -> str | None:
        if not self.downgraded:
            return None
        return (
            f"Daily statistics are not available for {self.data_type.value}; "
            "returned detail records instead"
        )


def supports_statistics(data_type: HealthDataType) -> bool:
    """Whether ``data_type`` may be aggregated per day."""
    if data_type.is_composite:
        return False
    return data_type.is_cumulative


def local_day_start(moment: datetime) -> datetime:
    """Local midnight of the day containing ``moment`` (naive local time)."""
    return datetime.combine(moment.date(), time.min)


def local_day_bounds(day: date) -> tuple[int, int]:
    """Epoch-ms bounds ``[start, end]`` of a local calendar day."""
    start = datetime.combine(day, time.min)
    end = start + timedelta(days=1)
    return to_millis(start), to_millis(end) - 1


def local_date_of(timestamp_ms: int) -> date:
    return datetime.fromtimestamp(timestamp_ms / 1000).date()


class QueryDispatcher:
    """Validates read requests against the catalog and builds QueryPlans."""

    def __init__(self, catalog: CapabilityCatalog, settings: Settings) -> None:
        self._catalog = catalog
        self._settings = settings

    def plan(
        self,
        platform: HealthPlatform,
        data_type: HealthDataType,
        start: "int | datetime | None" = None,
        end: "int | datetime | None" = None,
        limit: int | None = None,
        query_kind: "QueryKind | str | None" = None,
    ) -> QueryPlan:
        """Validate a read request and decide how it will execute.

        A missing window defaults to the current local day; a missing limit
        to ``default_query_limit``.

        Raises:
            UnsupportedDataTypeError: The platform cannot read ``data_type``.
            InvalidQueryError: Unknown query kind, inverted window, or a
                non-positive limit.
        """
        if not self.is_readable(platform, data_type):
            raise UnsupportedDataTypeError(
                f"{data_type.value} cannot be read from {platform.value}"
            )

        try:
            requested = QueryKind.parse(query_kind)
        except ValueError as exc:
            raise InvalidQueryError(f"Unknown query kind: {query_kind!r}") from exc

        if start is None or end is None:
            now = datetime.now()
            day_start = local_day_start(now)
            start_ms = to_millis(start) if start is not None else to_millis(day_start)
            end_ms = to_millis(end) if end is not None else to_millis(now)
        else:
            start_ms, end_ms = to_millis(start), to_millis(end)

        if start_ms > end_ms:
            raise InvalidQueryError("start must not be after end")

        if limit is None:
            limit = self._settings.default_query_limit
        if limit <= 0:
            raise InvalidQueryError("limit must be a positive integer")

        kind = requested
        downgraded = False
        if requested == QueryKind.STATISTICS and not supports_statistics(data_type):
            kind = QueryKind.DETAIL
            downgraded = True
            logger.info(
                "%s/%s: statistics downgraded to detail",
                platform.value, data_type.value,
            )

        return QueryPlan(
            platform=platform,
            data_type=data_type,
            kind=kind,
            start_ms=start_ms,
            end_ms=end_ms,
            limit=limit,
            downgraded=downgraded,
        )

    def is_readable(self, platform: HealthPlatform, data_type: HealthDataType) -> bool:
        return self._catalog.is_supported(platform, data_type, HealthDataOperation.READ)


def daily_buckets(
    records: Iterable[HealthData],
    data_type: HealthDataType,
    platform: HealthPlatform,
    start_ms: int,
    end_ms: int,
) -> list[HealthData]:
    """Sum detail records into one point per local day of the window.

    Every day in the window produces a point, including days without data
    (value 0).  Each point is timestamped at local midnight and carries
    ``date`` and ``sample_count`` in its metadata.

    Raises:
        InvalidQueryError: If ``data_type`` may not be aggregated.
    """
    if not supports_statistics(data_type):
        raise InvalidQueryError(f"{data_type.value} cannot be aggregated per day")

    first, last = local_date_of(start_ms), local_date_of(end_ms)
    totals: "OrderedDict[date, list[float]]" = OrderedDict()
    day = first
    while day <= last:
        totals[day] = []
        day += timedelta(days=1)

    for record in records:
        if record.value is None:
            continue
        bucket = totals.get(local_date_of(record.timestamp))
        if bucket is not None:
            bucket.append(record.value)

    points = []
    for day, values in totals.items():
        day_start, _ = local_day_bounds(day)
        points.append(
            HealthData(
                type=data_type,
                value=float(sum(values)),
                unit=data_type.unit,
                timestamp=day_start,
                platform=platform,
                metadata={"date": day.isoformat(), "sample_count": len(values)},
            )
        )
    return points
