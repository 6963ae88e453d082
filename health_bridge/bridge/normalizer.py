"""Convert provider outcomes into HealthDataResult envelopes.

Providers hand back canonical HealthData, raw dict rows from a native bridge,
booleans, batch outcomes, or exceptions.  The facade funnels every one of
them through here, so callers only ever see a HealthDataResult.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Mapping

import httpx

from health_bridge.bridge.base import (
    BatchWriteOutcome,
    HealthData,
    HealthDataResult,
    HealthDataStatus,
    HealthPlatform,
    ProviderError,
)
from health_bridge.bridge.dispatcher import InvalidQueryError, QueryPlan
from health_bridge.cloud.client import CloudApiError

logger = logging.getLogger("health_bridge.bridge.normalizer")


class ResponseNormalizer:
    """Builds result envelopes; stateless."""

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def coerce_records(
        self, platform: HealthPlatform, rows: Iterable[HealthData | Mapping[str, Any]]
    ) -> list[HealthData]:
        """Turn provider rows into HealthData, preserving order.

        Rows that cannot be converted are dropped with a warning.
        """
        records: list[HealthData] = []
        for position, row in enumerate(rows):
            if isinstance(row, HealthData):
                records.append(row)
                continue
            try:
                records.append(HealthData.from_dict(row, platform=platform))
            except (TypeError, ValueError) as exc:
                logger.warning(
                    "%s: dropping malformed record at position %d: %s",
                    platform.value, position, exc,
                )
        return records

    def read_result(
        self,
        plan: QueryPlan,
        rows: Iterable[HealthData | Mapping[str, Any]] | None,
    ) -> HealthDataResult:
        if rows is None:
            return HealthDataResult.failure(
                HealthDataStatus.DATA_READ_FAILED,
                plan.platform,
                f"Failed to read {plan.data_type.value} data",
            )

        records = self.coerce_records(plan.platform, rows)
        aggregate = None
        if plan.data_type.is_cumulative and not plan.data_type.is_composite:
            aggregate = float(sum(r.value for r in records if r.value is not None))

        message = plan.note or f"Read {len(records)} {plan.data_type.value} record(s)"
        return HealthDataResult.ok(
            plan.platform,
            records,
            message=message,
            total_count=len(records),
            aggregate=aggregate,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def write_result(
        self, platform: HealthPlatform, written: bool, record: HealthData
    ) -> HealthDataResult:
        if written:
            return HealthDataResult.ok(
                platform,
                message="Health data written successfully",
                total_count=1,
            )
        return HealthDataResult.failure(
            HealthDataStatus.DATA_WRITE_FAILED,
            platform,
            f"Failed to write {record.type.value} data",
        )

    def batch_result(
        self, platform: HealthPlatform, outcome: BatchWriteOutcome, total: int
    ) -> HealthDataResult:
        if outcome.succeeded:
            return HealthDataResult.ok(
                platform,
                message=f"Batch health data written successfully ({outcome.written} records)",
                total_count=outcome.written,
            )
        return HealthDataResult.failure(
            HealthDataStatus.BATCH_WRITE_FAILED,
            platform,
            f"Item {outcome.failed_index} failed: {outcome.error} "
            f"({outcome.written} of {total} written)",
            total_count=outcome.written,
            failed_index=outcome.failed_index,
        )

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def from_error(
        self,
        platform: HealthPlatform | None,
        exc: BaseException,
        default: HealthDataStatus = HealthDataStatus.ERROR,
    ) -> HealthDataResult:
        """Translate an exception raised below the facade into an envelope.

        Args:
            platform: Platform the call targeted.
            exc:      The exception.
            default:  Status for failures with no more specific code
                      (e.g. data_read_failed for a read).
        """
        if isinstance(exc, ProviderError):
            status = exc.status if exc.status != HealthDataStatus.ERROR else default
            return HealthDataResult.failure(status, platform, str(exc))
        if isinstance(exc, (InvalidQueryError, ValueError)):
            return HealthDataResult.failure(
                HealthDataStatus.INVALID_PARAMETERS, platform, str(exc)
            )
        if isinstance(exc, asyncio.TimeoutError):
            return HealthDataResult.failure(default, platform, "Operation timed out")
        if isinstance(exc, CloudApiError):
            status = (
                HealthDataStatus.PERMISSION_DENIED
                if exc.status_code in (401, 403)
                else default
            )
            return HealthDataResult.failure(status, platform, str(exc))
        if isinstance(exc, httpx.HTTPError):
            return HealthDataResult.failure(
                HealthDataStatus.NETWORK_ERROR, platform, f"Network error: {exc}"
            )
        return HealthDataResult.failure(default, platform, f"{type(exc).__name__}: {exc}")
