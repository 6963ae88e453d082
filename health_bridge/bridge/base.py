"""Base classes and canonical data models for the Health Bridge.

Every platform provider must subclass HealthProvider and return the canonical
HealthData records.  These types are the single source of truth passed across
every boundary: providers, the facade, the cloud client, and the API layer.
Callers never see a vendor-native shape.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, ClassVar, Iterable, Mapping, Sequence

if TYPE_CHECKING:
    from health_bridge.bridge.catalog import CapabilityCatalog
    from health_bridge.config import Settings

logger = logging.getLogger("health_bridge.bridge")


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class HealthPlatform(str, Enum):
    """Identifier tag for a health backend."""

    SAMSUNG_HEALTH = "samsung_health"
    APPLE_HEALTH = "apple_health"
    HUAWEI_HEALTH = "huawei_health"
    HUAWEI_CLOUD = "huawei_cloud"

    @classmethod
    def from_key(cls, key: "str | HealthPlatform | None") -> "HealthPlatform | None":
        """Resolve a platform key, returning None for anything unrecognized."""
        if isinstance(key, cls):
            return key
        try:
            return cls(key)
        except ValueError:
            return None


class HealthDataType(str, Enum):
    """Enumerated health metric.

    Each member carries its canonical unit and whether it is cumulative
    (eligible for per-day aggregation) or composite (several paired values,
    never aggregated).
    """

    STEPS = "steps"
    HEART_RATE = "heart_rate"
    BLOOD_PRESSURE = "blood_pressure"
    GLUCOSE = "glucose"
    WEIGHT = "weight"
    HEIGHT = "height"
    BODY_FAT = "body_fat"
    BMI = "bmi"
    SLEEP_DURATION = "sleep_duration"
    SLEEP_DEEP = "sleep_deep"
    SLEEP_LIGHT = "sleep_light"
    SLEEP_REM = "sleep_rem"
    WORKOUT = "workout"
    OXYGEN_SATURATION = "oxygen_saturation"
    BODY_TEMPERATURE = "body_temperature"
    RESPIRATORY_RATE = "respiratory_rate"
    DISTANCE = "distance"
    ACTIVE_CALORIES = "active_calories"
    WATER = "water"

    @property
    def unit(self) -> str:
        return _UNITS[self]

    @property
    def is_cumulative(self) -> bool:
        return self in _CUMULATIVE_TYPES

    @property
    def is_composite(self) -> bool:
        return self in _COMPOSITE_TYPES

    @classmethod
    def from_key(cls, key: "str | HealthDataType | None") -> "HealthDataType | None":
        if isinstance(key, cls):
            return key
        try:
            return cls(key)
        except ValueError:
            return None


_UNITS: dict[HealthDataType, str] = {
    HealthDataType.STEPS: "count",
    HealthDataType.HEART_RATE: "bpm",
    HealthDataType.BLOOD_PRESSURE: "mmHg",
    HealthDataType.GLUCOSE: "mmol/L",
    HealthDataType.WEIGHT: "kg",
    HealthDataType.HEIGHT: "cm",
    HealthDataType.BODY_FAT: "%",
    HealthDataType.BMI: "kg/m²",
    HealthDataType.SLEEP_DURATION: "minutes",
    HealthDataType.SLEEP_DEEP: "minutes",
    HealthDataType.SLEEP_LIGHT: "minutes",
    HealthDataType.SLEEP_REM: "minutes",
    HealthDataType.WORKOUT: "minutes",
    HealthDataType.OXYGEN_SATURATION: "%",
    HealthDataType.BODY_TEMPERATURE: "°C",
    HealthDataType.RESPIRATORY_RATE: "breaths/min",
    HealthDataType.DISTANCE: "meters",
    HealthDataType.ACTIVE_CALORIES: "kcal",
    HealthDataType.WATER: "ml",
}

_CUMULATIVE_TYPES: frozenset[HealthDataType] = frozenset({
    HealthDataType.STEPS,
    HealthDataType.DISTANCE,
    HealthDataType.ACTIVE_CALORIES,
    HealthDataType.WATER,
})

_COMPOSITE_TYPES: frozenset[HealthDataType] = frozenset({
    HealthDataType.BLOOD_PRESSURE,
})

# Paired sub-fields a composite record must carry in its metadata.
COMPOSITE_FIELDS: dict[HealthDataType, tuple[str, ...]] = {
    HealthDataType.BLOOD_PRESSURE: ("systolic", "diastolic"),
}


class HealthDataOperation(str, Enum):
    READ = "read"
    WRITE = "write"

    @classmethod
    def from_key(
        cls, key: "str | HealthDataOperation | None"
    ) -> "HealthDataOperation | None":
        if isinstance(key, cls):
            return key
        try:
            return cls(key)
        except ValueError:
            return None


class PermissionStatus(str, Enum):
    """Canonical permission vocabulary shared by every backend."""

    GRANTED = "granted"
    DENIED = "denied"
    NOT_DETERMINED = "not_determined"


class QueryKind(str, Enum):
    """Detail returns atomic records; statistics returns one sum per local day."""

    DETAIL = "detail"
    STATISTICS = "statistics"

    @classmethod
    def parse(cls, value: "str | QueryKind | None") -> "QueryKind":
        """Parse a query kind, accepting ``daily`` as an alias of statistics.

        Raises:
            ValueError: For any other unknown value.
        """
        if value is None:
            return cls.DETAIL
        if isinstance(value, cls):
            return value
        if value == "daily":
            return cls.STATISTICS
        return cls(value)


class HealthDataStatus(str, Enum):
    """Result status codes carried by every HealthDataResult."""

    SUCCESS = "success"
    ERROR = "error"
    PLATFORM_NOT_SUPPORTED = "platform_not_supported"
    INITIALIZATION_FAILED = "initialization_failed"
    NOT_INITIALIZED = "not_initialized"
    PERMISSION_DENIED = "permission_denied"
    INVALID_PARAMETERS = "invalid_parameters"
    DATA_TYPE_NOT_SUPPORTED = "data_type_not_supported"
    DATA_READ_FAILED = "data_read_failed"
    DATA_WRITE_FAILED = "data_write_failed"
    BATCH_WRITE_FAILED = "batch_write_failed"
    NETWORK_ERROR = "network_error"
    INVALID_STATE = "invalid_state"
    TEMPORARILY_DISABLED = "temporarily_disabled"
    NOT_SUPPORTED = "not_supported"


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------


class ProviderError(Exception):
    """Base error raised inside a provider and translated by the facade."""

    status: HealthDataStatus = HealthDataStatus.ERROR


class NotInitializedError(ProviderError):
    status = HealthDataStatus.NOT_INITIALIZED


class UnsupportedOperationError(ProviderError):
    """The backend has no way to perform the requested operation."""

    status = HealthDataStatus.NOT_SUPPORTED


class UnsupportedDataTypeError(ProviderError):
    status = HealthDataStatus.DATA_TYPE_NOT_SUPPORTED


class PermissionDeniedError(ProviderError):
    status = HealthDataStatus.PERMISSION_DENIED


class NativeCallError(ProviderError):
    """A native SDK call reported failure through its completion callback."""


# ---------------------------------------------------------------------------
# Canonical records
# ---------------------------------------------------------------------------


def to_millis(value: "int | float | datetime") -> int:
    """Convert an epoch-millisecond number or a datetime to epoch milliseconds.

    Naive datetimes are interpreted as local time.
    """
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    return int(value)


def millis_to_iso(value: int) -> str:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()


@dataclass(frozen=True)
class HealthData:
    """One canonical health measurement.

    Immutable once constructed; ``metadata`` is exposed as a read-only view.

    Attributes:
        type:      The metric this record measures.
        value:     Primary numeric value, or None for composite types whose
                   values live in ``metadata`` (e.g. systolic/diastolic).
        unit:      Unit string, normally ``type.unit``.
        timestamp: Epoch milliseconds (start of the sample, or local midnight
                   for a daily statistic).
        platform:  Platform that produced the record.
        source:    App / device that recorded the sample, when known.
        metadata:  Backend-specific extras, preserved without loss.
    """

    type: HealthDataType
    value: float | None
    unit: str
    timestamp: int
    platform: HealthPlatform
    source: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "value": self.value,
            "unit": self.unit,
            "timestamp": self.timestamp,
            "platform": self.platform.value,
            "source": self.source,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(
        cls, payload: Mapping[str, Any], platform: HealthPlatform | None = None
    ) -> "HealthData":
        """Build a record from a loosely-typed mapping.

        Args:
            payload:  Mapping with ``type``, ``value``, ``timestamp`` and
                      optional ``unit``, ``platform``, ``source``, ``metadata``.
            platform: Platform to stamp when the payload carries none.

        Returns:
            A validated HealthData.

        Raises:
            ValueError: Unknown type or platform, missing timestamp, missing
                value for a non-composite type, or a composite type without
                its paired sub-fields.
        """
        data_type = HealthDataType.from_key(payload.get("type"))
        if data_type is None:
            raise ValueError(f"Unknown health data type: {payload.get('type')!r}")

        resolved_platform = HealthPlatform.from_key(payload.get("platform")) or platform
        if resolved_platform is None:
            raise ValueError("HealthData requires a platform")

        raw_ts = payload.get("timestamp")
        if raw_ts is None:
            raise ValueError("HealthData requires a timestamp")
        timestamp = to_millis(raw_ts)

        metadata = dict(payload.get("metadata") or {})
        value = payload.get("value")

        if data_type.is_composite:
            missing = [f for f in COMPOSITE_FIELDS[data_type] if metadata.get(f) is None]
            if missing:
                raise ValueError(
                    f"{data_type.value} requires {', '.join(COMPOSITE_FIELDS[data_type])} "
                    f"in metadata (missing: {', '.join(missing)})"
                )
            value = None if value is None else float(value)
        else:
            if value is None:
                raise ValueError(f"{data_type.value} requires a numeric value")
            try:
                value = float(value)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Invalid value for {data_type.value}: {value!r}") from exc

        return cls(
            type=data_type,
            value=value,
            unit=payload.get("unit") or data_type.unit,
            timestamp=timestamp,
            platform=resolved_platform,
            source=payload.get("source"),
            metadata=metadata,
        )


@dataclass
class HealthDataResult:
    """Envelope returned by every facade call.

    Attributes:
        status:       ``success`` or one of the failure codes.
        platform:     Originating platform, if the key was recognized.
        data:         Records in provider return order.
        message:      Human-readable detail.
        total_count:  Number of records returned (or written).
        aggregate:    Sum of record values for cumulative types.
        failed_index: Position of the first failing item in a batch write.
    """

    status: HealthDataStatus
    platform: HealthPlatform | None = None
    data: list[HealthData] = field(default_factory=list)
    message: str | None = None
    total_count: int | None = None
    aggregate: float | None = None
    failed_index: int | None = None

    @property
    def is_success(self) -> bool:
        return self.status == HealthDataStatus.SUCCESS

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "platform": self.platform.value if self.platform else None,
            "data": [d.to_dict() for d in self.data],
            "message": self.message,
            "total_count": self.total_count,
            "aggregate": self.aggregate,
            "failed_index": self.failed_index,
        }

    @classmethod
    def ok(
        cls,
        platform: HealthPlatform | None,
        data: Sequence[HealthData] = (),
        message: str | None = None,
        **extra: Any,
    ) -> "HealthDataResult":
        return cls(
            status=HealthDataStatus.SUCCESS,
            platform=platform,
            data=list(data),
            message=message,
            **extra,
        )

    @classmethod
    def failure(
        cls,
        status: HealthDataStatus,
        platform: HealthPlatform | None,
        message: str,
        **extra: Any,
    ) -> "HealthDataResult":
        return cls(status=status, platform=platform, message=message, **extra)


@dataclass(frozen=True)
class PlatformCapability:
    """One row of the capability matrix for a platform."""

    data_type: HealthDataType
    can_read: bool
    can_write: bool
    requires_special_permission: bool = False
    notes: str | None = None

    def supports(self, operation: HealthDataOperation) -> bool:
        if operation == HealthDataOperation.READ:
            return self.can_read
        return self.can_write

    def to_dict(self) -> dict:
        return {
            "data_type": self.data_type.value,
            "can_read": self.can_read,
            "can_write": self.can_write,
            "requires_special_permission": self.requires_special_permission,
            "notes": self.notes,
        }


@dataclass
class BatchWriteOutcome:
    """Result of a sequential, fail-fast batch write.

    ``failed_index`` is None when every record was written.
    """

    written: int
    failed_index: int | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.failed_index is None


# ---------------------------------------------------------------------------
# Abstract provider
# ---------------------------------------------------------------------------


class HealthProvider(ABC):
    """Abstract base class for all platform providers.

    Subclasses must define PLATFORM and DISPLAY_NAME class attributes and
    implement every abstract method.  Providers raise ProviderError
    subclasses; the facade translates them into HealthDataResult envelopes.

    Capability queries come from the static catalog, never from the backend.
    """

    PLATFORM: ClassVar[HealthPlatform]
    DISPLAY_NAME: ClassVar[str]

    def __init__(
        self,
        catalog: "CapabilityCatalog | None" = None,
        settings: "Settings | None" = None,
    ) -> None:
        if catalog is None:
            from health_bridge.bridge.catalog import get_catalog

            catalog = get_catalog()
        if settings is None:
            from health_bridge.config import get_settings

            settings = get_settings()
        self._catalog = catalog
        self._settings = settings
        self._ui_context: Any = None
        self._initialized = False

    @classmethod
    def is_available(cls, bridge: Any, settings: "Settings") -> bool:
        """Whether the backend can be used on this device with ``bridge``."""
        return bridge is not None

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def ui_context(self) -> Any:
        return self._ui_context

    def set_ui_context(self, ui_context: Any) -> None:
        """Install (or replace) the foreground UI handle used for consent dialogs."""
        self._ui_context = ui_context

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        """Connect to the backend.  A second call returns immediately."""
        if self._initialized:
            return True
        self._initialized = await self._connect()
        logger.info(
            "%s: initialize -> %s", self.PLATFORM.value, self._initialized
        )
        return self._initialized

    @abstractmethod
    async def _connect(self) -> bool:
        """Perform the one-time backend setup behind ``initialize``."""
        ...

    async def cleanup(self) -> None:
        """Release native resources.  Safe to call more than once."""
        self._initialized = False

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError(f"{self.DISPLAY_NAME} is not initialized")

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    @abstractmethod
    async def check_permissions(
        self,
        data_types: Sequence[HealthDataType],
        operation: HealthDataOperation,
    ) -> dict[HealthDataType, PermissionStatus]:
        """Report the canonical status of each requested type.

        Args:
            data_types: Types to check.
            operation:  Read or write.

        Returns:
            One PermissionStatus per requested type.
        """
        ...

    @abstractmethod
    async def request_permissions(
        self,
        data_types: Sequence[HealthDataType],
        operations: Sequence[HealthDataOperation],
        reason: str | None = None,
    ) -> bool:
        """Ask the user for access.  Already granted types stay granted.

        Args:
            data_types: Types to request.
            operations: Operations to request for every type.
            reason:     Optional rationale shown by backends that support one.

        Returns:
            True if every requested (type, operation) is granted afterwards.
        """
        ...

    async def revoke_all_authorizations(self) -> None:
        raise UnsupportedOperationError(
            f"{self.DISPLAY_NAME} does not support revoking authorizations"
        )

    async def revoke_authorizations(
        self,
        data_types: Sequence[HealthDataType],
        operations: Sequence[HealthDataOperation],
    ) -> None:
        raise UnsupportedOperationError(
            f"{self.DISPLAY_NAME} does not support partial revocation"
        )

    # ------------------------------------------------------------------
    # Capabilities (catalog-derived)
    # ------------------------------------------------------------------

    def get_supported_data_types(
        self, operation: HealthDataOperation | None = None
    ) -> list[HealthDataType]:
        return self._catalog.supported_data_types(self.PLATFORM, operation)

    def is_data_type_supported(
        self, data_type: HealthDataType, operation: HealthDataOperation
    ) -> bool:
        return self._catalog.is_supported(self.PLATFORM, data_type, operation)

    def get_platform_capabilities(self) -> list[PlatformCapability]:
        return self._catalog.capabilities(self.PLATFORM)

    # ------------------------------------------------------------------
    # Data access
    # ------------------------------------------------------------------

    @abstractmethod
    async def read_health_data(
        self,
        data_type: HealthDataType,
        start_ms: int,
        end_ms: int,
        limit: int,
        query_kind: QueryKind,
    ) -> list[HealthData] | None:
        """Read records in ``[start_ms, end_ms]``.

        Args:
            data_type:  Metric to read.
            start_ms:   Window start, epoch milliseconds.
            end_ms:     Window end, epoch milliseconds.
            limit:      Maximum number of detail records.
            query_kind: DETAIL for atomic records, STATISTICS for daily sums.

        Returns:
            Records (possibly empty), or None if the read failed.
        """
        ...

    @abstractmethod
    async def write_health_data(self, record: HealthData) -> bool:
        """Write a single record.  Returns False if the backend refused it."""
        ...

    async def write_batch_health_data(
        self, records: Iterable[HealthData]
    ) -> BatchWriteOutcome:
        """Write records one at a time, stopping at the first failure."""
        written = 0
        for index, record in enumerate(records):
            try:
                ok = await self.write_health_data(record)
            except ProviderError as exc:
                logger.warning(
                    "%s: batch write failed at index %d: %s",
                    self.PLATFORM.value, index, exc,
                )
                return BatchWriteOutcome(written=written, failed_index=index, error=str(exc))
            except asyncio.TimeoutError:
                logger.warning(
                    "%s: batch write timed out at index %d", self.PLATFORM.value, index
                )
                return BatchWriteOutcome(
                    written=written, failed_index=index, error="Operation timed out"
                )
            except Exception as exc:
                logger.exception(
                    "%s: batch write raised at index %d", self.PLATFORM.value, index
                )
                return BatchWriteOutcome(
                    written=written, failed_index=index, error=str(exc) or type(exc).__name__
                )
            if not ok:
                return BatchWriteOutcome(
                    written=written,
                    failed_index=index,
                    error=f"{record.type.value} record was rejected",
                )
            written += 1
        return BatchWriteOutcome(written=written)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _safe_int(value: Any) -> int | None:
        """Convert value to int, returning None on failure."""
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _safe_float(value: Any) -> float | None:
        """Convert value to float, returning None on failure."""
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None
