"""Permission reconciliation across incompatible authorization models.

Three backend models map onto one vocabulary (granted / denied /
not_determined):

- **Granted set** (samsung_health, huawei_health): the backend returns the
  set of permissions the user has granted; comparing it with the requested
  set is ground truth.
- **Write status + read probe** (apple_health): write status is reported
  directly; read status is hidden by the platform, so it is inferred from a
  bounded historical query.  A probe that returns nothing cannot tell
  "denied" from "no data", so read access is never reported as denied.
- **Server consent** (huawei_cloud): consent is granted out-of-band through
  OAuth and listed by a separate cloud call.

The reconciler never upgrades ``not_determined`` to ``denied`` (or the
reverse); a status a backend cannot truthfully produce is clamped to
``not_determined``.
"""

from __future__ import annotations

import logging
from typing import Any, Collection, Hashable, Mapping, Sequence

from health_bridge.bridge.base import (
    HealthDataOperation,
    HealthDataType,
    HealthPlatform,
    PermissionStatus,
)
from health_bridge.bridge.catalog import CapabilityCatalog

logger = logging.getLogger("health_bridge.bridge.permissions")

_ALL = frozenset(PermissionStatus)
_NO_DENIAL = frozenset({PermissionStatus.GRANTED, PermissionStatus.NOT_DETERMINED})

# Which statuses each (platform, operation) can truthfully report.
REACHABLE_STATES: dict[tuple[HealthPlatform, HealthDataOperation], frozenset[PermissionStatus]] = {
    (HealthPlatform.SAMSUNG_HEALTH, HealthDataOperation.READ): _ALL,
    (HealthPlatform.SAMSUNG_HEALTH, HealthDataOperation.WRITE): _ALL,
    (HealthPlatform.APPLE_HEALTH, HealthDataOperation.READ): _NO_DENIAL,
    (HealthPlatform.APPLE_HEALTH, HealthDataOperation.WRITE): _ALL,
    (HealthPlatform.HUAWEI_HEALTH, HealthDataOperation.READ): _ALL,
    (HealthPlatform.HUAWEI_HEALTH, HealthDataOperation.WRITE): _ALL,
    (HealthPlatform.HUAWEI_CLOUD, HealthDataOperation.READ): _ALL,
    (HealthPlatform.HUAWEI_CLOUD, HealthDataOperation.WRITE): _ALL,
}

_APPLE_WRITE_STATUS: dict[str, PermissionStatus] = {
    "sharingAuthorized": PermissionStatus.GRANTED,
    "sharingDenied": PermissionStatus.DENIED,
    "notDetermined": PermissionStatus.NOT_DETERMINED,
}


# ---------------------------------------------------------------------------
# Per-model mapping functions
# ---------------------------------------------------------------------------


def coerce(value: Any) -> PermissionStatus:
    """Map a raw provider answer onto the canonical vocabulary.

    ``True`` → granted, ``False`` → denied, canonical strings pass through,
    and anything else (None, unknown strings) → not_determined.
    """
    if isinstance(value, PermissionStatus):
        return value
    if isinstance(value, bool):
        return PermissionStatus.GRANTED if value else PermissionStatus.DENIED
    if isinstance(value, str):
        try:
            return PermissionStatus(value)
        except ValueError:
            pass
    return PermissionStatus.NOT_DETERMINED


def from_granted_set(
    required: Collection[Hashable], granted: Collection[Hashable] | None
) -> PermissionStatus:
    """Granted-set model: every required permission present → granted.

    Args:
        required: Native permissions the data type needs.
        granted:  Native permissions the backend reports as granted, or None
                  if the backend could not be asked.
    """
    if granted is None:
        return PermissionStatus.NOT_DETERMINED
    if required and all(p in granted for p in required):
        return PermissionStatus.GRANTED
    return PermissionStatus.DENIED


def from_write_authorization(native_status: str | None) -> PermissionStatus:
    """HealthKit share status → canonical status."""
    return _APPLE_WRITE_STATUS.get(native_status or "", PermissionStatus.NOT_DETERMINED)


def from_read_probe(has_data: bool | None) -> PermissionStatus:
    """Read-probe inference.  An empty or failed probe stays not_determined."""
    return PermissionStatus.GRANTED if has_data else PermissionStatus.NOT_DETERMINED


def from_consent(
    required_scope: str | None, consented_scopes: Collection[str] | None
) -> PermissionStatus:
    """Server consent model.

    Args:
        required_scope:   Scope the data type needs, or None if unmapped.
        consented_scopes: Scopes in the user's consent record, or None when
                          the consent listing could not be fetched.
    """
    if consented_scopes is None or required_scope is None:
        return PermissionStatus.NOT_DETERMINED
    if required_scope in consented_scopes:
        return PermissionStatus.GRANTED
    return PermissionStatus.DENIED


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------


class PermissionReconciler:
    """Normalizes provider permission answers for the facade."""

    def __init__(self, catalog: CapabilityCatalog) -> None:
        self._catalog = catalog

    @staticmethod
    def reachable_states(
        platform: HealthPlatform, operation: HealthDataOperation
    ) -> frozenset[PermissionStatus]:
        return REACHABLE_STATES.get((platform, operation), _ALL)

    def reconcile(
        self,
        platform: HealthPlatform,
        data_types: Sequence[HealthDataType],
        operation: HealthDataOperation,
        raw: Mapping[Any, Any] | None,
    ) -> dict[HealthDataType, PermissionStatus]:
        """Produce exactly one canonical status per requested type.

        Args:
            platform:   Platform the answer came from.
            data_types: Types the caller asked about.
            operation:  Read or write.
            raw:        Provider answer keyed by HealthDataType (or its
                        string key).  May be None or incomplete.

        Returns:
            Mapping with an entry for every requested type.  Types the
            catalog does not support for ``operation`` are denied; types the
            provider did not answer for are not_determined.
        """
        raw = raw or {}
        reachable = self.reachable_states(platform, operation)
        result: dict[HealthDataType, PermissionStatus] = {}

        for data_type in data_types:
            if not self._catalog.is_supported(platform, data_type, operation):
                result[data_type] = PermissionStatus.DENIED
                continue

            answer = raw.get(data_type, raw.get(data_type.value))
            status = coerce(answer)
            if status not in reachable:
                logger.warning(
                    "%s reported %s for %s/%s, which it cannot determine; "
                    "reporting not_determined",
                    platform.value, status.value, data_type.value, operation.value,
                )
                status = PermissionStatus.NOT_DETERMINED
            result[data_type] = status

        return result

    def unsupported_requests(
        self,
        platform: HealthPlatform,
        data_types: Sequence[HealthDataType],
        operations: Sequence[HealthDataOperation],
    ) -> list[tuple[HealthDataType, HealthDataOperation]]:
        """Return every (type, operation) pair the catalog forbids."""
        return [
            (data_type, operation)
            for data_type in data_types
            for operation in operations
            if not self._catalog.is_supported(platform, data_type, operation)
        ]
