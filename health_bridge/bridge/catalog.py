"""Load, validate, and hot-reload the platform capability catalog.

The catalog lives in ``capabilities.yaml`` alongside this module.  It is
loaded once and cached.  Call ``reload_catalog()`` to re-read from disk.

Usage::

    from health_bridge.bridge.catalog import get_catalog

    catalog = get_catalog()
    catalog.is_supported(HealthPlatform.APPLE_HEALTH, HealthDataType.STEPS,
                         HealthDataOperation.WRITE)          # True
    catalog.supported_data_types(HealthPlatform.HUAWEI_CLOUD) # [steps, glucose, blood_pressure]
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from health_bridge.bridge.base import (
    HealthDataOperation,
    HealthDataType,
    HealthPlatform,
    PlatformCapability,
)

logger = logging.getLogger("health_bridge.bridge.catalog")

# Path to the YAML file sitting next to this module
_CATALOG_PATH = Path(__file__).parent / "capabilities.yaml"

# Types that may never be written on any platform
_READ_ONLY_TYPES: frozenset[HealthDataType] = frozenset({HealthDataType.WORKOUT})


@dataclass
class CapabilityCatalog:
    """Validated, in-memory capability matrix.

    Attributes:
        version:  Catalog schema version string.
        entries:  platform → ordered list of PlatformCapability rows.
    """

    version: str
    entries: dict[HealthPlatform, list[PlatformCapability]]
    _index: dict[tuple[HealthPlatform, HealthDataType], PlatformCapability] = field(
        default_factory=dict, repr=False
    )

    def __post_init__(self) -> None:
        self._index = {
            (platform, cap.data_type): cap
            for platform, caps in self.entries.items()
            for cap in caps
        }

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def platforms(self) -> list[HealthPlatform]:
        return list(self.entries)

    def capabilities(self, platform: HealthPlatform) -> list[PlatformCapability]:
        return list(self.entries.get(platform, []))

    def capability(
        self, platform: HealthPlatform, data_type: HealthDataType
    ) -> PlatformCapability | None:
        return self._index.get((platform, data_type))

    def supported_data_types(
        self,
        platform: HealthPlatform,
        operation: HealthDataOperation | None = None,
    ) -> list[HealthDataType]:
        """Return the types a platform offers, in catalog order.

        Args:
            platform:  Platform to inspect.
            operation: Restrict to types supporting this operation.  None
                       means readable or writable.

        Returns:
            List of HealthDataType.
        """
        result = []
        for cap in self.entries.get(platform, []):
            if operation is None:
                if cap.can_read or cap.can_write:
                    result.append(cap.data_type)
            elif cap.supports(operation):
                result.append(cap.data_type)
        return result

    def is_supported(
        self,
        platform: HealthPlatform,
        data_type: HealthDataType,
        operation: HealthDataOperation,
    ) -> bool:
        cap = self._index.get((platform, data_type))
        return cap is not None and cap.supports(operation)


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class CatalogValidationError(ValueError):
    """Raised when capabilities.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        CatalogValidationError: If the YAML is malformed.
    """
    if not path.exists():
        raise FileNotFoundError(f"Capability catalog not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            return yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise CatalogValidationError(f"YAML parse error in {path}: {exc}") from exc


def _validate_and_build(raw: dict) -> CapabilityCatalog:
    """Validate the raw YAML dict and build a CapabilityCatalog.

    Collects every problem before raising so a broken catalog can be fixed
    in one pass.

    Raises:
        CatalogValidationError: With a list of every problem found.
    """
    errors: list[str] = []

    def _flag(cfg: dict, key: str, where: str) -> bool:
        value = cfg.get(key, False)
        if not isinstance(value, bool):
            errors.append(f"{where}.{key} must be true or false, got {value!r}")
            return False
        return value

    version = str(raw.get("version", "1.0"))
    platforms_raw = raw.get("platforms")
    if not isinstance(platforms_raw, dict) or not platforms_raw:
        errors.append("'platforms' section is missing or empty")
        platforms_raw = {}

    entries: dict[HealthPlatform, list[PlatformCapability]] = {}
    for platform_key, types_raw in platforms_raw.items():
        platform = HealthPlatform.from_key(platform_key)
        if platform is None:
            errors.append(f"Unknown platform '{platform_key}'")
            continue
        if not isinstance(types_raw, dict):
            errors.append(f"platforms.{platform_key} must be a mapping of data type → flags")
            continue

        caps: list[PlatformCapability] = []
        for type_key, cfg in types_raw.items():
            where = f"platforms.{platform_key}.{type_key}"
            data_type = HealthDataType.from_key(type_key)
            if data_type is None:
                errors.append(f"Unknown data type '{type_key}' in platforms.{platform_key}")
                continue
            if not isinstance(cfg, dict):
                errors.append(f"{where} must be a mapping")
                continue

            can_read = _flag(cfg, "read", where)
            can_write = _flag(cfg, "write", where)
            special = _flag(cfg, "special_permission", where)
            if can_write and data_type in _READ_ONLY_TYPES:
                errors.append(f"{where} is read-only and cannot be writable")

            notes: Any = cfg.get("notes")
            caps.append(
                PlatformCapability(
                    data_type=data_type,
                    can_read=can_read,
                    can_write=can_write,
                    requires_special_permission=special,
                    notes=str(notes) if notes is not None else None,
                )
            )
        entries[platform] = caps

    if errors:
        raise CatalogValidationError(
            f"capabilities.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return CapabilityCatalog(version=version, entries=entries)


def load_catalog(path: Path | None = None) -> CapabilityCatalog:
    """Load and validate the capability catalog from disk.

    Args:
        path: Override path to YAML. Uses the bundled capabilities.yaml by default.

    Returns:
        Validated CapabilityCatalog instance.
    """
    target = path or _CATALOG_PATH
    raw = _load_yaml(target)
    catalog = _validate_and_build(raw)
    logger.info("Loaded capability catalog v%s from %s", catalog.version, target)
    return catalog


# ---------------------------------------------------------------------------
# Global singleton with hot-reload support
# ---------------------------------------------------------------------------

_catalog: CapabilityCatalog | None = None
_catalog_lock = threading.Lock()


def get_catalog() -> CapabilityCatalog:
    """Return the global CapabilityCatalog singleton, loading it on first call.

    Thread-safe.  Use ``reload_catalog()`` to refresh after YAML changes.
    """
    global _catalog
    if _catalog is None:
        with _catalog_lock:
            if _catalog is None:  # double-checked locking
                _catalog = load_catalog()
    return _catalog


def reload_catalog(path: Path | None = None) -> CapabilityCatalog:
    """Reload the catalog from disk and replace the global singleton.

    If validation fails, the old catalog is retained and the error is
    re-raised.

    Args:
        path: Override path to YAML. Defaults to bundled capabilities.yaml.

    Returns:
        The newly loaded CapabilityCatalog.
    """
    global _catalog
    new_catalog = load_catalog(path)
    with _catalog_lock:
        _catalog = new_catalog
    logger.info("Capability catalog reloaded (v%s)", new_catalog.version)
    return new_catalog
