"""Platform providers for the Health Bridge.

Each provider implements the HealthProvider ABC and handles:
- Connecting to its backend (native bridge or cloud API)
- Translating the backend's permission model into PermissionStatus
- Reading detail records and daily statistics as canonical HealthData
- Writing records where the capability catalog allows it

Available providers:
    SamsungHealthProvider — Samsung Health data store (granted-set permissions)
    AppleHealthProvider   — Apple HealthKit (write status + read probe)
    HuaweiHealthProvider  — Huawei Health Kit on-device (read-only)
    HuaweiCloudProvider   — Huawei Health Kit cloud API (OAuth consent)
"""

from health_bridge.bridge.base import HealthPlatform, HealthProvider
from health_bridge.bridge.providers.apple_health import AppleHealthProvider
from health_bridge.bridge.providers.huawei_cloud import HuaweiCloudProvider
from health_bridge.bridge.providers.huawei_health import HuaweiHealthProvider
from health_bridge.bridge.providers.samsung_health import SamsungHealthProvider

__all__ = [
    "SamsungHealthProvider",
    "AppleHealthProvider",
    "HuaweiHealthProvider",
    "HuaweiCloudProvider",
]

# Registry: platform → provider class
PROVIDER_CLASSES: dict[HealthPlatform, type[HealthProvider]] = {
    HealthPlatform.SAMSUNG_HEALTH: SamsungHealthProvider,
    HealthPlatform.APPLE_HEALTH: AppleHealthProvider,
    HealthPlatform.HUAWEI_HEALTH: HuaweiHealthProvider,
    HealthPlatform.HUAWEI_CLOUD: HuaweiCloudProvider,
}


def get_provider_class(platform: HealthPlatform) -> type[HealthProvider]:
    """Return the provider class for a platform.

    Raises:
        KeyError: If no provider is registered for the platform.
    """
    if platform not in PROVIDER_CLASSES:
        raise KeyError(
            f"No provider registered for platform '{platform}'. "
            f"Available: {[p.value for p in PROVIDER_CLASSES]}"
        )
    return PROVIDER_CLASSES[platform]
