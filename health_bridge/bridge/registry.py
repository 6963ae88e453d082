"""Provider registry and factory.

The registry is the sole owner of provider instances: one per platform,
constructed on first use and kept until ``disconnect_all``.  Construction is
guarded so concurrent lookups never build the same platform twice.

Some backends need a foreground UI handle to show their consent dialog.  The
host injects it with ``set_ui_context`` whenever it changes, and the registry
forwards it to every cached provider.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Mapping

import httpx

from health_bridge.bridge.base import HealthPlatform, HealthProvider
from health_bridge.bridge.catalog import CapabilityCatalog
from health_bridge.bridge.providers import get_provider_class
from health_bridge.bridge.providers.huawei_cloud import HuaweiCloudProvider
from health_bridge.config import Settings

logger = logging.getLogger("health_bridge.bridge.registry")


class ProviderFactory:
    """Builds providers from the native bridges the host registered."""

    def __init__(
        self,
        bridges: Mapping[HealthPlatform, Any] | None,
        catalog: CapabilityCatalog,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the factory.

        Args:
            bridges:     Native bridge object per on-device platform.
            catalog:     Capability catalog handed to every provider.
            settings:    Application settings handed to every provider.
            http_client: Optional httpx client for the cloud provider.
        """
        self._bridges = dict(bridges or {})
        self._catalog = catalog
        self._settings = settings
        self._http_client = http_client

    def is_available(self, platform: HealthPlatform) -> bool:
        try:
            provider_cls = get_provider_class(platform)
        except KeyError:
            return False
        try:
            return provider_cls.is_available(self._bridges.get(platform), self._settings)
        except Exception:
            logger.exception("Availability check failed for %s", platform.value)
            return False

    def create(self, platform: HealthPlatform, ui_context: Any = None) -> HealthProvider | None:
        """Construct a provider, or return None if the platform is unavailable."""
        if not self.is_available(platform):
            logger.info("Platform %s is not available on this device", platform.value)
            return None

        provider_cls = get_provider_class(platform)
        provider: HealthProvider
        if provider_cls is HuaweiCloudProvider:
            provider = HuaweiCloudProvider(
                http_client=self._http_client,
                catalog=self._catalog,
                settings=self._settings,
            )
        else:
            provider = provider_cls(
                self._bridges[platform], catalog=self._catalog, settings=self._settings
            )
        provider.set_ui_context(ui_context)
        logger.info("Created %s provider", platform.value)
        return provider


class ProviderRegistry:
    """Construct-once cache of providers keyed by platform."""

    def __init__(self, factory: ProviderFactory) -> None:
        self._factory = factory
        self._providers: dict[HealthPlatform, HealthProvider] = {}
        self._lock = threading.Lock()
        self._ui_context: Any = None

    @property
    def factory(self) -> ProviderFactory:
        return self._factory

    def __contains__(self, platform: object) -> bool:
        return platform in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    def cached(self, platform: HealthPlatform) -> HealthProvider | None:
        return self._providers.get(platform)

    def get_or_create(self, platform: "HealthPlatform | str") -> HealthProvider | None:
        """Return the platform's provider, constructing it on first use.

        Args:
            platform: Platform or platform key.

        Returns:
            The cached provider, or None if the key is unknown or the
            platform is unavailable on this device.
        """
        resolved = HealthPlatform.from_key(platform)
        if resolved is None:
            return None

        provider = self._providers.get(resolved)
        if provider is None:
            with self._lock:
                provider = self._providers.get(resolved)
                if provider is None:  # double-checked locking
                    provider = self._factory.create(resolved, self._ui_context)
                    if provider is not None:
                        self._providers[resolved] = provider
        return provider

    def set_ui_context(self, ui_context: Any) -> None:
        """Store the UI handle and forward it to every cached provider."""
        with self._lock:
            self._ui_context = ui_context
            providers = list(self._providers.values())
        for provider in providers:
            provider.set_ui_context(ui_context)

    async def disconnect_all(self) -> list[tuple[HealthPlatform, Exception]]:
        """Clean up every cached provider and empty the cache.

        A provider whose cleanup fails does not stop the others.

        Returns:
            ``(platform, error)`` for every cleanup that failed.
        """
        with self._lock:
            providers = list(self._providers.items())
            self._providers.clear()

        failures: list[tuple[HealthPlatform, Exception]] = []
        for platform, provider in providers:
            try:
                await provider.cleanup()
            except Exception as exc:
                logger.exception("Cleanup failed for %s", platform.value)
                failures.append((platform, exc))
        logger.info(
            "Disconnected %d provider(s), %d cleanup failure(s)",
            len(providers), len(failures),
        )
        return failures
