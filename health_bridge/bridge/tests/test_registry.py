"""Tests for the provider registry and factory."""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import AsyncMock

import pytest

from health_bridge.bridge.base import HealthPlatform
from health_bridge.bridge.catalog import CapabilityCatalog
from health_bridge.bridge.providers import (
    PROVIDER_CLASSES,
    AppleHealthProvider,
    HuaweiCloudProvider,
    SamsungHealthProvider,
    get_provider_class,
)
from health_bridge.bridge.registry import ProviderFactory, ProviderRegistry
from health_bridge.bridge.tests.fakes import FakeHealthKit, FakeHuaweiKit, FakeSamsungStore
from health_bridge.config import Settings


@pytest.fixture
def factory(catalog: CapabilityCatalog, settings: Settings) -> ProviderFactory:
    return ProviderFactory(
        {
            HealthPlatform.SAMSUNG_HEALTH: FakeSamsungStore(),
            HealthPlatform.APPLE_HEALTH: FakeHealthKit(available=False),
            HealthPlatform.HUAWEI_HEALTH: FakeHuaweiKit(),
        },
        catalog=catalog,
        settings=settings,
    )


@pytest.fixture
def registry(factory: ProviderFactory) -> ProviderRegistry:
    return ProviderRegistry(factory)


class TestFactory:
    def test_availability(self, factory: ProviderFactory) -> None:
        assert factory.is_available(HealthPlatform.SAMSUNG_HEALTH)
        assert not factory.is_available(HealthPlatform.APPLE_HEALTH)
        assert factory.is_available(HealthPlatform.HUAWEI_HEALTH)
        # The cloud backend only needs a client id.
        assert factory.is_available(HealthPlatform.HUAWEI_CLOUD)

    def test_missing_bridge_is_unavailable(self, catalog: CapabilityCatalog, settings: Settings) -> None:
        factory = ProviderFactory(None, catalog=catalog, settings=settings)
        assert not factory.is_available(HealthPlatform.SAMSUNG_HEALTH)
        assert factory.create(HealthPlatform.SAMSUNG_HEALTH) is None

    def test_availability_errors_are_contained(self, catalog: CapabilityCatalog, settings: Settings) -> None:
        class BrokenStore(FakeSamsungStore):
            def installed_version(self) -> int | None:
                raise RuntimeError("package manager unavailable")

        factory = ProviderFactory(
            {HealthPlatform.SAMSUNG_HEALTH: BrokenStore()}, catalog=catalog, settings=settings
        )
        assert not factory.is_available(HealthPlatform.SAMSUNG_HEALTH)

    def test_create_builds_cloud_provider_without_bridge(self, factory: ProviderFactory) -> None:
        provider = factory.create(HealthPlatform.HUAWEI_CLOUD, ui_context="activity")
        assert isinstance(provider, HuaweiCloudProvider)
        assert provider.ui_context == "activity"

    def test_provider_class_lookup(self) -> None:
        assert get_provider_class(HealthPlatform.APPLE_HEALTH) is AppleHealthProvider
        with pytest.raises(KeyError):
            get_provider_class("fitbit")  # type: ignore[arg-type]

    def test_unregistered_platform_is_unavailable(
        self, factory: ProviderFactory, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delitem(PROVIDER_CLASSES, HealthPlatform.HUAWEI_HEALTH)
        assert not factory.is_available(HealthPlatform.HUAWEI_HEALTH)
        assert factory.create(HealthPlatform.HUAWEI_HEALTH) is None
        assert factory.is_available(HealthPlatform.SAMSUNG_HEALTH)


class TestRegistry:
    def test_constructs_once(self, registry: ProviderRegistry) -> None:
        first = registry.get_or_create(HealthPlatform.SAMSUNG_HEALTH)
        second = registry.get_or_create("samsung_health")
        assert isinstance(first, SamsungHealthProvider)
        assert first is second
        assert len(registry) == 1

    def test_unknown_key(self, registry: ProviderRegistry) -> None:
        assert registry.get_or_create("fitbit") is None
        assert len(registry) == 0

    def test_unavailable_platform_not_cached(self, registry: ProviderRegistry) -> None:
        assert registry.get_or_create(HealthPlatform.APPLE_HEALTH) is None
        assert HealthPlatform.APPLE_HEALTH not in registry

    def test_concurrent_lookups_construct_once(
        self, registry: ProviderRegistry, factory: ProviderFactory, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        calls: list[HealthPlatform] = []
        original = factory.create

        def slow_create(platform, ui_context=None):
            calls.append(platform)
            time.sleep(0.01)
            return original(platform, ui_context)

        monkeypatch.setattr(factory, "create", slow_create)
        with ThreadPoolExecutor(max_workers=8) as pool:
            providers = list(
                pool.map(lambda _: registry.get_or_create(HealthPlatform.HUAWEI_HEALTH), range(8))
            )
        assert calls == [HealthPlatform.HUAWEI_HEALTH]
        assert all(p is providers[0] for p in providers)

    def test_ui_context_forwarded(self, registry: ProviderRegistry) -> None:
        samsung = registry.get_or_create(HealthPlatform.SAMSUNG_HEALTH)
        registry.set_ui_context("main-activity")
        assert samsung is not None and samsung.ui_context == "main-activity"
        # Providers created later receive the current context too.
        huawei = registry.get_or_create(HealthPlatform.HUAWEI_HEALTH)
        assert huawei is not None and huawei.ui_context == "main-activity"

    @pytest.mark.asyncio
    async def test_disconnect_all_continues_past_failures(self, registry: ProviderRegistry) -> None:
        samsung = registry.get_or_create(HealthPlatform.SAMSUNG_HEALTH)
        huawei = registry.get_or_create(HealthPlatform.HUAWEI_HEALTH)
        assert samsung is not None and huawei is not None
        samsung.cleanup = AsyncMock(side_effect=RuntimeError("store gone"))  # type: ignore[method-assign]
        huawei.cleanup = AsyncMock()  # type: ignore[method-assign]

        failures = await registry.disconnect_all()

        assert [p for p, _ in failures] == [HealthPlatform.SAMSUNG_HEALTH]
        huawei.cleanup.assert_awaited_once()
        assert len(registry) == 0
        # Next lookup builds a fresh provider.
        assert registry.get_or_create(HealthPlatform.SAMSUNG_HEALTH) is not samsung
