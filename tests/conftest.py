"""Shared fixtures for the checkout pipeline tests."""

import pytest

from storefront.services.storage import MemoryBackend, RedundantOrderStore, StorageService
from storefront.services.throttle import ThrottleGateway
from storefront.services.tracking import (
    FacebookPixelSink,
    GoogleAdsSink,
    GoogleAnalyticsSink,
    HookRegistry,
    TrackingOrchestrator,
)


class RecordingHook:
    """Call-style hook that remembers every call."""

    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    def __call__(self, *args):
        self.calls.append(args)
        if self.fail:
            raise RuntimeError("hook exploded")

    def events(self, command: str = "event"):
        return [call[1] for call in self.calls if call[0] == command]


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def make_gateway():
    """Gateway with no spacing, so tests are not slowed by the production interval."""
    def factory(**kwargs):
        kwargs.setdefault("min_interval", 0.0)
        kwargs.setdefault("max_concurrent", 5)
        kwargs.setdefault("drain_delay", 0.0)
        return ThrottleGateway(**kwargs)
    return factory


@pytest.fixture
def memory_backend():
    return MemoryBackend()


@pytest.fixture
def persistent_storage():
    return StorageService(MemoryBackend(), namespace="session-1")


@pytest.fixture
def session_storage():
    return StorageService(MemoryBackend(), namespace="session-1")


@pytest.fixture
def order_store(persistent_storage, session_storage):
    return RedundantOrderStore(persistent=persistent_storage, session=session_storage)


@pytest.fixture
def hooks():
    return {"gtag": RecordingHook(), "fbq": RecordingHook()}


@pytest.fixture
def registry(hooks):
    registry = HookRegistry()
    for name, hook in hooks.items():
        registry.install(name, hook)
    return registry


@pytest.fixture
def sinks(registry):
    return [
        GoogleAnalyticsSink(registry, tracking_id="G-TEST12345"),
        GoogleAdsSink(registry, tracking_id="AW-123456789", conversion_id="AW-123456789/abcDEF"),
        FacebookPixelSink(registry, tracking_id="1234567890"),
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def wall_clock():
    return FakeClock(start=1_700_000_000.0)


@pytest.fixture
def make_orchestrator(sinks, make_gateway, clock, wall_clock):
    def factory(**kwargs):
        kwargs.setdefault("sinks", sinks)
        kwargs.setdefault("gateway", make_gateway())
        kwargs.setdefault("purchase_store", StorageService(MemoryBackend(), namespace="tracking"))
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("wall_clock", wall_clock)
        kwargs.setdefault("page_view_batch_delay", 0.01)
        return TrackingOrchestrator(**kwargs)
    return factory


@pytest.fixture
def make_hook():
    return RecordingHook
