"""Shared fixtures for the generation test suite."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock

import pytest

from shared.generation.cache import InMemoryCacheBackend, ResponseCache
from shared.generation.dispatcher import Dispatcher
from shared.generation.retry import RetryEngine, RetryPolicy
from shared.generation.routing import AdapterRegistry
from tests.helpers import FakeAdapter, RecordingMetricsSink


@pytest.fixture
def fake_adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def no_sleep() -> AsyncMock:
    return AsyncMock(return_value=None)


@pytest.fixture
def retry_engine(no_sleep: AsyncMock) -> RetryEngine:
    return RetryEngine(RetryPolicy(), sleep=no_sleep, jitter=lambda: 0.0)


@pytest.fixture
def cache() -> ResponseCache:
    return ResponseCache(InMemoryCacheBackend())


@pytest.fixture
def metrics_sink() -> RecordingMetricsSink:
    return RecordingMetricsSink()


@pytest.fixture
def make_dispatcher(
    retry_engine: RetryEngine,
    cache: ResponseCache,
    metrics_sink: RecordingMetricsSink,
) -> Callable[..., Dispatcher]:
    def _make(*adapters: FakeAdapter, **kwargs: Any) -> Dispatcher:
        registry = AdapterRegistry({a.kind: a for a in adapters})
        kwargs.setdefault("metrics_sink", metrics_sink)
        return Dispatcher(registry, retry_engine, cache, **kwargs)

    return _make
