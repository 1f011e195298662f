import pytest

from shared.generation.cache import InMemoryCacheBackend
from shared.generation.factory import EngineConfig, build_adapters, build_engine
from shared.generation.mock_provider import MockAdapter
from shared.generation.models import BackendKind, GenerationRequest
from shared.generation.openai_provider import OpenAIAdapter


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("LLM_MAX_RETRIES", "4")
    monkeypatch.setenv("LLM_RETRY_BASE_DELAY", "0.5")
    monkeypatch.setenv("DEFAULT_MODEL", "claude")
    monkeypatch.setenv("BATCH_MAX_ITEMS", "5")
    monkeypatch.setenv("TEXT_ENGINE_MOCK", "true")

    config = EngineConfig.from_env()

    assert config.mock_backends is True
    assert config.retry_policy.max_retries == 4
    assert config.retry_policy.base_delay_s == 0.5
    assert config.defaults.model == "claude"
    assert config.batch_max_items == 5


def test_mock_mode_serves_every_backend():
    registry = build_adapters(EngineConfig(mock_backends=True))

    assert len(registry) == len(BackendKind)
    assert all(isinstance(a, MockAdapter) for a in registry)


def test_only_configured_backends_are_registered():
    registry = build_adapters(EngineConfig(openai_api_key="sk-test"))

    assert len(registry) == 1
    assert isinstance(registry.get(BackendKind.OPENAI), OpenAIAdapter)
    assert registry.kind_for("claude") is BackendKind.OPENAI


@pytest.mark.asyncio
async def test_engine_end_to_end_in_mock_mode():
    engine = build_engine(
        EngineConfig(mock_backends=True, batch_max_items=3),
        cache_backend=InMemoryCacheBackend(),
    )

    outcome = await engine.dispatcher.generate(GenerationRequest(prompt="Hello", model="claude"))
    repeat = await engine.dispatcher.dispatch(GenerationRequest(prompt="Hello", model="claude"))
    report = await engine.batch.run_batch(["a", "b"])
    models = await engine.list_models()
    health = await engine.health_check()
    await engine.aclose()

    assert outcome.result.text.startswith("[MOCK]")
    assert repeat.cached is True
    assert engine.adapters.get(BackendKind.ANTHROPIC).call_count == 1
    assert report.success_count == 2
    assert {m.backend for m in models} == set(BackendKind)
    assert all(h.status == "healthy" for h in health)
    assert engine.batch.max_items == 3


@pytest.mark.asyncio
async def test_injected_cache_backend_is_used_even_when_empty():
    backend = InMemoryCacheBackend()
    engine = build_engine(EngineConfig(mock_backends=True), cache_backend=backend)

    await engine.dispatcher.dispatch(GenerationRequest(prompt="Hello"))
    await engine.aclose()

    assert len(backend) == 1
