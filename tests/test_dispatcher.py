from unittest.mock import AsyncMock, Mock

import pytest

from shared.generation.cache import cache_key
from shared.generation.errors import ErrorKind, GenerationError
from shared.generation.models import BackendKind, GenerationRequest, UserPreference
from shared.generation.stores import InMemoryPreferenceStore, InMemoryProjectStore
from tests.helpers import FakeAdapter, http_status_error, make_result

HELLO = GenerationRequest(prompt="Hello", model="gpt-4", temperature=0.7)


@pytest.mark.asyncio
async def test_miss_calls_backend_and_writes_cache(make_dispatcher, cache, fake_adapter):
    dispatcher = make_dispatcher(fake_adapter)
    cache.set = AsyncMock(wraps=cache.set)

    result = await dispatcher.dispatch(HELLO)

    assert result.text == "Hi there"
    assert result.usage.total_tokens == 8
    assert result.cached is False
    assert len(fake_adapter.calls) == 1
    key, _value, ttl = cache.set.await_args.args
    assert key == cache_key(dispatcher.resolve(HELLO))
    assert ttl == 1800


@pytest.mark.asyncio
async def test_repeat_is_served_from_cache(make_dispatcher, fake_adapter):
    dispatcher = make_dispatcher(fake_adapter)

    await dispatcher.dispatch(HELLO)
    second = await dispatcher.dispatch(HELLO)

    assert second.text == "Hi there"
    assert second.cached is True
    assert len(fake_adapter.calls) == 1


@pytest.mark.asyncio
async def test_use_cache_false_bypasses_cache(make_dispatcher, fake_adapter):
    dispatcher = make_dispatcher(fake_adapter)
    request = HELLO.model_copy(update={"use_cache": False})

    await dispatcher.dispatch(request)
    await dispatcher.dispatch(request)

    assert len(fake_adapter.calls) == 2


@pytest.mark.asyncio
async def test_retries_then_succeeds(make_dispatcher, no_sleep):
    adapter = FakeAdapter(script=[http_status_error(429), http_status_error(429), make_result()])
    dispatcher = make_dispatcher(adapter)

    result = await dispatcher.dispatch(HELLO)

    assert result.text == "Hi there"
    assert len(adapter.calls) == 3
    assert no_sleep.await_count == 2


@pytest.mark.asyncio
async def test_failures_are_not_cached(make_dispatcher, cache, metrics_sink):
    adapter = FakeAdapter(script=[http_status_error(401)])
    dispatcher = make_dispatcher(adapter)

    with pytest.raises(GenerationError) as info:
        await dispatcher.dispatch(HELLO)

    assert info.value.kind is ErrorKind.UNAUTHORIZED
    assert len(adapter.calls) == 1
    assert await cache.get(cache_key(dispatcher.resolve(HELLO))) is None
    assert metrics_sink.records[-1].successful is False
    assert metrics_sink.records[-1].error_kind is ErrorKind.UNAUTHORIZED


@pytest.mark.asyncio
async def test_exhausted_kind_propagates_unchanged(make_dispatcher):
    adapter = FakeAdapter(script=[http_status_error(503)])
    dispatcher = make_dispatcher(adapter)

    with pytest.raises(GenerationError) as info:
        await dispatcher.dispatch(HELLO)

    assert info.value.kind is ErrorKind.SERVER_TRANSIENT
    assert info.value.http_status_hint == 503
    assert len(adapter.calls) == 3


@pytest.mark.asyncio
async def test_routes_by_model_family(make_dispatcher):
    openai = FakeAdapter(BackendKind.OPENAI)
    claude = FakeAdapter(BackendKind.ANTHROPIC, script=[make_result("from claude")])
    dispatcher = make_dispatcher(openai, claude)

    result = await dispatcher.dispatch(GenerationRequest(prompt="Hi", model="claude"))
    fallback = await dispatcher.dispatch(GenerationRequest(prompt="Hi", model="mystery-model"))

    assert result.text == "from claude"
    assert claude.calls[0].backend is BackendKind.ANTHROPIC
    assert fallback.text == "Hi there"
    assert openai.calls[0].model == "mystery-model"


@pytest.mark.asyncio
async def test_one_metrics_record_per_dispatch(make_dispatcher, fake_adapter, metrics_sink):
    dispatcher = make_dispatcher(fake_adapter)

    await dispatcher.dispatch(HELLO)
    await dispatcher.dispatch(HELLO)

    assert len(metrics_sink.records) == 2
    record = metrics_sink.records[0]
    assert record.operation == "text_generation"
    assert record.model == "gpt-4"
    assert record.prompt_length == len("Hello")
    assert record.response_length == len("Hi there")
    assert record.tokens_used == 8
    assert record.successful is True


@pytest.mark.asyncio
async def test_broken_metrics_sink_does_not_fail_dispatch(make_dispatcher, fake_adapter):
    sink = AsyncMock()
    sink.record.side_effect = RuntimeError("sink down")
    dispatcher = make_dispatcher(fake_adapter, metrics_sink=sink)

    result = await dispatcher.dispatch(HELLO)

    assert result.text == "Hi there"
    sink.record.assert_awaited_once()


@pytest.mark.asyncio
async def test_generate_applies_stored_preference(make_dispatcher):
    openai = FakeAdapter(BackendKind.OPENAI)
    claude = FakeAdapter(BackendKind.ANTHROPIC)
    store = InMemoryPreferenceStore({"alice": UserPreference(preferred_model="claude")})
    dispatcher = make_dispatcher(openai, claude, preference_store=store)

    outcome = await dispatcher.generate(
        GenerationRequest(prompt="Hi", user_id="alice", use_preferred_model=True)
    )

    assert outcome.model == "claude"
    assert len(claude.calls) == 1
    assert openai.calls == []


@pytest.mark.asyncio
async def test_preference_store_failure_degrades(make_dispatcher, fake_adapter):
    store = AsyncMock()
    store.find_preference.side_effect = ConnectionError("db down")
    dispatcher = make_dispatcher(fake_adapter, preference_store=store)

    outcome = await dispatcher.generate(
        GenerationRequest(prompt="Hi", user_id="alice", use_preferred_model=True)
    )

    assert outcome.model == "gpt-4"
    assert outcome.result.text == "Hi there"


@pytest.mark.asyncio
async def test_anonymous_users_skip_preference_lookup(make_dispatcher, fake_adapter):
    store = AsyncMock()
    dispatcher = make_dispatcher(fake_adapter, preference_store=store)

    await dispatcher.generate(GenerationRequest(prompt="Hi"))

    store.find_preference.assert_not_awaited()


@pytest.mark.asyncio
async def test_generate_saves_project(make_dispatcher):
    adapter = FakeAdapter(script=[make_result("Title line\nbody")])
    projects = InMemoryProjectStore()
    dispatcher = make_dispatcher(adapter, project_store=projects)

    outcome = await dispatcher.generate(
        GenerationRequest(
            prompt="Write",
            user_id="alice",
            save_as_project=True,
            project_metadata={"tag": "draft"},
        )
    )
    await dispatcher.aclose()

    assert outcome.project_id is not None
    [record] = projects.records
    assert record.id == outcome.project_id
    assert record.title == "Title line"
    assert record.content == "Title line\nbody"
    assert record.metadata["tag"] == "draft"
    assert record.metadata["tokens_used"] == 8


@pytest.mark.asyncio
async def test_project_store_failure_is_swallowed(make_dispatcher, fake_adapter):
    projects = AsyncMock()
    projects.save.side_effect = RuntimeError("store down")
    dispatcher = make_dispatcher(fake_adapter, project_store=projects)

    outcome = await dispatcher.generate(GenerationRequest(prompt="Hi", save_as_project=True))
    await dispatcher.aclose()

    assert outcome.result.text == "Hi there"
    projects.save.assert_awaited_once()


@pytest.mark.asyncio
async def test_generate_resolves_parameters_once(make_dispatcher, fake_adapter):
    store = InMemoryPreferenceStore({"alice": UserPreference(preferred_model="gpt-3.5-turbo")})
    dispatcher = make_dispatcher(fake_adapter, preference_store=store)
    dispatcher.resolve = Mock(wraps=dispatcher.resolve)

    outcome = await dispatcher.generate(
        GenerationRequest(prompt="Hi", user_id="alice", use_preferred_model=True)
    )

    assert dispatcher.resolve.call_count == 1
    assert outcome.model == fake_adapter.calls[0].model == "gpt-3.5-turbo"
