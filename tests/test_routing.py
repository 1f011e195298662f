import pytest

from shared.generation.models import BackendKind, GenerationRequest, UserPreference
from shared.generation.routing import (
    AdapterRegistry,
    GenerationDefaults,
    resolve_parameters,
    select_backend,
)
from tests.helpers import FakeAdapter

DEFAULTS = GenerationDefaults(model="gpt-4", temperature=0.7, max_tokens=1000)


@pytest.mark.parametrize(
    "model, kind",
    [
        ("gpt-4", BackendKind.OPENAI),
        ("GPT-3.5-Turbo", BackendKind.OPENAI),
        ("palm", BackendKind.GEMINI),
        ("gemini", BackendKind.GEMINI),
        ("gemini-1.5-pro", BackendKind.GEMINI),
        ("claude", BackendKind.ANTHROPIC),
        ("claude-instant", BackendKind.ANTHROPIC),
        ("local-llama", BackendKind.LOCAL),
        ("local-mistral", BackendKind.LOCAL),
        ("something-new", BackendKind.OPENAI),
        ("", BackendKind.OPENAI),
    ],
)
def test_select_backend(model, kind):
    assert select_backend(model) is kind


def test_defaults_apply_when_nothing_given():
    params = resolve_parameters(GenerationRequest(prompt="Hello"), None, DEFAULTS)
    assert (params.model, params.temperature, params.max_tokens) == ("gpt-4", 0.7, 1000)
    assert params.system_prompt == ""
    assert params.backend is BackendKind.OPENAI


def test_explicit_values_beat_preferences():
    pref = UserPreference(preferred_model="claude", default_temperature=0.1)
    request = GenerationRequest(
        prompt="Hello",
        model="gpt-3.5-turbo",
        temperature=1.2,
        use_preferred_model=True,
        use_preferred_settings=True,
    )
    params = resolve_parameters(request, pref, DEFAULTS)
    assert params.model == "gpt-3.5-turbo"
    assert params.temperature == 1.2


def test_preferences_need_opt_in():
    pref = UserPreference(preferred_model="claude", default_temperature=0.1)

    plain = resolve_parameters(GenerationRequest(prompt="Hi"), pref, DEFAULTS)
    assert (plain.model, plain.temperature) == ("gpt-4", 0.7)

    opted = resolve_parameters(
        GenerationRequest(prompt="Hi", use_preferred_model=True, use_preferred_settings=True),
        pref,
        DEFAULTS,
    )
    assert (opted.model, opted.temperature) == ("claude", 0.1)
    assert opted.backend is BackendKind.ANTHROPIC


def test_zero_temperature_preference_is_honoured():
    pref = UserPreference(default_temperature=0.0)
    params = resolve_parameters(
        GenerationRequest(prompt="Hi", use_preferred_settings=True), pref, DEFAULTS
    )
    assert params.temperature == 0.0


def test_default_system_prompt_from_preference():
    pref = UserPreference(default_system_prompt="You are terse.")
    assert resolve_parameters(GenerationRequest(prompt="Hi"), pref, DEFAULTS).system_prompt == "You are terse."
    explicit = GenerationRequest(prompt="Hi", system_prompt="Be verbose.")
    assert resolve_parameters(explicit, pref, DEFAULTS).system_prompt == "Be verbose."


def test_registry_falls_back_to_default_for_unconfigured_backend():
    openai = FakeAdapter(BackendKind.OPENAI)
    registry = AdapterRegistry({BackendKind.OPENAI: openai})

    assert registry.kind_for("claude") is BackendKind.OPENAI
    assert registry.get(BackendKind.ANTHROPIC) is openai


def test_registry_requires_default():
    with pytest.raises(ValueError):
        AdapterRegistry({BackendKind.LOCAL: FakeAdapter(BackendKind.LOCAL)})
