"""
Backend selection and parameter resolution.

Model identifiers map onto backend kinds by family prefix. Unknown model
names never fail: they fall through to the default backend, and so does a
recognized family whose adapter was not configured.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass

from shared.generation.base import BackendAdapter
from shared.generation.models import (
    BackendKind,
    EffectiveParameters,
    GenerationRequest,
    UserPreference,
)

logger = logging.getLogger(__name__)

DEFAULT_BACKEND = BackendKind.OPENAI

_MODEL_FAMILIES: tuple[tuple[str, BackendKind], ...] = (
    ("gpt-", BackendKind.OPENAI),
    ("palm", BackendKind.GEMINI),
    ("gemini", BackendKind.GEMINI),
    ("claude", BackendKind.ANTHROPIC),
    ("local-", BackendKind.LOCAL),
)


def select_backend(model: str) -> BackendKind:
    name = model.strip().lower()
    for prefix, kind in _MODEL_FAMILIES:
        if name.startswith(prefix):
            return kind
    return DEFAULT_BACKEND


@dataclass(frozen=True)
class GenerationDefaults:
    model: str = "gpt-4"
    temperature: float = 0.7
    max_tokens: int = 1000


def resolve_parameters(
    request: GenerationRequest,
    preference: UserPreference | None,
    defaults: GenerationDefaults,
    backend_for: Callable[[str], BackendKind] = select_backend,
) -> EffectiveParameters:
    """
    Apply precedence: explicit request value, then the stored preference
    (only when the request opted in), then the system default.
    """
    if request.model:
        model = request.model
    elif request.use_preferred_model and preference and preference.preferred_model:
        model = preference.preferred_model
    else:
        model = defaults.model

    if request.temperature is not None:
        temperature = request.temperature
    elif (
        request.use_preferred_settings
        and preference
        and preference.default_temperature is not None
    ):
        temperature = preference.default_temperature
    else:
        temperature = defaults.temperature

    if request.system_prompt is not None:
        system_prompt = request.system_prompt
    elif preference and preference.default_system_prompt:
        system_prompt = preference.default_system_prompt
    else:
        system_prompt = ""

    return EffectiveParameters(
        backend=backend_for(model),
        model=model,
        temperature=temperature,
        max_tokens=request.max_tokens or defaults.max_tokens,
        prompt=request.prompt,
        system_prompt=system_prompt,
        user_id=request.user_id,
        extra_options=dict(request.extra_options),
    )


class AdapterRegistry:
    """Holds one adapter per configured backend kind plus a mandatory default."""

    def __init__(
        self,
        adapters: Mapping[BackendKind, BackendAdapter],
        default: BackendKind = DEFAULT_BACKEND,
    ) -> None:
        if default not in adapters:
            raise ValueError(f"No adapter registered for default backend '{default.value}'")
        self._adapters = dict(adapters)
        self._default = default

    @property
    def default(self) -> BackendKind:
        return self._default

    def kind_for(self, model: str) -> BackendKind:
        kind = select_backend(model)
        if kind not in self._adapters:
            logger.warning(
                "No adapter configured for %s backend (model=%s); using %s",
                kind.value,
                model,
                self._default.value,
            )
            return self._default
        return kind

    def get(self, kind: BackendKind) -> BackendAdapter:
        return self._adapters.get(kind, self._adapters[self._default])

    def __iter__(self) -> Iterator[BackendAdapter]:
        return iter(self._adapters.values())

    def __len__(self) -> int:
        return len(self._adapters)

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            try:
                await adapter.aclose()
            except Exception:
                logger.exception("Error closing %s adapter", adapter.kind.value)
