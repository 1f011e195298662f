"""Abstract base class that all backend adapters must implement."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from shared.generation.models import (
    BackendKind,
    EffectiveParameters,
    GenerationResult,
    HealthStatus,
    ModelInfo,
)

logger = logging.getLogger(__name__)

HEALTH_CHECK_TIMEOUT_S = 5.0

_MODEL_DESCRIPTIONS: dict[str, str] = {
    "gpt-4": "Most capable GPT model, suited to complex tasks that need advanced reasoning",
    "gpt-4-turbo": "Faster GPT-4 variant for advanced reasoning with lower latency",
    "gpt-3.5-turbo": "Fast, low-cost model suited to most everyday tasks",
    "gemini-2.0-flash": "Fast multimodal Gemini model",
    "gemini-1.5-pro": "Gemini model with a very long context window",
    "claude-3-5-sonnet-latest": "Balanced Claude model for complex writing and analysis",
    "claude-3-5-haiku-latest": "Fastest Claude model for lightweight tasks",
}

_MODEL_TOKEN_LIMITS: dict[str, int] = {
    "gpt-4": 8192,
    "gpt-4-32k": 32768,
    "gpt-4-turbo": 8192,
    "gpt-3.5-turbo": 4096,
    "gpt-3.5-turbo-16k": 16384,
    "gemini-2.0-flash": 8192,
    "gemini-1.5-pro": 8192,
    "claude-3-5-sonnet-latest": 8192,
    "claude-3-5-haiku-latest": 8192,
}

DEFAULT_MODEL_DESCRIPTION = "General purpose language model"
DEFAULT_MODEL_TOKEN_LIMIT = 4096


def describe_model(model_id: str, backend: BackendKind) -> ModelInfo:
    return ModelInfo(
        id=model_id,
        name=model_id,
        description=_MODEL_DESCRIPTIONS.get(model_id, DEFAULT_MODEL_DESCRIPTION),
        max_tokens=_MODEL_TOKEN_LIMITS.get(model_id, DEFAULT_MODEL_TOKEN_LIMIT),
        backend=backend,
    )


def translate_options(
    extra_options: Mapping[str, Any], supported: Mapping[str, str]
) -> dict[str, Any]:
    """
    Map recognized tuning knobs onto the backend's native parameter names.

    Unrecognized keys are dropped.
    """
    translated: dict[str, Any] = {}
    for key, value in extra_options.items():
        native = supported.get(key)
        if native is None:
            logger.debug("Ignoring unsupported option %r", key)
            continue
        if value is not None:
            translated[native] = value
    return translated


class BackendAdapter(ABC):
    """
    Contract for backend adapters.

    Every implementation MUST:
    - Make exactly one outbound call per `generate` (retries live elsewhere)
    - Let the backend's native exception propagate unchanged on failure
    - Return a fully populated GenerationResult including token counts
    """

    kind: BackendKind

    @abstractmethod
    async def generate(self, params: EffectiveParameters) -> GenerationResult:
        """Send the prompt and return the backend's response."""

    @abstractmethod
    async def list_models(self) -> list[ModelInfo]:
        """Models this backend can serve."""

    async def health_check(self) -> HealthStatus:
        try:
            await asyncio.wait_for(self._ping(), timeout=HEALTH_CHECK_TIMEOUT_S)
        except Exception as exc:
            logger.error("%s health check failed: %s", self.kind.value, exc)
            return HealthStatus(
                status="unhealthy",
                provider=self.kind.value,
                error=str(exc) or type(exc).__name__,
            )
        return HealthStatus(status="healthy", provider=self.kind.value)

    async def _ping(self) -> None:
        await self.list_models()

    async def aclose(self) -> None:
        return None

    @staticmethod
    def build_messages(params: EffectiveParameters) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if params.system_prompt:
            messages.append({"role": "system", "content": params.system_prompt})
        messages.append({"role": "user", "content": params.prompt})
        return messages

    def catalogue(self, model_ids: Iterable[str]) -> list[ModelInfo]:
        return [describe_model(model_id, self.kind) for model_id in model_ids]
