"""
OpenAI-compatible backend adapter.

Works with any API that speaks the OpenAI Chat Completions protocol:
  - OpenAI      (base_url=https://api.openai.com/v1)
  - Google      (base_url=https://generativelanguage.googleapis.com/v1beta/openai/)

The SDK's own retry loop is disabled (max_retries=0): the retry engine owns
repetition, so each `generate` is exactly one HTTP request.
"""

from __future__ import annotations

import logging
import os

from openai import AsyncOpenAI

from shared.generation.base import BackendAdapter, translate_options
from shared.generation.models import (
    BackendKind,
    EffectiveParameters,
    GenerationResult,
    ModelInfo,
    Usage,
)

logger = logging.getLogger(__name__)

_BASE_URLS: dict[BackendKind, str] = {
    BackendKind.OPENAI: "https://api.openai.com/v1",
    BackendKind.GEMINI: "https://generativelanguage.googleapis.com/v1beta/openai/",
}

_API_KEY_ENV: dict[BackendKind, str] = {
    BackendKind.OPENAI: "OPENAI_API_KEY",
    BackendKind.GEMINI: "GEMINI_API_KEY",
}

_MODEL_ALIASES: dict[str, str] = {
    "palm": "gemini-2.0-flash",
    "gemini": "gemini-2.0-flash",
}

_SUPPORTED_OPTIONS: dict[BackendKind, dict[str, str]] = {
    BackendKind.OPENAI: {
        "top_p": "top_p",
        "frequency_penalty": "frequency_penalty",
        "presence_penalty": "presence_penalty",
        "stop": "stop",
        "seed": "seed",
    },
    BackendKind.GEMINI: {
        "top_p": "top_p",
        "stop": "stop",
        "seed": "seed",
    },
}

_MODEL_PREFIXES: dict[BackendKind, str] = {
    BackendKind.OPENAI: "gpt-",
    BackendKind.GEMINI: "gemini",
}

_FALLBACK_MODELS: dict[BackendKind, tuple[str, ...]] = {
    BackendKind.OPENAI: ("gpt-4", "gpt-3.5-turbo"),
    BackendKind.GEMINI: ("gemini-2.0-flash", "gemini-1.5-pro"),
}


class OpenAIAdapter(BackendAdapter):
    """
    Chat Completions adapter for OpenAI and Gemini's compatible endpoint.

    Reads from env when arguments are omitted:
      OPENAI_API_KEY / GEMINI_API_KEY  -- API key for the selected backend
      OPENAI_BASE_URL / GEMINI_BASE_URL -- override the base URL
    """

    def __init__(
        self,
        kind: BackendKind = BackendKind.OPENAI,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        if kind not in _BASE_URLS:
            raise ValueError(f"OpenAIAdapter cannot serve backend '{kind.value}'")
        self.kind = kind

        if client is not None:
            self._client = client
            return

        key_env = _API_KEY_ENV[kind]
        api_key = api_key or os.environ.get(key_env, "")
        if not api_key:
            raise ValueError(
                f"An API key is required for backend '{kind.value}'. "
                f"Set {key_env} in your environment."
            )

        base_url = (
            base_url
            or os.environ.get(f"{kind.value.upper()}_BASE_URL", "")
            or _BASE_URLS[kind]
        )
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
        )

    async def generate(self, params: EffectiveParameters) -> GenerationResult:
        model = _MODEL_ALIASES.get(params.model.lower(), params.model)
        options = translate_options(params.extra_options, _SUPPORTED_OPTIONS[self.kind])
        if self.kind is BackendKind.OPENAI:
            options["user"] = params.user_id

        response = await self._client.chat.completions.create(
            model=model,
            messages=self.build_messages(params),
            temperature=params.temperature,
            max_tokens=params.max_tokens,
            **options,
        )

        choice = response.choices[0]
        usage = response.usage

        return GenerationResult(
            text=choice.message.content or "",
            usage=Usage(
                prompt_tokens=usage.prompt_tokens if usage else 0,
                completion_tokens=usage.completion_tokens if usage else 0,
                total_tokens=usage.total_tokens if usage else 0,
            ),
            model_echo=response.model or model,
        )

    async def list_models(self) -> list[ModelInfo]:
        prefix = _MODEL_PREFIXES[self.kind]
        try:
            page = await self._client.models.list()
        except Exception as exc:
            logger.error(
                "Error fetching %s models, using built-in list: %s",
                self.kind.value,
                exc,
            )
            return self.catalogue(_FALLBACK_MODELS[self.kind])

        ids = sorted(
            model.id.removeprefix("models/")
            for model in page.data
            if prefix in model.id
        )
        return self.catalogue(ids)

    async def _ping(self) -> None:
        await self._client.models.list()

    async def aclose(self) -> None:
        await self._client.close()
