"""
Anthropic Messages API adapter.

Talks to /v1/messages over httpx. Non-2xx responses surface as
httpx.HTTPStatusError via raise_for_status(); the error classifier reads the
status and the JSON error body from it.
"""

from __future__ import annotations

import logging
import os

import httpx

from shared.generation.base import BackendAdapter, translate_options
from shared.generation.models import (
    BackendKind,
    EffectiveParameters,
    GenerationResult,
    ModelInfo,
    Usage,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.anthropic.com"
API_VERSION = "2023-06-01"

_MODEL_ALIASES: dict[str, str] = {
    "claude": "claude-3-5-sonnet-latest",
    "claude-instant": "claude-3-5-haiku-latest",
}

_SUPPORTED_OPTIONS: dict[str, str] = {
    "top_p": "top_p",
    "top_k": "top_k",
    "stop": "stop_sequences",
}

_FALLBACK_MODELS = ("claude-3-5-sonnet-latest", "claude-3-5-haiku-latest")

# The Messages API accepts temperatures in [0, 1] only.
_MAX_TEMPERATURE = 1.0


class AnthropicAdapter(BackendAdapter):

    kind = BackendKind.ANTHROPIC

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if client is not None:
            self._client = client
            return

        api_key = api_key or os.environ.get("ANTHROPIC_API_KEY", "")
        if not api_key:
            raise ValueError(
                "An API key is required for backend 'anthropic'. "
                "Set ANTHROPIC_API_KEY in your environment."
            )
        self._client = httpx.AsyncClient(
            base_url=base_url or os.environ.get("ANTHROPIC_BASE_URL", "") or DEFAULT_BASE_URL,
            timeout=timeout,
            headers={
                "x-api-key": api_key,
                "anthropic-version": API_VERSION,
                "content-type": "application/json",
            },
        )

    async def generate(self, params: EffectiveParameters) -> GenerationResult:
        model = _MODEL_ALIASES.get(params.model.lower(), params.model)
        body = {
            "model": model,
            "max_tokens": params.max_tokens,
            "temperature": min(params.temperature, _MAX_TEMPERATURE),
            "messages": [{"role": "user", "content": params.prompt}],
            **translate_options(params.extra_options, _SUPPORTED_OPTIONS),
        }
        if params.system_prompt:
            body["system"] = params.system_prompt

        response = await self._client.post("/v1/messages", json=body)
        response.raise_for_status()
        data = response.json()

        text = "".join(
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        )
        usage = data.get("usage") or {}
        prompt_tokens = int(usage.get("input_tokens", 0))
        completion_tokens = int(usage.get("output_tokens", 0))

        return GenerationResult(
            text=text,
            usage=Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            model_echo=data.get("model", model),
        )

    async def list_models(self) -> list[ModelInfo]:
        try:
            response = await self._client.get("/v1/models")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Error fetching anthropic models, using built-in list: %s", exc)
            return self.catalogue(_FALLBACK_MODELS)
        return self.catalogue(m["id"] for m in response.json().get("data", []))

    async def _ping(self) -> None:
        response = await self._client.get("/v1/models")
        response.raise_for_status()

    async def aclose(self) -> None:
        await self._client.aclose()
