"""
Adapter for locally hosted model runtimes speaking the Ollama HTTP API.

  POST /api/chat  -- non-streaming chat completion
  GET  /api/tags  -- installed models
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

DEFAULT_BASE_URL = "http://localhost:11434"

_MODEL_ALIASES: dict[str, str] = {
    "local-llama": "llama3",
    "local-mistral": "mistral",
}

_SUPPORTED_OPTIONS: dict[str, str] = {
    "top_p": "top_p",
    "top_k": "top_k",
    "repeat_penalty": "repeat_penalty",
    "seed": "seed",
    "stop": "stop",
}


class LocalModelAdapter(BackendAdapter):

    kind = BackendKind.LOCAL

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url or os.environ.get("LOCAL_LLM_URL", "") or DEFAULT_BASE_URL,
            timeout=timeout,
        )

    async def generate(self, params: EffectiveParameters) -> GenerationResult:
        model = _MODEL_ALIASES.get(params.model.lower(), params.model)
        options = {
            "temperature": params.temperature,
            "num_predict": params.max_tokens,
            **translate_options(params.extra_options, _SUPPORTED_OPTIONS),
        }

        response = await self._client.post(
            "/api/chat",
            json={
                "model": model,
                "messages": self.build_messages(params),
                "stream": False,
                "options": options,
            },
        )
        response.raise_for_status()
        data = response.json()

        prompt_tokens = int(data.get("prompt_eval_count", 0))
        completion_tokens = int(data.get("eval_count", 0))
        return GenerationResult(
            text=(data.get("message") or {}).get("content", ""),
            usage=Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            model_echo=data.get("model", model),
        )

    async def list_models(self) -> list[ModelInfo]:
        try:
            response = await self._client.get("/api/tags")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Error fetching local models: %s", exc)
            return []
        return self.catalogue(m["name"] for m in response.json().get("models", []))

    async def _ping(self) -> None:
        response = await self._client.get("/api/tags")
        response.raise_for_status()

    async def aclose(self) -> None:
        await self._client.aclose()
