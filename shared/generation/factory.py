"""
Engine factory -- explicit construction and release of the generation core.

`build_engine` wires adapters, cache, retry engine, dispatcher and batch
coordinator from an EngineConfig and returns a TextEngine. Nothing is held
in module-level state; the caller owns the engine and must `aclose()` it.

Adapters are registered only for backends that are configured:

  openai     needs OPENAI_API_KEY (always registered; it is the default)
  gemini     needs GEMINI_API_KEY
  anthropic  needs ANTHROPIC_API_KEY
  local      needs LOCAL_LLM_URL (an Ollama-compatible runtime)

With TEXT_ENGINE_MOCK=1 every backend is served by the deterministic
MockAdapter and no keys are required.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass

from shared.generation.anthropic_provider import AnthropicAdapter
from shared.generation.base import BackendAdapter
from shared.generation.batch import DEFAULT_MAX_ITEMS, BatchCoordinator
from shared.generation.cache import CacheBackend, ResponseCache, create_cache_backend
from shared.generation.dispatcher import Dispatcher
from shared.generation.local_provider import LocalModelAdapter
from shared.generation.mock_provider import MockAdapter
from shared.generation.models import BackendKind, HealthStatus, ModelInfo
from shared.generation.openai_provider import OpenAIAdapter
from shared.generation.retry import RetryEngine, RetryPolicy
from shared.generation.routing import AdapterRegistry, GenerationDefaults
from shared.generation.stores import MetricsSink, PreferenceStore, ProjectStore

logger = logging.getLogger(__name__)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class EngineConfig:
    openai_api_key: str = ""
    openai_base_url: str = ""
    gemini_api_key: str = ""
    gemini_base_url: str = ""
    anthropic_api_key: str = ""
    anthropic_base_url: str = ""
    local_llm_url: str = ""
    redis_url: str = ""
    mock_backends: bool = False
    max_retries: int = 2
    retry_base_delay: float = 1.0
    request_timeout: float = 30.0
    default_model: str = "gpt-4"
    default_temperature: float = 0.7
    default_max_tokens: int = 1000
    batch_max_items: int = DEFAULT_MAX_ITEMS

    @classmethod
    def from_env(cls) -> EngineConfig:
        return cls(
            openai_api_key=os.environ.get("OPENAI_API_KEY", ""),
            openai_base_url=os.environ.get("OPENAI_BASE_URL", ""),
            gemini_api_key=os.environ.get("GEMINI_API_KEY", ""),
            gemini_base_url=os.environ.get("GEMINI_BASE_URL", ""),
            anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
            anthropic_base_url=os.environ.get("ANTHROPIC_BASE_URL", ""),
            local_llm_url=os.environ.get("LOCAL_LLM_URL", ""),
            redis_url=os.environ.get("REDIS_URL", ""),
            mock_backends=_env_flag("TEXT_ENGINE_MOCK"),
            max_retries=int(os.environ.get("LLM_MAX_RETRIES", "2")),
            retry_base_delay=float(os.environ.get("LLM_RETRY_BASE_DELAY", "1.0")),
            request_timeout=float(os.environ.get("LLM_REQUEST_TIMEOUT", "30")),
            default_model=os.environ.get("DEFAULT_MODEL", "gpt-4"),
            default_temperature=float(os.environ.get("DEFAULT_TEMPERATURE", "0.7")),
            default_max_tokens=int(os.environ.get("DEFAULT_MAX_TOKENS", "1000")),
            batch_max_items=int(os.environ.get("BATCH_MAX_ITEMS", str(DEFAULT_MAX_ITEMS))),
        )

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay_s=self.retry_base_delay,
            attempt_timeout_s=self.request_timeout,
        )

    @property
    def defaults(self) -> GenerationDefaults:
        return GenerationDefaults(
            model=self.default_model,
            temperature=self.default_temperature,
            max_tokens=self.default_max_tokens,
        )


@dataclass
class TextEngine:
    """The assembled generation core. Owns its adapters and cache."""

    adapters: AdapterRegistry
    cache: ResponseCache
    dispatcher: Dispatcher
    batch: BatchCoordinator

    async def list_models(self) -> list[ModelInfo]:
        catalogues = await asyncio.gather(*(a.list_models() for a in self.adapters))
        return [model for catalogue in catalogues for model in catalogue]

    async def health_check(self) -> list[HealthStatus]:
        return list(await asyncio.gather(*(a.health_check() for a in self.adapters)))

    async def aclose(self) -> None:
        await self.dispatcher.aclose()
        await self.adapters.aclose()
        await self.cache.close()
        logger.info("Text engine closed")


def build_adapters(config: EngineConfig) -> AdapterRegistry:
    if config.mock_backends:
        return AdapterRegistry({kind: MockAdapter(kind) for kind in BackendKind})

    timeout = config.request_timeout
    adapters: dict[BackendKind, BackendAdapter] = {
        BackendKind.OPENAI: OpenAIAdapter(
            BackendKind.OPENAI,
            api_key=config.openai_api_key or None,
            base_url=config.openai_base_url or None,
            timeout=timeout,
        ),
    }
    if config.gemini_api_key:
        adapters[BackendKind.GEMINI] = OpenAIAdapter(
            BackendKind.GEMINI,
            api_key=config.gemini_api_key,
            base_url=config.gemini_base_url or None,
            timeout=timeout,
        )
    if config.anthropic_api_key:
        adapters[BackendKind.ANTHROPIC] = AnthropicAdapter(
            api_key=config.anthropic_api_key,
            base_url=config.anthropic_base_url or None,
            timeout=timeout,
        )
    if config.local_llm_url:
        adapters[BackendKind.LOCAL] = LocalModelAdapter(
            base_url=config.local_llm_url, timeout=timeout
        )
    return AdapterRegistry(adapters)


def build_engine(
    config: EngineConfig | None = None,
    *,
    preference_store: PreferenceStore | None = None,
    project_store: ProjectStore | None = None,
    metrics_sink: MetricsSink | None = None,
    cache_backend: CacheBackend | None = None,
    adapters: AdapterRegistry | None = None,
    retry: RetryEngine | None = None,
) -> TextEngine:
    config = config or EngineConfig.from_env()

    if adapters is None:
        adapters = build_adapters(config)
    if cache_backend is None:
        cache_backend = create_cache_backend(config.redis_url or None)
    cache = ResponseCache(cache_backend)
    dispatcher = Dispatcher(
        adapters,
        retry if retry is not None else RetryEngine(config.retry_policy),
        cache,
        defaults=config.defaults,
        preference_store=preference_store,
        project_store=project_store,
        metrics_sink=metrics_sink,
    )
    batch = BatchCoordinator(
        dispatcher, max_items=config.batch_max_items, metrics_sink=metrics_sink
    )

    logger.info(
        "Text engine initialized (backends=%s, cache=%s, max_retries=%d)",
        ",".join(a.kind.value for a in adapters),
        "redis" if config.redis_url else "memory",
        config.max_retries,
    )
    return TextEngine(adapters=adapters, cache=cache, dispatcher=dispatcher, batch=batch)
