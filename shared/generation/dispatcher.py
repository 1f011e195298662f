"""
Dispatcher -- one end-to-end resolution of a generation request.

  request -> effective parameters -> cache lookup
          -> retry engine(adapter.generate) -> cache write -> result

Cache, preference store, project store and metrics sink are all optional
collaborators. Their failures are logged, never raised. A failure of the
backend itself surfaces as a GenerationError with its final ErrorKind.
"""

from __future__ import annotations

import asyncio
import logging
import time

from shared.generation.cache import ResponseCache, cache_key
from shared.generation.errors import GenerationError
from shared.generation.models import (
    ANONYMOUS_USER,
    EffectiveParameters,
    GenerationOutcome,
    GenerationRequest,
    GenerationResult,
    MetricsRecord,
    ProjectRecord,
    UserPreference,
)
from shared.generation.retry import RetryAttempt, RetryEngine, RetryState
from shared.generation.routing import AdapterRegistry, GenerationDefaults, resolve_parameters
from shared.generation.stores import MetricsSink, PreferenceStore, ProjectStore, emit_metrics
from shared.observability.metrics import retry_attempts

logger = logging.getLogger(__name__)

OPERATION = "text_generation"
_PROJECT_TITLE_LENGTH = 50


class Dispatcher:

    def __init__(
        self,
        adapters: AdapterRegistry,
        retry: RetryEngine,
        cache: ResponseCache | None = None,
        *,
        defaults: GenerationDefaults | None = None,
        preference_store: PreferenceStore | None = None,
        project_store: ProjectStore | None = None,
        metrics_sink: MetricsSink | None = None,
    ) -> None:
        self._adapters = adapters
        self._retry = retry
        self._cache = cache
        self.defaults = defaults or GenerationDefaults()
        self._preferences = preference_store
        self._projects = project_store
        self._metrics = metrics_sink
        self._pending: set[asyncio.Task] = set()

    def resolve(
        self, request: GenerationRequest, preference: UserPreference | None = None
    ) -> EffectiveParameters:
        return resolve_parameters(
            request, preference, self.defaults, backend_for=self._adapters.kind_for
        )

    async def dispatch(
        self,
        request: GenerationRequest,
        preference: UserPreference | None = None,
    ) -> GenerationResult:
        return await self.dispatch_params(
            self.resolve(request, preference), use_cache=request.use_cache
        )

    async def dispatch_params(
        self, params: EffectiveParameters, *, use_cache: bool = True
    ) -> GenerationResult:
        """Dispatch already-resolved parameters, with metrics and logging."""
        started = time.monotonic()
        try:
            result = await self._dispatch(params, use_cache=use_cache)
        except GenerationError as exc:
            duration_ms = _elapsed_ms(started)
            logger.error(
                "Text generation failed: %s",
                exc.message,
                exc_info=True,
                extra={"_extra": {
                    "model": params.model,
                    "user_id": params.user_id,
                    "error_kind": exc.kind.value,
                    "attempts": len(exc.attempts),
                    "prompt_length": len(params.prompt),
                }},
            )
            await emit_metrics(self._metrics, MetricsRecord(
                user_id=params.user_id,
                operation=OPERATION,
                model=params.model,
                prompt_length=len(params.prompt),
                processing_time_ms=duration_ms,
                successful=False,
                error_kind=exc.kind,
            ))
            raise

        duration_ms = _elapsed_ms(started)
        logger.info(
            "Text generation successful - model: %s, tokens: %d, time: %dms%s",
            params.model,
            result.usage.total_tokens,
            duration_ms,
            " (cached)" if result.cached else "",
        )
        await emit_metrics(self._metrics, MetricsRecord(
            user_id=params.user_id,
            operation=OPERATION,
            model=params.model,
            prompt_length=len(params.prompt),
            response_length=len(result.text),
            processing_time_ms=duration_ms,
            tokens_used=result.usage.total_tokens,
            successful=True,
        ))
        return result

    async def _dispatch(
        self, params: EffectiveParameters, use_cache: bool
    ) -> GenerationResult:
        cache = self._cache if use_cache else None
        key = cache_key(params)

        if cache is not None:
            cached = await cache.lookup(key)
            if cached is not None:
                return cached

        adapter = self._adapters.get(params.backend)

        def _on_transition(state: RetryState, attempt: RetryAttempt) -> None:
            if state is RetryState.BACKING_OFF and attempt.error_kind is not None:
                retry_attempts.labels(
                    backend=adapter.kind.value, error_kind=attempt.error_kind.value
                ).inc()

        generate = self._retry.wrap(
            adapter.generate,
            label=f"{adapter.kind.value} generate",
            on_transition=_on_transition,
        )
        result = await generate(params)

        if cache is not None:
            await cache.store(key, result)
        return result

    async def find_preference(self, user_id: str) -> UserPreference | None:
        if self._preferences is None or user_id == ANONYMOUS_USER:
            return None
        try:
            return await self._preferences.find_preference(user_id)
        except Exception:
            logger.warning(
                "Preference store unavailable for user %s; using defaults",
                user_id,
                exc_info=True,
            )
            return None

    async def generate(self, request: GenerationRequest) -> GenerationOutcome:
        """Preference lookup, dispatch, and optional project persistence."""
        preference = await self.find_preference(request.user_id)
        params = self.resolve(request, preference)
        started = time.monotonic()
        result = await self.dispatch_params(params, use_cache=request.use_cache)
        duration_ms = _elapsed_ms(started)

        project_id = None
        if request.save_as_project:
            record = _project_record(request, params, result)
            project_id = record.id
            self._schedule_project_save(record)

        return GenerationOutcome(
            result=result,
            model=params.model,
            processing_time_ms=duration_ms,
            project_id=project_id,
        )

    def _schedule_project_save(self, record: ProjectRecord) -> None:
        if self._projects is None:
            logger.warning("No project store configured; project %s not saved", record.id[:8])
            return
        task = asyncio.create_task(self._save_project(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _save_project(self, record: ProjectRecord) -> None:
        try:
            await self._projects.save(record)
        except Exception:
            logger.exception("Failed to save project %s", record.id[:8])

    async def aclose(self) -> None:
        """Wait for outstanding fire-and-forget writes."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)


def _project_record(
    request: GenerationRequest,
    params: EffectiveParameters,
    result: GenerationResult,
) -> ProjectRecord:
    title = request.project_title or result.text.split("\n", 1)[0][:_PROJECT_TITLE_LENGTH]
    return ProjectRecord(
        user_id=params.user_id,
        title=title,
        content=result.text,
        prompt=params.prompt,
        system_prompt=params.system_prompt,
        model=params.model,
        metadata={
            "temperature": params.temperature,
            "max_tokens": params.max_tokens,
            "tokens_used": result.usage.total_tokens,
            **request.project_metadata,
        },
    )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
