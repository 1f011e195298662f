"""
Text Engine Service -- HTTP surface over the generation core.

Endpoints:
1. POST /generate   -- single generation (preferences, cache, retries)
2. POST /batch      -- up to BATCH_MAX_ITEMS prompts, per-item outcomes
3. POST /summarize  -- paragraph or bullet summary of a text
4. POST /edit       -- rewrite a text according to an instruction
5. GET  /models     -- models offered by every configured backend
6. GET  /health     -- service status plus per-backend health
7. GET  /metrics    -- prometheus exposition

GenerationErrors become JSON error bodies whose status is the error's
http_status_hint (400 / 429 / 503 / 500).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Annotated, Any, Literal

import httpx
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from shared.generation.errors import GenerationError
from shared.generation.factory import TextEngine, build_engine
from shared.generation.models import (
    ANONYMOUS_USER,
    BatchItem,
    BatchSharedParams,
    GenerationRequest,
)
from shared.generation.stores import (
    HttpPreferenceStore,
    HttpProjectStore,
    PrometheusMetricsSink,
)
from shared.generation.tasks import edit_request, summarize_request
from shared.logging.logger import setup_logging
from shared.observability.metrics import metrics_response
from services.text_engine.config import TextEngineServiceConfig

SERVICE_NAME = "text_engine"
engine: TextEngine | None = None
http_client: httpx.AsyncClient | None = None


@asynccontextmanager
async def lifespan(application: FastAPI):
    global engine, http_client
    cfg = TextEngineServiceConfig.from_env()
    logger = setup_logging(SERVICE_NAME, cfg.log_level)

    preference_store = project_store = None
    if cfg.memory_service_url:
        http_client = httpx.AsyncClient(
            base_url=cfg.memory_service_url, timeout=cfg.memory_service_timeout
        )
        preference_store = HttpPreferenceStore(http_client)
        project_store = HttpProjectStore(http_client)

    engine = build_engine(
        cfg.engine,
        preference_store=preference_store,
        project_store=project_store,
        metrics_sink=PrometheusMetricsSink(),
    )
    logger.info("Text Engine ready")
    yield

    logger.info("Shutting down")
    if engine:
        await engine.aclose()
        engine = None
    if http_client:
        await http_client.aclose()
        http_client = None


app = FastAPI(
    title="Text Engine Service",
    version="1.0.0",
    description="Routes text generation to interchangeable LLM backends",
    lifespan=lifespan,
)
logger = logging.getLogger(SERVICE_NAME)


class GenerateBody(BaseModel):
    prompt: str = Field(min_length=1)
    system_prompt: str | None = None
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    options: dict[str, Any] = Field(default_factory=dict)
    use_cache: bool = True
    use_preferred_model: bool = False
    use_preferred_settings: bool = False
    save_as_project: bool = False
    project_title: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class BatchBody(BaseModel):
    prompts: list[BatchItem | Annotated[str, Field(min_length=1)]] = Field(min_length=1)
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, ge=1)


class SummarizeBody(BaseModel):
    text: str = Field(min_length=1)
    max_length: int = Field(default=150, ge=1)
    format: Literal["paragraph", "bullets"] = "paragraph"
    model: str = "gpt-3.5-turbo"
    temperature: float = Field(default=0.5, ge=0.0, le=2.0)
    use_cache: bool = True


class EditBody(BaseModel):
    text: str = Field(min_length=1)
    instruction: str = Field(min_length=1)
    model: str = "gpt-4"
    temperature: float = Field(default=0.5, ge=0.0, le=2.0)
    use_cache: bool = True


def _engine() -> TextEngine:
    if engine is None:
        raise HTTPException(status_code=503, detail="Text engine not initialized")
    return engine


@app.exception_handler(GenerationError)
async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status_hint,
        content={"success": False, "message": exc.message, "errorKind": exc.kind.value},
    )


@app.get("/health")
async def health():
    statuses = await _engine().health_check()
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "backends": [s.model_dump() for s in statuses],
    }


@app.get("/metrics")
async def metrics():
    return metrics_response()


@app.get("/models")
async def models():
    return {"success": True, "models": [m.model_dump() for m in await _engine().list_models()]}


@app.post("/generate")
async def generate(body: GenerateBody, x_user_id: str = Header(default=ANONYMOUS_USER)):
    request = GenerationRequest(
        prompt=body.prompt,
        system_prompt=body.system_prompt,
        model=body.model,
        temperature=body.temperature,
        max_tokens=body.max_tokens,
        user_id=x_user_id,
        extra_options=body.options,
        use_cache=body.use_cache,
        use_preferred_model=body.use_preferred_model,
        use_preferred_settings=body.use_preferred_settings,
        save_as_project=body.save_as_project,
        project_title=body.project_title,
        project_metadata=body.metadata,
    )
    outcome = await _engine().dispatcher.generate(request)
    return {
        "success": True,
        "result": {
            "text": outcome.result.text,
            "model": outcome.model,
            "tokensUsed": outcome.result.usage.total_tokens,
            "processingTimeMs": outcome.processing_time_ms,
            "projectId": outcome.project_id,
            "cached": outcome.result.cached,
        },
    }


@app.post("/batch")
async def batch(body: BatchBody, x_user_id: str = Header(default=ANONYMOUS_USER)):
    report = await _engine().batch.run_batch(
        body.prompts,
        BatchSharedParams(
            model=body.model,
            temperature=body.temperature,
            max_tokens=body.max_tokens,
            user_id=x_user_id,
        ),
    )
    results = []
    for item in report.items:
        if item.result is not None:
            results.append({
                "success": True,
                "index": item.index,
                "text": item.result.text,
                "tokensUsed": item.result.usage.total_tokens,
            })
        else:
            results.append({
                "success": False,
                "index": item.index,
                "error": item.error,
                "errorKind": item.error_kind.value if item.error_kind else None,
            })
    return {
        "success": True,
        "results": results,
        "totalTime": report.total_time_ms,
        "totalSuccessful": report.success_count,
        "totalFailed": report.failure_count,
    }


@app.post("/summarize")
async def summarize(body: SummarizeBody, x_user_id: str = Header(default=ANONYMOUS_USER)):
    request = summarize_request(
        body.text,
        max_length=body.max_length,
        format=body.format,
        model=body.model,
        temperature=body.temperature,
        user_id=x_user_id,
        use_cache=body.use_cache,
    )
    result = await _engine().dispatcher.dispatch(request)
    return {"success": True, "result": {"text": result.text, "tokensUsed": result.usage.total_tokens}}


@app.post("/edit")
async def edit(body: EditBody, x_user_id: str = Header(default=ANONYMOUS_USER)):
    request = edit_request(
        body.text,
        body.instruction,
        model=body.model,
        temperature=body.temperature,
        user_id=x_user_id,
        use_cache=body.use_cache,
    )
    result = await _engine().dispatcher.dispatch(request)
    return {"success": True, "result": {"text": result.text, "tokensUsed": result.usage.total_tokens}}
