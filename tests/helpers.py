"""Fakes and builders shared by the generation tests."""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from shared.generation.base import BackendAdapter
from shared.generation.models import (
    BackendKind,
    EffectiveParameters,
    GenerationResult,
    MetricsRecord,
    ModelInfo,
    Usage,
)


def http_status_error(
    status: int, body: dict[str, Any] | None = None, url: str = "https://backend.test/v1/chat"
) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", url)
    response = httpx.Response(status, json=body or {}, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


def make_result(text: str = "Hi there", prompt_tokens: int = 5, completion_tokens: int = 3) -> GenerationResult:
    return GenerationResult(
        text=text,
        usage=Usage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
        model_echo="gpt-4-0613",
    )


class FakeAdapter(BackendAdapter):
    """
    Scripted adapter: each call pops the next outcome from `script`.

    An outcome is a GenerationResult to return, an exception to raise, or a
    callable taking the params. When the script runs dry the last outcome
    repeats.
    """

    def __init__(self, kind: BackendKind = BackendKind.OPENAI, script: list[Any] | None = None) -> None:
        self.kind = kind
        self.script = list(script or [make_result()])
        self.calls: list[EffectiveParameters] = []
        self.closed = False

    async def generate(self, params: EffectiveParameters) -> GenerationResult:
        self.calls.append(params)
        outcome = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if callable(outcome) and not isinstance(outcome, BaseException):
            outcome = outcome(params)
            if asyncio.iscoroutine(outcome):
                outcome = await outcome
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def list_models(self) -> list[ModelInfo]:
        return self.catalogue([f"fake-{self.kind.value}"])

    async def aclose(self) -> None:
        self.closed = True


class RecordingMetricsSink:

    def __init__(self) -> None:
        self.records: list[MetricsRecord] = []

    async def record(self, record: MetricsRecord) -> None:
        self.records.append(record)


