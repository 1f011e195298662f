"""
Deterministic mock backend for testing and development.

Always returns the same output for the same prompt hash,
making the entire pipeline reproducible without network calls.
"""

from __future__ import annotations

import hashlib

from shared.generation.base import BackendAdapter
from shared.generation.models import (
    BackendKind,
    EffectiveParameters,
    GenerationResult,
    ModelInfo,
    Usage,
)

_MOCK_PREFIX = "[MOCK] "


class MockAdapter(BackendAdapter):

    def __init__(self, kind: BackendKind = BackendKind.OPENAI) -> None:
        self.kind = kind
        self.call_count = 0

    async def generate(self, params: EffectiveParameters) -> GenerationResult:
        self.call_count += 1
        prompt_hash = hashlib.sha256(params.prompt.encode()).hexdigest()

        content = (
            f"{_MOCK_PREFIX}Deterministic {params.model} response for prompt hash "
            f"{prompt_hash[:12]}."
        )

        fake_prompt_tokens = len(params.prompt.split())
        fake_completion_tokens = len(content.split())

        return GenerationResult(
            text=content,
            usage=Usage(
                prompt_tokens=fake_prompt_tokens,
                completion_tokens=fake_completion_tokens,
                total_tokens=fake_prompt_tokens + fake_completion_tokens,
            ),
            model_echo=f"mock-{params.model}",
        )

    async def list_models(self) -> list[ModelInfo]:
        return self.catalogue([f"mock-{self.kind.value}"])
