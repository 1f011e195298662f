"""Data models for the generation layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from shared.generation.errors import ErrorKind

ANONYMOUS_USER = "anonymous"


class BackendKind(str, Enum):
    OPENAI = "openai"
    GEMINI = "gemini"
    ANTHROPIC = "anthropic"
    LOCAL = "local"


class GenerationRequest(BaseModel):
    """
    A caller's request for generated text.

    `model` and `temperature` are left as None when the caller did not set
    them, so preference and default resolution can tell "absent" apart from
    an explicit value.
    """

    model_config = ConfigDict(frozen=True)

    prompt: str = Field(min_length=1)
    system_prompt: str | None = None
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    user_id: str = ANONYMOUS_USER
    extra_options: dict[str, Any] = Field(default_factory=dict)
    use_cache: bool = True
    use_preferred_model: bool = False
    use_preferred_settings: bool = False
    save_as_project: bool = False
    project_title: str | None = None
    project_metadata: dict[str, Any] = Field(default_factory=dict)


class UserPreference(BaseModel):
    preferred_model: str | None = None
    default_temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    default_system_prompt: str | None = None


class EffectiveParameters(BaseModel):
    """A request after preference resolution; every field is concrete."""

    model_config = ConfigDict(frozen=True)

    backend: BackendKind
    model: str
    temperature: float
    max_tokens: int
    prompt: str
    system_prompt: str = ""
    user_id: str = ANONYMOUS_USER
    extra_options: dict[str, Any] = Field(default_factory=dict)


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class GenerationResult(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    text: str
    usage: Usage = Field(default_factory=Usage)
    model_echo: str = ""
    cached: bool = False


class GenerationOutcome(BaseModel):
    """What `Dispatcher.generate` hands back to the HTTP layer."""

    result: GenerationResult
    model: str
    processing_time_ms: int
    project_id: str | None = None


class ModelInfo(BaseModel):
    id: str
    name: str
    description: str
    max_tokens: int
    backend: BackendKind
    type: str = "text"


class HealthStatus(BaseModel):
    status: Literal["healthy", "unhealthy"]
    provider: str
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    error: str | None = None


class ProjectRecord(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    title: str
    content: str
    prompt: str
    system_prompt: str = ""
    model: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


class MetricsRecord(BaseModel):
    user_id: str
    operation: str
    model: str
    prompt_length: int = 0
    response_length: int = 0
    processing_time_ms: int = 0
    tokens_used: int = 0
    successful: bool = True
    error_kind: ErrorKind | None = None
    batch_size: int | None = None
    success_count: int | None = None
    failure_count: int | None = None


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------


class BatchItem(BaseModel):
    prompt: str = Field(min_length=1)
    system_prompt: str | None = None
    max_tokens: int | None = Field(default=None, ge=1)


class BatchSharedParams(BaseModel):
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, ge=1)
    user_id: str = ANONYMOUS_USER
    extra_options: dict[str, Any] = Field(default_factory=dict)


class BatchItemResult(BaseModel):
    index: int
    result: GenerationResult | None = None
    error_kind: ErrorKind | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None


class BatchReport(BaseModel):
    items: list[BatchItemResult]
    total_time_ms: int = 0

    @computed_field
    @property
    def success_count(self) -> int:
        return sum(1 for item in self.items if item.succeeded)

    @computed_field
    @property
    def failure_count(self) -> int:
        return len(self.items) - self.success_count
