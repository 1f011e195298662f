"""
Boundaries to the collaborators around the generation core.

- PreferenceStore: read-only user preferences
- ProjectStore: fire-and-forget persistence of generated text
- MetricsSink: one record per dispatch and one per batch

The core treats all three as optional. Failures are logged by the caller
and never fail a dispatch.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from shared.generation.models import MetricsRecord, ProjectRecord, UserPreference
from shared.observability.metrics import generation_latency, generation_requests, llm_tokens

logger = logging.getLogger(__name__)


class PreferenceStore(Protocol):
    async def find_preference(self, user_id: str) -> UserPreference | None: ...


class ProjectStore(Protocol):
    async def save(self, record: ProjectRecord) -> None: ...


class MetricsSink(Protocol):
    async def record(self, record: MetricsRecord) -> None: ...


class InMemoryPreferenceStore:

    def __init__(self, preferences: dict[str, UserPreference] | None = None) -> None:
        self._preferences = dict(preferences or {})

    async def find_preference(self, user_id: str) -> UserPreference | None:
        return self._preferences.get(user_id)

    def put(self, user_id: str, preference: UserPreference) -> None:
        self._preferences[user_id] = preference


class HttpPreferenceStore:
    """Reads preferences from the memory service (GET /preferences/{user_id})."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def find_preference(self, user_id: str) -> UserPreference | None:
        resp = await self._client.get(f"/preferences/{user_id}")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return UserPreference.model_validate(resp.json())


class InMemoryProjectStore:

    def __init__(self) -> None:
        self.records: list[ProjectRecord] = []

    async def save(self, record: ProjectRecord) -> None:
        self.records.append(record)


class HttpProjectStore:
    """Posts generated projects to the memory service (POST /projects)."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def save(self, record: ProjectRecord) -> None:
        resp = await self._client.post("/projects", json=record.model_dump(mode="json"))
        resp.raise_for_status()


class PrometheusMetricsSink:
    """Feeds MetricsRecords into the process-wide prometheus collectors."""

    async def record(self, record: MetricsRecord) -> None:
        outcome = "success" if record.successful else (
            record.error_kind.value if record.error_kind else "failure"
        )
        generation_requests.labels(
            operation=record.operation, model=record.model, outcome=outcome
        ).inc()
        generation_latency.labels(operation=record.operation).observe(
            record.processing_time_ms / 1000
        )
        if record.tokens_used:
            llm_tokens.labels(model=record.model).inc(record.tokens_used)


async def emit_metrics(sink: MetricsSink | None, record: MetricsRecord) -> None:
    """Send a record to the sink, logging instead of raising on failure."""
    if sink is None:
        return
    try:
        await sink.record(record)
    except Exception:
        logger.warning(
            "Metrics sink unavailable; dropped %s record", record.operation, exc_info=True
        )
