"""
Batch coordinator -- fans out independent generation requests concurrently.

Every item runs its own dispatch. The join waits for all of them and records
each outcome at the item's original index, so one failing item neither
cancels nor delays the others. The only whole-batch failure is the size
limit, checked before anything is dispatched.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence

from pydantic import ValidationError

from shared.generation.dispatcher import Dispatcher
from shared.generation.errors import (
    ErrorKind,
    GenerationError,
    classify,
    to_generation_error,
)
from shared.generation.models import (
    BatchItem,
    BatchItemResult,
    BatchReport,
    BatchSharedParams,
    GenerationRequest,
    GenerationResult,
    MetricsRecord,
)
from shared.generation.stores import MetricsSink, emit_metrics
from shared.observability.metrics import batch_items

logger = logging.getLogger(__name__)

OPERATION = "batch_text_generation"
DEFAULT_MAX_ITEMS = 10


class BatchCoordinator:

    def __init__(
        self,
        dispatcher: Dispatcher,
        *,
        max_items: int = DEFAULT_MAX_ITEMS,
        metrics_sink: MetricsSink | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self.max_items = max_items
        self._metrics = metrics_sink

    async def run_batch(
        self,
        items: Sequence[BatchItem | str],
        shared: BatchSharedParams | None = None,
    ) -> BatchReport:
        if len(items) > self.max_items:
            raise GenerationError(
                ErrorKind.INVALID_INPUT,
                f"Batch requests are limited to {self.max_items} prompts",
            )

        shared = shared or BatchSharedParams()

        started = time.monotonic()
        settled = await asyncio.gather(
            *(self._run_item(item, shared) for item in items),
            return_exceptions=True,
        )
        total_time_ms = int((time.monotonic() - started) * 1000)

        report = BatchReport(
            items=[_item_result(index, outcome) for index, outcome in enumerate(settled)],
            total_time_ms=total_time_ms,
        )
        batch_items.labels(outcome="success").inc(report.success_count)
        batch_items.labels(outcome="failure").inc(report.failure_count)

        logger.info(
            "Batch of %d finished: %d succeeded, %d failed in %dms",
            len(items),
            report.success_count,
            report.failure_count,
            total_time_ms,
        )
        await emit_metrics(self._metrics, MetricsRecord(
            user_id=shared.user_id,
            operation=OPERATION,
            model=shared.model or self._dispatcher.defaults.model,
            prompt_length=sum(len(_prompt_of(item)) for item in items),
            response_length=sum(
                len(i.result.text) for i in report.items if i.result is not None
            ),
            processing_time_ms=total_time_ms,
            tokens_used=sum(
                i.result.usage.total_tokens for i in report.items if i.result is not None
            ),
            successful=True,
            batch_size=len(items),
            success_count=report.success_count,
            failure_count=report.failure_count,
        ))
        return report

    async def _run_item(
        self, item: BatchItem | str, shared: BatchSharedParams
    ) -> GenerationResult:
        try:
            request = _to_request(item, shared)
        except ValidationError as exc:
            raise GenerationError(
                ErrorKind.INVALID_INPUT, f"Invalid batch item: {_first_error(exc)}"
            ) from exc
        return await self._dispatcher.dispatch(request)


def _prompt_of(item: BatchItem | str) -> str:
    return item if isinstance(item, str) else item.prompt


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "validation failed"
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "item"
    return f"{field}: {first.get('msg', 'invalid value')}"


def _to_request(item: BatchItem | str, shared: BatchSharedParams) -> GenerationRequest:
    if isinstance(item, str):
        item = BatchItem(prompt=item)
    return GenerationRequest(
        prompt=item.prompt,
        system_prompt=item.system_prompt,
        model=shared.model,
        temperature=shared.temperature,
        max_tokens=item.max_tokens or shared.max_tokens,
        user_id=shared.user_id,
        extra_options=shared.extra_options,
    )


def _item_result(
    index: int, outcome: GenerationResult | BaseException
) -> BatchItemResult:
    if isinstance(outcome, GenerationResult):
        return BatchItemResult(index=index, result=outcome)

    if not isinstance(outcome, GenerationError):
        logger.error(
            "Batch item %d raised outside the error taxonomy",
            index,
            exc_info=outcome,
        )
        outcome = to_generation_error(outcome, classify(outcome))
    return BatchItemResult(index=index, error_kind=outcome.kind, error=outcome.message)
