"""
Retry engine for backend calls.

Wraps any zero-argument coroutine factory with:
- a per-attempt timeout (asyncio.wait_for)
- bounded retries for retryable ErrorKinds only
- exponential backoff with uniform jitter, capped at max_delay_s

The engine knows nothing about what it retries. Failures are classified by
`shared.generation.errors.classify` and the terminal failure is raised as a
GenerationError that carries the attempt history.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Any, TypeVar

from shared.generation.errors import ErrorKind, classify, to_generation_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 2
DEFAULT_BASE_DELAY_S = 1.0
DEFAULT_MAX_JITTER_S = 0.3
DEFAULT_MAX_DELAY_S = 30.0
DEFAULT_ATTEMPT_TIMEOUT_S = 30.0


class RetryState(str, Enum):
    ATTEMPTING = "attempting"
    BACKING_OFF = "backing_off"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_s: float = DEFAULT_BASE_DELAY_S
    max_jitter_s: float = DEFAULT_MAX_JITTER_S
    max_delay_s: float = DEFAULT_MAX_DELAY_S
    attempt_timeout_s: float | None = DEFAULT_ATTEMPT_TIMEOUT_S

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_s < 0 or self.max_jitter_s < 0:
            raise ValueError("delays must be >= 0")
        if self.max_delay_s <= 0:
            raise ValueError("max_delay_s must be > 0")
        if self.attempt_timeout_s is not None and self.attempt_timeout_s <= 0:
            raise ValueError("attempt_timeout_s must be > 0")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def base_delay(self, attempt: int) -> float:
        """Pre-jitter delay after a failed attempt (0-based)."""
        return min((2 ** attempt) * self.base_delay_s, self.max_delay_s)

    def backoff_delay(self, attempt: int, jitter: float) -> float:
        return min((2 ** attempt) * self.base_delay_s + jitter, self.max_delay_s)


@dataclass
class RetryAttempt:
    attempt_number: int
    started_at: float
    error_kind: ErrorKind | None = None
    duration_s: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error_kind is None


TransitionHook = Callable[[RetryState, RetryAttempt], None]


class RetryEngine:
    """Runs an operation under a RetryPolicy."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        jitter: Callable[[], float] | None = None,
        classifier: Callable[[BaseException], ErrorKind] = classify,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._jitter = jitter or (lambda: random.uniform(0.0, self.policy.max_jitter_s))
        self._classify = classifier

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        label: str = "operation",
        on_transition: TransitionHook | None = None,
    ) -> T:
        history: list[RetryAttempt] = []
        attempt = 0

        while True:
            record = RetryAttempt(attempt_number=attempt, started_at=time.time())
            history.append(record)
            _notify(on_transition, RetryState.ATTEMPTING, record)
            started = time.monotonic()
            try:
                result = await self._attempt(operation)
            except Exception as exc:
                record.duration_s = time.monotonic() - started
                kind = self._classify(exc)
                record.error_kind = kind

                if not kind.retryable or attempt >= self.policy.max_retries:
                    _notify(on_transition, RetryState.EXHAUSTED, record)
                    logger.warning(
                        "%s gave up after %d attempt(s): %s",
                        label,
                        attempt + 1,
                        kind.value,
                    )
                    raise to_generation_error(exc, kind, history) from exc

                delay = self.policy.backoff_delay(attempt, self._jitter())
                _notify(on_transition, RetryState.BACKING_OFF, record)
                logger.warning(
                    "%s failed with %s (attempt %d/%d), retrying in %.2fs: %s",
                    label,
                    kind.value,
                    attempt + 1,
                    self.policy.max_attempts,
                    delay,
                    exc,
                )
                await self._sleep(delay)
                attempt += 1
                continue

            record.duration_s = time.monotonic() - started
            _notify(on_transition, RetryState.SUCCEEDED, record)
            return result

    def wrap(
        self,
        func: Callable[..., Awaitable[T]],
        *,
        label: str | None = None,
        on_transition: TransitionHook | None = None,
    ) -> Callable[..., Awaitable[T]]:
        """Decorate an async callable so every call runs under this engine."""
        name = label or getattr(func, "__qualname__", repr(func))

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await self.run(
                lambda: func(*args, **kwargs),
                label=name,
                on_transition=on_transition,
            )

        return wrapper

    async def _attempt(self, operation: Callable[[], Awaitable[T]]) -> T:
        timeout = self.policy.attempt_timeout_s
        if timeout is None:
            return await operation()
        return await asyncio.wait_for(operation(), timeout=timeout)


def _notify(
    hook: TransitionHook | None, state: RetryState, record: RetryAttempt
) -> None:
    if hook is not None:
        hook(state, record)
