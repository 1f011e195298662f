"""
Uniform error model for backend failures.

Adapters let their native exceptions (openai SDK errors, httpx errors,
plain OSErrors) propagate untouched. `classify` maps any of them onto an
ErrorKind, and the retry engine consults only that kind when deciding
whether another attempt is allowed.
"""

from __future__ import annotations

import asyncio
import errno
import socket
from enum import Enum
from typing import TYPE_CHECKING, Any

import httpx
import openai

if TYPE_CHECKING:
    from shared.generation.retry import RetryAttempt


class ErrorKind(str, Enum):
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    SERVER_TRANSIENT = "server_transient"
    CONTEXT_LENGTH_EXCEEDED = "context_length_exceeded"
    INVALID_INPUT = "invalid_input"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    NETWORK_TRANSIENT = "network_transient"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in RETRYABLE_KINDS

    @property
    def is_invalid_input(self) -> bool:
        return self in (ErrorKind.CONTEXT_LENGTH_EXCEEDED, ErrorKind.INVALID_INPUT)

    @property
    def http_status_hint(self) -> int:
        if self.is_invalid_input:
            return 400
        if self is ErrorKind.RATE_LIMITED:
            return 429
        if self is ErrorKind.UNKNOWN:
            return 500
        return 503


RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.TIMEOUT,
        ErrorKind.RATE_LIMITED,
        ErrorKind.SERVER_TRANSIENT,
        ErrorKind.NETWORK_TRANSIENT,
    }
)

_STATUS_KINDS: dict[int, ErrorKind] = {
    401: ErrorKind.UNAUTHORIZED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    429: ErrorKind.RATE_LIMITED,
    500: ErrorKind.SERVER_TRANSIENT,
    502: ErrorKind.SERVER_TRANSIENT,
    503: ErrorKind.SERVER_TRANSIENT,
    504: ErrorKind.SERVER_TRANSIENT,
}

_CONTEXT_LENGTH_MARKERS = (
    "context_length_exceeded",
    "maximum context length",
    "prompt is too long",
)

_TIMEOUT_TYPES: tuple[type[BaseException], ...] = (
    TimeoutError,
    asyncio.TimeoutError,
    httpx.TimeoutException,
    openai.APITimeoutError,
)

_NETWORK_TYPES: tuple[type[BaseException], ...] = (
    ConnectionError,
    socket.gaierror,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    openai.APIConnectionError,
)

_NETWORK_ERRNOS = frozenset({errno.ECONNRESET, errno.ECONNREFUSED})

_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.TIMEOUT: "Request timed out",
    ErrorKind.RATE_LIMITED: "Rate limit exceeded",
    ErrorKind.SERVER_TRANSIENT: "The backend is temporarily unavailable",
    ErrorKind.CONTEXT_LENGTH_EXCEEDED: "Prompt exceeds maximum context length for the model",
    ErrorKind.UNAUTHORIZED: "Invalid API key",
    ErrorKind.FORBIDDEN: "Permission denied",
    ErrorKind.NOT_FOUND: "Requested resource not found",
    ErrorKind.NETWORK_TRANSIENT: "Could not reach the backend",
    ErrorKind.UNKNOWN: "Unknown error occurred",
}


class GenerationError(Exception):
    """A failure surfaced by the generation layer, tagged with its ErrorKind."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str | None = None,
        *,
        attempts: list[RetryAttempt] | None = None,
    ) -> None:
        self.kind = kind
        self.message = message or _MESSAGES.get(kind, kind.value)
        self.attempts = list(attempts or [])
        super().__init__(self.message)

    @property
    def http_status_hint(self) -> int:
        return self.kind.http_status_hint

    def to_dict(self) -> dict[str, Any]:
        return {
            "errorKind": self.kind.value,
            "message": self.message,
            "httpStatusHint": self.http_status_hint,
        }


def status_code_of(exc: BaseException) -> int | None:
    """Return the HTTP status carried by a backend exception, if any."""
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def _error_details(exc: BaseException) -> str:
    """Collect the error code, type and message into one lowercase string."""
    parts: list[str] = [str(exc)]
    for attr in ("code", "type"):
        value = getattr(exc, attr, None)
        if isinstance(value, str):
            parts.append(value)

    response = getattr(exc, "response", None)
    if isinstance(response, httpx.Response):
        try:
            data = response.json()
        except ValueError:
            data = None
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict):
            parts.extend(str(v) for v in error.values() if isinstance(v, str))
        elif isinstance(error, str):
            parts.append(error)

    return " ".join(parts).lower()


def _is_timeout(exc: BaseException) -> bool:
    if isinstance(exc, _TIMEOUT_TYPES):
        return True
    if isinstance(exc, OSError) and exc.errno == errno.ETIMEDOUT:
        return True
    return "timed out" in str(exc).lower()


def _is_network_failure(exc: BaseException) -> bool:
    if isinstance(exc, _NETWORK_TYPES):
        return True
    return isinstance(exc, OSError) and exc.errno in _NETWORK_ERRNOS


def classify(exc: BaseException) -> ErrorKind:
    """Map a raw backend failure onto the ErrorKind taxonomy."""
    if isinstance(exc, GenerationError):
        return exc.kind
    if _is_timeout(exc):
        return ErrorKind.TIMEOUT

    status = status_code_of(exc)
    if status is not None:
        if status == 400:
            details = _error_details(exc)
            if any(marker in details for marker in _CONTEXT_LENGTH_MARKERS):
                return ErrorKind.CONTEXT_LENGTH_EXCEEDED
            return ErrorKind.INVALID_INPUT
        return _STATUS_KINDS.get(status, ErrorKind.UNKNOWN)

    if _is_network_failure(exc):
        return ErrorKind.NETWORK_TRANSIENT
    return ErrorKind.UNKNOWN


def to_generation_error(
    exc: BaseException,
    kind: ErrorKind | None = None,
    attempts: list[RetryAttempt] | None = None,
) -> GenerationError:
    """Wrap a raw failure in a GenerationError carrying its mapped kind."""
    if isinstance(exc, GenerationError):
        if attempts:
            exc.attempts = list(attempts)
        return exc
    kind = kind or classify(exc)
    if kind in (ErrorKind.SERVER_TRANSIENT, ErrorKind.INVALID_INPUT):
        status = status_code_of(exc)
        message = f"{_MESSAGES.get(kind, 'Backend request rejected')} (status {status}): {exc}"
    else:
        message = None
    return GenerationError(kind, message, attempts=attempts)
