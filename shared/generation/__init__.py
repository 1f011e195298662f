from shared.generation.base import BackendAdapter
from shared.generation.batch import BatchCoordinator
from shared.generation.cache import ResponseCache, cache_key, cache_ttl
from shared.generation.dispatcher import Dispatcher
from shared.generation.errors import ErrorKind, GenerationError, classify
from shared.generation.factory import EngineConfig, TextEngine, build_engine
from shared.generation.mock_provider import MockAdapter
from shared.generation.models import (
    BackendKind,
    BatchItem,
    BatchReport,
    BatchSharedParams,
    EffectiveParameters,
    GenerationRequest,
    GenerationResult,
    UserPreference,
)
from shared.generation.retry import RetryEngine, RetryPolicy
from shared.generation.routing import AdapterRegistry, select_backend

__all__ = [
    "AdapterRegistry",
    "BackendAdapter",
    "BackendKind",
    "BatchCoordinator",
    "BatchItem",
    "BatchReport",
    "BatchSharedParams",
    "Dispatcher",
    "EffectiveParameters",
    "EngineConfig",
    "ErrorKind",
    "GenerationError",
    "GenerationRequest",
    "GenerationResult",
    "MockAdapter",
    "ResponseCache",
    "RetryEngine",
    "RetryPolicy",
    "TextEngine",
    "UserPreference",
    "build_engine",
    "cache_key",
    "cache_ttl",
    "classify",
    "select_backend",
]
