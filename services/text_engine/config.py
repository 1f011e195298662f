from __future__ import annotations

import os
from dataclasses import dataclass

from shared.generation.factory import EngineConfig


@dataclass(frozen=True)
class TextEngineServiceConfig:
    engine: EngineConfig
    memory_service_url: str
    memory_service_timeout: float
    log_level: str

    @classmethod
    def from_env(cls) -> TextEngineServiceConfig:
        return cls(
            engine=EngineConfig.from_env(),
            memory_service_url=os.environ.get("MEMORY_SERVICE_URL", ""),
            memory_service_timeout=float(os.environ.get("MEMORY_SERVICE_TIMEOUT", "10.0")),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )
