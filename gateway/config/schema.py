"""
Pydantic schema for the gateway YAML file.

Example gateway.yaml:

    default_backend: openai
    backends:
      openai:
        type: openai
        config: {default_model: gpt-4o-mini}
      local:
        type: ollama
        config: {default_model: llama3.2}
      multi:
        type: multi-provider
        config: {default_model: "anthropic:claude-3-haiku", rate_limit_ms: 250}
    cache:
      type: layered
      ttl: 3600
      memory: {max_entries: 500}
      disk: {path: .cache/gateway.sqlite, size_limit_mb: 64}
    default_parameters:
      temperature: 0.2
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class BackendType(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"
    MULTI_PROVIDER = "multi-provider"


class CacheType(str, Enum):
    NONE = "none"
    MEMORY = "memory"
    DISK = "disk"
    LAYERED = "layered"


class InstrumentationType(str, Enum):
    NONE = "none"
    LOGGING = "logging"


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------

class BackendEntry(BaseModel):
    """One named backend: adapter type plus its adapter config."""

    type: BackendType
    config: dict[str, Any] = Field(default_factory=dict)


class CacheSettings(BaseModel):
    type: CacheType = CacheType.NONE
    ttl: Optional[float] = Field(None, gt=0, description="Seconds applied on every store")
    memory: dict[str, Any] = Field(default_factory=dict)
    disk: dict[str, Any] = Field(default_factory=dict)
    promote_on_hit: bool = True


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------

class GatewayConfig(BaseModel):
    """Root configuration for one gateway instance."""

    backends: dict[str, BackendEntry]
    default_backend: Optional[str] = None
    cache: CacheSettings = Field(default_factory=CacheSettings)
    default_parameters: dict[str, Any] = Field(default_factory=dict)
    instrumentation: InstrumentationType = InstrumentationType.NONE

    @field_validator("backends")
    @classmethod
    def _at_least_one_backend(cls, v: dict[str, BackendEntry]) -> dict[str, BackendEntry]:
        if not v:
            raise ValueError("At least one backend must be configured")
        return v

    @model_validator(mode="after")
    def _default_backend_exists(self) -> "GatewayConfig":
        if self.default_backend is None:
            self.default_backend = next(iter(self.backends))
        elif self.default_backend not in self.backends:
            raise ValueError(
                f"default_backend '{self.default_backend}' is not one of "
                f"{sorted(self.backends)}"
            )
        return self
