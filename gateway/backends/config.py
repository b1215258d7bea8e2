"""
Backend configuration models.

One pydantic model per adapter. Every field is optional in the raw dict;
API keys fall back to the provider's environment variable when omitted:

    OpenAI        OPENAI_API_KEY (AZURE_OPENAI_API_KEY with azure_endpoint)
    Anthropic     ANTHROPIC_API_KEY
    Google        GOOGLE_API_KEY, then GEMINI_API_KEY
    Ollama        no key; base URL from OLLAMA_BASE_URL

Invalid configuration raises ConfigurationError, never pydantic's error.
"""

from __future__ import annotations

import os
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from gateway.exceptions import ConfigurationError

ConfigT = TypeVar("ConfigT", bound=BaseModel)

DEFAULT_OLLAMA_URL = "http://localhost:11434"
GEMINI_OPENAI_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"

API_KEY_ENV_VARS: dict[str, tuple[str, ...]] = {
    "openai": ("OPENAI_API_KEY",),
    "azure": ("AZURE_OPENAI_API_KEY",),
    "anthropic": ("ANTHROPIC_API_KEY",),
    "google": ("GOOGLE_API_KEY", "GEMINI_API_KEY"),
}


# ---------------------------------------------------------------------------
# Per-adapter models
# ---------------------------------------------------------------------------

class BackendConfig(BaseModel):
    """Fields shared by every hosted-provider adapter."""

    model_config = ConfigDict(extra="forbid")

    api_key: Optional[str] = None
    base_url: Optional[str] = None
    default_model: str
    timeout: Optional[float] = Field(None, gt=0, description="Seconds")


class OpenAIBackendConfig(BackendConfig):
    default_model: str = "gpt-4o"
    organization: Optional[str] = None
    azure_endpoint: Optional[str] = None
    azure_api_version: Optional[str] = None
    azure_deployment: Optional[str] = None

    @property
    def is_azure(self) -> bool:
        return bool(self.azure_endpoint)


class AnthropicBackendConfig(BackendConfig):
    default_model: str = "claude-sonnet-4-5-20250929"
    max_tokens: int = Field(4096, gt=0)


class GoogleBackendConfig(BackendConfig):
    """Gemini through its OpenAI-compatible endpoint."""

    default_model: str = "gemini-2.0-flash"
    base_url: Optional[str] = GEMINI_OPENAI_URL


class OllamaBackendConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    base_url: Optional[str] = None
    default_model: str = "llama3.2"
    timeout: float = Field(120.0, gt=0, description="Seconds")
    keep_alive: Optional[str] = Field(None, description='e.g. "5m"')

    def resolved_base_url(self) -> str:
        url = self.base_url or os.environ.get("OLLAMA_BASE_URL") or DEFAULT_OLLAMA_URL
        return url.rstrip("/")


class MultiProviderBackendConfig(BaseModel):
    """
    Registry adapter config.

    Model ids are "<provider><separator><model>"; ids without the separator
    take the provider prefix of default_model. The per-provider blocks are
    handed to that provider's factory as-is.
    """

    model_config = ConfigDict(extra="forbid")

    default_model: str = "openai:gpt-4o"
    separator: str = Field(":", min_length=1)
    rate_limit_ms: int = Field(0, ge=0)
    openai: Optional[dict[str, Any]] = None
    anthropic: Optional[dict[str, Any]] = None
    google: Optional[dict[str, Any]] = None
    ollama: Optional[dict[str, Any]] = None

    def provider_configs(self) -> dict[str, dict[str, Any]]:
        blocks = {
            "openai": self.openai,
            "anthropic": self.anthropic,
            "google": self.google,
            "ollama": self.ollama,
        }
        return {name: block for name, block in blocks.items() if block is not None}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def load_backend_config(model: type[ConfigT], config: Any) -> ConfigT:
    """Coerce None / dict / model instance into `model`."""
    if isinstance(config, model):
        return config
    try:
        if isinstance(config, BaseModel):
            return model(**config.model_dump(exclude_unset=True))
        return model(**(config or {}))
    except PydanticValidationError as err:
        raise ConfigurationError(
            f"Invalid {model.__name__}: {err}",
            context={"config": model.__name__},
        ) from err


def resolve_api_key(explicit: Optional[str], provider: str) -> str:
    """Explicit key, else the provider's env vars in order. Raises if none is set."""
    if explicit:
        return explicit
    env_vars = API_KEY_ENV_VARS.get(provider, ())
    for name in env_vars:
        value = os.environ.get(name)
        if value:
            return value
    raise ConfigurationError(
        f"No API key configured for {provider}. "
        f"Pass api_key or set {' / '.join(env_vars) or 'an API key'}.",
        context={"provider": provider},
    )
