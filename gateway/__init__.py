"""
gateway — a provider-agnostic LLM gateway core.

Canonical request/response contracts, a memory/disk/layered response
cache, backend adapters for OpenAI, Anthropic, Ollama and a routed
multi-provider registry, and the pipeline that ties them together.
"""

from gateway.contracts import (
    FinishReason,
    GenerateRequest,
    GenerateResponse,
    PartialResponse,
    Usage,
    create_request,
    create_response,
)
from gateway.exceptions import (
    BackendError,
    CacheError,
    ConfigurationError,
    GatewayError,
    PluginError,
    StageError,
    ValidationError,
)

__version__ = "0.1.0"

__all__ = [
    "BackendError",
    "CacheError",
    "ConfigurationError",
    "FinishReason",
    "GatewayError",
    "GenerateRequest",
    "GenerateResponse",
    "PartialResponse",
    "PluginError",
    "StageError",
    "Usage",
    "ValidationError",
    "create_request",
    "create_response",
]
