"""
Backend adapters — OpenAI, Anthropic, Ollama and the multi-provider registry.
"""

from gateway.backends.anthropic import AnthropicBackend, create_anthropic_backend
from gateway.backends.base import BaseBackend, ModelCall, ModelResult
from gateway.backends.config import (
    AnthropicBackendConfig,
    MultiProviderBackendConfig,
    OllamaBackendConfig,
    OpenAIBackendConfig,
)
from gateway.backends.multi import MultiProviderBackend, create_multi_provider_backend
from gateway.backends.ollama import OllamaBackend, create_ollama_backend
from gateway.backends.openai import OpenAIBackend, create_openai_backend
from gateway.backends.registry import ProviderRegistry, RequestQueue, default_provider_factories
from gateway.backends.streaming import collect_stream

BACKEND_TYPES = {
    "openai": OpenAIBackend,
    "anthropic": AnthropicBackend,
    "ollama": OllamaBackend,
    "multi-provider": MultiProviderBackend,
}

__all__ = [
    "AnthropicBackend",
    "AnthropicBackendConfig",
    "BACKEND_TYPES",
    "BaseBackend",
    "ModelCall",
    "ModelResult",
    "MultiProviderBackend",
    "MultiProviderBackendConfig",
    "OllamaBackend",
    "OllamaBackendConfig",
    "OpenAIBackend",
    "OpenAIBackendConfig",
    "ProviderRegistry",
    "RequestQueue",
    "collect_stream",
    "create_anthropic_backend",
    "create_multi_provider_backend",
    "create_ollama_backend",
    "create_openai_backend",
    "default_provider_factories",
]
