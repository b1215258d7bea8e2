"""
Contracts — canonical models and stage protocols shared by every layer.
"""

from gateway.contracts.models import (
    FinishReason,
    GenerateRequest,
    GenerateResponse,
    PartialResponse,
    SamplingParameters,
    ToolCall,
    Usage,
    create_request,
    create_response,
)
from gateway.contracts.protocols import (
    Backend,
    Cache,
    Canonicalizer,
    EventPublisher,
    Instrumentation,
    PostProcessor,
    Router,
    StreamingBackend,
    Validator,
)

__all__ = [
    "Backend",
    "Cache",
    "Canonicalizer",
    "EventPublisher",
    "FinishReason",
    "GenerateRequest",
    "GenerateResponse",
    "Instrumentation",
    "PartialResponse",
    "PostProcessor",
    "Router",
    "SamplingParameters",
    "StreamingBackend",
    "ToolCall",
    "Usage",
    "Validator",
    "create_request",
    "create_response",
]
