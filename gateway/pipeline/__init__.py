"""
Pipeline — canonicalize, cache, route, generate, validate.
"""

from gateway.pipeline.context import ExecutionContext, create_execution_context
from gateway.pipeline.instrumentation import (
    LoggingInstrumentation,
    NoopInstrumentation,
    instrument_stage,
)
from gateway.pipeline.pipeline import Pipeline
from gateway.pipeline.stages import DefaultCanonicalizer, HintRouter, PassthroughValidator
from gateway.pipeline.tokenizer import HeuristicTokenizer, estimate_tokens

__all__ = [
    "DefaultCanonicalizer",
    "ExecutionContext",
    "HeuristicTokenizer",
    "HintRouter",
    "LoggingInstrumentation",
    "NoopInstrumentation",
    "PassthroughValidator",
    "Pipeline",
    "create_execution_context",
    "estimate_tokens",
    "instrument_stage",
]
