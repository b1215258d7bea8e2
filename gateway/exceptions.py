"""
Error taxonomy for the LLM gateway.

Every error raised by the gateway derives from GatewayError and carries a
mutable `context` dict (stage, plugin_id, request_id, trace_id, plus any
extra fields). Context accumulates as an error crosses stage boundaries:

- ValidationError: a request/response invariant was violated at construction
- BackendError: a provider call failed in a way that must not be swallowed
- StageError: wrapper for any foreign exception crossing a pipeline stage
- ConfigurationError / PluginError / CacheError: subsystem failures

Usage:
    from gateway.exceptions import raise_with_context

    try:
        response = await backend.generate(request, routed_to="openai")
    except Exception as err:
        raise_with_context(err, stage="backend", request_id=request.id)
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, NoReturn, Optional, TypeVar

T = TypeVar("T")


class GatewayError(Exception):
    """
    Base exception for all gateway errors.

    Catch `GatewayError` to handle anything raised by the gateway itself.
    """

    def __init__(self, message: str, *, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = dict(context or {})

    def to_dict(self) -> dict[str, Any]:
        """Structured form for JSON logging and API error bodies."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "context": dict(self.context),
        }


class ValidationError(GatewayError):
    """A GenerateRequest/GenerateResponse invariant was violated."""


class BackendError(GatewayError):
    """
    A provider call failed in a way the adapter chose to raise.

    Reserved for unrecoverable failures (bad credentials, unknown backend).
    Ordinary provider failures come back as error-shaped responses.
    """


class StageError(GatewayError):
    """Default wrapper for non-gateway exceptions crossing a stage boundary."""


class ConfigurationError(GatewayError):
    """Invalid adapter, cache or gateway configuration."""


class PluginError(GatewayError):
    """A pipeline plugin could not be found or loaded."""


class CacheError(GatewayError):
    """A cache operation failed."""


def raise_with_context(error: BaseException, **context: Any) -> NoReturn:
    """
    Re-raise `error` enriched with stage context.

    Gateway errors keep their type and get `context` merged in (None values
    never overwrite existing keys). Anything else is wrapped in StageError
    with the original class name preserved under `original_error`.
    """
    updates = {k: v for k, v in context.items() if v is not None}

    if isinstance(error, GatewayError):
        error.context.update(updates)
        raise error

    raise StageError(
        str(error) or type(error).__name__,
        context={**updates, "original_error": type(error).__name__},
    ) from error


async def with_error_context(
    fn: Callable[[], Awaitable[T]],
    **context: Any,
) -> T:
    """Await `fn()` and re-raise any failure with `context` attached."""
    try:
        return await fn()
    except Exception as err:
        raise_with_context(err, **context)
