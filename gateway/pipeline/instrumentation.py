"""
Stage instrumentation.

instrument_stage() wraps one stage call with on_stage_start / on_stage_end,
and on_error when the stage raises (the error is then re-raised).
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, TypeVar

from gateway.contracts.protocols import Instrumentation

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def instrument_stage(
    instrumentation: Instrumentation,
    stage: str,
    context: dict[str, Any],
    fn: Callable[[], Awaitable[T]],
) -> T:
    await instrumentation.on_stage_start(stage, context)
    try:
        result = await fn()
    except Exception as err:
        await instrumentation.on_error(stage, err, context)
        raise
    await instrumentation.on_stage_end(stage, context)
    return result


class NoopInstrumentation:
    async def on_stage_start(self, stage: str, context: dict[str, Any]) -> None:
        pass

    async def on_stage_end(self, stage: str, context: dict[str, Any]) -> None:
        pass

    async def on_error(self, stage: str, error: BaseException, context: dict[str, Any]) -> None:
        pass


class LoggingInstrumentation:
    """Emits stage_start / stage_end / stage_error log records."""

    def __init__(self, level: int = logging.DEBUG):
        self.level = level

    async def on_stage_start(self, stage: str, context: dict[str, Any]) -> None:
        logger.log(self.level, "stage_start", extra={**context, "stage": stage})

    async def on_stage_end(self, stage: str, context: dict[str, Any]) -> None:
        logger.log(self.level, "stage_end", extra={**context, "stage": stage})

    async def on_error(self, stage: str, error: BaseException, context: dict[str, Any]) -> None:
        logger.warning(
            "stage_error",
            extra={
                **context,
                "stage": stage,
                "error": str(error)[:200],
                "error_type": type(error).__name__,
            },
        )
