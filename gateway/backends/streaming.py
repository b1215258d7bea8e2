"""
Stream collection — turn a stream of PartialResponses into one response.

Partials are snapshots (accumulated text so far), not canonical responses.
collect_stream() consumes a stream to the end and materializes the final
GenerateResponse, estimating usage from the text because providers do not
report token counts on every streaming path.

Usage:
    stream = backend.generate_stream(request, routed_to="openai")
    response = await collect_stream(stream, request)
    print(response.output_text)
"""

from __future__ import annotations

import logging
import time
from typing import Any, AsyncIterator, Optional

from gateway.backends.base import elapsed_ms, error_response, raise_if_fatal
from gateway.contracts.models import (
    FinishReason,
    GenerateRequest,
    GenerateResponse,
    PartialResponse,
    Usage,
    create_response,
)
from gateway.pipeline.tokenizer import estimate_request_tokens, estimate_tokens

logger = logging.getLogger(__name__)


async def collect_stream(
    stream: AsyncIterator[PartialResponse],
    request: GenerateRequest,
    *,
    metadata: Optional[dict[str, Any]] = None,
) -> GenerateResponse:
    """
    Consume `stream` and return the canonical response.

    A failure mid-stream yields an error-shaped response that keeps
    whatever text had arrived; credential failures still raise.
    """
    start = time.monotonic()
    last: Optional[PartialResponse] = None
    chunk_count = 0

    try:
        async for partial in stream:
            last = partial
            chunk_count += 1
    except Exception as err:
        raise_if_fatal(err, request_id=request.id)
        logger.warning(
            "stream_failed",
            extra={"request_id": request.id, "chunks": chunk_count, "error": str(err)[:200]},
        )
        partial_meta = {**(last.metadata if last else {}), **(metadata or {})}
        partial_meta.pop("streaming", None)
        response = error_response(request, err, elapsed_ms(start), partial_meta)
        if last is not None:
            response = response.model_copy(update={"output_text": last.output_text})
        return response

    final_meta = {**(last.metadata if last else {}), **(metadata or {}), "chunks": chunk_count}
    final_meta.pop("streaming", None)
    text = last.output_text if last else ""

    if not text:
        final_meta["error"] = "Stream ended without any text"
        finish_reason = FinishReason.ERROR
    else:
        finish_reason = FinishReason.STOP

    prompt_tokens = estimate_request_tokens(request)
    completion_tokens = estimate_tokens(text)

    logger.info(
        "stream_completed",
        extra={
            "request_id": request.id,
            "backend": final_meta.get("backend"),
            "chunks": chunk_count,
            "text_length": len(text),
        },
    )

    return create_response(
        request_id=request.id,
        output_text=text,
        finish_reason=finish_reason,
        usage=Usage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            extra={"estimated": True},
        ),
        latency_ms=elapsed_ms(start),
        metadata=final_meta,
    )
