"""
Heuristic token estimation (about 4 characters per token).

Used when a provider reports no usage, e.g. cached responses from older
entries or streamed output. Counts are estimates, never billing data.
"""

from __future__ import annotations

import json
import math

from gateway.contracts.models import GenerateRequest, GenerateResponse

CHARS_PER_TOKEN = 4


def _as_text(content: object) -> str:
    if content is None:
        return ""
    return content if isinstance(content, str) else json.dumps(content, default=str)


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN) if text else 0


def estimate_request_tokens(request: GenerateRequest) -> int:
    total = estimate_tokens(request.prompt)
    if request.system_prompt:
        total += estimate_tokens(request.system_prompt)
    for msg in request.history:
        total += estimate_tokens(_as_text(msg.get("content")))
    return total


def estimate_response_tokens(response: GenerateResponse) -> int:
    return estimate_tokens(response.output_text)


class HeuristicTokenizer:
    """Default Tokenizer for Pipeline; swap in a real one with the same methods."""

    def count_text(self, text: str) -> int:
        return estimate_tokens(text)

    def count_request_tokens(self, request: GenerateRequest) -> int:
        return estimate_request_tokens(request)

    def count_response_tokens(self, response: GenerateResponse) -> int:
        return estimate_response_tokens(response)
