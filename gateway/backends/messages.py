"""
Message projection and finish-reason mapping shared by all adapters.

build_messages() turns a GenerateRequest into the role/content list every
chat-style provider accepts:

    [system_prompt] + history + [prompt]

History roles outside {system, user, assistant} become "assistant";
non-string content is JSON-encoded. A blank prompt (history-only request)
adds no trailing user turn.

Finish reasons are mapped through per-provider tables. Single-provider
adapters fall back to "stop" for anything unmapped; the multi-provider
adapter falls back to "error" because it speaks many more dialects and an
unmapped reason there is more likely a real anomaly.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from gateway.contracts.models import FinishReason, GenerateRequest

CANONICAL_ROLES = frozenset({"system", "user", "assistant"})


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

def normalize_role(role: Any) -> str:
    if not isinstance(role, str) or not role:
        return "user"
    return role if role in CANONICAL_ROLES else "assistant"


def content_to_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return json.dumps(content, default=str)


def build_messages(request: GenerateRequest) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []

    if request.system_prompt:
        messages.append({"role": "system", "content": request.system_prompt})

    for msg in request.history:
        messages.append({
            "role": normalize_role(msg.get("role")),
            "content": content_to_text(msg.get("content")),
        })

    if request.prompt.strip():
        messages.append({"role": "user", "content": request.prompt})

    return messages


def split_system(messages: list[dict[str, str]]) -> tuple[Optional[str], list[dict[str, str]]]:
    """Pull system turns out for providers that take `system` separately (Anthropic)."""
    system_parts = [m["content"] for m in messages if m["role"] == "system" and m["content"]]
    rest = [m for m in messages if m["role"] != "system"]
    return ("\n\n".join(system_parts) or None), rest


# ---------------------------------------------------------------------------
# Finish reasons
# ---------------------------------------------------------------------------

OPENAI_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": FinishReason.STOP,
    "tool_calls": FinishReason.STOP,
    "function_call": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.CONTENT_FILTER,
}

ANTHROPIC_STOP_REASONS: dict[str, FinishReason] = {
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "tool_use": FinishReason.STOP,
    "pause_turn": FinishReason.STOP,
    "max_tokens": FinishReason.LENGTH,
    "refusal": FinishReason.CONTENT_FILTER,
}

OLLAMA_DONE_REASONS: dict[str, FinishReason] = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
}

MULTI_PROVIDER_FINISH_REASONS: dict[str, FinishReason] = {
    **OPENAI_FINISH_REASONS,
    **ANTHROPIC_STOP_REASONS,
    "tool-calls": FinishReason.STOP,
    "tool_call": FinishReason.STOP,
    "content-filter": FinishReason.CONTENT_FILTER,
}


def map_finish_reason(
    raw: Optional[str],
    table: dict[str, FinishReason],
    default: FinishReason = FinishReason.STOP,
) -> FinishReason:
    if raw is None:
        return default
    return table.get(str(raw).lower(), default)
