"""
Canonical request/response models for the gateway.

Every adapter translates to and from these provider-agnostic types. They
are pydantic models with their invariants enforced in validators, so an
instance that exists is an instance that is valid:

- GenerateRequest needs a non-blank prompt or a non-empty history
- GenerateResponse needs output text unless it finished with an error
  or carries tool calls
- Usage derives total_tokens when the provider leaves it at zero

Use create_request()/create_response() to build them; both translate
pydantic's error into gateway.exceptions.ValidationError.

Usage:
    from gateway.contracts.models import create_request

    request = create_request(
        prompt="Summarize this ticket",
        system_prompt="You are terse.",
        parameters={"model": "anthropic:claude-3-haiku", "temperature": 0},
    )
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from gateway.exceptions import ValidationError


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class FinishReason(str, Enum):
    """Canonical classification of why generation stopped."""

    STOP = "stop"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"
    ERROR = "error"
    TOOL_CALLS = "tool_calls"


# ---------------------------------------------------------------------------
# Usage
# ---------------------------------------------------------------------------

class Usage(BaseModel):
    """Token accounting returned by a backend."""

    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = Field(0, ge=0)
    completion_tokens: int = Field(0, ge=0)
    total_tokens: int = Field(0, ge=0)
    extra: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _derive_total(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
            if data.get(key) is None:
                data[key] = 0
        if not data["total_tokens"]:
            data["total_tokens"] = data["prompt_tokens"] + data["completion_tokens"]
        if data.get("extra") is None:
            data["extra"] = {}
        return data


# ---------------------------------------------------------------------------
# Sampling parameters (typed view over GenerateRequest.parameters)
# ---------------------------------------------------------------------------

_NUMERIC_KEYS: dict[str, tuple[str, ...]] = {
    "temperature": ("temperature",),
    "top_p": ("top_p", "topP"),
    "top_k": ("top_k", "topK"),
    "max_tokens": ("maxTokens", "max_tokens"),
    "frequency_penalty": ("frequency_penalty", "frequencyPenalty"),
    "presence_penalty": ("presence_penalty", "presencePenalty"),
}

_RECOGNIZED_KEYS = frozenset(
    {"model", "modelId", "stop", "stop_sequences", "tool_choice", "toolChoice",
     "providerOptions", "provider_options"}
    | {alias for aliases in _NUMERIC_KEYS.values() for alias in aliases}
)


def _pick_number(params: dict[str, Any], keys: tuple[str, ...]) -> Optional[float]:
    for key in keys:
        value = params.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
    return None


class SamplingParameters(BaseModel):
    """
    Recognized generation parameters with an escape hatch for the rest.

    Aliases accepted in the raw map: model/modelId, top_p/topP,
    maxTokens/max_tokens, stop/stop_sequences, providerOptions/provider_options.
    Non-numeric values under numeric keys are ignored rather than rejected.
    """

    model: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    max_tokens: Optional[int] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    stop: Optional[list[str]] = None
    tool_choice: Any = None
    provider_options: dict[str, Any] = Field(default_factory=dict)
    extra: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_parameters(cls, params: Optional[dict[str, Any]]) -> "SamplingParameters":
        params = params or {}

        model = params.get("model") or params.get("modelId")
        numbers = {
            field: _pick_number(params, aliases)
            for field, aliases in _NUMERIC_KEYS.items()
        }
        for field in ("top_k", "max_tokens"):
            if numbers[field] is not None:
                numbers[field] = int(numbers[field])

        stop = params.get("stop")
        if stop is None:
            stop = params.get("stop_sequences")
        if isinstance(stop, str):
            stop = [stop]
        elif not isinstance(stop, (list, tuple)):
            stop = None

        tool_choice = params.get("tool_choice", params.get("toolChoice"))
        provider_options = params.get("providerOptions") or params.get("provider_options") or {}

        return cls(
            model=model if isinstance(model, str) else None,
            stop=[str(s) for s in stop] if stop is not None else None,
            tool_choice=tool_choice,
            provider_options=dict(provider_options) if isinstance(provider_options, dict) else {},
            extra={k: v for k, v in params.items() if k not in _RECOGNIZED_KEYS},
            **numbers,
        )


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

class GenerateRequest(BaseModel):
    """Canonical representation of a text generation request."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    created_at: datetime = Field(default_factory=_utcnow)
    prompt: str = ""
    system_prompt: Optional[str] = None
    history: list[dict[str, Any]] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    parameters: dict[str, Any] = Field(default_factory=dict)
    cache_key: Optional[str] = None
    route_hint: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    tools: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("GenerateRequest.id cannot be blank")
        return v

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))

    @model_validator(mode="after")
    def _require_prompt_or_history(self) -> "GenerateRequest":
        if not self.prompt.strip() and not self.history:
            raise ValueError(
                "GenerateRequest.prompt must be non-empty or history must be provided"
            )
        return self

    def sampling(self) -> SamplingParameters:
        """Typed view over `parameters`."""
        return SamplingParameters.from_parameters(self.parameters)


# ---------------------------------------------------------------------------
# Response
# ---------------------------------------------------------------------------

class ToolCall(BaseModel):
    """A tool invocation requested by the model. Arguments kept verbatim."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    name: str
    arguments: Union[dict[str, Any], str] = Field(default_factory=dict)


class GenerateResponse(BaseModel):
    """Canonical representation of a text generation response."""

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    id: str = Field(default_factory=_new_id)
    request_id: str
    output_text: str = ""
    finish_reason: FinishReason
    usage: Usage = Field(default_factory=Usage)
    latency_ms: int = Field(0, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)
    validator_events: list[dict[str, Any]] = Field(default_factory=list)
    tool_calls: Optional[list[ToolCall]] = None

    @field_validator("latency_ms", mode="before")
    @classmethod
    def _round_latency(cls, v: Any) -> Any:
        if isinstance(v, float):
            return int(round(v))
        return v

    @model_validator(mode="after")
    def _require_output(self) -> "GenerateResponse":
        if (
            self.finish_reason != FinishReason.ERROR.value
            and not self.output_text
            and not self.tool_calls
        ):
            raise ValueError(
                "GenerateResponse.output_text cannot be empty unless "
                "finish_reason is error or tool_calls are present"
            )
        return self

    def with_validator_event(self, event: dict[str, Any]) -> "GenerateResponse":
        """Return a copy with `event` appended to the audit trail."""
        return self.model_copy(
            update={"validator_events": [*self.validator_events, dict(event)]}
        )

    def with_metadata(self, **items: Any) -> "GenerateResponse":
        """Return a copy with `items` merged into metadata."""
        return self.model_copy(update={"metadata": {**self.metadata, **items}})


class PartialResponse(BaseModel):
    """
    A streaming snapshot: accumulated text so far plus chunk metadata.

    Not a canonical response; collect_stream() materializes one at the end.
    """

    output_text: str
    metadata: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Construction helpers
# ---------------------------------------------------------------------------

def _describe(err: PydanticValidationError) -> list[str]:
    return [
        f"{'.'.join(str(p) for p in e['loc']) or '<model>'}: {e['msg']}"
        for e in err.errors()
    ]


def create_request(data: Optional[dict[str, Any]] = None, /, **fields: Any) -> GenerateRequest:
    """Build and validate a GenerateRequest; raises ValidationError."""
    payload = {**(data or {}), **fields}
    for key in ("id", "created_at"):
        if payload.get(key) is None:
            payload.pop(key, None)
    try:
        return GenerateRequest(**payload)
    except PydanticValidationError as err:
        raise ValidationError(
            "Invalid GenerateRequest",
            context={"errors": _describe(err)},
        ) from err


def create_response(data: Optional[dict[str, Any]] = None, /, **fields: Any) -> GenerateResponse:
    """Build and validate a GenerateResponse; raises ValidationError."""
    payload = {**(data or {}), **fields}
    if payload.get("id") is None:
        payload.pop("id", None)
    try:
        return GenerateResponse(**payload)
    except PydanticValidationError as err:
        raise ValidationError(
            "Invalid GenerateResponse",
            context={
                "errors": _describe(err),
                "request_id": payload.get("request_id"),
            },
        ) from err
