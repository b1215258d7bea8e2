"""
Default pipeline stages.

    DefaultCanonicalizer  trim prompt/system prompt, clean tags, inject defaults
    HintRouter            honor route_hint when it names a known backend
    PassthroughValidator  accept everything, but leave an audit event
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from gateway.contracts.models import GenerateRequest, GenerateResponse, create_request
from gateway.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class DefaultCanonicalizer:
    """
    Normalizes requests so trivially different ones share a cache key.

    Idempotent: canonicalize(canonicalize(r)) == canonicalize(r).
    Default parameters never override ones the request already sets.
    """

    def __init__(self, default_parameters: Optional[dict[str, Any]] = None):
        self.default_parameters = dict(default_parameters or {})

    async def canonicalize(self, request: GenerateRequest) -> GenerateRequest:
        system_prompt = request.system_prompt.strip() if request.system_prompt else None
        tags = [tag.strip() for tag in request.tags if tag and tag.strip()]

        return create_request(
            request.model_dump(),
            prompt=request.prompt.strip(),
            system_prompt=system_prompt or None,
            tags=tags,
            parameters={**self.default_parameters, **request.parameters},
        )


class HintRouter:
    """Routes to request.route_hint if it is a known backend, else the default."""

    def __init__(self, backend_ids: Iterable[str], default: Optional[str] = None):
        self.backend_ids = list(backend_ids)
        if not self.backend_ids:
            raise ConfigurationError("HintRouter needs at least one backend id")
        self.default = default or self.backend_ids[0]

    async def route(self, request: GenerateRequest) -> str:
        hint = request.route_hint
        if hint and hint in self.backend_ids:
            return hint
        if hint:
            logger.debug("route_hint_ignored", extra={"route_hint": hint, "backend": self.default})
        return self.default


class PassthroughValidator:
    async def validate(
        self, response: GenerateResponse, *, request: GenerateRequest
    ) -> GenerateResponse:
        return response.with_validator_event({"validator": "passthrough", "status": "accepted"})
