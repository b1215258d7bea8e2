"""
Execution context — per-request state carried through one pipeline run.

Holds the original and canonical request, the final response, an ordered
event log and per-stage timings. Recorded events are also forwarded to
an optional EventPublisher. Creating a context sets the logging trace id
for the current asyncio task.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from gateway.contracts.models import GenerateRequest, GenerateResponse
from gateway.contracts.protocols import EventPublisher
from gateway.exceptions import StageError
from gateway.observability.logging_config import set_trace_id

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RecordedEvent:
    name: str
    payload: dict[str, Any]
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class StageTiming:
    started_at: datetime
    ended_at: Optional[datetime] = None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds() * 1000


class ExecutionContext:
    """Mutable state for a single request flowing through the pipeline."""

    def __init__(
        self,
        request: GenerateRequest,
        *,
        trace_id: Optional[str] = None,
        publisher: Optional[EventPublisher] = None,
    ):
        self.trace_id = trace_id or uuid.uuid4().hex
        self.request = request
        self.canonical_request: Optional[GenerateRequest] = None
        self.response: Optional[GenerateResponse] = None
        self.events: list[RecordedEvent] = []
        self.stages: dict[str, StageTiming] = {}
        self.cancelled = False
        self._publisher = publisher

        set_trace_id(self.trace_id)

    async def record_event(self, name: str, payload: Optional[dict[str, Any]] = None) -> None:
        event = RecordedEvent(name=name, payload=dict(payload or {}))
        self.events.append(event)
        if self._publisher is not None:
            await self._publisher.publish(name, {**event.payload, "trace_id": self.trace_id})

    def event_names(self) -> list[str]:
        return [event.name for event in self.events]

    def mark_stage_start(self, stage: str) -> None:
        self.stages[stage] = StageTiming(started_at=_utcnow())

    def mark_stage_end(self, stage: str) -> None:
        timing = self.stages.get(stage)
        if timing is not None:
            timing.ended_at = _utcnow()

    def cancel(self) -> None:
        """Stop the run before its next stage starts. A stage in flight is not interrupted."""
        self.cancelled = True

    def ensure_not_cancelled(self) -> None:
        if self.cancelled:
            raise StageError(
                "Execution context has been cancelled",
                context={"trace_id": self.trace_id, "request_id": self.request.id},
            )


def create_execution_context(request: GenerateRequest, **kwargs: Any) -> ExecutionContext:
    return ExecutionContext(request, **kwargs)
