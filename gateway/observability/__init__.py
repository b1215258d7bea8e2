"""Logging setup and trace-id propagation."""

from gateway.observability.logging_config import (
    clear_trace_id,
    configure_logging,
    get_trace_id,
    set_trace_id,
)

__all__ = ["clear_trace_id", "configure_logging", "get_trace_id", "set_trace_id"]
