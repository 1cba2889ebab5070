"""
Observability: structured logging with workflow trace context.

- Trace context (workflow, container, execution, node) propagates via ContextVar
- JSON lines for production, coloured text for development
"""

from contextflow.observability.logging import (
    clear_trace_context,
    configure_logging,
    get_trace_context,
    set_trace_context,
    trace_scope,
)

__all__ = [
    "configure_logging",
    "get_trace_context",
    "set_trace_context",
    "clear_trace_context",
    "trace_scope",
]
