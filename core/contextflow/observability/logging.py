"""
Structured logging with workflow trace context.

Standard logger.info() calls pick up whatever trace context is active:

    WorkflowExecutor.execute()  -> sets workflow_id, container_id, execution_id
        (propagates through awaits via ContextVar)
    per-node processing         -> adds node_id
        -> logger.info("...") carries all of the above

Each asyncio task gets its own copy of the context, so containers running
concurrently never see each other's ids.
"""

import json
import logging
import os
import re
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

trace_context: ContextVar[dict[str, Any] | None] = ContextVar("trace_context", default=None)

# Matches \033[...m / \x1b[...m
ANSI_ESCAPE_PATTERN = re.compile(r"\x1b\[[0-9;]*m|\033\[[0-9;]*m")

# Fields copied from `extra=` into JSON records when present
EXTRA_FIELDS = ("event", "latency_ms", "model", "provider", "node_kind")


def strip_ansi_codes(text: str) -> str:
    """Remove ANSI escape codes from text for clean JSON logging."""
    return ANSI_ESCAPE_PATTERN.sub("", text)


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter: one object per line with timestamp, level, logger,
    message, the active trace context and any known extra fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}

        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
        }
        log_entry.update(context)

        for name in EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is None:
                continue
            log_entry[name] = strip_ansi_codes(value) if isinstance(value, str) else value

        # An explicit node_id on the record wins over the context one
        node_id = getattr(record, "node_id", None)
        if node_id is not None:
            log_entry["node_id"] = node_id

        if record.exc_info:
            log_entry["exception"] = strip_ansi_codes(self.formatException(record.exc_info))

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Colourised single-line formatter with a short trace prefix."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        context = trace_context.get() or {}

        prefix_parts = []
        if context.get("workflow_id"):
            prefix_parts.append(f"wf:{context['workflow_id']}")
        if context.get("execution_id"):
            prefix_parts.append(f"exec:{str(context['execution_id'])[-8:]}")
        node_id = getattr(record, "node_id", None) or context.get("node_id")
        if node_id:
            prefix_parts.append(f"node:{node_id}")
        context_prefix = f"[{' | '.join(prefix_parts)}] " if prefix_parts else ""

        color = self.COLORS.get(record.levelname, "")
        level = f"{record.levelname:<8}"

        event = ""
        record_event = getattr(record, "event", None)
        if record_event is not None:
            event = f" [{record_event}]"

        message = f"{color}[{level}]{self.RESET} {context_prefix}{record.getMessage()}{event}"
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


def resolve_format(format: str = "auto") -> str:
    """Resolve "auto" to "json" or "human" from LOG_FORMAT / ENV."""
    if format != "auto":
        return format
    log_format_env = os.getenv("LOG_FORMAT", "").lower()
    env = os.getenv("ENV", "development").lower()
    if log_format_env == "json" or env == "production":
        return "json"
    return "human"


def configure_logging(
    level: str = "INFO",
    format: str = "auto",  # "json", "human", or "auto"
) -> None:
    """
    Configure logging for the application. Call once at startup
    (the CLI entry point does).

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: "json", "human", or "auto" (JSON if LOG_FORMAT=json or
            ENV=production, else human)
    """
    format = resolve_format(format)

    if format == "json":
        formatter: logging.Formatter = StructuredFormatter()
        _quiet_litellm()
    else:
        formatter = HumanReadableFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    # Route LiteLLM/HTTP client logs through our formatter in JSON mode
    if format == "json":
        for logger_name in ("LiteLLM", "httpcore", "httpx", "openai"):
            third_party = logging.getLogger(logger_name)
            third_party.handlers.clear()
            third_party.propagate = True


def _quiet_litellm() -> None:
    """Disable colour and debug banners that would corrupt JSON output."""
    os.environ["NO_COLOR"] = "1"
    os.environ["FORCE_COLOR"] = "0"

    import litellm

    litellm.suppress_debug_info = True


def set_trace_context(**kwargs: Any) -> None:
    """
    Merge fields into the trace context of the current task.

    Args:
        **kwargs: Context fields (workflow_id, container_id, execution_id, node_id)
    """
    current = trace_context.get() or {}
    trace_context.set({**current, **kwargs})


def get_trace_context() -> dict:
    """Return a copy of the current trace context (empty if unset)."""
    context = trace_context.get() or {}
    return context.copy()


def clear_trace_context() -> None:
    """Clear trace context (between test runs, or before an unrelated run)."""
    trace_context.set(None)


@contextmanager
def trace_scope(**kwargs: Any) -> Iterator[None]:
    """Temporarily add fields to the trace context.

    Example:
        with trace_scope(node_id="answer"):
            logger.info("Calling gateway")  # carries node_id
    """
    current = trace_context.get() or {}
    token = trace_context.set({**current, **kwargs})
    try:
        yield
    finally:
        trace_context.reset(token)
