"""Runtime support for workflow execution."""

from contextflow.runtime.event_bus import EventBus, EventType, WorkflowEvent

__all__ = ["EventBus", "EventType", "WorkflowEvent"]
