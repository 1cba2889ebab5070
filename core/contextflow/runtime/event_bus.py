"""
Event Bus - Pub/sub for workflow execution events.

Lets observers (CLI output, a UI layer, tests):
- Follow container runs as they start, finish, fail or stop
- Follow individual nodes as the executor works through them
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    """Types of events that can be published."""

    # Container run lifecycle
    EXECUTION_STARTED = "execution_started"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_FAILED = "execution_failed"
    EXECUTION_STOPPED = "execution_stopped"

    # Node lifecycle
    NODE_STARTED = "node_started"
    NODE_COMPLETED = "node_completed"
    NODE_FAILED = "node_failed"
    NODE_SKIPPED = "node_skipped"


@dataclass
class WorkflowEvent:
    """An event emitted while running a workflow container."""

    type: EventType
    container_id: str
    node_id: str | None = None  # Which node emitted this event
    execution_id: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "container_id": self.container_id,
            "node_id": self.node_id,
            "execution_id": self.execution_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


# Type for event handlers
EventHandler = Callable[[WorkflowEvent], Awaitable[None]]


@dataclass
class Subscription:
    """A subscription to events."""

    id: str
    event_types: set[EventType]
    handler: EventHandler
    filter_container: str | None = None  # Only receive events from this container
    filter_node: str | None = None  # Only receive events from this node


class EventBus:
    """
    Pub/sub event bus for execution events.

    Example:
        bus = EventBus()

        async def on_node_failed(event: WorkflowEvent):
            print(f"{event.node_id} failed: {event.data['error']}")

        bus.subscribe(event_types=[EventType.NODE_FAILED], handler=on_node_failed)
    """

    def __init__(
        self,
        max_history: int = 1000,
        max_concurrent_handlers: int = 10,
    ):
        """
        Initialize event bus.

        Args:
            max_history: Maximum events to keep in history
            max_concurrent_handlers: Maximum concurrent handler executions
        """
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: list[WorkflowEvent] = []
        self._max_history = max_history
        self._semaphore = asyncio.Semaphore(max_concurrent_handlers)
        self._subscription_counter = 0
        self._lock = asyncio.Lock()

    def subscribe(
        self,
        event_types: list[EventType],
        handler: EventHandler,
        filter_container: str | None = None,
        filter_node: str | None = None,
    ) -> str:
        """
        Subscribe to events.

        Args:
            event_types: Types of events to receive
            handler: Async function to call when event occurs
            filter_container: Only receive events from this container
            filter_node: Only receive events from this node

        Returns:
            Subscription ID (use to unsubscribe)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"

        self._subscriptions[sub_id] = Subscription(
            id=sub_id,
            event_types=set(event_types),
            handler=handler,
            filter_container=filter_container,
            filter_node=filter_node,
        )
        logger.debug(f"Subscription {sub_id} registered for {event_types}")
        return sub_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """
        Unsubscribe from events.

        Returns:
            True if subscription was found and removed
        """
        if subscription_id in self._subscriptions:
            del self._subscriptions[subscription_id]
            logger.debug(f"Subscription {subscription_id} removed")
            return True
        return False

    async def publish(self, event: WorkflowEvent) -> None:
        """Publish an event to all matching subscribers."""
        async with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history = self._event_history[-self._max_history :]

        matching_handlers = [
            sub.handler for sub in self._subscriptions.values() if self._matches(sub, event)
        ]
        if matching_handlers:
            await self._execute_handlers(event, matching_handlers)

    def _matches(self, subscription: Subscription, event: WorkflowEvent) -> bool:
        if event.type not in subscription.event_types:
            return False
        if subscription.filter_container and subscription.filter_container != event.container_id:
            return False
        if subscription.filter_node and subscription.filter_node != event.node_id:
            return False
        return True

    async def _execute_handlers(
        self,
        event: WorkflowEvent,
        handlers: list[EventHandler],
    ) -> None:
        """Execute handlers concurrently with rate limiting."""

        async def run_handler(handler: EventHandler) -> None:
            async with self._semaphore:
                try:
                    await handler(event)
                except Exception as e:
                    logger.error(f"Handler error for {event.type}: {e}")

        await asyncio.gather(*[run_handler(h) for h in handlers], return_exceptions=True)

    # === CONVENIENCE PUBLISHERS ===

    async def emit_execution_started(
        self, container_id: str, execution_id: str, node_count: int
    ) -> None:
        await self.publish(
            WorkflowEvent(
                type=EventType.EXECUTION_STARTED,
                container_id=container_id,
                execution_id=execution_id,
                data={"node_count": node_count},
            )
        )

    async def emit_execution_completed(
        self, container_id: str, execution_id: str, summary: dict[str, Any]
    ) -> None:
        await self.publish(
            WorkflowEvent(
                type=EventType.EXECUTION_COMPLETED,
                container_id=container_id,
                execution_id=execution_id,
                data=summary,
            )
        )

    async def emit_execution_failed(self, container_id: str, execution_id: str, error: str) -> None:
        await self.publish(
            WorkflowEvent(
                type=EventType.EXECUTION_FAILED,
                container_id=container_id,
                execution_id=execution_id,
                data={"error": error},
            )
        )

    async def emit_execution_stopped(self, container_id: str, execution_id: str) -> None:
        await self.publish(
            WorkflowEvent(
                type=EventType.EXECUTION_STOPPED,
                container_id=container_id,
                execution_id=execution_id,
            )
        )

    async def emit_node_started(self, container_id: str, node_id: str, execution_id: str) -> None:
        await self.publish(
            WorkflowEvent(
                type=EventType.NODE_STARTED,
                container_id=container_id,
                node_id=node_id,
                execution_id=execution_id,
            )
        )

    async def emit_node_completed(
        self, container_id: str, node_id: str, execution_id: str, result: str
    ) -> None:
        await self.publish(
            WorkflowEvent(
                type=EventType.NODE_COMPLETED,
                container_id=container_id,
                node_id=node_id,
                execution_id=execution_id,
                data={"result": result},
            )
        )

    async def emit_node_failed(
        self, container_id: str, node_id: str, execution_id: str, error: str
    ) -> None:
        await self.publish(
            WorkflowEvent(
                type=EventType.NODE_FAILED,
                container_id=container_id,
                node_id=node_id,
                execution_id=execution_id,
                data={"error": error},
            )
        )

    async def emit_node_skipped(
        self, container_id: str, node_id: str, execution_id: str, reason: str
    ) -> None:
        await self.publish(
            WorkflowEvent(
                type=EventType.NODE_SKIPPED,
                container_id=container_id,
                node_id=node_id,
                execution_id=execution_id,
                data={"reason": reason},
            )
        )

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        event_type: EventType | None = None,
        container_id: str | None = None,
        execution_id: str | None = None,
        limit: int = 100,
    ) -> list[WorkflowEvent]:
        """
        Get event history with optional filtering.

        Returns:
            List of matching events (most recent first)
        """
        events = self._event_history[::-1]

        if event_type:
            events = [e for e in events if e.type == event_type]
        if container_id:
            events = [e for e in events if e.container_id == container_id]
        if execution_id:
            events = [e for e in events if e.execution_id == execution_id]

        return events[:limit]

    def get_stats(self) -> dict:
        """Get event bus statistics."""
        type_counts: dict[str, int] = {}
        for event in self._event_history:
            type_counts[event.type.value] = type_counts.get(event.type.value, 0) + 1

        return {
            "total_events": len(self._event_history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": type_counts,
        }

    async def wait_for(
        self,
        event_type: EventType,
        container_id: str | None = None,
        node_id: str | None = None,
        timeout: float | None = None,
    ) -> WorkflowEvent | None:
        """
        Wait for a specific event to occur.

        Returns:
            The event if received, None if timeout
        """
        result: WorkflowEvent | None = None
        event_received = asyncio.Event()

        async def handler(event: WorkflowEvent) -> None:
            nonlocal result
            result = event
            event_received.set()

        sub_id = self.subscribe(
            event_types=[event_type],
            handler=handler,
            filter_container=container_id,
            filter_node=node_id,
        )

        try:
            if timeout:
                try:
                    await asyncio.wait_for(event_received.wait(), timeout=timeout)
                except TimeoutError:
                    return None
            else:
                await event_received.wait()

            return result
        finally:
            self.unsubscribe(sub_id)
