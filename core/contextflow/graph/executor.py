"""
Workflow Executor - Runs workflow containers against the completion gateway.

A run walks one container breadth-first from its start nodes (fixed or
editable nodes with no incoming connection). A node is only processed
once every predecessor it has inside the walk has been processed.
Fixed and editable nodes pass their output through untouched; generative
nodes build a prompt from their inherited context and call the gateway.

Failure is local: a gateway error marks that node as errored, nothing is
propagated from it, and the rest of the container keeps going.

Several containers may run at once, each as its own asyncio task. Nodes
inside one container are processed strictly one at a time.
"""

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from contextflow.config import WorkflowSettings
from contextflow.graph.connection import Connection
from contextflow.graph.errors import ExecutionAlreadyActive, WorkflowError
from contextflow.graph.kinds import NodeKind
from contextflow.graph.node import GenerativeProcessing, Node
from contextflow.graph.ordering import dependency_order
from contextflow.graph.partitioner import WorkflowContainer
from contextflow.graph.prompting import DEFAULT_TASK, build_prompt
from contextflow.graph.workflow import GraphChange, GraphChangeType, WorkflowGraph
from contextflow.llm.gateway import CompletionGateway, CompletionResponse
from contextflow.observability.logging import trace_scope
from contextflow.runtime.event_bus import EventBus

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """Result of running one workflow container."""

    container_id: str
    execution_id: str
    path: list[str] = field(default_factory=list)  # Node IDs visited, in order
    completed: list[str] = field(default_factory=list)  # Generative nodes that finished
    errored: dict[str, str] = field(default_factory=dict)  # {node_id: error}
    skipped: list[str] = field(default_factory=list)  # Generative nodes with no input text
    stopped: bool = False
    error: str | None = None  # Container-level failure (cycle, settings, ...)
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime | None = None

    @property
    def success(self) -> bool:
        return not self.errored and not self.stopped and self.error is None

    @property
    def execution_quality(self) -> str:
        """Return "clean", "degraded" (some nodes failed) or "failed" (none completed)."""
        if self.error is not None:
            return "failed"
        if not self.errored:
            return "clean"
        return "degraded" if self.completed else "failed"

    def summary(self) -> dict[str, Any]:
        return {
            "path": list(self.path),
            "completed": list(self.completed),
            "errored": dict(self.errored),
            "skipped": list(self.skipped),
            "stopped": self.stopped,
            "error": self.error,
            "success": self.success,
        }


class WorkflowExecutor:
    """
    Runs workflow containers of one WorkflowGraph.

    Example:
        executor = WorkflowExecutor(graph, LiteLLMGateway(), WorkflowSettings.load())
        container = graph.container_of("answer")
        result = await executor.execute(container.id)
    """

    def __init__(
        self,
        graph: WorkflowGraph,
        gateway: CompletionGateway,
        settings: WorkflowSettings | None = None,
        event_bus: EventBus | None = None,
        default_task: str = DEFAULT_TASK,
    ):
        """
        Args:
            graph: Graph whose containers are executed
            gateway: Completion gateway for generative nodes
            settings: Provider settings; None reloads them from config on every run
            event_bus: Optional bus for lifecycle events
            default_task: Task used in prompts when the context has none
        """
        self.graph = graph
        self.gateway = gateway
        self._settings = settings
        self.event_bus = event_bus
        self.default_task = default_task

        # container_id -> execution_id of the run that owns it
        self._active: dict[str, str] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._results: dict[str, ExecutionResult] = {}
        self._unsubscribe = None

    @property
    def settings(self) -> WorkflowSettings:
        return self._settings if self._settings is not None else WorkflowSettings.load()

    # === STATE ===

    def is_active(self, container_id: str) -> bool:
        return container_id in self._active

    @property
    def active_containers(self) -> frozenset[str]:
        return frozenset(self._active)

    def get_result(self, container_id: str) -> ExecutionResult | None:
        """Result of the last finished run of a container."""
        return self._results.get(container_id)

    # === RUNNING ===

    async def execute(self, container_id: str) -> ExecutionResult:
        """
        Run one container to completion.

        Raises:
            ContainerNotFound: If the id no longer resolves
            ExecutionAlreadyActive: If the container is already running
            ConfigurationError: If provider settings are incomplete
            CircularDependency: If the container's connections form a cycle
        """
        container = self.graph.find_container(container_id)
        if container_id in self._active:
            raise ExecutionAlreadyActive(container_id)

        settings = self.settings
        settings.validate()
        dependency_order([n.id for n in container.nodes], container.connections)

        execution_id = f"exec_{uuid.uuid4().hex[:8]}"
        result = ExecutionResult(container_id=container_id, execution_id=execution_id)
        self._active[container_id] = execution_id

        with trace_scope(
            workflow_id=self.graph.id,
            container_id=container_id,
            execution_id=execution_id,
        ):
            logger.info(f"▶ Executing {container_id} ({len(container.nodes)} nodes)")
            try:
                if self.event_bus:
                    await self.event_bus.emit_execution_started(
                        container_id, execution_id, len(container.nodes)
                    )
                await self._walk(container, settings, result)
            except Exception as e:
                logger.error(f"Execution of {container_id} failed: {e}", exc_info=True)
                if self.event_bus:
                    await self.event_bus.emit_execution_failed(container_id, execution_id, str(e))
                raise
            finally:
                if self._active.get(container_id) == execution_id:
                    del self._active[container_id]
                self.graph.clear_dirty(n.id for n in container.nodes)
                result.finished_at = datetime.now()
                self._results[container_id] = result

            if result.stopped:
                logger.info(f"⏹ Stopped {container_id} after {len(result.path)} node(s)")
                if self.event_bus:
                    await self.event_bus.emit_execution_stopped(container_id, execution_id)
            else:
                logger.info(
                    f"✓ Finished {container_id}: {len(result.completed)} completed, "
                    f"{len(result.errored)} errored, {len(result.skipped)} skipped"
                )
                if self.event_bus:
                    await self.event_bus.emit_execution_completed(
                        container_id, execution_id, result.summary()
                    )
        return result

    def start(self, container_id: str) -> asyncio.Task:
        """
        Schedule execute() as an independent task (needs a running loop).

        Raises:
            ExecutionAlreadyActive: If a run of the container is pending or active
        """
        pending = self._tasks.get(container_id)
        if container_id in self._active or (pending is not None and not pending.done()):
            raise ExecutionAlreadyActive(container_id)

        task = asyncio.create_task(self.execute(container_id), name=f"run-{container_id}")
        self._tasks[container_id] = task
        task.add_done_callback(lambda t: self._on_task_done(container_id, t))
        return task

    def _on_task_done(self, container_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(container_id) is task:
            del self._tasks[container_id]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background run of {container_id} failed: {error}")

    async def wait(self, container_id: str) -> ExecutionResult | None:
        """Wait for a started run to finish and return its result."""
        task = self._tasks.get(container_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self._results.get(container_id)

    def stop(self, container_id: str) -> bool:
        """
        Stop scheduling further nodes of a running container.

        An in-flight gateway call is not cancelled; its result is still
        written back to its node.

        Returns:
            True if the container was active
        """
        if container_id not in self._active:
            return False
        del self._active[container_id]
        logger.info(f"Stop requested for {container_id}")
        return True

    async def execute_all(self, multi_node_only: bool = True) -> list[ExecutionResult]:
        """
        Run every (multi-node) container concurrently.

        A container that cannot run (cycle, bad settings, already active)
        gets a failed result with `error` set; the others still run to the
        end. Unexpected exceptions are re-raised once every run has finished.
        """
        containers = [
            c for c in self.graph.containers() if c.is_multi_node or not multi_node_only
        ]
        outcomes = await asyncio.gather(
            *(self.execute(c.id) for c in containers), return_exceptions=True
        )

        results: list[ExecutionResult] = []
        unexpected: BaseException | None = None
        for container, outcome in zip(containers, outcomes):
            if isinstance(outcome, ExecutionResult):
                results.append(outcome)
            elif isinstance(outcome, WorkflowError):
                logger.error(f"✗ {container.id} did not run: {outcome}")
                results.append(
                    ExecutionResult(
                        container_id=container.id,
                        execution_id="",
                        error=str(outcome),
                        finished_at=datetime.now(),
                    )
                )
            elif unexpected is None:
                unexpected = outcome
        if unexpected is not None:
            raise unexpected
        return results

    # === AUTO-TRIGGER ===

    def attach(self) -> None:
        """Listen to graph changes so new connections can auto-trigger runs."""
        if self._unsubscribe is None:
            self._unsubscribe = self.graph.subscribe(self._on_graph_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_graph_change(self, change: GraphChange) -> None:
        if change.type == GraphChangeType.CONNECTION_ADDED and change.connection is not None:
            self.on_connection_created(change.connection)

    def on_connection_created(self, connection: Connection) -> list[asyncio.Task]:
        """
        Start runs for a new connection when auto-execution applies.

        Applies only when auto_execute is enabled and the source node was
        edited since its container last ran.

        Returns:
            Tasks started (empty when nothing was triggered)
        """
        if not self.settings.auto_execute:
            return []
        if not self.graph.has_node(connection.from_id):
            return []
        if not self.graph.get_node(connection.from_id).dirty:
            return []

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Auto-execution skipped: no running event loop")
            return []

        container_ids = {
            self.graph.container_of(node_id).id
            for node_id in connection.endpoints
            if self.graph.has_node(node_id)
        }
        tasks = []
        for container_id in sorted(container_ids):
            if self.is_active(container_id) or container_id in self._tasks:
                continue
            logger.info(f"Auto-executing {container_id} after new connection {connection.id}")
            tasks.append(self.start(container_id))
        return tasks

    # === WALK ===

    def _walk_order(self, container: WorkflowContainer) -> tuple[list[str], dict[str, int]]:
        """Start nodes and, for each reachable node, its count of reachable predecessors."""
        starts = [
            node.id
            for node in container.nodes
            if node.kind in (NodeKind.FIXED, NodeKind.EDITABLE) and not container.incoming(node.id)
        ]

        reachable = set(starts)
        queue = deque(starts)
        while queue:
            current = queue.popleft()
            for conn in container.outgoing(current):
                if conn.to_id not in reachable:
                    reachable.add(conn.to_id)
                    queue.append(conn.to_id)

        waiting = {
            node_id: len({c.from_id for c in container.incoming(node_id) if c.from_id in reachable})
            for node_id in reachable
        }
        return starts, waiting

    async def _walk(
        self,
        container: WorkflowContainer,
        settings: WorkflowSettings,
        result: ExecutionResult,
    ) -> None:
        starts, waiting = self._walk_order(container)
        if not starts:
            logger.info(f"No start nodes in {container.id}; nothing to run")
            return

        queue = deque(starts)
        visited: set[str] = set()
        while queue:
            if self._active.get(container.id) != result.execution_id:
                result.stopped = True
                return

            node_id = queue.popleft()
            if node_id in visited:
                continue
            visited.add(node_id)

            if self.graph.has_node(node_id):
                result.path.append(node_id)
                node = self.graph.get_node(node_id)
                if node.kind == NodeKind.GENERATIVE:
                    with trace_scope(node_id=node_id):
                        await self._run_generative(container, node, settings, result)

            for target_id in dict.fromkeys(c.to_id for c in container.outgoing(node_id)):
                if target_id not in waiting or target_id in visited:
                    continue
                waiting[target_id] -= 1
                if waiting[target_id] <= 0:
                    queue.append(target_id)

    def _gather_input_text(self, container: WorkflowContainer, node_id: str) -> str:
        parts = []
        for conn in container.incoming(node_id):
            if self.graph.has_node(conn.from_id):
                text = self.graph.get_node(conn.from_id).output.text
                if text:
                    parts.append(text)
        return "\n".join(parts)

    async def _run_generative(
        self,
        container: WorkflowContainer,
        node: Node,
        settings: WorkflowSettings,
        result: ExecutionResult,
    ) -> None:
        container_id = container.id
        execution_id = result.execution_id

        if not self._gather_input_text(container, node.id).strip():
            logger.info(f"Skipping {node.id}: no input text")
            result.skipped.append(node.id)
            if self.event_bus:
                await self.event_bus.emit_node_skipped(
                    container_id, node.id, execution_id, "no input text"
                )
            return

        node = self.graph.update_node(node.id, lambda n: n.mark_executing(), propagate=False)
        if self.event_bus:
            await self.event_bus.emit_node_started(container_id, node.id, execution_id)

        processing = node.processing
        if not isinstance(processing, GenerativeProcessing):
            raise TypeError(f"Node '{node.id}' is not generative")
        prompt = build_prompt(processing.system_prompt, node.input_context(), self.default_task)
        model = processing.model or settings.model_id

        logger.info(
            f"Calling {settings.active_provider}/{model} for {node.id}",
            extra={"provider": settings.active_provider, "model": model},
        )
        try:
            response = await self.gateway.complete(
                settings.active_provider,
                model,
                prompt,
                settings.credentials,
                processing.parameters.model_dump(),
            )
        except Exception as e:
            logger.error(f"Gateway raised for {node.id}: {e}", exc_info=True)
            response = CompletionResponse(error=str(e))

        if not self.graph.has_node(node.id):
            logger.warning(f"Node {node.id} was deleted while generating; result dropped")
            return

        if response.error is not None:
            error = response.error
            self.graph.update_node(node.id, lambda n: n.mark_error(error), propagate=False)
            result.errored[node.id] = error
            logger.warning(f"✗ {node.id} failed: {error}")
            if self.event_bus:
                await self.event_bus.emit_node_failed(container_id, node.id, execution_id, error)
            return

        content = response.content
        self.graph.update_node(node.id, lambda n: n.mark_completed(content))
        result.completed.append(node.id)
        logger.info(f"✓ {node.id} completed ({len(content)} chars)")
        if self.event_bus:
            await self.event_bus.emit_node_completed(container_id, node.id, execution_id, content)
