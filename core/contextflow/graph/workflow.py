"""
Workflow graph - single owner of nodes and connections.

Every mutation works on a private copy of the collections (cloning each
node it touches) and installs the result in one step, so a snapshot taken
before a mutation never changes underneath its reader. All mutations are
expected to come from one task; there is no locking.

Context propagation (attaching a node's output to the nodes it feeds)
happens here, on structural and content edits. Execution is the
executor's job.
"""

import logging
import uuid
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType

from contextflow.graph.connection import Connection
from contextflow.graph.errors import (
    CircularDependency,
    ContainerNotFound,
    InvalidOperation,
    NodeNotFound,
)
from contextflow.graph.kinds import NodeKind
from contextflow.graph.node import Node
from contextflow.graph.ordering import dependency_order
from contextflow.graph.partitioner import ContainerIndex, WorkflowContainer

logger = logging.getLogger(__name__)


class GraphChangeType(StrEnum):
    NODE_ADDED = "node_added"
    NODE_UPDATED = "node_updated"
    NODE_DELETED = "node_deleted"
    CONNECTION_ADDED = "connection_added"
    CONNECTION_DELETED = "connection_deleted"


@dataclass(frozen=True)
class GraphChange:
    """Notification sent to graph listeners after a mutation is installed."""

    type: GraphChangeType
    node_id: str | None = None
    connection: Connection | None = None


GraphListener = Callable[[GraphChange], None]


@dataclass(frozen=True)
class GraphSnapshot:
    """Read-only view of the graph at one point in time."""

    nodes: Mapping[str, Node]
    connections: tuple[Connection, ...]


class _Transaction:
    """Working copy of the collections; nodes are cloned on first write."""

    def __init__(self, nodes: Mapping[str, Node], connections: Iterable[Connection]):
        self.nodes: dict[str, Node] = dict(nodes)
        self.connections: list[Connection] = list(connections)
        self._cloned: set[str] = set()

    def writable(self, node_id: str) -> Node:
        if node_id not in self._cloned:
            self.nodes[node_id] = self.nodes[node_id].clone()
            self._cloned.add(node_id)
        return self.nodes[node_id]

    def propagate_from(self, node_id: str) -> list[str]:
        """Push outputs downstream of node_id, sources before their targets.

        Nodes reachable from node_id forward their output in dependency
        order, so each one has all of its refreshed inputs before it is
        pushed further. On a cycle the breadth-first order is used and
        every node forwards once.

        Returns:
            Ids of the nodes whose inputs were refreshed
        """
        reachable = [node_id]
        seen = {node_id}
        queue = deque([node_id])
        while queue:
            current = queue.popleft()
            for conn in self.connections:
                if conn.from_id == current and conn.to_id in self.nodes and conn.to_id not in seen:
                    seen.add(conn.to_id)
                    reachable.append(conn.to_id)
                    queue.append(conn.to_id)

        try:
            order = dependency_order(reachable, self.connections)
        except CircularDependency:
            order = reachable

        touched: list[str] = []
        for current in order:
            source = self.nodes[current]
            for conn in self.connections:
                if conn.from_id != current or conn.to_id not in self.nodes:
                    continue
                if self.nodes[conn.to_id].kind == NodeKind.FIXED:
                    logger.warning(f"Skipping propagation into fixed node '{conn.to_id}'")
                    continue
                target = self.writable(conn.to_id)
                target.attach_input(
                    current,
                    source.output.text,
                    source_chain=source.output.chain,
                    source_sources=source.output.sources,
                )
                touched.append(conn.to_id)
        return touched


class WorkflowGraph:
    """
    Arena of nodes keyed by id plus the connections between them.

    Example:
        graph = WorkflowGraph()
        graph.add_node(Node.create_fixed("a", "Paris is the capital of France"))
        graph.add_node(Node.create_generative("b", "Answer using the given facts."))
        graph.add_connection("a", "b")
        assert graph.get_node("b").input_context().facts == ["Paris is the capital of France"]
    """

    def __init__(self, workflow_id: str | None = None):
        self.id = workflow_id or f"wf_{uuid.uuid4().hex[:8]}"
        self._nodes: Mapping[str, Node] = MappingProxyType({})
        self._connections: tuple[Connection, ...] = ()
        self._index = ContainerIndex()
        self._listeners: list[GraphListener] = []

    @classmethod
    def restore(
        cls,
        nodes: Iterable[Node],
        connections: Iterable[Connection],
        workflow_id: str | None = None,
    ) -> "WorkflowGraph":
        """
        Rebuild a graph from stored records without re-propagating.

        Duplicate node ids and connections with a missing endpoint are
        skipped with a warning.
        """
        graph = cls(workflow_id)
        node_map: dict[str, Node] = {}
        for node in nodes:
            if node.id in node_map:
                logger.warning(f"Skipping duplicate node '{node.id}'")
                continue
            node_map[node.id] = node

        kept: list[Connection] = []
        for conn in connections:
            if conn.from_id not in node_map or conn.to_id not in node_map:
                logger.warning(
                    f"Skipping connection '{conn.id}': missing endpoint "
                    f"({conn.from_id} -> {conn.to_id})"
                )
                continue
            if conn.from_id == conn.to_id:
                logger.warning(f"Skipping self-connection '{conn.id}' on '{conn.from_id}'")
                continue
            if node_map[conn.to_id].kind == NodeKind.FIXED:
                logger.warning(f"Skipping connection '{conn.id}' into fixed node '{conn.to_id}'")
                continue
            kept.append(conn)

        graph._install(_Transaction(node_map, kept))
        return graph

    # === READS ===

    @property
    def nodes(self) -> Mapping[str, Node]:
        return self._nodes

    @property
    def connections(self) -> tuple[Connection, ...]:
        return self._connections

    def snapshot(self) -> GraphSnapshot:
        return GraphSnapshot(nodes=self._nodes, connections=self._connections)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def get_node(self, node_id: str) -> Node:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise NodeNotFound(node_id) from None

    def connections_for(self, node_id: str) -> list[Connection]:
        """All connections where node_id is either endpoint."""
        return [c for c in self._connections if c.touches(node_id)]

    def incoming(self, node_id: str) -> list[Connection]:
        return [c for c in self._connections if c.to_id == node_id]

    def outgoing(self, node_id: str) -> list[Connection]:
        return [c for c in self._connections if c.from_id == node_id]

    def find_connection(self, from_id: str, to_id: str) -> Connection | None:
        for conn in self._connections:
            if conn.from_id == from_id and conn.to_id == to_id:
                return conn
        return None

    def containers(self) -> list[WorkflowContainer]:
        return self._index.containers(self._nodes, self._connections)

    def find_container(self, container_id: str) -> WorkflowContainer:
        for container in self.containers():
            if container.id == container_id:
                return container
        raise ContainerNotFound(container_id)

    def container_of(self, node_id: str) -> WorkflowContainer:
        self.get_node(node_id)
        for container in self.containers():
            if container.has_node(node_id):
                return container
        raise NodeNotFound(node_id)

    def dependency_order(self, container_id: str | None = None) -> list[str]:
        """Dependency-first node order for one container, or the whole graph.

        Raises:
            CircularDependency: If the connections form a cycle
        """
        if container_id is None:
            return dependency_order(list(self._nodes), self._connections)
        container = self.find_container(container_id)
        return dependency_order([n.id for n in container.nodes], container.connections)

    # === MUTATIONS ===

    def subscribe(self, listener: GraphListener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def add_node(self, node: Node) -> Node:
        if node.id in self._nodes:
            raise InvalidOperation(f"Node '{node.id}' already exists")
        txn = self._begin()
        txn.nodes[node.id] = node
        self._install(txn, GraphChange(GraphChangeType.NODE_ADDED, node_id=node.id))
        logger.debug(f"Added {node.kind} node '{node.id}'")
        return node

    def update_node(
        self,
        node_id: str,
        fn: Callable[[Node], object],
        propagate: bool = True,
    ) -> Node:
        """
        Apply fn to a private copy of the node and install the result.

        Args:
            node_id: Node to update
            fn: Mutator called with the node copy; its return value is ignored
            propagate: Re-attach the node's output downstream afterwards

        Returns:
            The updated node

        Raises:
            NodeNotFound: If the node does not exist
        """
        self.get_node(node_id)
        txn = self._begin()
        fn(txn.writable(node_id))
        if propagate:
            txn.propagate_from(node_id)
        self._install(txn, GraphChange(GraphChangeType.NODE_UPDATED, node_id=node_id))
        return self._nodes[node_id]

    def set_node_content(self, node_id: str, text: str) -> Node:
        return self.update_node(node_id, lambda node: node.set_content(text))

    def move_node(self, node_id: str, x: float, y: float) -> Node:
        def move(node: Node) -> None:
            node.geometry = node.geometry.model_copy(update={"x": x, "y": y})

        return self.update_node(node_id, move, propagate=False)

    def resize_node(self, node_id: str, width: float, height: float) -> Node:
        if width <= 0 or height <= 0:
            raise InvalidOperation(f"Invalid size {width}x{height} for node '{node_id}'")

        def resize(node: Node) -> None:
            node.geometry = node.geometry.model_copy(update={"width": width, "height": height})

        return self.update_node(node_id, resize, propagate=False)

    def delete_node(self, node_id: str) -> Node:
        """Remove a node and every connection that references it."""
        node = self.get_node(node_id)
        txn = self._begin()
        del txn.nodes[node_id]
        targets = [c.to_id for c in txn.connections if c.from_id == node_id]
        removed = [c for c in txn.connections if c.touches(node_id)]
        txn.connections = [c for c in txn.connections if not c.touches(node_id)]
        for target_id in dict.fromkeys(targets):
            txn.writable(target_id).detach_input(node_id)
            txn.propagate_from(target_id)
        self._install(txn, GraphChange(GraphChangeType.NODE_DELETED, node_id=node_id))
        logger.debug(f"Deleted node '{node_id}' and {len(removed)} connection(s)")
        return node

    def add_connection(
        self,
        from_id: str,
        to_id: str,
        from_port: str = "output",
        to_port: str = "input",
    ) -> Connection:
        """
        Connect two nodes and propagate the source's output into the target.

        Returns:
            The new connection, or the existing one for a duplicate pair

        Raises:
            NodeNotFound: If either endpoint does not exist
            InvalidOperation: For a self-connection or a fixed target
        """
        if from_id == to_id:
            raise InvalidOperation(f"Cannot connect node '{from_id}' to itself")
        self.get_node(from_id)
        target = self.get_node(to_id)
        if target.kind == NodeKind.FIXED:
            raise InvalidOperation(f"Fixed node '{to_id}' cannot receive inputs")

        existing = self.find_connection(from_id, to_id)
        if existing is not None:
            return existing

        connection = Connection(from_id=from_id, to_id=to_id, from_port=from_port, to_port=to_port)
        txn = self._begin()
        txn.connections.append(connection)
        txn.propagate_from(from_id)
        self._install(txn, GraphChange(GraphChangeType.CONNECTION_ADDED, connection=connection))
        logger.debug(f"Connected '{from_id}' -> '{to_id}'")
        return connection

    def delete_connection(self, connection_id: str) -> Connection:
        for conn in self._connections:
            if conn.id == connection_id:
                break
        else:
            raise InvalidOperation(f"Connection '{connection_id}' not found")

        txn = self._begin()
        txn.connections = [c for c in txn.connections if c.id != connection_id]
        txn.writable(conn.to_id).detach_input(conn.from_id)
        txn.propagate_from(conn.to_id)
        self._install(txn, GraphChange(GraphChangeType.CONNECTION_DELETED, connection=conn))
        return conn

    def propagate_from(self, node_id: str) -> list[str]:
        """Re-attach a node's output to everything downstream of it."""
        self.get_node(node_id)
        txn = self._begin()
        touched = txn.propagate_from(node_id)
        self._install(txn, GraphChange(GraphChangeType.NODE_UPDATED, node_id=node_id))
        return touched

    def clear_dirty(self, node_ids: Iterable[str]) -> None:
        txn = self._begin()
        for node_id in node_ids:
            if node_id in txn.nodes and txn.nodes[node_id].dirty:
                txn.writable(node_id).dirty = False
        self._install(txn)

    # === INTERNALS ===

    def _begin(self) -> _Transaction:
        return _Transaction(self._nodes, self._connections)

    def _install(self, txn: _Transaction, change: GraphChange | None = None) -> None:
        self._nodes = MappingProxyType(txn.nodes)
        self._connections = tuple(txn.connections)
        if change is None:
            return
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as e:
                logger.error(f"Graph listener error for {change.type}: {e}", exc_info=True)
