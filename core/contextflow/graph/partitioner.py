"""
Graph partitioning - groups nodes into workflow containers.

A container is a weakly-connected component of the graph: connections
are treated as undirected, and every node reachable from another (in
either direction) lands in the same container. Containers are the unit
of execution.

Containers are a pure function of the current nodes and connections.
ContainerIndex memoizes the last computation so repeated reads of an
unchanged graph do not redo the traversal.
"""

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from contextflow.graph.connection import Connection
from contextflow.graph.node import Node

logger = logging.getLogger(__name__)

BOUNDS_PADDING = 20.0


@dataclass(frozen=True)
class ContainerBounds:
    """Bounding box around a container's nodes (padded)."""

    x: float
    y: float
    width: float
    height: float


@dataclass
class WorkflowContainer:
    """A group of connected nodes and the connections between them."""

    id: str
    nodes: list[Node]
    connections: list[Connection]
    bounds: ContainerBounds
    is_multi_node: bool
    node_ids: frozenset[str] = field(init=False)

    def __post_init__(self) -> None:
        self.node_ids = frozenset(node.id for node in self.nodes)

    def has_node(self, node_id: str) -> bool:
        return node_id in self.node_ids

    def get_node(self, node_id: str) -> Node | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def incoming(self, node_id: str) -> list[Connection]:
        return [c for c in self.connections if c.to_id == node_id]

    def outgoing(self, node_id: str) -> list[Connection]:
        return [c for c in self.connections if c.from_id == node_id]


def container_id_for(node_ids: Iterable[str]) -> str:
    """Stable container id derived from its sorted member ids."""
    return "workflow-" + "-".join(sorted(node_ids))


def _unique_id(candidate: str, used: set[str]) -> str:
    # Ids containing "-" can collide, e.g. lone "a-b" vs the pair "a", "b"
    container_id = candidate
    suffix = 2
    while container_id in used:
        container_id = f"{candidate}#{suffix}"
        suffix += 1
    if container_id != candidate:
        logger.debug(f"Container id {candidate} already taken, using {container_id}")
    used.add(container_id)
    return container_id


def compute_bounds(nodes: Sequence[Node], padding: float = BOUNDS_PADDING) -> ContainerBounds:
    if not nodes:
        return ContainerBounds(0.0, 0.0, 0.0, 0.0)
    min_x = min(n.geometry.x for n in nodes)
    min_y = min(n.geometry.y for n in nodes)
    max_x = max(n.geometry.x + n.geometry.width for n in nodes)
    max_y = max(n.geometry.y + n.geometry.height for n in nodes)
    return ContainerBounds(
        x=min_x - padding,
        y=min_y - padding,
        width=(max_x - min_x) + 2 * padding,
        height=(max_y - min_y) + 2 * padding,
    )


def detect_components(
    node_ids: Sequence[str],
    connections: Iterable[Connection],
) -> list[list[str]]:
    """
    Find weakly-connected components.

    Connections whose endpoints are not both in node_ids are ignored.
    Components come out in the order their first node appears in
    node_ids; members are listed in discovery order.
    """
    known = set(node_ids)
    adjacency: dict[str, list[str]] = {node_id: [] for node_id in node_ids}
    for conn in connections:
        if conn.from_id in known and conn.to_id in known:
            adjacency[conn.from_id].append(conn.to_id)
            adjacency[conn.to_id].append(conn.from_id)

    visited: set[str] = set()
    components: list[list[str]] = []
    for start in node_ids:
        if start in visited:
            continue
        component: list[str] = []
        stack = [start]
        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            component.append(current)
            # Reversed so neighbours are explored in connection order
            stack.extend(n for n in reversed(adjacency[current]) if n not in visited)
        components.append(component)
    return components


def _assemble(
    components: Iterable[list[str]],
    node_map: Mapping[str, Node],
    connections: Sequence[Connection],
) -> list[WorkflowContainer]:
    containers = []
    used: set[str] = set()
    for component in components:
        members = set(component)
        internal = [c for c in connections if c.from_id in members and c.to_id in members]
        group = [node_map[node_id] for node_id in component]
        containers.append(
            WorkflowContainer(
                id=_unique_id(container_id_for(component), used),
                nodes=group,
                connections=internal,
                bounds=compute_bounds(group),
                is_multi_node=len(group) > 1 or bool(internal),
            )
        )
    return containers


def detect_containers(
    nodes: Mapping[str, Node] | Iterable[Node],
    connections: Iterable[Connection],
) -> list[WorkflowContainer]:
    """Partition the graph into workflow containers."""
    if isinstance(nodes, Mapping):
        node_map = dict(nodes)
    else:
        node_map = {node.id: node for node in nodes}
    connections = list(connections)
    return _assemble(detect_components(list(node_map), connections), node_map, connections)


def _layout_key(nodes: Iterable[Node], connections: Iterable[Connection]) -> tuple:
    node_part = tuple(
        (n.id, n.geometry.x, n.geometry.y, n.geometry.width, n.geometry.height) for n in nodes
    )
    conn_part = tuple(sorted((c.id, c.from_id, c.to_id) for c in connections))
    return (node_part, conn_part)


class ContainerIndex:
    """
    Memoized container detection.

    The component partition is cached on node ids, geometry and the
    connection set. Containers are always assembled from the node objects
    passed in, so content edits show up without a re-partition.
    """

    def __init__(self) -> None:
        self._key: tuple | None = None
        self._components: list[list[str]] = []

    def containers(
        self,
        nodes: Mapping[str, Node],
        connections: Sequence[Connection],
    ) -> list[WorkflowContainer]:
        key = _layout_key(nodes.values(), connections)
        if key != self._key:
            self._components = detect_components(list(nodes), connections)
            self._key = key
            logger.debug(f"Recomputed {len(self._components)} container(s)")
        return _assemble(self._components, nodes, connections)

    def invalidate(self) -> None:
        self._key = None
