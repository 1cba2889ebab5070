"""Dependency ordering for workflow nodes."""

from collections.abc import Iterable, Sequence

from contextflow.graph.connection import Connection
from contextflow.graph.errors import CircularDependency


def dependency_order(node_ids: Sequence[str], connections: Iterable[Connection]) -> list[str]:
    """
    Order nodes so every node comes after the nodes that feed it.

    Only connections between the given nodes are considered. Ties keep
    the order of node_ids.

    Args:
        node_ids: Nodes to order
        connections: Connections among (and possibly beyond) those nodes

    Returns:
        Node ids, dependencies first

    Raises:
        CircularDependency: If the connections among node_ids form a cycle
    """
    known = set(node_ids)
    dependencies: dict[str, list[str]] = {node_id: [] for node_id in node_ids}
    for conn in connections:
        if conn.from_id in known and conn.to_id in known:
            dependencies[conn.to_id].append(conn.from_id)

    order: list[str] = []
    visited: set[str] = set()
    visiting: set[str] = set()

    def visit(node_id: str) -> None:
        if node_id in visited:
            return
        if node_id in visiting:
            raise CircularDependency(node_id)
        visiting.add(node_id)
        for dependency in dependencies[node_id]:
            visit(dependency)
        visiting.discard(node_id)
        visited.add(node_id)
        order.append(node_id)

    for node_id in node_ids:
        visit(node_id)
    return order


def find_cycle_node(node_ids: Sequence[str], connections: Iterable[Connection]) -> str | None:
    """Return a node on a cycle, or None when the nodes are acyclic."""
    try:
        dependency_order(node_ids, connections)
    except CircularDependency as e:
        return e.node_id
    return None
