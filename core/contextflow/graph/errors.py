"""Exceptions raised by the workflow graph and its executor."""


class WorkflowError(Exception):
    """Base class for every workflow-level error."""


class InvalidOperation(WorkflowError):
    """A structural edit that the graph refuses (state is left unchanged)."""


class NodeNotFound(WorkflowError):
    """Raised when an operation references a node id that does not exist."""

    def __init__(self, node_id: str):
        super().__init__(f"Node '{node_id}' not found")
        self.node_id = node_id


class ContainerNotFound(WorkflowError):
    """Raised when a workflow container id no longer resolves.

    Containers are derived from the current graph, so an id can be
    invalidated by any concurrent node or connection edit.
    """

    def __init__(self, container_id: str):
        super().__init__(f"Workflow container '{container_id}' not found")
        self.container_id = container_id


class CircularDependency(WorkflowError):
    """Raised when dependency ordering meets a true cycle."""

    def __init__(self, node_id: str):
        super().__init__(f"Circular dependency detected involving node {node_id}")
        self.node_id = node_id


class ExecutionAlreadyActive(WorkflowError):
    """Raised when a container that is already running is executed again."""

    def __init__(self, container_id: str):
        super().__init__(f"Workflow container '{container_id}' is already executing")
        self.container_id = container_id


class ConfigurationError(WorkflowError):
    """Raised when provider settings are not usable for a run."""


class WorkflowFormatError(WorkflowError):
    """Raised when a workflow file cannot be read at all."""
