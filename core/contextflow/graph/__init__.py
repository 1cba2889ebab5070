"""Graph structures: nodes, connections, context chains and containers."""

from contextflow.graph.connection import Connection
from contextflow.graph.context_chain import (
    EMPTY_CHAIN,
    ContextChain,
    ContextChainItem,
    HistoryMessage,
    NodeOutput,
    StructuredContext,
    build_context_chain,
    build_structured_context,
    context_stats,
    merge_workflow_outputs,
    validate_context_chain,
)
from contextflow.graph.errors import (
    CircularDependency,
    ConfigurationError,
    ContainerNotFound,
    ExecutionAlreadyActive,
    InvalidOperation,
    NodeNotFound,
    WorkflowError,
    WorkflowFormatError,
)
from contextflow.graph.kinds import ExecutionState, NodeKind, Purpose
from contextflow.graph.node import (
    EditableProcessing,
    FixedProcessing,
    GenerationParameters,
    GenerativeProcessing,
    Node,
    NodeInput,
)
from contextflow.graph.ordering import dependency_order
from contextflow.graph.partitioner import WorkflowContainer, detect_containers
from contextflow.graph.workflow import GraphChange, GraphChangeType, WorkflowGraph

__all__ = [
    # Nodes
    "Node",
    "NodeInput",
    "NodeKind",
    "Purpose",
    "ExecutionState",
    "FixedProcessing",
    "EditableProcessing",
    "GenerativeProcessing",
    "GenerationParameters",
    # Context
    "EMPTY_CHAIN",
    "ContextChain",
    "ContextChainItem",
    "HistoryMessage",
    "NodeOutput",
    "StructuredContext",
    "build_context_chain",
    "build_structured_context",
    "merge_workflow_outputs",
    "validate_context_chain",
    "context_stats",
    # Graph
    "Connection",
    "WorkflowGraph",
    "GraphChange",
    "GraphChangeType",
    "WorkflowContainer",
    "detect_containers",
    "dependency_order",
    # Errors
    "WorkflowError",
    "InvalidOperation",
    "NodeNotFound",
    "ContainerNotFound",
    "CircularDependency",
    "ExecutionAlreadyActive",
    "ConfigurationError",
    "WorkflowFormatError",
]
