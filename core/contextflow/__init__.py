"""
contextflow - dependency-graph execution and context propagation for
text workflows.

Nodes (fixed text, editable text, generated text) are wired into graphs;
each node carries a context chain recording every upstream contribution,
and generative nodes turn that context into prompts for a completion
provider.
"""

from contextflow.graph import (
    Connection,
    ContextChain,
    Node,
    NodeKind,
    Purpose,
    WorkflowContainer,
    WorkflowGraph,
)

__version__ = "0.3.0"

__all__ = [
    "Connection",
    "ContextChain",
    "Node",
    "NodeKind",
    "Purpose",
    "WorkflowContainer",
    "WorkflowGraph",
]
