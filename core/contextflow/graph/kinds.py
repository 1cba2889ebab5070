"""Enumerations shared by nodes, context chains and the executor."""

from enum import StrEnum


class NodeKind(StrEnum):
    """The three node kinds a workflow can hold."""

    FIXED = "fixed"  # Static text, never receives inputs
    EDITABLE = "editable"  # User text wrapped around its inputs
    GENERATIVE = "generative"  # Text produced by the completion gateway


class Purpose(StrEnum):
    """What a Fixed/Editable node contributes to downstream context."""

    FACT = "fact"
    TASK = "task"


class ExecutionState(StrEnum):
    """Per-node execution state."""

    IDLE = "idle"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ERRORED = "error"


class ContributionType(StrEnum):
    """Type tag of a single context chain contribution."""

    FACT = "fact"
    TASK = "task"
    HISTORY = "history"
