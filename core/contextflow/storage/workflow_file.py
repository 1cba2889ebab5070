"""
Workflow files - JSON persistence for a whole graph.

File layout:
  {
    "version": "2.0",
    "created": "...", "modified": "...",
    "viewport": {"x": 0, "y": 0, "zoom": 1.0},
    "nodes": [<node record>, ...],
    "connections": [<connection>, ...]
  }

A node record:
  node_type   fixed | editable | generative
  id, content (for generative nodes: the last result)
  metadata    {title, created_at, version, updated_at, position}
  inputs      [{source_id, data, weight, received_at, context_chain?, sources?}]
  processing  kind-specific configuration
  output      {type: "structured_context", value: {facts, history, task},
               sources, context_chain}
  execution   {state, started_at, completed_at, error}

Outputs are written for readers of the file but recomputed on load;
the node's content, inputs and execution record are the source of truth.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from contextflow.graph.connection import Connection
from contextflow.graph.context_chain import ContextChain, ContextChainItem, HistoryMessage
from contextflow.graph.errors import WorkflowFormatError
from contextflow.graph.kinds import NodeKind
from contextflow.graph.node import (
    ExecutionRecord,
    Node,
    NodeGeometry,
    NodeInput,
    NodeMetadata,
)
from contextflow.graph.workflow import WorkflowGraph
from contextflow.utils.io import atomic_write

logger = logging.getLogger(__name__)

FILE_VERSION = "2.0"


# ---------------------------------------------------------------------------
# Record models
# ---------------------------------------------------------------------------


class MetadataRecord(BaseModel):
    title: str = ""
    created_at: datetime = Field(default_factory=datetime.now)
    version: int = 1
    updated_at: datetime | None = None
    position: NodeGeometry | None = None

    model_config = {"extra": "allow"}


class InputRecord(BaseModel):
    source_id: str
    data: str = ""
    weight: float = 1.0
    received_at: datetime | None = None
    context_chain: list[ContextChainItem] | None = None
    sources: list[str] | None = None

    model_config = {"extra": "allow"}


class StructuredValueRecord(BaseModel):
    facts: list[str] = Field(default_factory=list)
    history: list[HistoryMessage] = Field(default_factory=list)
    task: str = ""


class OutputRecord(BaseModel):
    type: Literal["structured_context"] = "structured_context"
    value: StructuredValueRecord = Field(default_factory=StructuredValueRecord)
    sources: list[str] = Field(default_factory=list)
    context_chain: list[ContextChainItem] = Field(default_factory=list)

    model_config = {"extra": "allow"}


class NodeRecord(BaseModel):
    node_type: NodeKind
    id: str
    content: str = ""
    metadata: MetadataRecord = Field(default_factory=MetadataRecord)
    inputs: list[InputRecord] = Field(default_factory=list)
    processing: dict[str, Any] = Field(default_factory=dict)
    output: OutputRecord | None = None
    execution: ExecutionRecord = Field(default_factory=ExecutionRecord)

    model_config = {"extra": "allow"}


class Viewport(BaseModel):
    x: float = 0.0
    y: float = 0.0
    zoom: float = 1.0

    model_config = {"extra": "allow"}


class WorkflowFileModel(BaseModel):
    version: str = FILE_VERSION
    created: datetime = Field(default_factory=datetime.now)
    modified: datetime = Field(default_factory=datetime.now)
    viewport: Viewport = Field(default_factory=Viewport)
    # Kept raw so that one bad record does not reject the whole file
    nodes: list[Any] = Field(default_factory=list)
    connections: list[Any] = Field(default_factory=list)

    model_config = {"extra": "allow"}


# ---------------------------------------------------------------------------
# Node <-> record
# ---------------------------------------------------------------------------


def node_to_record(node: Node) -> NodeRecord:
    """Serialize a node into its persisted record."""
    is_generative = node.kind == NodeKind.GENERATIVE
    return NodeRecord(
        node_type=node.kind,
        id=node.id,
        content=(node.last_result or "") if is_generative else node.content,
        metadata=MetadataRecord(
            title=node.metadata.title,
            created_at=node.metadata.created_at,
            version=node.metadata.version,
            updated_at=node.metadata.updated_at,
            position=node.geometry,
        ),
        inputs=[
            InputRecord(
                source_id=i.source_id,
                data=i.value,
                weight=i.weight,
                received_at=i.received_at,
                context_chain=(
                    i.inherited_chain.to_list() if i.inherited_chain is not None else None
                ),
                sources=sorted(i.inherited_sources) if i.inherited_sources is not None else None,
            )
            for i in node.inputs
        ],
        processing=node.processing.model_dump(mode="json", exclude={"kind"}),
        output=OutputRecord(
            value=StructuredValueRecord(
                facts=list(node.payload.facts),
                history=list(node.payload.history),
                task=node.payload.task,
            ),
            sources=sorted(node.sources),
            context_chain=node.chain.to_list(),
        ),
        execution=node.execution.model_copy(),
    )


def node_from_record(record: NodeRecord | dict[str, Any]) -> Node:
    """
    Rebuild a node from its persisted record.

    Raises:
        ValidationError: If the record is malformed (unknown kind, bad fields,
            a fixed node holding inputs)
    """
    if not isinstance(record, NodeRecord):
        record = NodeRecord.model_validate(record)

    is_generative = record.node_type == NodeKind.GENERATIVE
    metadata = record.metadata
    inputs = [
        NodeInput(
            source_id=i.source_id,
            value=i.data,
            weight=i.weight,
            received_at=i.received_at or metadata.created_at,
            inherited_chain=(
                ContextChain.from_items(i.context_chain) if i.context_chain is not None else None
            ),
            inherited_sources=frozenset(i.sources) if i.sources is not None else None,
        )
        for i in record.inputs
    ]

    return Node.model_validate(
        {
            "id": record.id,
            "content": "" if is_generative else record.content,
            "last_result": (record.content or None) if is_generative else None,
            "processing": {**record.processing, "kind": record.node_type.value},
            "metadata": NodeMetadata(
                title=metadata.title,
                created_at=metadata.created_at,
                updated_at=metadata.updated_at or metadata.created_at,
                version=metadata.version,
            ),
            "geometry": metadata.position or NodeGeometry(),
            "inputs": inputs,
            "execution": record.execution,
        }
    )


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


@dataclass
class LoadedWorkflow:
    """A graph read from disk plus the file-level fields around it."""

    graph: WorkflowGraph
    path: Path
    version: str
    created: datetime
    modified: datetime
    viewport: Viewport
    skipped_nodes: list[str] = field(default_factory=list)
    skipped_connections: int = 0


def save_workflow(
    graph: WorkflowGraph,
    path: Path | str,
    viewport: Viewport | dict[str, Any] | None = None,
    created: datetime | None = None,
) -> Path:
    """
    Write a graph to a workflow file (atomically).

    Args:
        graph: Graph to save
        path: Destination file; parent directories are created
        viewport: Canvas viewport to store alongside the graph
        created: Original creation time (defaults to now for new files)

    Returns:
        The path written
    """
    path = Path(path)
    if isinstance(viewport, dict):
        viewport = Viewport.model_validate(viewport)

    snapshot = graph.snapshot()
    document = WorkflowFileModel(
        created=created or datetime.now(),
        viewport=viewport or Viewport(),
        nodes=[node_to_record(n).model_dump(mode="json") for n in snapshot.nodes.values()],
        connections=[c.model_dump(mode="json") for c in snapshot.connections],
    )

    path.parent.mkdir(parents=True, exist_ok=True)
    with atomic_write(path) as f:
        f.write(document.model_dump_json(indent=2))
    logger.info(f"Saved workflow {graph.id} to {path} ({len(snapshot.nodes)} nodes)")
    return path


def load_workflow(path: Path | str) -> LoadedWorkflow:
    """
    Read a workflow file.

    Malformed node records and connections whose endpoints are missing are
    skipped and logged; the rest of the file still loads.

    Raises:
        WorkflowFormatError: If the file cannot be read or is not a workflow document
    """
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8-sig"))
    except (OSError, json.JSONDecodeError) as e:
        raise WorkflowFormatError(f"Cannot read workflow file {path}: {e}") from e
    if not isinstance(raw, dict):
        raise WorkflowFormatError(f"Workflow file {path} does not contain a JSON object")

    try:
        document = WorkflowFileModel.model_validate(raw)
    except ValidationError as e:
        raise WorkflowFormatError(f"Workflow file {path} is malformed: {e}") from e

    nodes: list[Node] = []
    skipped_nodes: list[str] = []
    for index, raw_node in enumerate(document.nodes):
        label = raw_node.get("id", f"#{index}") if isinstance(raw_node, dict) else f"#{index}"
        try:
            nodes.append(node_from_record(raw_node))
        except (ValidationError, ValueError, TypeError) as e:
            logger.warning(f"Skipping malformed node record {label}: {e}")
            skipped_nodes.append(str(label))

    connections: list[Connection] = []
    bad_connections = 0
    for raw_conn in document.connections:
        try:
            connections.append(Connection.model_validate(raw_conn))
        except ValidationError as e:
            logger.warning(f"Skipping malformed connection: {e.error_count()} validation error(s)")
            bad_connections += 1

    graph = WorkflowGraph.restore(nodes, connections, workflow_id=path.stem)
    skipped_connections = bad_connections + len(connections) - len(graph.connections)

    logger.info(f"Loaded {path}: {len(graph.nodes)} nodes, {len(graph.connections)} connections")
    if skipped_nodes or skipped_connections:
        logger.warning(
            f"Skipped {len(skipped_nodes)} node(s) and {skipped_connections} connection(s) "
            f"while loading {path}"
        )
    return LoadedWorkflow(
        graph=graph,
        path=path,
        version=document.version,
        created=document.created,
        modified=document.modified,
        viewport=document.viewport,
        skipped_nodes=skipped_nodes,
        skipped_connections=skipped_connections,
    )
