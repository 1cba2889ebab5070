"""
Node Protocol - The typed units a workflow is built from.

Three kinds of node exist:
- fixed: static text. Never receives inputs.
- editable: user text wrapped around whatever its inputs carry, rendered
  through a template with {inputs}/{content} placeholders.
- generative: text produced by the completion gateway from the context its
  inputs carry.

Each node owns its configuration (the kind-specific `processing` block),
the inputs attached by upstream nodes, and a derived `output` that is
recomputed whenever content, inputs or execution results change.

Execution state machine:
    idle -> executing -> completed | error
A finished node may be moved back to executing by a new run; no
transition skips executing.
"""

import logging
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, model_validator

from contextflow.graph.context_chain import (
    EMPTY_CHAIN,
    ContextChain,
    ContextChainItem,
    FactContribution,
    HistoryContribution,
    HistoryMessage,
    NodeOutput,
    StructuredContext,
    TaskContribution,
    build_context_chain,
    build_structured_context,
    collect_sources,
    inherit_chains,
)
from contextflow.graph.errors import InvalidOperation
from contextflow.graph.kinds import ExecutionState, NodeKind, Purpose

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE = "{inputs}\n{content}"

DEFAULT_SYSTEM_PROMPT = (
    "You are a component in a workflow. The user is building a machine or factory. "
    "Interpret prompts in this context. The term 'machine' refers to the workflow "
    "you are part of."
)


# ---------------------------------------------------------------------------
# Kind-specific configuration (closed tagged union)
# ---------------------------------------------------------------------------


class GenerationParameters(BaseModel):
    """Sampling parameters forwarded to the completion gateway."""

    temperature: float = 0.7
    max_tokens: int = 1000

    model_config = {"extra": "allow"}


class FixedProcessing(BaseModel):
    kind: Literal["fixed"] = "fixed"
    purpose: Purpose = Purpose.FACT

    @property
    def processing_tag(self) -> str:
        return "static"


class EditableProcessing(BaseModel):
    kind: Literal["editable"] = "editable"
    template: str = DEFAULT_TEMPLATE
    purpose: Purpose = Purpose.FACT
    envelope_style: str = "prompt_wrapper"

    @property
    def processing_tag(self) -> str:
        return self.envelope_style


class GenerativeProcessing(BaseModel):
    kind: Literal["generative"] = "generative"
    type: str = "ai_completion"
    model: str = Field(default="", description="Model override; empty uses the settings model")
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    parameters: GenerationParameters = Field(default_factory=GenerationParameters)

    @property
    def processing_tag(self) -> str:
        return self.type


NodeProcessing = Annotated[
    FixedProcessing | EditableProcessing | GenerativeProcessing,
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Node records
# ---------------------------------------------------------------------------


class NodeInput(BaseModel):
    """Data attached to a node by one upstream source."""

    source_id: str
    value: str = ""
    weight: float = 1.0
    received_at: datetime = Field(default_factory=datetime.now)
    inherited_chain: ContextChain | None = None
    inherited_sources: frozenset[str] | None = None

    model_config = {"frozen": True, "arbitrary_types_allowed": True}


class NodeMetadata(BaseModel):
    title: str = ""
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    version: int = 1


class NodeGeometry(BaseModel):
    """Canvas placement; used for container bounds."""

    x: float = 0.0
    y: float = 0.0
    width: float = 200.0
    height: float = 120.0


class ExecutionRecord(BaseModel):
    state: ExecutionState = ExecutionState.IDLE
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None


class Node(BaseModel):
    """
    A single workflow node.

    Example:
        fact = Node.create_fixed("a", "Paris is the capital of France")
        answer = Node.create_generative("b", "Answer using the given facts.")
        answer.attach_input("a", fact.output.text, source_chain=fact.output.chain)
        assert answer.input_context().facts == ["Paris is the capital of France"]
    """

    id: str
    content: str = ""
    processing: NodeProcessing
    metadata: NodeMetadata = Field(default_factory=NodeMetadata)
    geometry: NodeGeometry = Field(default_factory=NodeGeometry)
    inputs: list[NodeInput] = Field(default_factory=list)
    output: NodeOutput = Field(default_factory=NodeOutput)
    execution: ExecutionRecord = Field(default_factory=ExecutionRecord)

    # Raw text of the last successful generation (generative nodes only)
    last_result: str | None = None

    # Content changed since the node's container last ran
    dirty: bool = False

    model_config = {"arbitrary_types_allowed": True}

    @model_validator(mode="after")
    def _check_kind_invariants(self) -> "Node":
        if self.kind == NodeKind.FIXED and self.inputs:
            raise ValueError(f"Fixed node '{self.id}' cannot hold inputs")
        return self

    def model_post_init(self, __context: Any) -> None:
        if not self.metadata.title:
            self.metadata.title = f"{self.kind}_{self.id}"
        self.recompute_output()

    # === FACTORIES ===

    @classmethod
    def create_fixed(
        cls,
        node_id: str,
        content: str = "",
        purpose: Purpose = Purpose.FACT,
        title: str = "",
    ) -> "Node":
        return cls(
            id=node_id,
            content=content,
            processing=FixedProcessing(purpose=purpose),
            metadata=NodeMetadata(title=title),
            dirty=bool(content),
        )

    @classmethod
    def create_editable(
        cls,
        node_id: str,
        content: str = "",
        template: str = DEFAULT_TEMPLATE,
        purpose: Purpose = Purpose.FACT,
        title: str = "",
    ) -> "Node":
        return cls(
            id=node_id,
            content=content,
            processing=EditableProcessing(template=template, purpose=purpose),
            metadata=NodeMetadata(title=title),
            dirty=bool(content),
        )

    @classmethod
    def create_generative(
        cls,
        node_id: str,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        params: GenerationParameters | dict[str, Any] | None = None,
        model: str = "",
        title: str = "",
    ) -> "Node":
        if isinstance(params, dict):
            params = GenerationParameters(**params)
        return cls(
            id=node_id,
            processing=GenerativeProcessing(
                system_prompt=system_prompt,
                model=model,
                parameters=params or GenerationParameters(),
            ),
            metadata=NodeMetadata(title=title),
        )

    # === PROPERTIES ===

    @property
    def kind(self) -> NodeKind:
        return NodeKind(self.processing.kind)

    @property
    def state(self) -> ExecutionState:
        return self.execution.state

    @property
    def chain(self) -> ContextChain:
        return self.output.chain

    @property
    def sources(self) -> frozenset[str]:
        return self.output.sources

    @property
    def payload(self) -> StructuredContext:
        return self.output.payload

    def get_input(self, source_id: str) -> NodeInput | None:
        for node_input in self.inputs:
            if node_input.source_id == source_id:
                return node_input
        return None

    # === MUTATIONS ===

    def set_content(self, text: str) -> "Node":
        """Replace the node's content and recompute its output (no execution)."""
        self.content = text
        self.metadata.version += 1
        self.metadata.updated_at = datetime.now()
        self.dirty = True
        self.recompute_output()
        return self

    def attach_input(
        self,
        source_id: str,
        value: str,
        weight: float = 1.0,
        source_chain: ContextChain | list[ContextChainItem] | None = None,
        source_sources: frozenset[str] | set[str] | list[str] | None = None,
    ) -> "Node":
        """
        Attach (or replace) the input coming from one upstream source.

        Raises:
            InvalidOperation: If this is a fixed node
        """
        if self.kind == NodeKind.FIXED:
            raise InvalidOperation(f"Fixed node '{self.id}' cannot receive inputs")

        if source_chain is not None and not isinstance(source_chain, ContextChain):
            source_chain = ContextChain.from_items(source_chain)

        node_input = NodeInput(
            source_id=source_id,
            value=value,
            weight=weight,
            inherited_chain=source_chain,
            inherited_sources=frozenset(source_sources) if source_sources is not None else None,
        )
        self.inputs = [i for i in self.inputs if i.source_id != source_id] + [node_input]
        self.recompute_output()
        return self

    def detach_input(self, source_id: str) -> "Node":
        """Remove the input from one upstream source and recompute the output."""
        self.inputs = [i for i in self.inputs if i.source_id != source_id]
        self.recompute_output()
        return self

    def mark_executing(self) -> "Node":
        self.execution = ExecutionRecord(
            state=ExecutionState.EXECUTING,
            started_at=datetime.now(),
        )
        return self

    def mark_completed(self, result: str | None = None) -> "Node":
        """Finish an execution attempt; generative nodes store `result`."""
        self._require_executing("complete")
        self.execution.state = ExecutionState.COMPLETED
        self.execution.completed_at = datetime.now()
        if result is not None and self.kind == NodeKind.GENERATIVE:
            self.last_result = result
            self.recompute_output()
        return self

    def mark_error(self, error: Any) -> "Node":
        self._require_executing("fail")
        self.execution.state = ExecutionState.ERRORED
        self.execution.completed_at = datetime.now()
        self.execution.error = str(error)
        return self

    def _require_executing(self, action: str) -> None:
        if self.execution.state != ExecutionState.EXECUTING:
            raise InvalidOperation(
                f"Cannot {action} node '{self.id}' in state '{self.execution.state}'; "
                "it must be executing first"
            )

    # === DERIVED OUTPUT ===

    def inherited_chain(self) -> ContextChain:
        """Chain inherited from inputs, in input order (first occurrence wins)."""
        return inherit_chains(node_input.inherited_chain for node_input in self.inputs)

    def input_context(self) -> StructuredContext:
        """Structured context of everything upstream, excluding this node."""
        return build_structured_context(self.inherited_chain())

    def input_text(self) -> str:
        """Newline-joined, non-empty input values."""
        return "\n".join(i.value for i in self.inputs if i.value)

    def own_contribution(self) -> ContextChainItem | None:
        """This node's own chain entry, or None when it has nothing to add."""
        processing = self.processing
        if isinstance(processing, FixedProcessing | EditableProcessing):
            if not self.content:
                return None
            if processing.purpose == Purpose.TASK:
                contribution = TaskContribution(content=self.content)
            else:
                contribution = FactContribution(content=self.content)
            timestamp = self.metadata.updated_at
        elif isinstance(processing, GenerativeProcessing):
            contribution = HistoryContribution(
                content=HistoryMessage(role="assistant", content=self.last_result or "")
            )
            timestamp = self.execution.completed_at or self.metadata.updated_at
        else:
            raise InvalidOperation(f"Unhandled node kind: {processing!r}")

        return ContextChainItem(
            node_id=self.id,
            kind=self.kind,
            contribution=contribution,
            processing_tag=processing.processing_tag,
            timestamp=timestamp,
        )

    def render_text(self) -> str:
        """Text handed to downstream nodes as their input value."""
        processing = self.processing
        if isinstance(processing, FixedProcessing):
            return self.content
        if isinstance(processing, EditableProcessing):
            rendered = processing.template.replace("{inputs}", self.input_text())
            return rendered.replace("{content}", self.content).strip()
        if isinstance(processing, GenerativeProcessing):
            return self.last_result or ""
        raise InvalidOperation(f"Unhandled node kind: {processing!r}")

    def recompute_output(self) -> NodeOutput:
        """Rebuild chain, payload, sources and text from current state."""
        if self.kind == NodeKind.FIXED:
            inherited = EMPTY_CHAIN
        else:
            inherited = self.inherited_chain()
        chain = build_context_chain(inherited, self.own_contribution())

        self.output = NodeOutput(
            payload=build_structured_context(chain),
            sources=collect_sources(chain, own_id=self.id),
            chain=chain,
            text=self.render_text(),
        )
        return self.output

    # === UTILITY ===

    def clone(self) -> "Node":
        """Copy with private mutable parts, for copy-on-write updates."""
        return self.model_copy(
            update={
                "metadata": self.metadata.model_copy(),
                "geometry": self.geometry.model_copy(),
                "inputs": list(self.inputs),
                "execution": self.execution.model_copy(),
            }
        )

    def validate_node(self) -> list[str]:
        """Validate the node's configuration.

        Returns:
            List of error messages (empty if valid)
        """
        errors = []
        if not self.id:
            errors.append("id is required")
        if self.kind == NodeKind.FIXED and self.inputs:
            errors.append("Fixed nodes cannot have inputs")
        if isinstance(self.processing, EditableProcessing) and not self.processing.template:
            errors.append("Editable nodes must have a template")
        if isinstance(self.processing, GenerativeProcessing) and not self.processing.type:
            errors.append("Generative nodes must have a processing type")
        return errors
