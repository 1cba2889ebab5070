"""
Context chains - the lineage of contributions flowing through a workflow.

Every node keeps an ordered ledger ("context chain") of the contributions
that reached it: facts and task instructions from Fixed/Editable nodes, and
assistant turns from Generative nodes. The chain is the single source of
truth; the structured context ({facts, history, task}) consumed by prompts
is always derived from it.

Merge rules:
- Chain items are unique per node_id. The first occurrence wins, so the
  order of a node's inputs decides which copy of an item is kept.
- Facts are de-duplicated by exact text.
- History turns are appended in chain order.
- The last task encountered in chain order wins.

Chains are persistent: inheriting an upstream chain shares its structure
instead of copying it, so deep pipelines do not pay for a full copy of the
lineage at every hop.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, ValidationError

from contextflow.graph.kinds import ContributionType, NodeKind

# ---------------------------------------------------------------------------
# Contributions
# ---------------------------------------------------------------------------


class HistoryMessage(BaseModel):
    """One conversation turn."""

    role: str
    content: str

    model_config = {"frozen": True}


class FactContribution(BaseModel):
    type: Literal["fact"] = "fact"
    content: str

    model_config = {"frozen": True}


class TaskContribution(BaseModel):
    type: Literal["task"] = "task"
    content: str

    model_config = {"frozen": True}


class HistoryContribution(BaseModel):
    type: Literal["history"] = "history"
    content: HistoryMessage

    model_config = {"frozen": True}


Contribution = Annotated[
    FactContribution | TaskContribution | HistoryContribution,
    Field(discriminator="type"),
]


def contribution_text(contribution: Contribution) -> str:
    """Return the text carried by a contribution, whatever its type."""
    if isinstance(contribution, HistoryContribution):
        return contribution.content.content
    return contribution.content


class ContextChainItem(BaseModel):
    """A single entry of a context chain."""

    node_id: str
    kind: NodeKind
    contribution: Contribution
    processing_tag: str = "unknown"
    timestamp: datetime = Field(default_factory=datetime.now)

    model_config = {"frozen": True}


class StructuredContext(BaseModel):
    """Payload derived from a chain and consumed by generation prompts."""

    facts: list[str] = Field(default_factory=list)
    history: list[HistoryMessage] = Field(default_factory=list)
    task: str = ""

    model_config = {"frozen": True}

    def is_empty(self) -> bool:
        return not self.facts and not self.history and not self.task


# ---------------------------------------------------------------------------
# Persistent chain
# ---------------------------------------------------------------------------


class ContextChain:
    """
    Immutable sequence of ContextChainItem, unique by node_id.

    A chain is a delta of new items on top of an optional parent chain.
    Extending a chain never copies the parent; it only records the items
    that were not already present.

    Example:
        upstream = ContextChain.from_items([fact_a, fact_b])
        downstream = upstream.extend([history_c])   # shares upstream
        assert [i.node_id for i in downstream] == ["a", "b", "c"]
    """

    __slots__ = ("_parent", "_items", "_ids", "_length")

    def __init__(
        self,
        items: tuple[ContextChainItem, ...] = (),
        parent: ContextChain | None = None,
    ):
        # Callers must guarantee that items are unique and absent from parent;
        # use from_items() / extend() rather than calling this directly.
        self._parent = parent if parent else None
        self._items = items
        self._ids = frozenset(item.node_id for item in items)
        self._length = len(items) + (len(parent) if parent else 0)

    @classmethod
    def from_items(cls, items: Iterable[ContextChainItem | dict[str, Any]]) -> ContextChain:
        """Build a chain from raw items, keeping the first item per node_id."""
        return EMPTY_CHAIN.extend(items)

    def extend(self, items: Iterable[ContextChainItem | dict[str, Any]]) -> ContextChain:
        """Return a chain with the unseen items appended.

        Items whose node_id is already present are skipped. When nothing
        new is added the same chain object is returned.
        """
        seen: set[str] = set()
        delta: list[ContextChainItem] = []
        for raw in items:
            item = raw
            if not isinstance(item, ContextChainItem):
                item = ContextChainItem.model_validate(raw)
            if item.node_id in seen or item.node_id in self:
                continue
            seen.add(item.node_id)
            delta.append(item)

        if not delta:
            return self
        return ContextChain(tuple(delta), parent=self)

    def __contains__(self, node_id: object) -> bool:
        chain: ContextChain | None = self
        while chain is not None:
            if node_id in chain._ids:
                return True
            chain = chain._parent
        return False

    def __iter__(self) -> Iterator[ContextChainItem]:
        segments: list[tuple[ContextChainItem, ...]] = []
        chain: ContextChain | None = self
        while chain is not None:
            segments.append(chain._items)
            chain = chain._parent
        for segment in reversed(segments):
            yield from segment

    def __len__(self) -> int:
        return self._length

    def __bool__(self) -> bool:
        return self._length > 0

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ContextChain):
            return self is other or list(self) == list(other)
        if isinstance(other, list | tuple):
            return list(self) == list(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"ContextChain({[item.node_id for item in self]!r})"

    def node_ids(self) -> list[str]:
        return [item.node_id for item in self]

    def to_list(self) -> list[ContextChainItem]:
        return list(self)


EMPTY_CHAIN = ContextChain()


# ---------------------------------------------------------------------------
# Building and merging
# ---------------------------------------------------------------------------


def inherit_chains(
    chains: Iterable[ContextChain | Iterable[ContextChainItem] | None],
) -> ContextChain:
    """Merge input chains in order, keeping the first item per node_id.

    The first non-empty chain is shared as-is; later chains only contribute
    the items the result does not hold yet.
    """
    result = EMPTY_CHAIN
    for chain in chains:
        if chain is None:
            continue
        if not isinstance(chain, ContextChain):
            chain = ContextChain.from_items(chain)
        if not chain:
            continue
        result = chain if not result else result.extend(chain)
    return result


def build_context_chain(
    inherited: ContextChain,
    own_item: ContextChainItem | None,
) -> ContextChain:
    """Append a node's own contribution to its inherited chain.

    The contribution is dropped when it carries no text or when the node
    already appears upstream.
    """
    if own_item is None:
        return inherited
    if not contribution_text(own_item.contribution):
        return inherited
    if own_item.node_id in inherited:
        return inherited
    return inherited.extend([own_item])


def build_structured_context(chain: Iterable[ContextChainItem]) -> StructuredContext:
    """Derive the {facts, history, task} payload from a chain."""
    facts: list[str] = []
    seen_facts: set[str] = set()
    history: list[HistoryMessage] = []
    task = ""

    for item in chain:
        contribution = item.contribution
        if isinstance(contribution, FactContribution):
            if contribution.content not in seen_facts:
                seen_facts.add(contribution.content)
                facts.append(contribution.content)
        elif isinstance(contribution, HistoryContribution):
            history.append(contribution.content)
        elif isinstance(contribution, TaskContribution):
            task = contribution.content

    return StructuredContext(facts=facts, history=history, task=task)


def collect_sources(chain: Iterable[ContextChainItem], own_id: str | None = None) -> frozenset[str]:
    """Return every node_id in the chain, plus the owning node's id."""
    sources = {item.node_id for item in chain}
    if own_id is not None:
        sources.add(own_id)
    return frozenset(sources)


class NodeOutput(BaseModel):
    """Derived output of a node: structured payload, lineage and rendered text."""

    payload: StructuredContext = Field(default_factory=StructuredContext)
    sources: frozenset[str] = Field(default_factory=frozenset)
    chain: ContextChain = Field(default=EMPTY_CHAIN)
    text: str = ""

    model_config = {"frozen": True, "arbitrary_types_allowed": True}


def merge_workflow_outputs(outputs: Iterable[NodeOutput]) -> NodeOutput:
    """Merge the outputs of several terminal nodes into one payload.

    Facts are de-duplicated, history turns are concatenated and ordered by
    the timestamp of the chain item that produced them, the last non-empty
    task wins, and chains are merged first-occurrence-wins.
    """
    facts: list[str] = []
    seen_facts: set[str] = set()
    history: list[HistoryMessage] = []
    task = ""
    sources: set[str] = set()
    chain = EMPTY_CHAIN
    texts: list[str] = []

    for output in outputs:
        for fact in output.payload.facts:
            if fact not in seen_facts:
                seen_facts.add(fact)
                facts.append(fact)
        history.extend(output.payload.history)
        if output.payload.task:
            task = output.payload.task
        sources.update(output.sources)
        chain = inherit_chains([chain, output.chain])
        if output.text:
            texts.append(output.text)

    turn_times: dict[HistoryMessage, datetime] = {}
    for item in chain:
        if isinstance(item.contribution, HistoryContribution):
            turn_times.setdefault(item.contribution.content, item.timestamp)
    if history and all(turn in turn_times for turn in history):
        history.sort(key=lambda turn: turn_times[turn])

    return NodeOutput(
        payload=StructuredContext(facts=facts, history=history, task=task),
        sources=frozenset(sources),
        chain=chain,
        text="\n\n".join(texts),
    )


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


def validate_context_chain(items: Iterable[ContextChainItem | dict[str, Any]]) -> list[str]:
    """Validate raw chain items (e.g. loaded from disk).

    Returns:
        List of error messages (empty if the chain is well formed)
    """
    errors = []
    seen: set[str] = set()
    for index, raw in enumerate(items):
        try:
            item = (
                raw if isinstance(raw, ContextChainItem) else ContextChainItem.model_validate(raw)
            )
        except ValidationError as e:
            errors.append(f"Item {index} is malformed: {e.error_count()} validation error(s)")
            continue
        if item.node_id in seen:
            errors.append(f"Item {index} repeats node_id '{item.node_id}'")
        seen.add(item.node_id)
    return errors


def context_stats(chain: Iterable[ContextChainItem]) -> dict[str, Any]:
    """Summarize a chain for debugging output."""
    stats: dict[str, Any] = {
        "total_items": 0,
        "facts": 0,
        "history": 0,
        "tasks": 0,
        "unique_nodes": 0,
        "node_kinds": {},
    }
    node_ids: set[str] = set()
    for item in chain:
        stats["total_items"] += 1
        node_ids.add(item.node_id)
        kind = str(item.kind)
        stats["node_kinds"][kind] = stats["node_kinds"].get(kind, 0) + 1
        contribution_type = item.contribution.type
        if contribution_type == ContributionType.FACT:
            stats["facts"] += 1
        elif contribution_type == ContributionType.HISTORY:
            stats["history"] += 1
        elif contribution_type == ContributionType.TASK:
            stats["tasks"] += 1
    stats["unique_nodes"] = len(node_ids)
    return stats
