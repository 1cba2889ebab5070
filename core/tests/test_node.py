"""Tests for Node - kinds, inputs, derived output and the execution state machine."""

import pytest
from pydantic import ValidationError

from contextflow.graph.errors import InvalidOperation
from contextflow.graph.kinds import ExecutionState, NodeKind, Purpose
from contextflow.graph.node import (
    DEFAULT_SYSTEM_PROMPT,
    EditableProcessing,
    GenerationParameters,
    GenerativeProcessing,
    Node,
    NodeInput,
)

# === CREATION ===


class TestNodeCreation:
    def test_fixed_defaults(self):
        node = Node.create_fixed("a", "Paris is the capital of France")

        assert node.kind == NodeKind.FIXED
        assert node.state == ExecutionState.IDLE
        assert node.metadata.title == "fixed_a"
        assert node.metadata.version == 1
        assert node.dirty is True
        assert node.output.text == "Paris is the capital of France"
        assert node.payload.facts == ["Paris is the capital of France"]
        assert node.sources == frozenset({"a"})

    def test_empty_fixed_node_has_no_contribution(self):
        node = Node.create_fixed("a")

        assert node.dirty is False
        assert len(node.chain) == 0
        assert node.payload.is_empty()
        assert node.sources == frozenset({"a"})

    def test_generative_defaults(self):
        node = Node.create_generative("b")

        assert isinstance(node.processing, GenerativeProcessing)
        assert node.processing.system_prompt == DEFAULT_SYSTEM_PROMPT
        assert node.processing.type == "ai_completion"
        assert node.processing.parameters.temperature == 0.7
        assert node.processing.parameters.max_tokens == 1000
        assert node.output.text == ""

    def test_generative_params_from_dict(self):
        node = Node.create_generative("b", "Be brief.", params={"temperature": 0.1, "top_p": 0.5})

        params = node.processing.parameters
        assert isinstance(params, GenerationParameters)
        assert params.temperature == 0.1
        assert params.model_dump()["top_p"] == 0.5

    def test_custom_title(self):
        assert Node.create_editable("c", title="Question").metadata.title == "Question"

    def test_processing_union_from_dict(self):
        node = Node.model_validate(
            {"id": "e", "content": "x", "processing": {"kind": "editable", "template": "{content}"}}
        )
        assert isinstance(node.processing, EditableProcessing)
        assert node.output.text == "x"

    def test_unknown_kind_is_rejected(self):
        with pytest.raises(ValidationError):
            Node.model_validate({"id": "z", "processing": {"kind": "mystery"}})

    def test_fixed_node_with_inputs_is_rejected(self):
        with pytest.raises(ValidationError):
            Node(
                id="a",
                processing={"kind": "fixed"},
                inputs=[NodeInput(source_id="x", value="v")],
            )


# === CONTENT AND INPUTS ===


class TestContentAndInputs:
    def test_set_content_bumps_version_and_recomputes(self):
        node = Node.create_fixed("a", "old")
        before = node.metadata.updated_at

        node.set_content("new")

        assert node.metadata.version == 2
        assert node.metadata.updated_at >= before
        assert node.output.text == "new"
        assert node.payload.facts == ["new"]
        assert node.dirty is True

    def test_task_purpose(self):
        node = Node.create_editable("q", "What is the capital?", purpose=Purpose.TASK)

        assert node.payload.task == "What is the capital?"
        assert node.payload.facts == []

    def test_fixed_node_refuses_inputs(self):
        node = Node.create_fixed("a", "text")
        with pytest.raises(InvalidOperation):
            node.attach_input("x", "value")

    def test_attach_input_inherits_chain(self):
        fact = Node.create_fixed("a", "Paris is the capital of France")
        answer = Node.create_generative("b")

        answer.attach_input(
            "a", fact.output.text, source_chain=fact.chain, source_sources=fact.sources
        )

        assert answer.input_context().facts == ["Paris is the capital of France"]
        assert answer.inherited_chain().node_ids() == ["a"]
        assert answer.sources == frozenset({"a", "b"})
        # No result yet, so no own contribution
        assert answer.chain.node_ids() == ["a"]

    def test_attach_input_replaces_same_source(self):
        node = Node.create_editable("e", "body")
        node.attach_input("a", "first")
        node.attach_input("a", "second")

        assert len(node.inputs) == 1
        assert node.get_input("a").value == "second"

    def test_detach_input(self):
        fact = Node.create_fixed("a", "A fact")
        node = Node.create_editable("e", "body")
        node.attach_input("a", fact.output.text, source_chain=fact.chain)

        node.detach_input("a")

        assert node.inputs == []
        assert node.get_input("a") is None
        assert node.chain.node_ids() == ["e"]

    def test_editable_render_uses_template(self):
        node = Node.create_editable("e", "Answer briefly.", template="Q: {inputs}\n{content}")
        node.attach_input("a", "What is the capital of France?")
        node.attach_input("b", "")
        node.attach_input("c", "Think first.")

        assert node.input_text() == "What is the capital of France?\nThink first."
        assert node.output.text == (
            "Q: What is the capital of France?\nThink first.\nAnswer briefly."
        )

    def test_editable_render_is_stripped(self):
        node = Node.create_editable("e", "only content")
        assert node.output.text == "only content"

    def test_task_order_follows_input_order(self):
        first = Node.create_editable("t1", "first task", purpose=Purpose.TASK)
        second = Node.create_editable("t2", "second task", purpose=Purpose.TASK)
        answer = Node.create_generative("g")

        answer.attach_input("t1", first.output.text, source_chain=first.chain)
        answer.attach_input("t2", second.output.text, source_chain=second.chain)
        assert answer.input_context().task == "second task"

        # Re-attaching moves the input to the end
        answer.attach_input("t1", first.output.text, source_chain=first.chain)
        assert answer.input_context().task == "first task"


class TestRecomputeOutput:
    def assert_stable(self, node: Node) -> None:
        first = node.recompute_output()
        second = node.recompute_output()

        assert second.chain.to_list() == first.chain.to_list()
        assert second.payload == first.payload
        assert second.sources == first.sources
        assert second.text == first.text

    def test_editable_with_inputs_is_stable(self):
        fact = Node.create_fixed("a", "Paris is the capital of France")
        task = Node.create_editable("t", "Name the capital.", purpose=Purpose.TASK)
        node = Node.create_editable("e", "Notes on France")
        node.attach_input("a", fact.output.text, source_chain=fact.chain)
        node.attach_input("t", task.output.text, source_chain=task.chain)

        self.assert_stable(node)
        assert node.chain.node_ids() == ["a", "t", "e"]

    def test_completed_generative_is_stable(self):
        fact = Node.create_fixed("a", "Paris is the capital of France")
        answer = Node.create_generative("b")
        answer.attach_input(
            "a", fact.output.text, source_chain=fact.chain, source_sources=fact.sources
        )
        answer.mark_executing().mark_completed("Paris")

        self.assert_stable(answer)
        assert answer.payload.history[0].content == "Paris"


# === EXECUTION STATE MACHINE ===


class TestExecutionState:
    def test_completed_generative_adds_history(self):
        fact = Node.create_fixed("a", "Paris is the capital of France")
        answer = Node.create_generative("b")
        answer.attach_input("a", fact.output.text, source_chain=fact.chain)

        answer.mark_executing()
        assert answer.state == ExecutionState.EXECUTING
        assert answer.execution.started_at is not None

        answer.mark_completed("Paris")

        assert answer.state == ExecutionState.COMPLETED
        assert answer.last_result == "Paris"
        assert answer.output.text == "Paris"
        assert answer.chain.node_ids() == ["a", "b"]
        assert answer.payload.history[0].role == "assistant"
        assert answer.payload.history[0].content == "Paris"
        assert answer.chain.to_list()[1].processing_tag == "ai_completion"

    def test_cannot_complete_without_executing(self):
        node = Node.create_generative("b")
        with pytest.raises(InvalidOperation):
            node.mark_completed("x")
        with pytest.raises(InvalidOperation):
            node.mark_error("boom")

    def test_error_keeps_previous_result(self):
        node = Node.create_generative("b")
        node.mark_executing().mark_completed("first")

        node.mark_executing().mark_error(RuntimeError("boom"))

        assert node.state == ExecutionState.ERRORED
        assert node.execution.error == "boom"
        assert node.last_result == "first"
        assert node.output.text == "first"

    def test_new_run_resets_execution_record(self):
        node = Node.create_generative("b")
        node.mark_executing().mark_error("boom")

        node.mark_executing()

        assert node.execution.error is None
        assert node.execution.completed_at is None


# === UTILITY ===


class TestUtility:
    def test_clone_is_independent(self):
        node = Node.create_editable("e", "body")
        copy = node.clone()

        copy.set_content("changed")
        copy.attach_input("a", "input")

        assert node.content == "body"
        assert node.metadata.version == 1
        assert node.inputs == []

    def test_validate_node(self):
        assert Node.create_fixed("a", "x").validate_node() == []

        node = Node.create_editable("e", "x")
        node.processing.template = ""
        assert node.validate_node() == ["Editable nodes must have a template"]

        generative = Node.create_generative("g")
        generative.processing.type = ""
        assert generative.validate_node() == ["Generative nodes must have a processing type"]
