"""Shared fixtures: keep tests away from the real ~/.contextflow and API keys."""

import pytest

from contextflow.graph.node import Node
from contextflow.graph.workflow import WorkflowGraph
from contextflow.observability.logging import clear_trace_context

API_KEY_VARS = ("OPENROUTER_API_KEY", "OPENAI_API_KEY", "GEMINI_API_KEY", "LOG_FORMAT", "ENV")


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    home = tmp_path / "contextflow-home"
    monkeypatch.setenv("CONTEXTFLOW_CONFIG", str(home / "configuration.json"))
    monkeypatch.setattr("contextflow.storage.recents.CONTEXTFLOW_HOME", home)
    for var in API_KEY_VARS:
        monkeypatch.delenv(var, raising=False)
    clear_trace_context()
    yield home
    clear_trace_context()


@pytest.fixture
def paris_graph() -> WorkflowGraph:
    """Fixed fact A feeding generative node B."""
    graph = WorkflowGraph("paris")
    graph.add_node(Node.create_fixed("a", "Paris is the capital of France"))
    graph.add_node(Node.create_generative("b", "Answer using the given facts."))
    graph.add_connection("a", "b")
    return graph
