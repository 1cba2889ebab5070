"""Tests for workflow files and the recent-files list."""

import json
import os
from pathlib import Path

import pytest

from contextflow.graph.errors import WorkflowFormatError
from contextflow.graph.kinds import ExecutionState, NodeKind, Purpose
from contextflow.graph.node import Node
from contextflow.graph.workflow import WorkflowGraph
from contextflow.storage.recents import RecentFiles
from contextflow.storage.workflow_file import (
    FILE_VERSION,
    load_workflow,
    node_from_record,
    node_to_record,
    save_workflow,
)
from contextflow.utils.io import atomic_write

# === HELPER FUNCTIONS ===


def completed_graph() -> WorkflowGraph:
    """a (fact) + q (task) -> g, with g already answered."""
    graph = WorkflowGraph("sample")
    graph.add_node(Node.create_fixed("a", "Paris is the capital of France"))
    graph.add_node(Node.create_editable("q", "Name the capital.", purpose=Purpose.TASK))
    graph.add_node(Node.create_generative("g", "Be brief.", params={"temperature": 0.2}))
    graph.add_connection("a", "g")
    graph.add_connection("q", "g")
    graph.update_node("g", lambda n: n.mark_executing().mark_completed("Paris"))
    graph.move_node("g", 250, 40)
    return graph


# === WORKFLOW FILES ===


class TestWorkflowFiles:
    def test_round_trip(self, tmp_path: Path):
        path = tmp_path / "flows" / "sample.json"
        save_workflow(completed_graph(), path, viewport={"x": 10, "y": 5, "zoom": 1.5})

        loaded = load_workflow(path)
        graph = loaded.graph

        assert loaded.version == FILE_VERSION
        assert loaded.viewport.zoom == 1.5
        assert graph.id == "sample"
        assert set(graph.nodes) == {"a", "q", "g"}
        assert [(c.from_id, c.to_id) for c in graph.connections] == [("a", "g"), ("q", "g")]

        g = graph.get_node("g")
        assert g.kind == NodeKind.GENERATIVE
        assert g.last_result == "Paris"
        assert g.state == ExecutionState.COMPLETED
        assert g.processing.system_prompt == "Be brief."
        assert g.processing.parameters.temperature == 0.2
        assert (g.geometry.x, g.geometry.y) == (250, 40)
        assert g.chain.node_ids() == ["a", "q", "g"]
        assert g.payload.task == "Name the capital."
        assert g.payload.facts == ["Paris is the capital of France"]
        assert graph.get_node("q").processing.purpose == Purpose.TASK

    def test_file_layout(self, tmp_path: Path):
        path = save_workflow(completed_graph(), tmp_path / "sample.json")
        data = json.loads(path.read_text())

        assert data["version"] == "2.0"
        g = next(n for n in data["nodes"] if n["id"] == "g")
        assert g["node_type"] == "generative"
        assert g["content"] == "Paris"
        assert "kind" not in g["processing"]
        assert g["processing"]["type"] == "ai_completion"
        assert g["output"]["type"] == "structured_context"
        assert g["output"]["value"]["history"] == [{"role": "assistant", "content": "Paris"}]
        assert [item["node_id"] for item in g["output"]["context_chain"]] == ["a", "q", "g"]
        assert g["inputs"][0]["source_id"] == "a"
        assert g["inputs"][0]["data"] == "Paris is the capital of France"
        assert g["metadata"]["position"]["x"] == 250
        assert {c["from_id"] for c in data["connections"]} == {"a", "q"}

    def test_malformed_records_are_skipped(self, tmp_path: Path):
        path = tmp_path / "broken.json"
        path.write_text(
            json.dumps(
                {
                    "version": "2.0",
                    "nodes": [
                        {"node_type": "fixed", "id": "a", "content": "A fact"},
                        {"node_type": "mystery", "id": "m"},
                        {"id": "no-type"},
                        "not a record",
                        {"node_type": "generative", "id": "g", "processing": {"system_prompt": ""}},
                    ],
                    "connections": [
                        {"id": "c1", "fromId": "a", "toId": "g"},
                        {"id": "c2", "from_id": "a", "to_id": "m"},
                        {"id": "c3"},
                    ],
                }
            )
        )

        loaded = load_workflow(path)

        assert set(loaded.graph.nodes) == {"a", "g"}
        assert loaded.skipped_nodes == ["m", "no-type", "#3"]
        assert loaded.skipped_connections == 2
        assert [c.id for c in loaded.graph.connections] == ["c1"]

    def test_unreadable_file(self, tmp_path: Path):
        with pytest.raises(WorkflowFormatError):
            load_workflow(tmp_path / "missing.json")

        bad = tmp_path / "bad.json"
        bad.write_text("{ nope")
        with pytest.raises(WorkflowFormatError):
            load_workflow(bad)

        array = tmp_path / "array.json"
        array.write_text("[]")
        with pytest.raises(WorkflowFormatError):
            load_workflow(array)

    def test_record_round_trip_keeps_inputs(self):
        graph = completed_graph()
        g = graph.get_node("g")

        restored = node_from_record(node_to_record(g).model_dump(mode="json"))

        assert [i.source_id for i in restored.inputs] == ["a", "q"]
        assert restored.get_input("a").inherited_chain.node_ids() == ["a"]
        assert restored.get_input("a").inherited_sources == frozenset({"a"})
        assert restored.metadata.version == g.metadata.version

    def test_fixed_node_with_inputs_is_rejected(self, tmp_path: Path):
        path = tmp_path / "fixed.json"
        path.write_text(
            json.dumps(
                {
                    "nodes": [
                        {
                            "node_type": "fixed",
                            "id": "a",
                            "inputs": [{"source_id": "x", "data": "v"}],
                        }
                    ]
                }
            )
        )
        assert load_workflow(path).skipped_nodes == ["a"]


# === ATOMIC WRITE ===


class TestAtomicWrite:
    def test_replaces_file(self, tmp_path: Path):
        path = tmp_path / "out.json"
        path.write_text("old")

        with atomic_write(path) as f:
            f.write("new")

        assert path.read_text() == "new"
        assert os.listdir(tmp_path) == ["out.json"]

    def test_error_keeps_original(self, tmp_path: Path):
        path = tmp_path / "out.json"
        path.write_text("old")

        with pytest.raises(RuntimeError):
            with atomic_write(path) as f:
                f.write("partial")
                raise RuntimeError("disk full")

        assert path.read_text() == "old"
        assert os.listdir(tmp_path) == ["out.json"]


# === RECENT FILES ===


class TestRecentFiles:
    def test_add_dedupes_and_orders(self, tmp_path: Path):
        first = tmp_path / "one.json"
        second = tmp_path / "two.json"
        first.write_text("{}")
        second.write_text("{}")
        recents = RecentFiles(tmp_path / "recents.json")

        recents.add(first)
        recents.add(second)
        recents.add(first)

        entries = recents.entries()
        assert [e.name for e in entries] == ["one.json", "two.json"]
        assert entries[0].path == str(first.resolve())

    def test_limit(self, tmp_path: Path):
        recents = RecentFiles(tmp_path / "recents.json", limit=2)
        for name in ("a.json", "b.json", "c.json"):
            (tmp_path / name).write_text("{}")
            recents.add(tmp_path / name)

        assert [e.name for e in recents.entries()] == ["c.json", "b.json"]

    def test_missing_files_are_dropped(self, tmp_path: Path):
        path = tmp_path / "gone.json"
        path.write_text("{}")
        recents = RecentFiles(tmp_path / "recents.json")
        recents.add(path)

        path.unlink()

        assert recents.entries() == []

    def test_remove_and_clear(self, tmp_path: Path):
        path = tmp_path / "w.json"
        path.write_text("{}")
        recents = RecentFiles(tmp_path / "recents.json")
        recents.add(path)

        assert recents.remove(path) is True
        assert recents.remove(path) is False
        recents.add(path)
        recents.clear()
        assert recents.entries() == []

    def test_default_location(self, isolated_home: Path):
        assert RecentFiles().path == isolated_home / "recents.json"

    def test_corrupt_file_is_ignored(self, tmp_path: Path):
        store = tmp_path / "recents.json"
        store.write_text("{ broken")
        assert RecentFiles(store).entries() == []
