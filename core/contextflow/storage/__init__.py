"""Workflow persistence."""

from contextflow.storage.recents import RecentFiles
from contextflow.storage.workflow_file import (
    LoadedWorkflow,
    load_workflow,
    node_from_record,
    node_to_record,
    save_workflow,
)

__all__ = [
    "LoadedWorkflow",
    "RecentFiles",
    "load_workflow",
    "node_from_record",
    "node_to_record",
    "save_workflow",
]
