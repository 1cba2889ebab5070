"""
Command-line interface for contextflow.

Usage:
    contextflow info workflows/paris.json
    contextflow validate workflows/paris.json
    contextflow run workflows/paris.json --save
    contextflow run workflows/paris.json --container workflow-a-b --mock-response "Paris"
"""

import argparse
import asyncio
import json
import sys

from contextflow.config import WorkflowSettings
from contextflow.graph.errors import WorkflowError
from contextflow.graph.executor import ExecutionResult, WorkflowExecutor
from contextflow.graph.kinds import NodeKind
from contextflow.graph.ordering import find_cycle_node
from contextflow.llm.gateway import CompletionGateway
from contextflow.llm.litellm import LiteLLMGateway
from contextflow.llm.mock import MockGateway
from contextflow.observability.logging import configure_logging
from contextflow.storage.recents import RecentFiles
from contextflow.storage.workflow_file import LoadedWorkflow, load_workflow, save_workflow


def _load(path: str) -> LoadedWorkflow:
    loaded = load_workflow(path)
    RecentFiles().add(loaded.path)
    return loaded


# ---------------------------------------------------------------------------
# info
# ---------------------------------------------------------------------------


def cmd_info(args: argparse.Namespace) -> int:
    loaded = _load(args.file)
    graph = loaded.graph
    containers = graph.containers()

    if args.json:
        info = {
            "file": str(loaded.path),
            "version": loaded.version,
            "nodes": len(graph.nodes),
            "connections": len(graph.connections),
            "containers": [
                {
                    "id": c.id,
                    "multi_node": c.is_multi_node,
                    "nodes": [
                        {"id": n.id, "kind": str(n.kind), "state": str(n.state)} for n in c.nodes
                    ],
                    "connections": len(c.connections),
                }
                for c in containers
            ],
        }
        print(json.dumps(info, indent=2))
        return 0

    print(f"Workflow: {loaded.path}")
    print(
        f"  version {loaded.version}, {len(graph.nodes)} nodes, "
        f"{len(graph.connections)} connections"
    )
    for container in containers:
        marker = "workflow" if container.is_multi_node else "single node"
        print(f"\n{container.id} ({marker}, {len(container.connections)} connections)")
        for node in container.nodes:
            print(f"  - {node.id} [{node.kind}] {node.metadata.title!r} state={node.state}")
    return 0


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------


def cmd_validate(args: argparse.Namespace) -> int:
    loaded = _load(args.file)
    graph = loaded.graph
    problems: list[str] = []

    for node_id in loaded.skipped_nodes:
        problems.append(f"node {node_id}: malformed record skipped")
    if loaded.skipped_connections:
        problems.append(f"{loaded.skipped_connections} connection(s) skipped")

    for node in graph.nodes.values():
        for error in node.validate_node():
            problems.append(f"node {node.id}: {error}")

    for container in graph.containers():
        cycle_node = find_cycle_node([n.id for n in container.nodes], container.connections)
        if cycle_node is not None:
            problems.append(f"{container.id}: circular dependency involving node {cycle_node}")

    if problems:
        print(f"✗ {loaded.path}: {len(problems)} problem(s)")
        for problem in problems:
            print(f"  - {problem}")
        return 1

    print(f"✓ {loaded.path} is valid")
    return 0


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


def _build_settings(args: argparse.Namespace) -> WorkflowSettings:
    settings = WorkflowSettings.load()
    if args.provider:
        settings = WorkflowSettings(
            active_provider=args.provider,
            model_id=settings.model_id,
            auto_execute=settings.auto_execute,
        )
    if args.model:
        settings.model_id = args.model
    if args.mock_response is not None:
        settings.model_id = settings.model_id or "mock"
        settings.credentials = settings.credentials or "mock"
    return settings


def _print_result(loaded: LoadedWorkflow, result: ExecutionResult) -> None:
    status = "✓" if result.success else ("⏹" if result.stopped else "✗")
    print(f"\n{status} {result.container_id} ({result.execution_quality})")
    if result.error is not None:
        print(f"  error: {result.error}")
    for node_id in result.path:
        node = loaded.graph.get_node(node_id)
        if node.kind != NodeKind.GENERATIVE:
            continue
        if node_id in result.errored:
            print(f"  {node_id}: error: {result.errored[node_id]}")
        elif node_id in result.skipped:
            print(f"  {node_id}: skipped (no input)")
        else:
            print(f"  {node_id}: {node.last_result or ''}")


async def _run(args: argparse.Namespace) -> int:
    loaded = _load(args.file)
    settings = _build_settings(args)

    gateway: CompletionGateway
    if args.mock_response is not None:
        gateway = MockGateway(default=args.mock_response)
    else:
        gateway = LiteLLMGateway()

    executor = WorkflowExecutor(loaded.graph, gateway, settings)
    if args.container:
        results = [await executor.execute(args.container)]
    else:
        results = await executor.execute_all()
        if not results:
            print("No multi-node workflows to run")
            return 0

    for result in results:
        _print_result(loaded, result)

    if args.save:
        save_workflow(loaded.graph, loaded.path, loaded.viewport, created=loaded.created)
        print(f"\nSaved {loaded.path}")

    return 0 if all(r.success for r in results) else 1


def cmd_run(args: argparse.Namespace) -> int:
    return asyncio.run(_run(args))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    info_parser = subparsers.add_parser("info", help="Show containers and nodes of a workflow")
    info_parser.add_argument("file", help="Workflow JSON file")
    info_parser.add_argument("--json", action="store_true", help="Output as JSON")
    info_parser.set_defaults(func=cmd_info)

    validate_parser = subparsers.add_parser("validate", help="Check nodes and dependencies")
    validate_parser.add_argument("file", help="Workflow JSON file")
    validate_parser.set_defaults(func=cmd_validate)

    run_parser = subparsers.add_parser("run", help="Execute workflow containers")
    run_parser.add_argument("file", help="Workflow JSON file")
    run_parser.add_argument("--container", help="Run only this container id")
    run_parser.add_argument("--save", action="store_true", help="Write results back to the file")
    run_parser.add_argument("--provider", help="Override the configured provider")
    run_parser.add_argument("--model", help="Override the configured model")
    run_parser.add_argument(
        "--mock-response",
        metavar="TEXT",
        help="Answer every generative node with TEXT instead of calling a provider",
    )
    run_parser.set_defaults(func=cmd_run)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="contextflow",
        description="contextflow - run text workflows with context propagation",
    )
    parser.add_argument("--log-level", default="WARNING", help="Log level (default: WARNING)")
    parser.add_argument(
        "--log-format",
        default="auto",
        choices=["auto", "human", "json"],
        help="Log output format",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)

    args = parser.parse_args(argv)
    configure_logging(level=args.log_level, format=args.log_format)

    try:
        return args.func(args)
    except WorkflowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
