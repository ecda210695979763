from __future__ import annotations

"""Developer-facing CLI for inspecting planning snapshots."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
from jsonschema import Draft202012Validator
from pydantic import ValidationError

from plancore.src.core.attention import AttentionPrioritizer
from plancore.src.core.config import CONFIG_ENV_VAR, PlanningConfig
from plancore.src.core.execution_order import ExecutionOrderCalculator
from plancore.src.core.snapshot import PlanningSnapshot, load_snapshot_schema
from plancore.src.core.task_queue import TaskQueueManager
from plancore.src.core.temporal import TemporalScheduler
from plancore.src.core.tree import TreeManager
from plancore.src.core.types import FocusState, GoalTaskNode
from plancore.src.observability.logging import setup_logging


app = typer.Typer(help="Utility commands for inspecting planner state.")
snapshot_app = typer.Typer(help="Validate planning snapshots and export their schema.")
tree_app = typer.Typer(help="Inspect the goal/task tree of a snapshot.")
queue_app = typer.Typer(help="Inspect the task queue of a snapshot.")
config_app = typer.Typer(help="Inspect planner configuration.")
app.add_typer(snapshot_app, name="snapshot")
app.add_typer(tree_app, name="tree")
app.add_typer(queue_app, name="queue")
app.add_typer(config_app, name="config")


@app.callback()
def _configure(
    log_level: str = typer.Option("WARNING", "--log-level", help="Minimum log level."),
    log_format: str = typer.Option("console", "--log-format", help="Log renderer: json or console."),
) -> None:
    setup_logging(level=log_level, format=log_format)


def _load_json_file(path: Path) -> Any:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        typer.secho(f"Failed to read {path}: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc
    try:
        return json.loads(content)
    except json.JSONDecodeError as exc:
        typer.secho(f"Invalid JSON in {path}: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc


def _load_snapshot(path: Path) -> tuple[PlanningSnapshot, Dict[str, Any]]:
    raw_payload = _load_json_file(path)
    if not isinstance(raw_payload, dict):
        typer.secho(f"Snapshot {path} must contain a JSON object", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        snapshot = PlanningSnapshot.model_validate(raw_payload)
    except ValidationError as exc:
        typer.secho("Snapshot validation failed:", err=True, fg=typer.colors.RED)
        typer.echo(exc)
        raise typer.Exit(code=1) from exc
    return snapshot, raw_payload


def _load_config(path: Optional[Path]) -> PlanningConfig:
    if path is None:
        return PlanningConfig()
    try:
        return PlanningConfig.load(path)
    except (OSError, ValueError) as exc:
        typer.secho(f"Invalid configuration {path}: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc


def _validate_against_schema(data: Dict[str, Any], schema_path: Path | None = None) -> None:
    schema = load_snapshot_schema() if schema_path is None else _load_json_file(schema_path)
    validator = Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda err: list(err.path))
    if errors:
        typer.secho("Snapshot failed JSON schema validation:", err=True, fg=typer.colors.RED)
        for error in errors[:5]:
            location = "/".join(str(part) for part in error.path) or "<root>"
            typer.secho(f"- {location}: {error.message}", err=True, fg=typer.colors.RED)
        if len(errors) > 5:
            typer.secho(f"... {len(errors) - 5} additional errors omitted", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _node_line(node: GoalTaskNode, depth: int) -> str:
    indent = "  " * depth
    line = f"{indent}- [{node.type}] {node.title} ({node.status}, {node.progress}%)"
    if node.type == "task":
        line += f" urgency={node.urgency} priority={node.priority:.2f}"
    return line


@snapshot_app.command("validate")
def validate_snapshot(
    path: Path = typer.Argument(..., exists=True, resolve_path=True, help="Path to a snapshot JSON file"),
    schema: Path | None = typer.Option(
        None,
        "--schema",
        "-s",
        help="Optional JSON schema to validate against (defaults to the bundled schema).",
        dir_okay=False,
        resolve_path=True,
        path_type=Path,
    ),
) -> None:
    """Validate a planning snapshot."""

    snapshot, payload = _load_snapshot(path)
    _validate_against_schema(payload, schema)
    typer.secho(
        f"Snapshot {path} conforms to schema version {snapshot.schema_version}",
        fg=typer.colors.GREEN,
    )


@snapshot_app.command("schema")
def write_snapshot_schema(
    output: Path = typer.Argument(..., resolve_path=True, help="Destination path for the snapshot JSON schema."),
) -> None:
    """Write the JSON schema describing planning snapshots to ``output``."""

    try:
        PlanningSnapshot.write_schema(output)
    except OSError as exc:
        typer.secho(f"Failed to write schema: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc
    typer.secho(f"Wrote snapshot schema to {output}", fg=typer.colors.GREEN)


@tree_app.command("show")
def show_tree(
    path: Path = typer.Argument(..., exists=True, resolve_path=True, help="Path to a snapshot JSON file"),
    depth: int = typer.Option(8, "--depth", "-d", min=0, help="Maximum depth to print."),
) -> None:
    """Print the goal/task hierarchy as an indented outline."""

    snapshot, _ = _load_snapshot(path)
    trees = TreeManager.from_dict(snapshot.tree.model_dump())
    lines: List[str] = []

    def _walk(node: GoalTaskNode, level: int) -> None:
        if level > depth:
            return
        lines.append(_node_line(node, level))
        for child in trees.get_children(node.id):
            _walk(child, level + 1)

    for top in trees.get_children(trees.root.id):
        _walk(top, 0)
    typer.echo("\n".join(lines) if lines else "(empty tree)")


@queue_app.command("show")
def show_queue(
    path: Path = typer.Argument(..., exists=True, resolve_path=True, help="Path to a snapshot JSON file"),
) -> None:
    """Emit a JSON summary of the queue partitions."""

    snapshot, _ = _load_snapshot(path)
    queue = TaskQueueManager.from_dict(snapshot.queue.model_dump()).queue
    summary = {
        "agent_id": snapshot.agent_id,
        "active": None if queue.active is None else {"id": queue.active.id, "title": queue.active.title},
        "pending": [{"id": task.id, "title": task.title, "priority": task.priority} for task in queue.pending],
        "strategic": [{"id": task.id, "title": task.title} for task in queue.strategic],
        "completed": len(queue.completed),
        "stats": snapshot.stats.model_dump(),
    }
    typer.echo(json.dumps(summary, indent=2, ensure_ascii=True))


@queue_app.command("ready")
def ready_tasks(
    path: Path = typer.Argument(..., exists=True, resolve_path=True, help="Path to a snapshot JSON file"),
    topic: Optional[str] = typer.Option(None, "--topic", help="Focus topic used for relevance scoring."),
    config: Optional[Path] = typer.Option(
        None, "--config", envvar=CONFIG_ENV_VAR, dir_okay=False, help="Planner configuration JSON."
    ),
    now: Optional[float] = typer.Option(None, "--now", help="Evaluate scheduled tasks at this epoch time."),
) -> None:
    """Show the tree execution path and the attention ordering of ready tasks."""

    snapshot, _ = _load_snapshot(path)
    settings = _load_config(config)
    trees = TreeManager.from_dict(snapshot.tree.model_dump())
    queue = TaskQueueManager.from_dict(snapshot.queue.model_dump())
    path_ids = ExecutionOrderCalculator(trees).get_execution_path()
    eligible, waiting = TemporalScheduler().split(queue.pending, now)
    ready_ids = set(path_ids)
    candidates = [task.copy() for task in eligible if trees.get_node(task.id) is None or task.id in ready_ids]
    focus = FocusState(topic=topic)
    ordered = AttentionPrioritizer(settings).prioritize(candidates, focus, queue.completed_ids())
    payload = {
        "execution_path": path_ids,
        "ordered": [{"id": task.id, "title": task.title, "score": round(task.priority, 4)} for task in ordered],
        "waiting": [{"id": task.id, "title": task.title, "scheduled_for": task.scheduled_for} for task in waiting],
    }
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=True))


@config_app.command("show")
def show_config(
    config: Optional[Path] = typer.Option(
        None, "--config", envvar=CONFIG_ENV_VAR, dir_okay=False, help="Planner configuration JSON."
    ),
) -> None:
    """Print the effective planner configuration."""

    settings = _load_config(config)
    typer.echo(json.dumps(settings.model_dump(), indent=2, sort_keys=True))


def main() -> None:
    """Entrypoint for ``python -m plancore.cli``."""

    app()


if __name__ == "__main__":  # pragma: no cover
    main()
