from __future__ import annotations

import asyncio
import json
from pathlib import Path

from typer.testing import CliRunner

from plancore.cli import app
from plancore.src.core.manager import PlanningManager


runner = CliRunner()


def _write_snapshot(path: Path) -> None:
    manager = PlanningManager("cli-agent", clock=lambda: 500.0)

    async def scenario():
        goal = await manager.create_goal("Quarterly report")
        await manager.create_task("Collect numbers", parent_id=goal.id, urgency="high")
        await manager.create_task("Book meeting room", urgency="low", description="find slot -> send invite")
        await manager.create_task("Refresh dashboards", urgency="medium")
        await manager.create_task("Send reminder", type="scheduled", scheduled_for=900.0)
        await manager.process_queue()

    asyncio.run(scenario())
    manager.snapshot().write(path)


def test_snapshot_validate_accepts_written_snapshot(tmp_path: Path) -> None:
    path = tmp_path / "snapshot.json"
    _write_snapshot(path)

    result = runner.invoke(app, ["snapshot", "validate", str(path)])

    assert result.exit_code == 0, result.output
    assert "conforms to schema version 1.0.0" in result.output


def test_snapshot_validate_rejects_bad_payloads(tmp_path: Path) -> None:
    path = tmp_path / "snapshot.json"
    _write_snapshot(path)
    payload = json.loads(path.read_text(encoding="utf-8"))
    payload["unexpected"] = True
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps(payload), encoding="utf-8")

    result = runner.invoke(app, ["snapshot", "validate", str(bad)])
    assert result.exit_code == 1

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    result = runner.invoke(app, ["snapshot", "validate", str(broken)])
    assert result.exit_code == 1


def test_snapshot_validate_with_custom_schema(tmp_path: Path) -> None:
    path = tmp_path / "snapshot.json"
    _write_snapshot(path)
    schema = tmp_path / "schema.json"
    schema.write_text(
        json.dumps({"type": "object", "required": ["agent_id", "missing_field"]}),
        encoding="utf-8",
    )

    result = runner.invoke(app, ["snapshot", "validate", str(path), "--schema", str(schema)])

    assert result.exit_code == 1
    assert "missing_field" in result.output


def test_snapshot_schema_written(tmp_path: Path) -> None:
    output = tmp_path / "snapshot.schema.json"

    result = runner.invoke(app, ["snapshot", "schema", str(output)])

    assert result.exit_code == 0, result.output
    schema = json.loads(output.read_text(encoding="utf-8"))
    assert "agent_id" in schema["properties"]


def test_tree_show_prints_outline(tmp_path: Path) -> None:
    path = tmp_path / "snapshot.json"
    _write_snapshot(path)

    result = runner.invoke(app, ["tree", "show", str(path)])

    assert result.exit_code == 0, result.output
    lines = result.stdout.splitlines()
    assert lines[0].startswith("- [goal] Quarterly report (active")
    assert lines[1].startswith("  - [task] Collect numbers (pending")

    shallow = runner.invoke(app, ["tree", "show", str(path), "--depth", "0"])
    assert "Collect numbers" not in shallow.stdout


def test_queue_show_summarises_partitions(tmp_path: Path) -> None:
    path = tmp_path / "snapshot.json"
    _write_snapshot(path)

    result = runner.invoke(app, ["queue", "show", str(path)])

    assert result.exit_code == 0, result.output
    summary = json.loads(result.stdout)
    assert summary["agent_id"] == "cli-agent"
    assert summary["active"]["title"] == "Refresh dashboards"
    assert {task["title"] for task in summary["pending"]} == {
        "Collect numbers",
        "Book meeting room",
        "Send reminder",
    }


def test_queue_ready_orders_ready_tasks(tmp_path: Path) -> None:
    path = tmp_path / "snapshot.json"
    _write_snapshot(path)

    result = runner.invoke(app, ["queue", "ready", str(path), "--now", "600", "--topic", "meeting room"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert [task["title"] for task in payload["ordered"]] == ["Book meeting room"]
    assert [task["title"] for task in payload["waiting"]] == ["Send reminder"]

    later = runner.invoke(app, ["queue", "ready", str(path), "--now", "1000"])
    titles = [task["title"] for task in json.loads(later.stdout)["ordered"]]
    assert titles == ["Send reminder", "Book meeting room"]


def test_config_show_reads_env_file(tmp_path: Path) -> None:
    config_path = tmp_path / "planning.json"
    config_path.write_text(json.dumps({"max_fallback_depth": 5}), encoding="utf-8")

    result = runner.invoke(app, ["config", "show"], env={"PLANCORE_CONFIG": str(config_path)})

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["max_fallback_depth"] == 5

    default = runner.invoke(app, ["config", "show"], env={"PLANCORE_CONFIG": None})
    assert json.loads(default.stdout)["max_fallback_depth"] == 2


def test_config_show_rejects_invalid_file(tmp_path: Path) -> None:
    config_path = tmp_path / "planning.json"
    config_path.write_text(json.dumps({"max_fallback_depth": -1}), encoding="utf-8")

    result = runner.invoke(app, ["config", "show", "--config", str(config_path)])

    assert result.exit_code == 1
