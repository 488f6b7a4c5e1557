import json

from typer.testing import CliRunner

from plan_executor.cli import app


runner = CliRunner()


def test_cli_order_text():
    r = runner.invoke(app, ["order", "examples/basic-plan.yaml"])
    assert r.exit_code == 0, r.stdout + r.stderr
    lines = r.stdout.splitlines()
    assert lines[0] == "  1. task_F1 (p1) Cart"
    assert lines[-1].startswith("  9. task_F3_criterion_0 (p4)")


def test_cli_order_json():
    r = runner.invoke(app, ["order", "examples/basic-plan.yaml", "--format", "json", "--no-subtasks"])
    assert r.exit_code == 0
    payload = json.loads(r.stdout)
    assert payload["execution_order"] == [
        "task_F1",
        "task_F2",
        "task_userstory_US1",
        "task_story_DS1",
        "task_F3",
    ]
    assert payload["unordered"] == []
    assert payload["warnings"] == []


def test_cli_order_cycle_warns():
    r = runner.invoke(app, ["order", "examples/cyclic-plan.yaml"])
    assert r.exit_code == 0
    assert "WARN: Cycle detected involving task task_A" in r.stderr
    assert "Unordered (cycle or missing dependency): task_A, task_B" in r.stdout


def test_cli_order_invalid_plan():
    r = runner.invoke(app, ["order", "examples/invalid-missing-field.yaml"])
    assert r.exit_code == 2


def test_cli_status():
    r = runner.invoke(app, ["status", "examples/basic-plan.yaml", "-c", "task_F1"])
    assert r.exit_code == 0, r.stdout + r.stderr
    assert "task_F1" in r.stdout
    assert "Progress: 1/9 (11%), 33h remaining" in r.stdout
    assert "Next: task_F1_criterion_0, task_F2, task_userstory_US1" in r.stdout


def test_cli_status_unknown_task():
    r = runner.invoke(app, ["status", "examples/basic-plan.yaml", "-c", "task_nope"])
    assert r.exit_code == 2
    assert "E_UNKNOWN_TASK" in r.stderr


def test_cli_blast_radius():
    r = runner.invoke(app, ["blast-radius", "examples/basic-plan.yaml", "task_F2"])
    assert r.exit_code == 0
    assert "Blast radius of task_F2: 5" in r.stdout
    assert "- task_F3_criterion_0" in r.stdout


def test_cli_blast_radius_json():
    r = runner.invoke(
        app, ["blast-radius", "examples/basic-plan.yaml", "task_F3", "--format", "json"]
    )
    assert r.exit_code == 0
    payload = json.loads(r.stdout)
    assert payload["blast_radius"] == 1
    assert payload["affected"] == ["task_F3_criterion_0"]


def test_cli_blast_radius_unknown_task():
    r = runner.invoke(app, ["blast-radius", "examples/basic-plan.yaml", "task_nope"])
    assert r.exit_code == 2
    assert "E_UNKNOWN_TASK" in r.stderr
