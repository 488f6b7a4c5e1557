from __future__ import annotations

import json
import logging
from dataclasses import asdict
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from plan_executor.core.errors import HandbackDecodeError, PlanError, PlanLoadError, PlanValidationError
from plan_executor.core.graph.blocking import calculate_blast_radius, get_tasks_blocked_by
from plan_executor.core.handback.codec import load_outcome, load_work_order, write_record
from plan_executor.core.handback.policy import PolicyConfigError, load_and_merge
from plan_executor.core.handback.validate_handback import validate_handback
from plan_executor.core.io.load_plan import load_plan
from plan_executor.core.lint.lint_plan import lint_plan
from plan_executor.core.model import ProjectPlan
from plan_executor.core.schedule.execution_plan import ExecutionConfig, ExecutionPlan, submit_plan
from plan_executor.core.schedule.scheduler import (
    TaskProgressUpdate,
    calculate_progress,
    get_blocked_tasks,
    get_next_tasks,
    graph_from_plan,
    update_task_progress,
)
from plan_executor.core.validate.validate_plan import summarize_plan, validate_plan

TOOL = "plan-exec"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

app = typer.Typer(add_completion=False, no_args_is_help=True)
console = Console()


@app.callback()
def _callback(
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        envvar="PLAN_EXECUTOR_LOG_LEVEL",
        help="Logging level: DEBUG|INFO|WARNING|ERROR",
    ),
) -> None:
    """Plan executor CLI."""
    level = log_level.upper()
    if level not in LOG_LEVELS:
        _print_errors(
            [
                PlanValidationError(
                    code="E_UNKNOWN_LOG_LEVEL",
                    message=f"unknown log level: {log_level} (choose one of: {', '.join(LOG_LEVELS)})",
                    file=None,
                    path="log_level",
                )
            ]
        )
        raise typer.Exit(code=2)
    logging.basicConfig(level=getattr(logging, level), format="%(levelname)s %(name)s: %(message)s")


@app.command("validate")
def validate(
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Validate a project plan file."""
    _check_format(format, "validate")

    def _emit_json(ok: bool, *, exit_code: int, errors: list[PlanError], summary: dict | None) -> None:
        payload = {
            "tool": TOOL,
            "command": "validate",
            "ok": ok,
            "error_count": len(errors),
            "errors": [_to_item(e) for e in errors],
            "summary": summary,
        }
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        raise typer.Exit(code=exit_code)

    try:
        raw = load_plan(path)
    except PlanLoadError as e:
        if format == "json":
            _emit_json(False, exit_code=1, errors=[e], summary=None)
        _print_errors([e])
        raise typer.Exit(code=1)

    plan, errors = validate_plan(raw)
    if errors:
        if format == "json":
            _emit_json(False, exit_code=2, errors=list(errors), summary=None)
        _print_errors(list(errors))
        raise typer.Exit(code=2)

    assert plan is not None

    if format == "text":
        typer.echo(summarize_plan(plan))
        return

    summary = {
        "plan_id": plan.metadata.id,
        "feature_count": len(plan.features),
        "link_count": len(plan.links),
        "user_story_count": len(plan.user_stories),
        "developer_story_count": len(plan.developer_stories),
        "success_criteria_count": len(plan.success_criteria),
    }
    _emit_json(True, exit_code=0, errors=[], summary=summary)


@app.command("lint")
def lint(
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Lint a plan file (rules beyond schema validation)."""
    _check_format(format, "lint")

    def _emit_json(ok: bool, errors: list[PlanError], exit_code: int) -> None:
        payload = {
            "tool": TOOL,
            "command": "lint",
            "ok": ok,
            "error_count": len(errors),
            "errors": [_to_item(e) for e in errors],
        }
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        raise typer.Exit(code=exit_code)

    try:
        raw = load_plan(path)
    except PlanLoadError as e:
        if format == "json":
            _emit_json(False, [e], 1)
        _print_errors([e])
        raise typer.Exit(code=1)

    lint_errors = lint_plan(raw)
    _, validation_errors = validate_plan(raw)
    errors: list[PlanError] = [*lint_errors, *validation_errors]

    if format == "text":
        if errors:
            _print_errors(errors)
            raise typer.Exit(code=2)
        typer.echo("OK: lint passed")
        return

    if errors:
        _emit_json(False, errors, 2)
    _emit_json(True, [], 0)


@app.command("order")
def order(
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
    subtasks: bool = typer.Option(
        True, "--subtasks/--no-subtasks", help="Create one task per feature acceptance criterion"
    ),
    priorities: bool = typer.Option(
        True, "--priorities/--no-priorities", help="Use feature priority to break ordering ties"
    ),
    dependencies: bool = typer.Option(
        True, "--dependencies/--no-dependencies", help="Turn 'requires' links into task dependencies"
    ),
) -> None:
    """Print the priority-aware execution order of a plan."""
    _check_format(format, "order")
    config = ExecutionConfig(
        create_subtasks=subtasks,
        respect_priorities=priorities,
        create_dependencies=dependencies,
    )
    execution_plan, warnings = _submit(path, config)

    ordered = set(execution_plan.execution_order)
    unordered = [t.id for t in execution_plan.tasks if t.id not in ordered]

    if format == "json":
        payload = {
            "tool": TOOL,
            "command": "order",
            "ok": True,
            "task_count": len(execution_plan.tasks),
            "execution_order": execution_plan.execution_order,
            "unordered": unordered,
            "warnings": warnings,
        }
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    for w in warnings:
        typer.echo(f"WARN: {w}", err=True)
    for i, task_id in enumerate(execution_plan.execution_order, start=1):
        task = execution_plan.task(task_id)
        assert task is not None
        typer.echo(f"{i:>3}. {task_id} (p{task.priority}) {task.title}")
    if unordered:
        typer.echo(f"Unordered (cycle or missing dependency): {', '.join(unordered)}")


@app.command("status")
def status(
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    completed: Optional[list[str]] = typer.Option(
        None, "--completed", "-c", help="Task id to mark completed (repeatable)"
    ),
    limit: int = typer.Option(5, "--limit", help="How many next tasks to list"),
) -> None:
    """Start a plan, apply completions and show its progress."""
    execution_plan, warnings = _submit(path, ExecutionConfig(auto_start=True))
    for w in warnings:
        typer.echo(f"WARN: {w}", err=True)

    unknown = []
    for task_id in completed or []:
        if not update_task_progress(execution_plan, TaskProgressUpdate(task_id=task_id, status="completed")):
            unknown.append(task_id)
    if unknown:
        _print_errors(
            [
                PlanValidationError(
                    code="E_UNKNOWN_TASK",
                    message=f"unknown task id: {task_id}",
                    file=path,
                    path="completed",
                )
                for task_id in unknown
            ]
        )
        raise typer.Exit(code=2)

    table = Table(title=escape(f"{execution_plan.name} ({execution_plan.status})"))
    table.add_column("Task", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Priority")
    table.add_column("Hours")
    table.add_column("Title")
    for task_id in _display_order(execution_plan):
        t = execution_plan.task(task_id)
        if t is None:
            continue
        hours = "-" if t.estimated_hours is None else f"{t.estimated_hours:g}"
        table.add_row(t.id, t.status, str(t.priority), hours, escape(t.title))
    console.print(table)

    progress = calculate_progress(execution_plan)
    console.print(
        f"Progress: {progress.completed}/{progress.total} ({progress.percentage}%), "
        f"{progress.estimated_remaining_hours:g}h remaining"
    )
    nxt = get_next_tasks(execution_plan, limit)
    console.print("Next: " + (", ".join(t.id for t in nxt) if nxt else "(none)"))
    waiting = get_blocked_tasks(execution_plan)
    if waiting:
        console.print(f"Waiting on dependencies: {len(waiting)} task(s)")


@app.command("blast-radius")
def blast_radius(
    path: str = typer.Argument(..., help="Path to a plan file (.yaml/.yml/.json)"),
    task_id: str = typer.Argument(..., help="Task id, e.g. task_F1"),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
) -> None:
    """Show every task that would be blocked if TASK_ID failed."""
    _check_format(format, "blast-radius")
    execution_plan, _ = _submit(path, ExecutionConfig())
    graph = graph_from_plan(execution_plan)

    if task_id not in graph:
        _print_errors(
            [
                PlanValidationError(
                    code="E_UNKNOWN_TASK",
                    message=f"unknown task id: {task_id}",
                    file=path,
                    path="task_id",
                )
            ]
        )
        raise typer.Exit(code=2)

    affected = get_tasks_blocked_by(task_id, graph)
    radius = calculate_blast_radius(task_id, graph)

    if format == "json":
        payload = {
            "tool": TOOL,
            "command": "blast-radius",
            "ok": True,
            "task_id": task_id,
            "blast_radius": radius,
            "affected": affected,
        }
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    typer.echo(f"Blast radius of {task_id}: {radius}")
    for tid in affected:
        typer.echo(f"- {tid}")


@app.command("handback")
def handback(
    work_order: str = typer.Argument(..., help="Path to the work order YAML"),
    outcome: str = typer.Argument(..., help="Path to the outcome report YAML"),
    policy_file: Optional[str] = typer.Option(
        None, "--policy-file", help="Optional YAML file overriding the default handback policy"
    ),
    format: str = typer.Option("text", "--format", help="Output format: text|json"),
    out: Optional[str] = typer.Option(None, "--out", help="Write the validation result as YAML"),
) -> None:
    """Validate an outcome report against its work order."""
    _check_format(format, "handback")

    try:
        policy = load_and_merge(policy_file)
    except FileNotFoundError:
        _print_errors(
            [
                PlanLoadError(
                    code="E_POLICY_FILE_NOT_FOUND",
                    message=f"policy file not found: {policy_file}",
                    file=None,
                    path="policy_file",
                )
            ]
        )
        raise typer.Exit(code=1)
    except PolicyConfigError as e:
        _print_errors(
            [
                PlanValidationError(
                    code="E_POLICY_FILE_INVALID",
                    message=str(e),
                    file=policy_file,
                    path="policy_file",
                )
            ]
        )
        raise typer.Exit(code=2)

    try:
        order_doc = load_work_order(work_order)
        report = load_outcome(outcome)
    except HandbackDecodeError as e:
        _print_errors([e])
        raise typer.Exit(code=1)

    result = validate_handback(order_doc, report, policy)
    if out:
        write_record(result, out)

    exit_code = 0 if result.accepted else 2
    if format == "json":
        payload = {"tool": TOOL, "command": "handback", "ok": result.accepted, **asdict(result)}
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        raise typer.Exit(code=exit_code)

    typer.echo(result.summary)
    for check in result.checks:
        typer.echo(f"[{check.result.upper():>7}] {check.name}: {check.details}")
    for v in result.scope_violations:
        typer.echo(f"  {v.type}: {v.file_path}")
    typer.echo(f"Suggested status: {result.suggested_status}")
    raise typer.Exit(code=exit_code)


def _submit(path: str, config: ExecutionConfig) -> tuple[ExecutionPlan, list[str]]:
    plan = _load_valid_plan(path)
    result = submit_plan(plan, config)
    if not result.success or result.execution_plan is None:
        for msg in result.errors:
            typer.echo(msg, err=True)
        raise typer.Exit(code=2)
    return result.execution_plan, result.warnings


def _load_valid_plan(path: str) -> ProjectPlan:
    try:
        raw = load_plan(path)
    except PlanLoadError as e:
        _print_errors([e])
        raise typer.Exit(code=1)

    plan, errors = validate_plan(raw)
    if errors or plan is None:
        _print_errors(list(errors))
        raise typer.Exit(code=2)
    return plan


def _display_order(plan: ExecutionPlan) -> list[str]:
    ordered = list(plan.execution_order)
    seen = set(ordered)
    return ordered + [t.id for t in plan.tasks if t.id not in seen]


def _check_format(format: str, command: str) -> None:
    if format in ("text", "json"):
        return
    err = PlanValidationError(
        code=f"E_{command.upper().replace('-', '_')}_UNKNOWN_FORMAT",
        message=f"unknown format: {format} (choose one of: text, json)",
        file=None,
        path="format",
    )
    _print_errors([err])
    raise typer.Exit(code=2)


def _to_item(e: PlanError) -> dict:
    if isinstance(e, PlanLoadError):
        source = "load"
    elif e.code.startswith("L_"):
        source = "lint"
    else:
        source = "validate"
    return {
        "code": e.code,
        "message": e.message,
        "file": e.file,
        "path": e.path,
        "severity": "error",
        "source": source,
    }


def _print_errors(errors: list[PlanError]) -> None:
    errors_sorted = sorted(errors, key=lambda e: (e.file or "", e.path or "", e.code))
    for e in errors_sorted:
        typer.echo(str(e), err=True)


def main() -> None:
    app(prog_name=TOOL)


cli = typer.main.get_command(app)

if __name__ == "__main__":
    main()
