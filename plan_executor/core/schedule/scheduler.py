from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from plan_executor.core.graph.blocking import DEPENDENCY_FAILED, BlockingManager
from plan_executor.core.graph.dependency_graph import DependencyGraph
from plan_executor.core.handback.contracts import ValidationResult
from plan_executor.core.schedule.execution_plan import (
    ExecutionPlan,
    ExecutionTask,
    TaskStatus,
    mark_ready_tasks,
    utc_now,
)


logger = logging.getLogger(__name__)

DEFAULT_TASK_HOURS = 4.0


@dataclass(frozen=True)
class TaskProgressUpdate:
    task_id: str
    status: TaskStatus
    progress: Optional[int] = None  # 0-100
    notes: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class BlockedTask:
    task: ExecutionTask
    blocked_by: list[ExecutionTask]


@dataclass(frozen=True)
class ExecutionProgress:
    total: int
    completed: int
    in_progress: int
    ready: int
    blocked: int
    pending: int
    cancelled: int
    percentage: int
    estimated_remaining_hours: float


@dataclass(frozen=True)
class HandbackApplication:
    """What ``apply_handback`` did to the plan and the blocking manager."""

    task_id: str
    applied: bool
    new_status: Optional[TaskStatus] = None
    blocked: list[str] = field(default_factory=list)
    unblocked: list[str] = field(default_factory=list)


def start_execution(plan: ExecutionPlan) -> None:
    plan.status = "active"
    plan.started_at = utc_now()
    mark_ready_tasks(plan)
    logger.info("plan %s started", plan.id)


def pause_execution(plan: ExecutionPlan) -> None:
    plan.status = "paused"
    logger.info("plan %s paused", plan.id)


def resume_execution(plan: ExecutionPlan) -> None:
    plan.status = "active"
    mark_ready_tasks(plan)
    logger.info("plan %s resumed", plan.id)


def cancel_execution(plan: ExecutionPlan) -> None:
    """Terminal: the plan and every non-completed task become ``cancelled``."""
    plan.status = "cancelled"
    for t in plan.tasks:
        if t.status != "completed":
            t.status = "cancelled"
    logger.info("plan %s cancelled", plan.id)


def update_task_progress(plan: ExecutionPlan, update: TaskProgressUpdate) -> bool:
    """Overwrite a task's status. Returns False when the task is unknown.

    Completing a task recomputes the ready set, and completes the plan once
    every task is completed.
    """
    task = plan.task(update.task_id)
    if task is None:
        logger.debug("progress update for unknown task %s ignored", update.task_id)
        return False

    task.status = update.status

    if update.status == "completed":
        mark_ready_tasks(plan)
        if all(t.status == "completed" for t in plan.tasks):
            plan.status = "completed"
            plan.completed_at = utc_now()
            logger.info("plan %s completed", plan.id)

    return True


def get_next_tasks(plan: ExecutionPlan, limit: int = 5) -> list[ExecutionTask]:
    ready = [t for t in plan.tasks if t.status == "ready"]
    return sorted(ready, key=lambda t: t.priority)[:limit]


def get_blocked_tasks(plan: ExecutionPlan) -> list[BlockedTask]:
    by_id = {t.id: t for t in plan.tasks}
    out: list[BlockedTask] = []
    for t in plan.tasks:
        if t.status not in ("blocked", "pending"):
            continue
        blockers = [
            by_id[d]
            for d in plan.dependency_map.get(t.id, [])
            if d in by_id and by_id[d].status != "completed"
        ]
        if blockers:
            out.append(BlockedTask(task=t, blocked_by=blockers))
    return out


def calculate_progress(plan: ExecutionPlan) -> ExecutionProgress:
    def count(status: str) -> int:
        return sum(1 for t in plan.tasks if t.status == status)

    total = len(plan.tasks)
    completed = count("completed")
    remaining = [t for t in plan.tasks if t.status not in ("completed", "cancelled")]

    return ExecutionProgress(
        total=total,
        completed=completed,
        in_progress=count("in-progress"),
        ready=count("ready"),
        blocked=count("blocked"),
        pending=count("pending"),
        cancelled=count("cancelled"),
        percentage=round(completed / total * 100) if total > 0 else 0,
        estimated_remaining_hours=sum(
            t.estimated_hours if t.estimated_hours is not None else DEFAULT_TASK_HOURS
            for t in remaining
        ),
    )


def graph_from_plan(plan: ExecutionPlan) -> DependencyGraph:
    graph = DependencyGraph()
    for t in plan.tasks:
        graph.add_node(t.id)
    for task_id, deps in plan.dependency_map.items():
        for dep in deps:
            graph.add_dependency(task_id, dep)
    return graph


def apply_handback(
    plan: ExecutionPlan,
    graph: DependencyGraph,
    manager: BlockingManager,
    task_id: str,
    result: ValidationResult,
) -> HandbackApplication:
    """Move a task according to a handback validation result.

    - ``done``: the task completes; blocked direct dependents whose own
      dependencies are now all complete are released back to ``pending``
      and the ready set is recomputed.
    - ``blocked``: the task and its transitive dependents are blocked
      through ``manager`` and marked ``blocked`` in the plan.
    - ``in_progress`` / ``verification``: the task goes (back) to
      ``in-progress``.

    Callers serialize calls per plan; nothing here locks.
    """
    task = plan.task(task_id)
    if task is None:
        return HandbackApplication(task_id=task_id, applied=False)

    if result.suggested_status == "done":
        update_task_progress(plan, TaskProgressUpdate(task_id=task_id, status="completed"))
        completed = {t.id for t in plan.tasks if t.status == "completed"}
        unblocked: list[str] = []
        for tid in [task_id, *graph.get_dependents(task_id)]:
            if not manager.is_blocked(tid):
                continue
            released = manager.unblock_task(tid, graph, completed).unblocked
            for rid in released:
                t = plan.task(rid)
                if t is not None and t.status == "blocked":
                    t.status = "pending"
            unblocked.extend(released)
        mark_ready_tasks(plan)
        return HandbackApplication(
            task_id=task_id, applied=True, new_status="completed", unblocked=unblocked
        )

    if result.suggested_status == "blocked":
        cascade = manager.block_task(task_id, graph, DEPENDENCY_FAILED)
        blocked: list[str] = []
        for tid in [task_id, *cascade.newly_blocked, *cascade.already_blocked]:
            t = plan.task(tid)
            if t is not None and t.status not in ("completed", "cancelled") and tid not in blocked:
                t.status = "blocked"
                blocked.append(tid)
        return HandbackApplication(task_id=task_id, applied=True, new_status="blocked", blocked=blocked)

    update_task_progress(plan, TaskProgressUpdate(task_id=task_id, status="in-progress"))
    return HandbackApplication(task_id=task_id, applied=True, new_status="in-progress")

