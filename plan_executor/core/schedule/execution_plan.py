from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional

from plan_executor.core.graph.cycles import find_cycles
from plan_executor.core.model import DeveloperStory, FeatureBlock, ProjectPlan, UserStory


logger = logging.getLogger(__name__)


TaskStatus = Literal["pending", "ready", "in-progress", "blocked", "completed", "cancelled"]
PlanStatus = Literal["draft", "active", "paused", "completed", "cancelled"]
SourceType = Literal["feature", "user-story", "developer-story", "criterion"]

PRIORITY_MAP: dict[str, int] = {
    "critical": 1,
    "high": 2,
    "medium": 3,
    "low": 4,
}
DEFAULT_PRIORITY = 3
CRITERION_HOURS = 2.0


@dataclass(frozen=True)
class ExecutionConfig:
    plan_id: str = ""
    auto_start: bool = False
    create_subtasks: bool = True
    respect_priorities: bool = True
    create_dependencies: bool = True


@dataclass
class ExecutionTask:
    id: str
    source_type: SourceType
    source_id: str
    title: str
    description: str
    priority: int  # 1 = highest
    dependencies: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    estimated_hours: Optional[float] = None
    status: TaskStatus = "pending"


@dataclass
class ExecutionPlan:
    id: str
    plan_id: str
    name: str
    tasks: list[ExecutionTask]
    dependency_map: dict[str, list[str]]
    execution_order: list[str]
    status: PlanStatus = "draft"
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def task(self, task_id: str) -> Optional[ExecutionTask]:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None


@dataclass(frozen=True)
class PlanSubmissionResult:
    success: bool
    execution_plan: Optional[ExecutionPlan]
    task_count: int
    warnings: list[str]
    errors: list[str]


def submit_plan(plan: ProjectPlan, config: Optional[ExecutionConfig] = None) -> PlanSubmissionResult:
    """Turn a project plan into an execution plan.

    Structural problems (dangling dependencies, cycles) become warnings and
    never stop the submission. Anything unexpected is caught and reported in
    ``errors`` with ``success=False``.
    """

    cfg = config or ExecutionConfig()
    plan_id = cfg.plan_id or _generate_id()
    warnings: list[str] = []

    try:
        tasks = generate_tasks(plan, cfg)
        dependency_map = build_dependency_map(plan, tasks, cfg)
        execution_order = calculate_execution_order(tasks, dependency_map)
        warnings.extend(validate_execution_plan(tasks, dependency_map))

        execution_plan = ExecutionPlan(
            id=plan_id,
            plan_id=plan.metadata.id,
            name=plan.overview.name,
            tasks=tasks,
            dependency_map=dependency_map,
            execution_order=execution_order,
        )
    except Exception as e:
        logger.exception("plan submission failed for %s", plan.metadata.id)
        return PlanSubmissionResult(
            success=False,
            execution_plan=None,
            task_count=0,
            warnings=warnings,
            errors=[f"Failed to submit plan: {e}"],
        )

    for w in warnings:
        logger.warning("plan %s: %s", plan_id, w)

    if cfg.auto_start:
        execution_plan.status = "active"
        execution_plan.started_at = utc_now()
        mark_ready_tasks(execution_plan)

    logger.info(
        "submitted plan %s (%d tasks, %d ordered)", plan_id, len(tasks), len(execution_order)
    )
    return PlanSubmissionResult(
        success=True,
        execution_plan=execution_plan,
        task_count=len(tasks),
        warnings=warnings,
        errors=[],
    )


def generate_tasks(plan: ProjectPlan, config: ExecutionConfig) -> list[ExecutionTask]:
    tasks: list[ExecutionTask] = []

    for feature in plan.features:
        feature_task = create_feature_task(feature, config)
        tasks.append(feature_task)
        if config.create_subtasks:
            for i, criterion in enumerate(feature.acceptance_criteria):
                tasks.append(create_criterion_task(feature, criterion, i, feature_task.id))

    for dev_story in plan.developer_stories:
        owner = next(
            (f for f in plan.features if f.id in dev_story.related_feature_ids), None
        )
        parent_id = feature_task_id(owner.id) if owner else None
        tasks.append(create_developer_story_task(dev_story, parent_id))

    for user_story in plan.user_stories:
        tasks.append(create_user_story_task(user_story))

    return tasks


def feature_task_id(feature_id: str) -> str:
    return f"task_{feature_id}"


def create_feature_task(feature: FeatureBlock, config: ExecutionConfig) -> ExecutionTask:
    return ExecutionTask(
        id=feature_task_id(feature.id),
        source_type="feature",
        source_id=feature.id,
        title=feature.name,
        description=feature.description or "",
        priority=PRIORITY_MAP[feature.priority] if config.respect_priorities else DEFAULT_PRIORITY,
        dependencies=[],
        tags=["feature", feature.priority],
        estimated_hours=estimate_feature_hours(feature),
    )


def create_criterion_task(
    feature: FeatureBlock, criterion: str, index: int, parent_task_id: str
) -> ExecutionTask:
    return ExecutionTask(
        id=f"task_{feature.id}_criterion_{index}",
        source_type="criterion",
        source_id=f"{feature.id}_{index}",
        title=f"[{feature.name}] {criterion}",
        description=criterion,
        priority=PRIORITY_MAP[feature.priority],
        dependencies=[parent_task_id],
        tags=["criterion", feature.name],
        estimated_hours=CRITERION_HOURS,
    )


def create_developer_story_task(story: DeveloperStory, parent_task_id: Optional[str]) -> ExecutionTask:
    title = f"{story.action} - {story.benefit}"
    requirements = "\n".join(f"- {r}" for r in story.technical_requirements)
    return ExecutionTask(
        id=f"task_story_{story.id}",
        source_type="developer-story",
        source_id=story.id,
        title=title,
        description=f"{title}\n\nTechnical Requirements:\n{requirements}",
        priority=DEFAULT_PRIORITY,
        dependencies=[parent_task_id] if parent_task_id else [],
        tags=["developer-story"],
        estimated_hours=story.estimated_hours or float(len(story.technical_requirements) * 2),
    )


def create_user_story_task(story: UserStory) -> ExecutionTask:
    title = f"As a {story.user_type}, I want to {story.action} so that {story.benefit}"
    criteria = "\n".join(f"- {c}" for c in story.acceptance_criteria)
    return ExecutionTask(
        id=f"task_userstory_{story.id}",
        source_type="user-story",
        source_id=story.id,
        title=title,
        description=f"{title}\n\nAcceptance Criteria:\n{criteria}",
        priority=DEFAULT_PRIORITY,
        dependencies=[],
        tags=["user-story", story.user_type],
        estimated_hours=float(len(story.acceptance_criteria) * 3),
    )


def estimate_feature_hours(feature: FeatureBlock) -> int:
    """4h base + 2h per acceptance criterion, scaled up for critical/high priority."""
    base_hours = 4
    hours_per_criterion = 2
    multiplier = 1.5 if feature.priority == "critical" else 1.25 if feature.priority == "high" else 1.0
    return math.ceil((base_hours + len(feature.acceptance_criteria) * hours_per_criterion) * multiplier)


def build_dependency_map(
    plan: ProjectPlan, tasks: list[ExecutionTask], config: Optional[ExecutionConfig] = None
) -> dict[str, list[str]]:
    """Creation-time dependencies unioned with ``requires`` links between features.

    A link whose source has no task still gets an entry, so the dangling
    reference surfaces in validation instead of vanishing.
    """
    cfg = config or ExecutionConfig()
    dependency_map: dict[str, list[str]] = {t.id: list(t.dependencies) for t in tasks}

    if not cfg.create_dependencies:
        return dependency_map

    for link in plan.links:
        if link.type != "requires":
            continue
        source_id = feature_task_id(link.source)
        target_id = feature_task_id(link.target)
        deps = dependency_map.setdefault(source_id, [])
        if target_id not in deps:
            deps.append(target_id)

    # Keep task objects in step with the map so callers can read either.
    for t in tasks:
        t.dependencies = list(dependency_map[t.id])
    return dependency_map


def calculate_execution_order(
    tasks: list[ExecutionTask], dependency_map: dict[str, list[str]]
) -> list[str]:
    """Priority-aware topological order (Kahn's algorithm).

    The ready queue is re-sorted by ascending priority before every pop; the
    sort is stable, so equal priorities keep queue order. Tasks inside a
    cycle, or waiting on a task that does not exist, never reach in-degree
    zero and are left out.
    """
    priority = {t.id: t.priority for t in tasks}
    in_degree: dict[str, int] = {t.id: 0 for t in tasks}
    adjacency: dict[str, list[str]] = {t.id: [] for t in tasks}

    for t in tasks:
        for dep in dependency_map.get(t.id, []):
            in_degree[t.id] += 1
            adjacency.setdefault(dep, []).append(t.id)

    queue: list[str] = [t.id for t in tasks if in_degree[t.id] == 0]
    order: list[str] = []

    while queue:
        queue.sort(key=lambda tid: priority.get(tid, DEFAULT_PRIORITY))
        task_id = queue.pop(0)
        order.append(task_id)
        for nxt in adjacency.get(task_id, []):
            in_degree[nxt] -= 1
            if in_degree[nxt] == 0:
                queue.append(nxt)

    logger.debug("execution order: %s", order)
    return order


def validate_execution_plan(
    tasks: list[ExecutionTask], dependency_map: dict[str, list[str]]
) -> list[str]:
    warnings: list[str] = []
    task_ids = {t.id for t in tasks}

    for task_id, deps in dependency_map.items():
        if task_id not in task_ids:
            warnings.append(f"Dependencies recorded for non-existent task {task_id}")
        for dep in deps:
            if dep not in task_ids:
                warnings.append(f"Task {task_id} depends on non-existent task {dep}")

    # Only the first cycle is reported; the rest are left for the next review.
    cycles = find_cycles(dependency_map, first_only=True)
    if cycles:
        warnings.append(f"Cycle detected involving task {cycles[0][0]}: " + " -> ".join(cycles[0]))

    return warnings


def _generate_id() -> str:
    return f"exec_{uuid.uuid4().hex[:12]}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def mark_ready_tasks(plan: ExecutionPlan) -> list[str]:
    """Move every pending task whose dependencies are all completed to ``ready``.

    Returns the ids that changed. A dependency on a task that does not exist
    never counts as completed.
    """
    status = {t.id: t.status for t in plan.tasks}
    changed: list[str] = []
    for t in plan.tasks:
        if t.status != "pending":
            continue
        deps = plan.dependency_map.get(t.id, [])
        if all(status.get(d) == "completed" for d in deps):
            t.status = "ready"
            changed.append(t.id)
    return changed
