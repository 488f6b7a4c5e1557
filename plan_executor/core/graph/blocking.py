from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from plan_executor.core.graph.dependency_graph import DependencyGraph


logger = logging.getLogger(__name__)


# Closed reason tags; any other application-supplied string is accepted too.
DEPENDENCY_FAILED = "dependency-failed"
DEPENDENCY_BLOCKED = "dependency-blocked"
DEPENDENCY_MISSING = "dependency-missing"
MANUAL_HOLD = "manual-hold"
CIRCULAR_DEPENDENCY = "circular-dependency"

# Blocks with these reasons are never lifted by dependency completion.
_STICKY_REASONS: set[str] = {MANUAL_HOLD, CIRCULAR_DEPENDENCY}


@dataclass(frozen=True)
class BlockRecord:
    task_id: str
    reason: str
    description: str
    blocked_at: datetime
    blocked_by: Optional[str] = None
    manual: bool = False


@dataclass
class BlockingCascadeResult:
    newly_blocked: list[str] = field(default_factory=list)
    already_blocked: list[str] = field(default_factory=list)
    # {task} plus its transitive dependents, i.e. the blast radius including the task.
    total_affected: int = 0
    block_info: dict[str, BlockRecord] = field(default_factory=dict)


@dataclass
class UnblockResult:
    unblocked: list[str] = field(default_factory=list)
    still_blocked: list[str] = field(default_factory=list)


def describe_block(task_id: str, reason: str, blocked_by: Optional[str] = None) -> str:
    if reason == DEPENDENCY_FAILED:
        return f'Task "{task_id}" failed'
    if reason == DEPENDENCY_BLOCKED:
        return f'Task "{task_id}" is blocked because "{blocked_by}" is blocked'
    if reason == DEPENDENCY_MISSING:
        return f'Task "{task_id}" is waiting for missing dependency "{blocked_by}"'
    if reason == MANUAL_HOLD:
        return f'Task "{task_id}" is on manual hold'
    if reason == CIRCULAR_DEPENDENCY:
        return f'Task "{task_id}" is part of a circular dependency'
    return f'Task "{task_id}" is blocked ({reason})'


class BlockingManager:
    """Live block/unblock state for the tasks of one plan.

    Not thread-safe: callers serialize mutations per manager (one
    ``block_task`` / ``unblock_task`` / hold change in flight at a time).

    Manual holds are tracked separately from block records. A held task is
    blocked even without a record and is never released by
    ``unblock_task``; only ``remove_manual_hold`` clears it.
    """

    def __init__(self) -> None:
        self._records: dict[str, BlockRecord] = {}
        self._holds: set[str] = set()

    def block_task(
        self,
        task_id: str,
        graph: DependencyGraph,
        reason: str = DEPENDENCY_FAILED,
    ) -> BlockingCascadeResult:
        """Block ``task_id`` and every task that transitively depends on it.

        Re-blocking an already-blocked task reports it under
        ``already_blocked`` and re-walks the graph, so dependents reachable
        through edges added since the first block are picked up. Existing
        cascade records are never replaced. A task that is only on manual
        hold gets a cascade record, so lifting the hold later leaves it
        blocked on its upstream.
        """
        result = BlockingCascadeResult()

        if self._has_cascade_record(task_id):
            result.already_blocked.append(task_id)
        else:
            self._add_record(task_id, reason, None, result)

        affected = 1
        seen: set[str] = {task_id}
        frontier: deque[str] = deque([task_id])
        while frontier:
            upstream = frontier.popleft()
            for dep_id in graph.get_dependents(upstream):
                if dep_id in seen:
                    continue
                seen.add(dep_id)
                affected += 1
                frontier.append(dep_id)
                if self._has_cascade_record(dep_id):
                    result.already_blocked.append(dep_id)
                else:
                    self._add_record(dep_id, DEPENDENCY_BLOCKED, upstream, result)

        result.total_affected = affected
        logger.warning(
            "blocked task %s (%s): %d newly blocked, %d affected",
            task_id,
            reason,
            len(result.newly_blocked),
            affected,
        )
        return result

    def _has_cascade_record(self, task_id: str) -> bool:
        # A hold-only record is replaced by the cascade; the hold flag stays.
        record = self._records.get(task_id)
        return record is not None and not record.manual

    def _add_record(
        self,
        task_id: str,
        reason: str,
        blocked_by: Optional[str],
        result: Optional[BlockingCascadeResult] = None,
        manual: bool = False,
    ) -> BlockRecord:
        record = BlockRecord(
            task_id=task_id,
            reason=reason,
            description=describe_block(task_id, reason, blocked_by),
            blocked_at=datetime.now(timezone.utc),
            blocked_by=blocked_by,
            manual=manual,
        )
        self._records[task_id] = record
        if result is not None:
            result.newly_blocked.append(task_id)
            result.block_info[task_id] = record
        return record

    def unblock_task(
        self, task_id: str, graph: DependencyGraph, completed_task_ids: Iterable[str]
    ) -> UnblockResult:
        """Release ``task_id`` once all of its *direct* dependencies are complete."""
        result = UnblockResult()

        if task_id in self._holds:
            result.still_blocked.append(task_id)
            return result

        record = self._records.get(task_id)
        if record is None:
            return result

        if record.reason in _STICKY_REASONS:
            result.still_blocked.append(task_id)
            return result

        completed = set(completed_task_ids)
        if all(d in completed for d in graph.get_dependencies(task_id)):
            del self._records[task_id]
            result.unblocked.append(task_id)
            logger.info("unblocked task %s", task_id)
        else:
            result.still_blocked.append(task_id)
        return result

    def unblock_all(self, graph: DependencyGraph, completed_task_ids: Iterable[str]) -> UnblockResult:
        completed = set(completed_task_ids)
        result = UnblockResult()
        hold_only = sorted(self._holds - self._records.keys())
        for task_id in list(self._records) + hold_only:
            r = self.unblock_task(task_id, graph, completed)
            result.unblocked.extend(r.unblocked)
            result.still_blocked.extend(r.still_blocked)
        return result

    def add_manual_hold(self, task_id: str) -> BlockRecord:
        self._holds.add(task_id)
        record = self._records.get(task_id)
        if record is None:
            record = self._add_record(task_id, MANUAL_HOLD, None, manual=True)
        logger.info("added manual hold to %s", task_id)
        return record

    def remove_manual_hold(self, task_id: str) -> bool:
        """Clear a hold. A cascade block recorded for the task stays in place."""
        if task_id not in self._holds:
            return False
        self._holds.discard(task_id)
        record = self._records.get(task_id)
        if record is not None and record.manual:
            del self._records[task_id]
        logger.info("removed manual hold from %s", task_id)
        return True

    def has_manual_hold(self, task_id: str) -> bool:
        return task_id in self._holds

    def is_blocked(self, task_id: str) -> bool:
        return task_id in self._records or task_id in self._holds

    def get_block_info(self, task_id: str) -> Optional[BlockRecord]:
        return self._records.get(task_id)

    def get_blocked_tasks(self) -> list[BlockRecord]:
        return list(self._records.values())

    def get_blocking_chain(self, task_id: str) -> list[str]:
        """Upstream blocked tasks explaining why ``task_id`` is blocked, nearest first."""
        chain: list[str] = []
        seen: set[str] = {task_id}
        current = self._records.get(task_id)
        while current is not None and current.blocked_by is not None:
            upstream = current.blocked_by
            if upstream in seen:
                break
            seen.add(upstream)
            if not self.is_blocked(upstream):
                break
            chain.append(upstream)
            current = self._records.get(upstream)
        return chain

    def clear(self) -> None:
        self._records.clear()
        self._holds.clear()


def get_tasks_blocked_by(failed_task_id: str, graph: DependencyGraph) -> list[str]:
    """Every task that transitively depends on ``failed_task_id`` (excluding itself)."""
    return graph.get_all_dependents(failed_task_id)


def calculate_blast_radius(task_id: str, graph: DependencyGraph) -> int:
    return len(get_tasks_blocked_by(task_id, graph))
