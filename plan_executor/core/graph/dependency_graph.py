from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Mapping, Optional


logger = logging.getLogger(__name__)


@dataclass
class DependencyNode:
    id: str
    # Insertion-ordered so walks are deterministic.
    dependencies: list[str] = field(default_factory=list)
    dependents: list[str] = field(default_factory=list)


class DependencyGraph:
    """Directed graph of ``dependent -> dependency`` edges over task ids.

    The graph performs no validation: self-loops, cycles and edges to nodes
    that were only implicitly registered are all representable. Cycle and
    dangling-reference checks belong to the callers.

    Each node keeps a reverse index (``dependents``) that is updated on every
    edge mutation, so forward walks never need an inverse scan.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, DependencyNode] = {}

    @classmethod
    def from_mapping(cls, dependency_map: Mapping[str, Iterable[str]]) -> "DependencyGraph":
        graph = cls()
        for task_id in dependency_map:
            graph.add_node(task_id)
        for task_id, deps in dependency_map.items():
            for dep in deps:
                graph.add_dependency(task_id, dep)
        return graph

    def add_node(self, task_id: str) -> None:
        if task_id not in self._nodes:
            self._nodes[task_id] = DependencyNode(id=task_id)

    def add_dependency(self, dependent: str, dependency: str) -> None:
        """Record that ``dependent`` requires ``dependency``; registers both."""
        self.add_node(dependent)
        self.add_node(dependency)
        node = self._nodes[dependent]
        if dependency in node.dependencies:
            return
        node.dependencies.append(dependency)
        self._nodes[dependency].dependents.append(dependent)

    def remove_dependency(self, dependent: str, dependency: str) -> None:
        node = self._nodes.get(dependent)
        if node and dependency in node.dependencies:
            node.dependencies.remove(dependency)
        dep_node = self._nodes.get(dependency)
        if dep_node and dependent in dep_node.dependents:
            dep_node.dependents.remove(dependent)

    def remove_node(self, task_id: str) -> None:
        node = self._nodes.get(task_id)
        if node is None:
            return
        for dep in list(node.dependencies):
            self.remove_dependency(task_id, dep)
        for dependent in list(node.dependents):
            self.remove_dependency(dependent, task_id)
        del self._nodes[task_id]

    def get_dependencies(self, task_id: str) -> list[str]:
        node = self._nodes.get(task_id)
        return list(node.dependencies) if node else []

    def get_dependents(self, task_id: str) -> list[str]:
        node = self._nodes.get(task_id)
        return list(node.dependents) if node else []

    def get_all_dependencies(self, task_id: str) -> list[str]:
        """Transitive dependencies, nearest first, excluding ``task_id``."""
        return self._walk(task_id, self.get_dependencies)

    def get_all_dependents(self, task_id: str) -> list[str]:
        """Every task that would be affected if ``task_id`` failed, nearest first."""
        return self._walk(task_id, self.get_dependents)

    def _walk(self, task_id: str, step) -> list[str]:
        out: list[str] = []
        seen: set[str] = {task_id}
        q: deque[str] = deque(step(task_id))
        while q:
            cur = q.popleft()
            if cur in seen:
                continue
            seen.add(cur)
            out.append(cur)
            q.extend(n for n in step(cur) if n not in seen)
        return out

    def has_dependencies(self, task_id: str) -> bool:
        node = self._nodes.get(task_id)
        return bool(node and node.dependencies)

    def has_dependents(self, task_id: str) -> bool:
        node = self._nodes.get(task_id)
        return bool(node and node.dependents)

    def get_node(self, task_id: str) -> Optional[DependencyNode]:
        return self._nodes.get(task_id)

    def nodes(self) -> list[str]:
        return list(self._nodes.keys())

    def roots(self) -> list[str]:
        return [n for n in self._nodes if not self.has_dependencies(n)]

    def leaves(self) -> list[str]:
        return [n for n in self._nodes if not self.has_dependents(n)]

    def parallel_levels(self) -> list[list[str]]:
        """Group tasks into waves that can run concurrently.

        Level 0 holds the roots; each later level holds the tasks whose
        dependencies all sit in earlier levels. Tasks on or behind a cycle
        never qualify and are left out.
        """
        levels: list[list[str]] = []
        done: set[str] = set()
        remaining = list(self._nodes)
        while remaining:
            level = [n for n in remaining if all(d in done for d in self._nodes[n].dependencies)]
            if not level:
                logger.warning("cycle prevents %d task(s) from being levelled", len(remaining))
                break
            levels.append(level)
            done.update(level)
            remaining = [n for n in remaining if n not in done]
        return levels

    def critical_path(self) -> list[str]:
        """Longest dependency chain, root first; the first one found on a tie."""
        paths: dict[str, list[str]] = {}
        for level in self.parallel_levels():
            for n in level:
                paths[n] = [n]
        for n in list(paths):
            for dependent in self._nodes[n].dependents:
                if dependent in paths and len(paths[n]) + 1 > len(paths[dependent]):
                    paths[dependent] = paths[n] + [dependent]

        longest: list[str] = []
        for path in paths.values():
            if len(path) > len(longest):
                longest = path
        return longest

    def to_mapping(self) -> dict[str, list[str]]:
        return {n: list(node.dependencies) for n, node in self._nodes.items()}

    def size(self) -> int:
        return len(self._nodes)

    def is_empty(self) -> bool:
        return not self._nodes

    def clear(self) -> None:
        self._nodes.clear()

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._nodes

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._nodes))
