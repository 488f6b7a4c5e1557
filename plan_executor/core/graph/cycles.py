from __future__ import annotations

from typing import Iterable, Iterator, Mapping

from plan_executor.core.graph.dependency_graph import DependencyGraph


def find_cycles(
    dependency_map: Mapping[str, Iterable[str]], *, first_only: bool = False
) -> list[list[str]]:
    """Find dependency cycles with a depth-first search.

    Walks ``task -> dependency`` edges using an explicit stack (no recursion),
    a visited set and the set of nodes on the current path. Each back edge
    yields one cycle reported as a closed path, e.g. ``["a", "b", "a"]``.
    Edges to ids that are not keys of ``dependency_map`` are ignored.

    Self-loops are reported as ``["a", "a"]``.
    """

    visited: set[str] = set()
    on_path: set[str] = set()
    path: list[str] = []
    emitted: set[tuple[str, ...]] = set()
    cycles: list[list[str]] = []

    for start in dependency_map:
        if start in visited:
            continue

        stack: list[tuple[str, Iterator[str]]] = [(start, iter(list(dependency_map[start])))]
        visited.add(start)
        on_path.add(start)
        path.append(start)

        while stack:
            node, deps = stack[-1]
            advanced = False
            for dep in deps:
                if dep not in dependency_map:
                    continue
                if dep in on_path:
                    cycle = path[path.index(dep):] + [dep]
                    key = tuple(cycle)
                    if key not in emitted:
                        emitted.add(key)
                        cycles.append(cycle)
                        if first_only:
                            return cycles
                    continue
                if dep not in visited:
                    visited.add(dep)
                    on_path.add(dep)
                    path.append(dep)
                    stack.append((dep, iter(list(dependency_map[dep]))))
                    advanced = True
                    break
            if not advanced:
                stack.pop()
                on_path.discard(node)
                path.pop()

    return cycles


def would_create_cycle(graph: DependencyGraph, task_id: str, dependency_id: str) -> bool:
    """True if adding ``task_id -> dependency_id`` would close a loop.

    That is the case when ``dependency_id`` already reaches ``task_id`` through
    its own dependencies (or is the same task).
    """
    visited: set[str] = set()
    stack = [dependency_id]
    while stack:
        current = stack.pop()
        if current == task_id:
            return True
        if current in visited:
            continue
        visited.add(current)
        stack.extend(graph.get_dependencies(current))
    return False
