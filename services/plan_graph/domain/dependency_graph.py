"""
Dependency Graph - pure cycle validation
========================================
No sessions, no I/O, no logging. Only graph traversal over an edge list.

Edges are ``(prerequisite_id, dependent_id)`` pairs: the edge points in the
"must happen before" direction. Adding ``prerequisite -> dependent`` closes a
cycle exactly when ``prerequisite`` is already reachable from ``dependent``.

All traversals are breadth-first with a visited set, so they run in
O(tasks + edges) regardless of how many paths share sub-paths.
"""
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterable, List, Optional, Tuple

Edge = Tuple[Hashable, Hashable]


@dataclass
class DependencyValidation:
    """Result of a pre-flight dependency check"""
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    # prerequisite -> dependent -> ... -> prerequisite, when the edge would close a cycle
    cycle_path: List[Hashable] = field(default_factory=list)


def build_adjacency(edges: Iterable[Edge]) -> Dict[Hashable, List[Hashable]]:
    """prerequisite -> [dependents]"""
    adjacency: Dict[Hashable, List[Hashable]] = {}
    for prerequisite, dependent in edges:
        adjacency.setdefault(prerequisite, []).append(dependent)
    return adjacency


def find_path(
    adjacency: Dict[Hashable, List[Hashable]],
    start: Hashable,
    goal: Hashable
) -> Optional[List[Hashable]]:
    """
    Shortest forward path ``start -> ... -> goal``, or None if unreachable.
    """
    if start == goal:
        return [start]

    parents: Dict[Hashable, Hashable] = {start: start}
    queue = deque([start])

    while queue:
        node = queue.popleft()
        for neighbour in adjacency.get(node, ()):
            if neighbour in parents:
                continue
            parents[neighbour] = node
            if neighbour == goal:
                path = [goal]
                while path[-1] != start:
                    path.append(parents[path[-1]])
                path.reverse()
                return path
            queue.append(neighbour)

    return None


def would_create_cycle(
    edges: Iterable[Edge],
    prerequisite_task_id: Hashable,
    dependent_task_id: Hashable
) -> bool:
    """
    Would inserting ``prerequisite -> dependent`` make the graph cyclic?

    Self-loops are rejected before the edge list is touched.
    """
    if prerequisite_task_id == dependent_task_id:
        return True

    adjacency = build_adjacency(edges)
    return find_path(adjacency, dependent_task_id, prerequisite_task_id) is not None


def find_cycle_path(
    edges: Iterable[Edge],
    prerequisite_task_id: Hashable,
    dependent_task_id: Hashable
) -> List[Hashable]:
    """
    Cycle that the candidate edge would close, as a node list starting and
    ending at ``prerequisite_task_id``. Empty when no cycle would form.
    """
    if prerequisite_task_id == dependent_task_id:
        return [prerequisite_task_id, prerequisite_task_id]

    adjacency = build_adjacency(edges)
    path = find_path(adjacency, dependent_task_id, prerequisite_task_id)
    if path is None:
        return []
    return [prerequisite_task_id] + path


def has_cycle(edges: Iterable[Edge]) -> bool:
    """Kahn's algorithm over the whole edge set."""
    edges = list(edges)
    adjacency = build_adjacency(edges)

    in_degree: Dict[Hashable, int] = {}
    for prerequisite, dependent in edges:
        in_degree.setdefault(prerequisite, 0)
        in_degree[dependent] = in_degree.get(dependent, 0) + 1

    queue = deque(node for node, degree in in_degree.items() if degree == 0)
    visited = 0

    while queue:
        node = queue.popleft()
        visited += 1
        for neighbour in adjacency.get(node, ()):
            in_degree[neighbour] -= 1
            if in_degree[neighbour] == 0:
                queue.append(neighbour)

    return visited != len(in_degree)


def validate_dependency(
    edges: Iterable[Edge],
    prerequisite_task_id: Hashable,
    dependent_task_id: Hashable
) -> DependencyValidation:
    """Pre-flight check for the candidate edge, never mutates anything."""
    if prerequisite_task_id == dependent_task_id:
        return DependencyValidation(
            is_valid=False,
            errors=["A task cannot depend on itself"],
            cycle_path=[prerequisite_task_id, prerequisite_task_id],
        )

    cycle_path = find_cycle_path(edges, prerequisite_task_id, dependent_task_id)
    if cycle_path:
        return DependencyValidation(
            is_valid=False,
            errors=["This would create a circular dependency"],
            cycle_path=cycle_path,
        )

    return DependencyValidation(is_valid=True)
