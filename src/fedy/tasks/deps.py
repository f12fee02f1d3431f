"""Dependency checks: readiness of prerequisites and cycle detection."""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from fedy.tasks.model import Task, TaskStatus


def _index(all_tasks: Iterable[Task]) -> dict[int, Task]:
    return {t.id: t for t in all_tasks}


def is_satisfied(task: Task, all_tasks: Iterable[Task]) -> bool:
    """Return ``True`` when every dependency of *task* is Completed.

    A dependency id with no task record is unsatisfied. No dependencies at
    all is satisfied.
    """
    by_id = _index(all_tasks)
    for dep in task.dependencies:
        found = by_id.get(dep)
        if found is None or found.status != TaskStatus.COMPLETED:
            return False
    return True


def unmet(task: Task, all_tasks: Iterable[Task]) -> list[tuple[int, str]]:
    """Return ``(dep_id, state)`` for each dependency blocking *task*.

    *state* is the dependency's status value, or ``"missing"`` for a
    dangling reference.
    """
    by_id = _index(all_tasks)
    blocked: list[tuple[int, str]] = []
    for dep in task.dependencies:
        found = by_id.get(dep)
        if found is None:
            blocked.append((dep, "missing"))
        elif found.status != TaskStatus.COMPLETED:
            blocked.append((dep, found.status.value))
    return blocked


def detect_cycle(all_tasks: Iterable[Task]) -> set[int]:
    """Return the ids of every task that sits on a dependency cycle.

    Depth-first traversal tracking the recursion stack (Tarjan's strongly
    connected components). A component with more than one task, or a task
    depending on itself, is a cycle. Dangling dependency ids are not edges.
    """
    by_id = _index(all_tasks)
    edges = {tid: [d for d in t.dependencies if d in by_id] for tid, t in by_id.items()}

    index: dict[int, int] = {}
    lowlink: dict[int, int] = {}
    stack: list[int] = []
    on_stack: set[int] = set()
    cyclic: set[int] = set()
    counter = 0

    for root in by_id:
        if root in index:
            continue
        # Explicit (node, remaining edges) frames instead of recursion.
        frames: list[tuple[int, Iterator[int]]] = []
        index[root] = lowlink[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)
        frames.append((root, iter(edges[root])))

        while frames:
            node, remaining = frames[-1]
            descended = False
            for dep in remaining:
                if dep not in index:
                    index[dep] = lowlink[dep] = counter
                    counter += 1
                    stack.append(dep)
                    on_stack.add(dep)
                    frames.append((dep, iter(edges[dep])))
                    descended = True
                    break
                if dep in on_stack:
                    lowlink[node] = min(lowlink[node], index[dep])
            if descended:
                continue

            frames.pop()
            if frames:
                parent = frames[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node])

            if lowlink[node] == index[node]:
                component: list[int] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                if len(component) > 1 or node in edges[node]:
                    cyclic.update(component)

    return cyclic
