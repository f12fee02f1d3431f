"""Structural validation of a plan document + cycle detection."""

from __future__ import annotations

from fedy.tasks.deps import detect_cycle
from fedy.tasks.model import PlanDocument, TaskStatus


def validate(plan: PlanDocument) -> list[str]:
    """Return a list of human-readable problems; empty means the plan is sound."""
    errors: list[str] = []
    ids = plan.ids()
    known = set(ids)

    seen: set[int] = set()
    for tid in ids:
        if tid in seen:
            errors.append(f"Duplicate id: {tid}")
        seen.add(tid)

    for task in plan.tasks:
        if task.id <= 0:
            errors.append(f"Task {task.id}: id must be a positive integer")
        if not task.title.strip():
            errors.append(f"Task {task.id}: missing title")
        if task.id in task.dependencies:
            errors.append(f"Task {task.id}: depends on itself")
        for dep in task.dependencies:
            if dep not in known:
                errors.append(f"Task {task.id}: dependency {dep} not found")
        early = task.status in (TaskStatus.PENDING, TaskStatus.PLANNING)
        if early and task.files_touched:
            errors.append(f"Task {task.id}: files_touched set while {task.status.value}")
        if not early and not task.files_touched:
            errors.append(f"Task {task.id}: no files_touched while {task.status.value}")
        if not early and not task.detail_ref:
            errors.append(f"Task {task.id}: no detail while {task.status.value}")
        if task.id >= plan.next_id:
            errors.append(f"Task {task.id}: id not below next_id {plan.next_id}")

    cyclic = detect_cycle(plan.tasks)
    if cyclic:
        errors.append(f"Cycle detected: {' '.join(str(i) for i in sorted(cyclic))}")

    in_progress = plan.in_progress()
    owners: dict[str, int] = {}
    for task in in_progress:
        for path in task.files_touched:
            if path in owners and owners[path] != task.id:
                errors.append(f"File {path} is in progress in tasks {owners[path]} and {task.id}")
            owners.setdefault(path, task.id)

    return errors
