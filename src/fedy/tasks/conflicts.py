"""File-overlap checks between a candidate task and the InProgress set."""

from __future__ import annotations

from collections.abc import Iterable

from fedy.tasks.model import Task, TaskStatus


def holders(candidate: Task, in_progress: Iterable[Task]) -> dict[str, int]:
    """Map each path of *candidate* that an InProgress task touches to that task's id.

    Paths compare by exact, case-sensitive string equality.
    """
    wanted = set(candidate.files_touched)
    held: dict[str, int] = {}
    if not wanted:
        return held
    for other in in_progress:
        if other.id == candidate.id or other.status != TaskStatus.IN_PROGRESS:
            continue
        for path in other.files_touched:
            if path in wanted and path not in held:
                held[path] = other.id
    return held


def conflicts_with(candidate: Task, in_progress: Iterable[Task]) -> set[int]:
    """Return ids of InProgress tasks whose files intersect *candidate*'s."""
    wanted = set(candidate.files_touched)
    if not wanted:
        return set()
    return {
        other.id
        for other in in_progress
        if other.id != candidate.id
        and other.status == TaskStatus.IN_PROGRESS
        and wanted.intersection(other.files_touched)
    }
