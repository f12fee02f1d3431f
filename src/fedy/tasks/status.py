"""Status machine: the only place task status transitions are validated."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace

from fedy import log
from fedy.errors import InvalidTransition
from fedy.tasks import conflicts, deps
from fedy.tasks.model import Task, TaskStatus


TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.PLANNING}),
    TaskStatus.PLANNING: frozenset({TaskStatus.READY, TaskStatus.PENDING}),
    TaskStatus.READY: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.READY}),
    TaskStatus.COMPLETED: frozenset(),
}


class StatusMachine:
    """Stateless validator for task status changes.

    Usage::

        machine = StatusMachine()
        machine.transition(TaskStatus.READY, TaskStatus.IN_PROGRESS)
        claimed = machine.apply(task, TaskStatus.IN_PROGRESS, plan.tasks)
    """

    def allowed(self, current: TaskStatus) -> frozenset[TaskStatus]:
        return TRANSITIONS[current]

    def transition(self, current: TaskStatus, requested: TaskStatus) -> TaskStatus:
        """Return *requested* if the edge exists, else raise ``InvalidTransition``."""
        if requested not in TRANSITIONS[current]:
            raise InvalidTransition(current, requested)
        return requested

    def apply(
        self,
        task: Task,
        requested: TaskStatus,
        all_tasks: Iterable[Task] | None = None,
    ) -> Task:
        """Return a copy of *task* moved to *requested*; *task* itself is untouched.

        Entering InProgress checks dependencies and file conflicts against
        *all_tasks*. Entering Ready needs ``files_touched``. Going back to
        Pending drops the planning output.
        """
        new_status = self.transition(task.status, requested)

        if new_status == TaskStatus.IN_PROGRESS:
            snapshot = list(all_tasks) if all_tasks is not None else []
            blocked = deps.unmet(task, snapshot)
            if blocked:
                listed = " ".join(f"{dep} ({state})" for dep, state in blocked)
                raise InvalidTransition(task.status, requested, f"dependsOn: {listed}")
            clash = conflicts.conflicts_with(task, snapshot)
            if clash:
                listed = " ".join(str(i) for i in sorted(clash))
                raise InvalidTransition(task.status, requested, f"files in use by: {listed}")

        if new_status == TaskStatus.READY and not task.files_touched:
            raise InvalidTransition(task.status, requested, "files_touched is empty")

        if new_status == TaskStatus.PENDING:
            updated = replace(task, status=new_status, files_touched=[], detail_ref="")
        else:
            updated = replace(task, status=new_status)
        log.transition(task.id, task.status, new_status)
        return updated
