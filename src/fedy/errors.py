"""Error taxonomy shared by the store, the status machine and the scheduler."""

from __future__ import annotations

from collections.abc import Iterable, Mapping


class FedyError(Exception):
    """Base exception for FEDY errors.

    Use this for user-facing errors that should have actionable messages.
    """


class StoreError(FedyError):
    """Failure reported by the document store layer."""


class StoreUnavailable(StoreError):
    """The backing document cannot be read or written."""


class VersionConflict(StoreError):
    """A compare-and-swap write found a different record version."""

    def __init__(self, key: str, expected: int, actual: int) -> None:
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(f"{key}: expected version {expected}, found {actual}")


class TaskNotFound(FedyError):
    """A task id or title does not resolve to a task in the plan."""

    def __init__(self, ref: object) -> None:
        self.ref = ref
        super().__init__(f"Task not found: {ref}")


class DetailNotFound(FedyError):
    """A task detail was requested before the task reached Ready."""

    def __init__(self, task_id: int, reason: str = "") -> None:
        self.task_id = task_id
        msg = f"No detail for task {task_id}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class InvalidTransition(FedyError):
    """An illegal status change was attempted."""

    def __init__(self, from_status: object, to_status: object, reason: str = "") -> None:
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition {_label(from_status)} -> {_label(to_status)}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class TaskLocked(FedyError):
    """The task has started executing, so its definition can no longer change."""

    def __init__(self, task_id: int, status: str) -> None:
        self.task_id = task_id
        self.status = status
        super().__init__(f"Task {task_id} is {status}; dependencies can only change before it starts")


class AlreadyClaimed(FedyError):
    """Another caller claimed the task first; retry ``next_executable``."""

    def __init__(self, task_id: int, detail: str = "") -> None:
        self.task_id = task_id
        msg = f"Task {task_id} was already claimed"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class FilesLocked(AlreadyClaimed):
    """Files of the task are leased by another InProgress task."""

    def __init__(self, task_id: int, holders: Mapping[str, int]) -> None:
        self.holders = dict(holders)
        held = ", ".join(f"{path} (held by {tid})" for path, tid in sorted(self.holders.items()))
        super().__init__(task_id, held)


class CycleDetected(FedyError):
    """The dependency graph contains a cycle."""

    def __init__(self, task_ids: Iterable[int]) -> None:
        self.task_ids = frozenset(task_ids)
        ids = ", ".join(str(i) for i in sorted(self.task_ids))
        super().__init__(f"Cycle detected among tasks: {ids}")


def _label(status: object) -> str:
    return getattr(status, "value", str(status))
