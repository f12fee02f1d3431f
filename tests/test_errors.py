"""Tests for fedy.errors — messages and hierarchy callers rely on."""

from __future__ import annotations

from fedy.errors import (
    AlreadyClaimed,
    CycleDetected,
    DetailNotFound,
    FedyError,
    FilesLocked,
    InvalidTransition,
    StoreError,
    StoreUnavailable,
    TaskLocked,
    TaskNotFound,
    VersionConflict,
)
from fedy.tasks.model import TaskStatus


def test_hierarchy():
    assert issubclass(StoreUnavailable, StoreError)
    assert issubclass(VersionConflict, StoreError)
    assert issubclass(FilesLocked, AlreadyClaimed)
    for cls in (StoreError, TaskNotFound, DetailNotFound, InvalidTransition, AlreadyClaimed, CycleDetected):
        assert issubclass(cls, FedyError)


def test_invalid_transition_carries_pair():
    err = InvalidTransition(TaskStatus.READY, TaskStatus.COMPLETED, "nope")
    assert err.from_status is TaskStatus.READY
    assert err.to_status is TaskStatus.COMPLETED
    assert str(err) == "Invalid transition ready -> completed: nope"


def test_cycle_detected_sorted_ids():
    err = CycleDetected({3, 1, 2})
    assert err.task_ids == frozenset({1, 2, 3})
    assert str(err) == "Cycle detected among tasks: 1, 2, 3"


def test_files_locked_message():
    err = FilesLocked(4, {"b.py": 2, "a.py": 1})
    assert err.task_id == 4
    assert str(err) == "Task 4 was already claimed: a.py (held by 1), b.py (held by 2)"


def test_version_conflict_fields():
    err = VersionConflict("task/1", 2, 3)
    assert (err.key, err.expected, err.actual) == ("task/1", 2, 3)


def test_detail_not_found_reason():
    assert str(DetailNotFound(3, "status is pending")) == "No detail for task 3 (status is pending)"


def test_task_locked_names_status():
    exc = TaskLocked(4, "in_progress")
    assert isinstance(exc, FedyError)
    assert exc.task_id == 4
    assert "Task 4 is in_progress" in str(exc)
