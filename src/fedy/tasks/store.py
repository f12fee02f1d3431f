"""TaskStore: the sole reader/writer of plan, task, detail and lease records."""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Sequence
from dataclasses import replace
from typing import Any

from fedy import log
from fedy.errors import (
    CycleDetected,
    DetailNotFound,
    FilesLocked,
    StoreUnavailable,
    TaskLocked,
    TaskNotFound,
    VersionConflict,
)
from fedy.store import DocumentStore
from fedy.tasks.deps import detect_cycle
from fedy.tasks.model import PlanDocument, Task, TaskDetail, TaskStatus

PLAN_KEY = "plan"

_EDITABLE = frozenset({TaskStatus.PENDING, TaskStatus.PLANNING, TaskStatus.READY})


def task_key(task_id: int) -> str:
    return f"task/{task_id}"


def detail_key(task_id: int) -> str:
    return f"detail/{task_id}"


def lease_key(path: str) -> str:
    return f"lease/{hashlib.sha1(path.encode('utf-8')).hexdigest()}"


class TaskStore:
    """Durable plan backed by a :class:`DocumentStore`.

    The plan record only holds the task order and the id counter; each task
    is its own record so status writes for different tasks never contend.
    """

    def __init__(self, docs: DocumentStore) -> None:
        self.docs = docs

    # ── plan ─────────────────────────────────────────────────────

    def init_plan(self) -> bool:
        """Create an empty plan. Returns ``False`` if one already exists."""
        try:
            self.docs.compare_and_swap(PLAN_KEY, {"next_id": 1, "tasks": []}, 0)
        except VersionConflict:
            return False
        log.debug("Created empty plan")
        return True

    def _read_plan_record(self) -> tuple[dict[str, Any], int]:
        rec = self.docs.read(PLAN_KEY)
        if rec is None:
            raise StoreUnavailable("Plan document not found (run 'fedy init')")
        order = rec.value.get("tasks")
        next_id = rec.value.get("next_id", 1)
        if order is None:
            order = []
        if not isinstance(order, list) or not isinstance(next_id, int):
            raise StoreUnavailable("Plan document is malformed")
        return {"next_id": next_id, "tasks": [int(i) for i in order]}, rec.version

    def load_plan(self) -> PlanDocument:
        """Read the whole plan in order; a zero-task plan is not an error."""
        data, version = self._read_plan_record()
        tasks: list[Task] = []
        for tid in data["tasks"]:
            rec = self.docs.read(task_key(tid))
            if rec is None:
                raise StoreUnavailable(f"Plan lists task {tid} but its record is missing")
            try:
                tasks.append(Task.from_record(rec.value, rec.version))
            except (KeyError, TypeError, ValueError) as exc:
                raise StoreUnavailable(f"Task record {tid} is malformed: {exc}") from exc
        return PlanDocument(tasks=tasks, next_id=data["next_id"], version=version)

    # ── tasks ────────────────────────────────────────────────────

    def get_task(self, task_id: int) -> Task:
        """Fresh read of a single task record."""
        rec = self.docs.read(task_key(task_id))
        if rec is None:
            raise TaskNotFound(task_id)
        try:
            return Task.from_record(rec.value, rec.version)
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreUnavailable(f"Task record {task_id} is malformed: {exc}") from exc

    def save_task(self, task: Task, expected_version: int | None = None) -> Task:
        """Persist *task* atomically and return it with its new version.

        With *expected_version* the write is a compare-and-swap and raises
        ``VersionConflict`` if someone else committed in between.
        """
        key = task_key(task.id)
        if expected_version is None:
            version = self.docs.write(key, task.to_record())
        else:
            version = self.docs.compare_and_swap(key, task.to_record(), expected_version)
        return replace(task, version=version)

    def resolve_refs(self, refs: Iterable[int | str], plan: PlanDocument) -> list[int]:
        """Turn ids or exact titles into task ids, keeping order and dropping repeats."""
        resolved: list[int] = []
        for ref in refs:
            task = None
            if isinstance(ref, int) or (isinstance(ref, str) and ref.strip().isdigit()):
                task = plan.get_task(int(ref))
            if task is None and isinstance(ref, str):
                task = plan.find_by_title(ref.strip())
            if task is None:
                raise TaskNotFound(ref)
            if task.id not in resolved:
                resolved.append(task.id)
        return resolved

    def add_task(self, title: str, dependencies: Sequence[int | str] = ()) -> Task:
        """Append a Pending task to the plan.

        Dependencies are resolved to ids now; a self reference or a cycle
        raises ``CycleDetected``. A concurrent plan edit raises
        ``VersionConflict``.
        """
        title = title.strip()
        if not title:
            raise ValueError("Task title cannot be empty")
        plan = self.load_plan()
        deps = self.resolve_refs(dependencies, plan)
        task = Task(id=plan.next_id, title=title, dependencies=deps)

        cyclic = detect_cycle([*plan.tasks, task])
        if cyclic:
            raise CycleDetected(cyclic)

        task = self.save_task(task, expected_version=0)
        order = {"next_id": plan.next_id + 1, "tasks": [*plan.ids(), task.id]}
        try:
            self.docs.compare_and_swap(PLAN_KEY, order, plan.version)
        except VersionConflict:
            self.docs.delete(task_key(task.id), task.version)
            raise
        log.debug(f"Task {task.id}: created ({title})")
        return task

    def set_dependencies(self, task_id: int, dependencies: Sequence[int | str]) -> Task:
        """Replace the dependencies of a task that has not started executing.

        The edit is fenced by a compare-and-swap on the plan record: of two
        edits made from the same plan snapshot only one commits, the other
        is undone and raises ``VersionConflict``.
        """
        plan = self.load_plan()
        task = plan.get_task(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        if task.status not in _EDITABLE:
            raise TaskLocked(task_id, task.status.value)
        deps = self.resolve_refs(dependencies, plan)
        if task_id in deps:
            raise CycleDetected({task_id})
        updated = replace(task, dependencies=deps)
        others = [t for t in plan.tasks if t.id != task_id]
        cyclic = detect_cycle([*others, updated])
        if cyclic:
            raise CycleDetected(cyclic)
        saved = self.save_task(updated, expected_version=task.version)
        fence = {"next_id": plan.next_id, "tasks": plan.ids()}
        try:
            self.docs.compare_and_swap(PLAN_KEY, fence, plan.version)
        except VersionConflict:
            self.save_task(task, expected_version=saved.version)
            raise
        log.debug(f"Task {task_id}: dependencies set to {deps}")
        return saved

    # ── details ──────────────────────────────────────────────────

    def save_detail(self, detail: TaskDetail, attempt: str = "") -> str:
        """Write *detail* and return its key.

        With *attempt* the record gets its own key, so a planner that loses
        the race to mark the task Ready cannot overwrite the winner's detail.
        """
        key = detail_key(detail.task_id)
        if attempt:
            key = f"{key}/{attempt}"
        self.docs.write(key, detail.to_record())
        return key

    def discard_detail(self, key: str) -> None:
        rec = self.docs.read(key)
        if rec is not None:
            self.docs.delete(key, rec.version)

    def load_detail(self, task_id: int) -> TaskDetail:
        task = self.get_task(task_id)
        if not task.status.at_least(TaskStatus.READY):
            raise DetailNotFound(task_id, f"status is {task.status.value}")
        rec = self.docs.read(task.detail_ref or detail_key(task_id))
        if rec is None:
            raise DetailNotFound(task_id, "record missing")
        return TaskDetail.from_record(rec.value)

    # ── file leases ──────────────────────────────────────────────

    def acquire_files(self, task: Task) -> None:
        """Lease every path of *task*, or none of them.

        Paths are leased in sorted order and the first live holder stops the
        attempt, so overlapping claimers cannot each end up with a share.
        A lease held by a task that is no longer InProgress is taken over.
        Raises ``FilesLocked`` naming the live holders.
        """
        taken: list[tuple[str, int]] = []
        held: dict[str, int] = {}
        for path in sorted(set(task.files_touched)):
            key = lease_key(path)
            value = {"path": path, "task_id": task.id}
            current = self.docs.read(key)
            expected = 0
            if current is not None:
                holder = int(current.value.get("task_id", 0))
                if holder != task.id and self._holds_lease(holder):
                    held[path] = holder
                    break
                expected = current.version
            try:
                version = self.docs.compare_and_swap(key, value, expected)
            except VersionConflict:
                latest = self.docs.read(key)
                held[path] = int(latest.value.get("task_id", 0)) if latest else 0
                break
            taken.append((key, version))

        if held:
            for key, version in taken:
                try:
                    self.docs.delete(key, version)
                except VersionConflict:
                    log.debug(f"Lease {key} was taken over during rollback")
            raise FilesLocked(task.id, held)

    def release_files(self, task: Task) -> None:
        """Drop the leases *task* holds; leases of other tasks are left alone."""
        for path in sorted(set(task.files_touched)):
            key = lease_key(path)
            current = self.docs.read(key)
            if current is None or int(current.value.get("task_id", 0)) != task.id:
                continue
            try:
                self.docs.delete(key, current.version)
            except VersionConflict:
                log.debug(f"Lease on {path} changed hands before release")

    def _holds_lease(self, task_id: int) -> bool:
        try:
            return self.get_task(task_id).status == TaskStatus.IN_PROGRESS
        except TaskNotFound:
            return False
