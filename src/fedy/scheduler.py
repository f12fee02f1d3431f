"""Scheduler: picks executable tasks and claims/releases them through the store."""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from dataclasses import replace

from fedy import log
from fedy.errors import AlreadyClaimed, CycleDetected, FedyError, InvalidTransition, VersionConflict
from fedy.tasks import conflicts, deps
from fedy.tasks.model import ChangeSummary, Outcome, PlanDocument, Task, TaskDetail, TaskStatus
from fedy.tasks.status import StatusMachine
from fedy.tasks.store import TaskStore

TaskSource = PlanDocument | Iterable[Task] | None


class Scheduler:
    """Stateless scheduler over a :class:`TaskStore`.

    All coordination between agents goes through compare-and-swap writes in
    the store; the scheduler keeps no state of its own.

    Usage::

        sched = Scheduler(store)
        task = sched.next_executable()     # Ready, deps done, files free
        task = sched.claim(task)           # ready -> in_progress, or AlreadyClaimed
        sched.release(task, Outcome.SUCCEEDED)   # in_progress -> completed
        sched.release(task, Outcome.FAILED)      # in_progress -> ready
    """

    def __init__(self, store: TaskStore, machine: StatusMachine | None = None) -> None:
        self.store = store
        self.machine = machine or StatusMachine()

    def _snapshot(self, tasks: TaskSource) -> list[Task]:
        if tasks is None:
            return list(self.store.load_plan().tasks)
        if isinstance(tasks, PlanDocument):
            return list(tasks.tasks)
        return list(tasks)

    # ── selection ────────────────────────────────────────────────

    def executable(self, tasks: TaskSource = None) -> list[Task]:
        """Return Ready tasks with deps satisfied and no file conflicts, in plan order."""
        snapshot = self._snapshot(tasks)
        cyclic = deps.detect_cycle(snapshot)
        running = [t for t in snapshot if t.status == TaskStatus.IN_PROGRESS]
        ready: list[Task] = []
        for task in snapshot:
            if task.status != TaskStatus.READY or task.id in cyclic:
                continue
            if not deps.is_satisfied(task, snapshot):
                continue
            if conflicts.conflicts_with(task, running):
                continue
            ready.append(task)
        return ready

    def next_executable(self, tasks: TaskSource = None) -> Task | None:
        ready = self.executable(tasks)
        return ready[0] if ready else None

    def next_plannable(self, tasks: TaskSource = None) -> Task | None:
        """First Pending task that is not part of a dependency cycle."""
        snapshot = self._snapshot(tasks)
        cyclic = deps.detect_cycle(snapshot)
        for task in snapshot:
            if task.status == TaskStatus.PENDING and task.id not in cyclic:
                return task
        return None

    # ── planning transitions ─────────────────────────────────────

    def _commit(self, fresh: Task, updated: Task) -> Task:
        try:
            return self.store.save_task(updated, expected_version=fresh.version)
        except VersionConflict as exc:
            raise AlreadyClaimed(fresh.id, "record changed concurrently") from exc

    def start_planning(self, task: Task) -> Task:
        fresh = self.store.get_task(task.id)
        return self._commit(fresh, self.machine.apply(fresh, TaskStatus.PLANNING))

    def finish_planning(
        self,
        task: Task,
        files_touched: Sequence[str],
        summary: str = "",
        steps: Sequence[str] = (),
        notes: str = "",
    ) -> Task:
        """Store the task detail and move Planning -> Ready."""
        fresh = self.store.get_task(task.id)
        files = list(dict.fromkeys(f for f in files_touched if f))
        planned = replace(fresh, files_touched=files)
        ready = self.machine.apply(planned, TaskStatus.READY)

        detail = TaskDetail(
            task_id=fresh.id,
            summary=summary,
            steps=list(steps),
            files_touched=files,
            notes=notes,
        )
        detail_ref = self.store.save_detail(detail, attempt=uuid.uuid4().hex)
        try:
            return self._commit(fresh, replace(ready, detail_ref=detail_ref))
        except AlreadyClaimed:
            self.store.discard_detail(detail_ref)
            raise

    def abandon_planning(self, task: Task) -> Task:
        fresh = self.store.get_task(task.id)
        return self._commit(fresh, self.machine.apply(fresh, TaskStatus.PENDING))

    # ── execution transitions ────────────────────────────────────

    def claim(self, task: Task) -> Task:
        """Atomically move *task* Ready -> InProgress.

        Re-reads the task first; a task some other caller already moved to
        InProgress raises ``AlreadyClaimed``. Losing the compare-and-swap, or
        finding one of the files leased by another running task, also raises
        ``AlreadyClaimed``. Callers retry with ``next_executable``.
        """
        fresh = self.store.get_task(task.id)
        if fresh.status == TaskStatus.IN_PROGRESS:
            raise AlreadyClaimed(fresh.id, "task is in progress")

        snapshot = [fresh if t.id == fresh.id else t for t in self.store.load_plan().tasks]
        cyclic = deps.detect_cycle(snapshot)
        if fresh.id in cyclic:
            raise CycleDetected(cyclic)

        claimed = self._commit(fresh, self.machine.apply(fresh, TaskStatus.IN_PROGRESS, snapshot))
        try:
            self.store.acquire_files(claimed)
        except FedyError:
            self._undo_claim(claimed)
            raise
        log.debug(f"Task {claimed.id}: claimed ({', '.join(claimed.files_touched)})")
        return claimed

    def _undo_claim(self, claimed: Task) -> None:
        """Drop leases and put a half-claimed task back to Ready."""
        try:
            self.store.release_files(claimed)
            rolled_back = self.machine.apply(claimed, TaskStatus.READY)
            self.store.save_task(rolled_back, expected_version=claimed.version)
        except FedyError as exc:
            log.error(f"Task {claimed.id}: could not undo claim: {exc}")

    def release(self, task: Task, outcome: Outcome) -> Task:
        """Finish an InProgress task: Completed on success, back to Ready on failure."""
        fresh = self.store.get_task(task.id)
        target = TaskStatus.COMPLETED if outcome == Outcome.SUCCEEDED else TaskStatus.READY
        updated = self.machine.apply(fresh, target)
        saved = self.store.save_task(updated, expected_version=fresh.version)
        self.store.release_files(fresh)
        log.debug(f"Task {saved.id}: released ({outcome.value}, files unlocked)")
        return saved

    def change_summary(self, task: Task) -> ChangeSummary:
        """Files and title of a Completed task, for an external commit step."""
        fresh = self.store.get_task(task.id)
        if fresh.status != TaskStatus.COMPLETED:
            raise InvalidTransition(fresh.status, TaskStatus.COMPLETED, "task is not completed")
        return ChangeSummary.from_task(fresh)

    # ── diagnostics ──────────────────────────────────────────────

    def check_plan(self, tasks: TaskSource = None) -> None:
        """Raise ``CycleDetected`` if any tasks depend on each other in a loop."""
        cyclic = deps.detect_cycle(self._snapshot(tasks))
        if cyclic:
            raise CycleDetected(cyclic)

    def check_deadlock(self, tasks: TaskSource = None) -> bool:
        """Return ``True`` if unfinished work exists but nothing can move."""
        snapshot = self._snapshot(tasks)
        unfinished = [t for t in snapshot if t.status != TaskStatus.COMPLETED]
        if not unfinished:
            return False
        if any(t.status in (TaskStatus.IN_PROGRESS, TaskStatus.PLANNING) for t in unfinished):
            return False
        return self.next_executable(snapshot) is None and self.next_plannable(snapshot) is None

    def explain_block(self, task: Task, tasks: TaskSource = None) -> str:
        """Human-readable explanation of why *task* is not executable."""
        snapshot = self._snapshot(tasks)
        current = next((t for t in snapshot if t.id == task.id), task)
        reasons: list[str] = []

        if current.status != TaskStatus.READY:
            reasons.append(f"status: {current.status.value}")

        cyclic = deps.detect_cycle(snapshot)
        if current.id in cyclic:
            reasons.append(f"cycle: {' '.join(str(i) for i in sorted(cyclic))}")

        blocked_deps = deps.unmet(current, snapshot)
        if blocked_deps:
            reasons.append("dependsOn: " + " ".join(f"{dep} ({state})" for dep, state in blocked_deps))

        held = conflicts.holders(current, snapshot)
        if held:
            reasons.append(
                "files: " + " ".join(f"{path} (held by {tid})" for path, tid in sorted(held.items()))
            )

        return " ".join(reasons)
