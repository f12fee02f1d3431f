"""Task, TaskDetail and PlanDocument data models used across the store and scheduler."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    PENDING = "pending"
    PLANNING = "planning"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def at_least(self, other: TaskStatus) -> bool:
        return self.rank >= other.rank


_STATUS_ORDER = [
    TaskStatus.PENDING,
    TaskStatus.PLANNING,
    TaskStatus.READY,
    TaskStatus.IN_PROGRESS,
    TaskStatus.COMPLETED,
]


class Outcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class Task:
    id: int
    title: str = ""
    status: TaskStatus = TaskStatus.PENDING
    dependencies: list[int] = field(default_factory=list)
    files_touched: list[str] = field(default_factory=list)
    detail_ref: str = ""
    # Store record version; 0 means the task was never persisted.
    version: int = 0

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "dependencies": list(self.dependencies),
            "files_touched": list(self.files_touched),
            "detail_ref": self.detail_ref,
        }

    @classmethod
    def from_record(cls, data: dict[str, Any], version: int = 0) -> Task:
        return cls(
            id=int(data["id"]),
            title=str(data.get("title") or ""),
            status=TaskStatus(data.get("status") or TaskStatus.PENDING.value),
            dependencies=[int(d) for d in data.get("dependencies") or []],
            files_touched=[str(f) for f in data.get("files_touched") or []],
            detail_ref=str(data.get("detail_ref") or ""),
            version=version,
        )


@dataclass
class TaskDetail:
    task_id: int
    summary: str = ""
    steps: list[str] = field(default_factory=list)
    files_touched: list[str] = field(default_factory=list)
    notes: str = ""

    def to_record(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "summary": self.summary,
            "steps": list(self.steps),
            "files_touched": list(self.files_touched),
            "notes": self.notes,
        }

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> TaskDetail:
        return cls(
            task_id=int(data["task_id"]),
            summary=str(data.get("summary") or ""),
            steps=[str(s) for s in data.get("steps") or []],
            files_touched=[str(f) for f in data.get("files_touched") or []],
            notes=str(data.get("notes") or ""),
        )


@dataclass
class PlanDocument:
    tasks: list[Task] = field(default_factory=list)
    next_id: int = 1
    version: int = 0

    def ids(self) -> list[int]:
        return [t.id for t in self.tasks]

    def get_task(self, task_id: int) -> Task | None:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def find_by_title(self, title: str) -> Task | None:
        for t in self.tasks:
            if t.title == title:
                return t
        return None

    def by_status(self, status: TaskStatus) -> list[Task]:
        return [t for t in self.tasks if t.status == status]

    def in_progress(self) -> list[Task]:
        return self.by_status(TaskStatus.IN_PROGRESS)

    def counts(self) -> dict[TaskStatus, int]:
        counts = {s: 0 for s in TaskStatus}
        for t in self.tasks:
            counts[t.status] += 1
        return counts


@dataclass
class ChangeSummary:
    """What a completed task changed, handed to an external commit step."""

    task_id: int
    title: str
    files_touched: list[str] = field(default_factory=list)

    @classmethod
    def from_task(cls, task: Task) -> ChangeSummary:
        return cls(task_id=task.id, title=task.title, files_touched=list(task.files_touched))

    def commit_message(self) -> str:
        lines = [self.title, "", f"Task: {self.task_id}"]
        if self.files_touched:
            lines.append("Files:")
            lines.extend(f"- {path}" for path in self.files_touched)
        return "\n".join(lines) + "\n"
