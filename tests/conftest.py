"""Shared fixtures for fedy tests.

File handling in tests:
- Use tmp_path for any directory or file creation so tests are isolated and cleaned up.
- Use fedy.io_utils read_text/write_text for consistent UTF-8 I/O.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from fedy.store import FileDocumentStore, MemoryDocumentStore
from fedy.tasks.model import Task, TaskStatus
from fedy.tasks.store import PLAN_KEY, TaskStore


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register opt-in switch for expensive end-to-end tests."""
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run end-to-end tests marked with 'e2e'.",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip e2e tests unless explicitly enabled."""
    if config.getoption("--run-e2e"):
        return

    skip_e2e = pytest.mark.skip(
        reason="E2E tests are skipped by default. Use --run-e2e to include them.",
    )
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


def _make_task(
    id: int,
    title: str = "",
    status: TaskStatus = TaskStatus.PENDING,
    dependencies: list[int] | None = None,
    files: list[str] | None = None,
) -> Task:
    return Task(
        id=id,
        title=title or f"Task {id}",
        status=status,
        dependencies=dependencies or [],
        files_touched=files or [],
        detail_ref=f"detail/{id}" if status.at_least(TaskStatus.READY) else "",
    )


def seed(store: TaskStore, tasks: list[Task]) -> list[Task]:
    """Write *tasks* straight into the store, bypassing the status machine."""
    saved = [store.save_task(t) for t in tasks]
    next_id = max((t.id for t in tasks), default=0) + 1
    store.docs.write(PLAN_KEY, {"next_id": next_id, "tasks": [t.id for t in tasks]})
    return saved


@pytest.fixture
def make_task():
    """Factory fixture that creates Task instances."""
    return _make_task


@pytest.fixture
def memory_store() -> TaskStore:
    store = TaskStore(MemoryDocumentStore())
    store.init_plan()
    return store


@pytest.fixture
def file_store(tmp_path: Path) -> TaskStore:
    store = TaskStore(FileDocumentStore(tmp_path / ".fedy", lock_timeout=2.0, lock_poll_interval=0.005))
    store.init_plan()
    return store


@pytest.fixture(params=["memory", "file"])
def any_store(request: pytest.FixtureRequest, tmp_path: Path) -> TaskStore:
    """Run a test against both document store backends."""
    if request.param == "memory":
        docs = MemoryDocumentStore()
    else:
        docs = FileDocumentStore(tmp_path / ".fedy", lock_timeout=2.0, lock_poll_interval=0.005)
    store = TaskStore(docs)
    store.init_plan()
    return store


@pytest.fixture
def seed_plan():
    """Factory fixture that writes tasks in arbitrary states into a store."""
    return seed
