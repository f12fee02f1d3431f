"""Tests for fedy.tasks.deps — dependency satisfaction + cycle detection."""

from __future__ import annotations

import sys
import threading

from fedy.tasks.deps import detect_cycle, is_satisfied, unmet
from fedy.tasks.model import Task, TaskStatus


def _t(id: int, status: TaskStatus = TaskStatus.PENDING, dependencies: list[int] | None = None) -> Task:
    return Task(id=id, title=f"Task {id}", status=status, dependencies=dependencies or [])


# ═══════════════════════════════════════════════════════════════════
#  is_satisfied
# ═══════════════════════════════════════════════════════════════════


class TestIsSatisfied:
    """Tests for is_satisfied()."""

    def test_no_dependencies_is_satisfied(self):
        task = _t(1, TaskStatus.READY)
        assert is_satisfied(task, [task]) is True

    def test_all_completed(self):
        tasks = [
            _t(1, TaskStatus.COMPLETED),
            _t(2, TaskStatus.COMPLETED),
            _t(3, TaskStatus.READY, [1, 2]),
        ]
        assert is_satisfied(tasks[2], tasks) is True

    def test_one_dependency_not_completed(self):
        for status in (TaskStatus.PENDING, TaskStatus.PLANNING, TaskStatus.READY, TaskStatus.IN_PROGRESS):
            tasks = [
                _t(1, TaskStatus.COMPLETED),
                _t(2, status),
                _t(3, TaskStatus.READY, [1, 2]),
            ]
            assert is_satisfied(tasks[2], tasks) is False, status

    def test_dangling_dependency_fails_closed(self):
        """A dependency id with no task is unsatisfied, not an error."""
        task = _t(2, TaskStatus.READY, [99])
        assert is_satisfied(task, [_t(1, TaskStatus.COMPLETED), task]) is False

    def test_unmet_lists_status_and_missing(self):
        tasks = [_t(1, TaskStatus.IN_PROGRESS), _t(2, TaskStatus.COMPLETED), _t(3, dependencies=[1, 2, 7])]
        assert unmet(tasks[2], tasks) == [(1, "in_progress"), (7, "missing")]


# ═══════════════════════════════════════════════════════════════════
#  Cycle Detection
# ═══════════════════════════════════════════════════════════════════


class TestDetectCycle:
    """Tests for detect_cycle()."""

    def test_no_cycles_simple_chain(self):
        """1 -> 2 -> 3 has no cycle."""
        assert detect_cycle([_t(1), _t(2, dependencies=[1]), _t(3, dependencies=[2])]) == set()

    def test_no_cycles_independent_tasks(self):
        assert detect_cycle([_t(1), _t(2), _t(3)]) == set()

    def test_empty_tasks(self):
        assert detect_cycle([]) == set()

    def test_direct_cycle(self):
        """A -> B -> A yields {A, B}."""
        assert detect_cycle([_t(1, dependencies=[2]), _t(2, dependencies=[1])]) == {1, 2}

    def test_self_cycle(self):
        assert detect_cycle([_t(1, dependencies=[1]), _t(2)]) == {1}

    def test_indirect_cycle(self):
        tasks = [_t(1, dependencies=[3]), _t(2, dependencies=[1]), _t(3, dependencies=[2])]
        assert detect_cycle(tasks) == {1, 2, 3}

    def test_diamond_no_cycle(self):
        tasks = [
            _t(1),
            _t(2, dependencies=[1]),
            _t(3, dependencies=[1]),
            _t(4, dependencies=[2, 3]),
        ]
        assert detect_cycle(tasks) == set()

    def test_only_cycle_members_reported(self):
        """Tasks hanging off a cycle are not part of it."""
        tasks = [
            _t(1, dependencies=[2]),
            _t(2, dependencies=[1]),
            _t(3, dependencies=[1]),
            _t(4),
        ]
        assert detect_cycle(tasks) == {1, 2}

    def test_every_node_of_overlapping_cycles(self):
        """1->2->3->1 plus 1->4->3: node 4 is on a cycle only via a cross edge."""
        tasks = [
            _t(1, dependencies=[2, 4]),
            _t(2, dependencies=[3]),
            _t(3, dependencies=[1]),
            _t(4, dependencies=[3]),
        ]
        assert detect_cycle(tasks) == {1, 2, 3, 4}

    def test_two_separate_cycles(self):
        tasks = [
            _t(1, dependencies=[2]),
            _t(2, dependencies=[1]),
            _t(3, dependencies=[4]),
            _t(4, dependencies=[3]),
            _t(5, dependencies=[1, 3]),
        ]
        assert detect_cycle(tasks) == {1, 2, 3, 4}

    def test_dangling_dependency_is_not_a_cycle(self):
        assert detect_cycle([_t(1, dependencies=[99])]) == set()

    def test_long_chain(self):
        tasks = [_t(i, dependencies=[i - 1]) for i in range(2999, 1, -1)] + [_t(1)]
        assert detect_cycle(tasks) == set()

    def test_chain_deeper_than_recursion_limit(self):
        depth = sys.getrecursionlimit() * 3
        tasks = [_t(i, dependencies=[i - 1]) for i in range(depth, 1, -1)] + [_t(1, dependencies=[depth])]
        assert detect_cycle(tasks) == set(range(1, depth + 1))

    def test_threads_do_not_touch_recursion_limit(self):
        """Deep graphs checked from several threads leave the interpreter limit alone."""
        limit = sys.getrecursionlimit()
        tasks = [_t(i, dependencies=[i - 1]) for i in range(limit * 2, 1, -1)] + [_t(1)]
        seen: list[int] = []
        results: list[set[int]] = []
        lock = threading.Lock()
        barrier = threading.Barrier(4)

        def worker() -> None:
            barrier.wait()
            for _ in range(3):
                found = detect_cycle(tasks)
                with lock:
                    results.append(found)
                    seen.append(sys.getrecursionlimit())

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results == [set()] * 12
        assert set(seen) == {limit}
        assert sys.getrecursionlimit() == limit
