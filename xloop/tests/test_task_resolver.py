"""Tests for dependency resolution."""

import pytest

from xloop.core.exceptions import TaskValidationError
from xloop.core.task_resolver import (
    blocked_tasks,
    find_dependency_problems,
    find_next_task,
    is_eligible,
    validate_dependencies,
)
from xloop.core.task_schema import TaskStatus
from xloop.tests.conftest import CREATED_AT, make_task, make_task_file


def complete(task):
    task.status = TaskStatus.COMPLETED
    task.completed_at = CREATED_AT


class TestFindNextTask:
    def test_dependency_ordering(self):
        a = make_task("A")
        b = make_task("B", dependencies=["A"])

        assert find_next_task([a, b]) is a
        complete(a)
        assert find_next_task([a, b]) is b

    def test_declaration_order_breaks_ties(self):
        tasks = [make_task("z"), make_task("a")]
        assert find_next_task(tasks).id == "z"

    def test_dependency_declared_later(self):
        tasks = [make_task("B", dependencies=["A"]), make_task("A")]
        assert find_next_task(tasks).id == "A"

    def test_idempotent(self):
        tasks = [make_task("A"), make_task("B")]
        assert [find_next_task(tasks).id for _ in range(5)] == ["A"] * 5

    def test_completed_never_reselected(self):
        tasks = [make_task("A", TaskStatus.COMPLETED), make_task("B")]
        assert find_next_task(tasks).id == "B"

    @pytest.mark.parametrize("status", [TaskStatus.IN_PROGRESS, TaskStatus.FAILED])
    def test_only_pending_tasks_are_eligible(self, status):
        assert find_next_task([make_task("A", status)]) is None

    @pytest.mark.parametrize("status", [TaskStatus.IN_PROGRESS, TaskStatus.FAILED, TaskStatus.PENDING])
    def test_only_completed_satisfies_dependency(self, status):
        tasks = [make_task("A", status), make_task("B", dependencies=["A"])]
        result = find_next_task(tasks)
        assert result is None or result.id == "A"

    def test_dangling_dependency_is_unsatisfied(self):
        tasks = [make_task("A", dependencies=["ghost"])]
        assert find_next_task(tasks) is None

    def test_self_dependency_blocks(self):
        assert find_next_task([make_task("A", dependencies=["A"])]) is None

    def test_cycle_blocks_silently(self):
        tasks = [make_task("A", dependencies=["B"]), make_task("B", dependencies=["A"])]
        assert find_next_task(tasks) is None

    def test_all_done(self):
        assert find_next_task([make_task("A", TaskStatus.COMPLETED)]) is None

    def test_empty(self):
        assert find_next_task([]) is None

    def test_never_returns_unsatisfied(self):
        tasks = [
            make_task("A", TaskStatus.COMPLETED),
            make_task("B", dependencies=["A", "C"]),
            make_task("C", TaskStatus.IN_PROGRESS),
            make_task("D", dependencies=["A"]),
        ]
        by_id = {t.id: t for t in tasks}
        chosen = find_next_task(tasks)
        assert chosen.id == "D"
        assert all(by_id[d].status == TaskStatus.COMPLETED for d in chosen.dependencies)


class TestHelpers:
    def test_is_eligible(self):
        tasks = [
            make_task("A", TaskStatus.COMPLETED),
            make_task("B", dependencies=["A"]),
            make_task("C", dependencies=["B"]),
        ]
        assert is_eligible("B", tasks)
        assert not is_eligible("A", tasks)
        assert not is_eligible("C", tasks)
        assert not is_eligible("ghost", tasks)

    def test_blocked_tasks(self):
        tasks = [make_task("A"), make_task("B", dependencies=["A"]), make_task("C")]
        assert [t.id for t in blocked_tasks(tasks)] == ["B"]


class TestValidateDependencies:
    def test_problems_reported(self):
        tasks = [make_task("A", dependencies=["A"]), make_task("B", dependencies=["ghost"])]
        problems = find_dependency_problems(tasks)
        assert problems == ["A depends on itself", "B depends on unknown task ghost"]

    def test_valid_file_passes(self):
        validate_dependencies(
            make_task_file(tasks=[make_task("A"), make_task("B", dependencies=["A"])])
        )

    def test_dangling_raises(self):
        with pytest.raises(TaskValidationError) as exc_info:
            validate_dependencies(make_task_file(tasks=[make_task("B", dependencies=["ghost"])]))
        assert "ghost" in str(exc_info.value)

    def test_cycles_are_not_validation_errors(self):
        validate_dependencies(
            make_task_file(
                tasks=[make_task("A", dependencies=["B"]), make_task("B", dependencies=["A"])]
            )
        )
