"""Dependency resolution - pick the next task that is ready to work on."""

from typing import Dict, List, Optional, Sequence

from .exceptions import TaskValidationError
from .task_schema import Task, TaskFile, TaskStatus

# Statuses that satisfy a dependency on a task.
SATISFIED_STATUSES = frozenset({TaskStatus.COMPLETED})


def find_next_task(tasks: Sequence[Task]) -> Optional[Task]:
    """Return the first pending task whose dependencies are all satisfied.

    Tasks are scanned in declaration order, so earlier tasks win ties.
    A dependency on an ID that does not exist is treated as unsatisfied.
    Returns None when nothing is eligible, which covers both "everything is
    done" and "everything left is blocked".
    """
    by_id = _index(tasks)
    for task in tasks:
        if _is_ready(task, by_id):
            return task
    return None


def is_eligible(task_id: str, tasks: Sequence[Task]) -> bool:
    """Whether the task is pending with every dependency satisfied."""
    by_id = _index(tasks)
    task = by_id.get(task_id)
    return task is not None and _is_ready(task, by_id)


def blocked_tasks(tasks: Sequence[Task]) -> List[Task]:
    """Pending tasks that are waiting on at least one unsatisfied dependency."""
    by_id = _index(tasks)
    return [
        task
        for task in tasks
        if task.status == TaskStatus.PENDING and not _is_ready(task, by_id)
    ]


def find_dependency_problems(tasks: Sequence[Task]) -> List[str]:
    """Describe dangling and self-referencing dependency IDs.

    Cycles are not reported; tasks in a cycle simply never become eligible.
    """
    known = {task.id for task in tasks}
    problems = []
    for task in tasks:
        for dep in task.dependencies:
            if dep == task.id:
                problems.append(f"{task.id} depends on itself")
            elif dep not in known:
                problems.append(f"{task.id} depends on unknown task {dep}")
    return problems


def validate_dependencies(task_file: TaskFile) -> None:
    """Raise TaskValidationError if any dependency reference is bad."""
    problems = find_dependency_problems(task_file.tasks)
    if problems:
        raise TaskValidationError(
            f"Invalid dependencies in task file for {task_file.feature}: "
            + "; ".join(problems)
        )


def _is_satisfied(dependency: Optional[Task]) -> bool:
    return dependency is not None and dependency.status in SATISFIED_STATUSES


def _index(tasks: Sequence[Task]) -> Dict[str, Task]:
    by_id: Dict[str, Task] = {}
    for task in tasks:
        by_id.setdefault(task.id, task)
    return by_id


def _is_ready(task: Task, by_id: Dict[str, Task]) -> bool:
    return task.status == TaskStatus.PENDING and all(
        _is_satisfied(by_id.get(dep)) for dep in task.dependencies
    )
