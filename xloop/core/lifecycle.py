"""Aggregate lifecycle status for a task file."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .task_schema import TaskFile, TaskStatus


class LifecycleState(str, Enum):
    """Overall progress of a feature's task list."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


@dataclass(frozen=True)
class LifecycleStatus:
    """Status of a task file: state plus completed/total counts."""

    state: LifecycleState
    completed: int
    total: int

    @property
    def archivable(self) -> bool:
        return self.state == LifecycleState.COMPLETED


def calculate_status(task_file: Optional[TaskFile]) -> LifecycleStatus:
    """Compute the lifecycle status of a task file.

    A missing or empty task file, or one with nothing completed, is
    not started. It is completed only when every task is completed.
    """
    if task_file is None or not task_file.tasks:
        return LifecycleStatus(LifecycleState.NOT_STARTED, 0, 0)

    total = len(task_file.tasks)
    completed = sum(1 for t in task_file.tasks if t.status == TaskStatus.COMPLETED)

    if completed == 0:
        state = LifecycleState.NOT_STARTED
    elif completed == total:
        state = LifecycleState.COMPLETED
    else:
        state = LifecycleState.IN_PROGRESS

    return LifecycleStatus(state, completed, total)
