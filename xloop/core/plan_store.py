"""Storage of PRDs, task files and progress logs under ``.plans/``.

Layout for a feature named ``auth``::

    .plans/prd-auth.md          source PRD
    .plans/tasks-auth.yml       task file
    .plans/progress-auth.txt    append-only progress log
    .plans/archive/             completed features are moved here
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from .exceptions import PlanStorageError, TaskValidationError, XLoopError
from .lifecycle import LifecycleState, LifecycleStatus, calculate_status
from .task_resolver import find_next_task
from .task_schema import (
    Task,
    TaskFile,
    TaskStatus,
    load_task_file,
    save_task_file,
    utc_now,
)

PLANS_DIR_NAME = ".plans"
ARCHIVE_DIR_NAME = "archive"

PRD_PREFIX, PRD_SUFFIX = "prd-", ".md"
TASKS_PREFIX, TASKS_SUFFIX = "tasks-", ".yml"
PROGRESS_PREFIX, PROGRESS_SUFFIX = "progress-", ".txt"

PROGRESS_RULE = "=" * 80


@dataclass
class PrdInfo:
    """A PRD and the status of its task file, if one exists."""

    filename: str
    feature: str
    task_file: Optional[str]
    status: LifecycleStatus
    error: Optional[str] = None


@dataclass
class TaskFileStatus:
    """Status of an incomplete task file and the task to run next."""

    filename: str
    feature: str
    status: LifecycleStatus
    next_task: Optional[Task]
    error: Optional[str] = None


class PlanStore:
    """Reads and writes plan documents for one project."""

    def __init__(self, project_dir: Union[str, Path]):
        """Initialize plan store.

        Args:
            project_dir: Project root; documents live in <project_dir>/.plans
        """
        self.project_dir = Path(project_dir)
        self.plans_dir = self.project_dir / PLANS_DIR_NAME
        self.archive_dir = self.plans_dir / ARCHIVE_DIR_NAME

    def ensure_plans_dir(self) -> Path:
        try:
            self.plans_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PlanStorageError(
                f"Failed to create plans directory {self.plans_dir}: {e}"
            ) from e
        return self.plans_dir

    # Paths

    def prd_path(self, feature: str) -> Path:
        return self.plans_dir / f"{PRD_PREFIX}{feature}{PRD_SUFFIX}"

    def task_file_path(self, feature: str) -> Path:
        return self.plans_dir / f"{TASKS_PREFIX}{feature}{TASKS_SUFFIX}"

    def progress_path(self, feature: str) -> Path:
        return self.plans_dir / f"{PROGRESS_PREFIX}{feature}{PROGRESS_SUFFIX}"

    def feature_paths(self, feature: str) -> List[Path]:
        """All documents that belong to a feature, existing or not."""
        return [
            self.prd_path(feature),
            self.task_file_path(feature),
            self.progress_path(feature),
        ]

    @staticmethod
    def feature_from_task_file(path: Union[str, Path]) -> str:
        """Extract the feature name from ``tasks-<feature>.yml``.

        Raises:
            TaskValidationError: If the file name does not follow the convention
        """
        name = Path(path).name
        feature = _strip_affixes(name, TASKS_PREFIX, TASKS_SUFFIX)
        if not feature:
            raise TaskValidationError(
                f"Could not extract feature name from tasks file: {name} "
                f"(expected {TASKS_PREFIX}<feature>{TASKS_SUFFIX})"
            )
        return feature

    @staticmethod
    def feature_from_prd_file(path: Union[str, Path]) -> str:
        """Extract the feature name from ``prd-<feature>.md``."""
        name = Path(path).name
        return _strip_affixes(name, PRD_PREFIX, PRD_SUFFIX) or ""

    def resolve_task_file(self, ref: Union[str, Path]) -> Path:
        """Resolve a feature name, task file name or path to a task file.

        Raises:
            PlanStorageError: If no matching task file exists
        """
        candidates = []
        path = Path(ref)
        candidates.append(path if path.is_absolute() else self.project_dir / path)
        candidates.append(self.plans_dir / path.name)
        candidates.append(self.task_file_path(str(ref)))

        for candidate in candidates:
            if candidate.is_file():
                return candidate

        raise PlanStorageError(
            f"Could not find task file: {ref}\n\nPlease check the path and try again."
        )

    # Listing

    def list_prd_files(self) -> List[str]:
        """PRD file names in the plans directory, sorted."""
        return self._list(PRD_PREFIX, PRD_SUFFIX)

    def list_task_files(self) -> List[str]:
        """Task file names in the plans directory, sorted."""
        return self._list(TASKS_PREFIX, TASKS_SUFFIX)

    def _list(self, prefix: str, suffix: str) -> List[str]:
        if not self.plans_dir.exists():
            return []
        return sorted(
            p.name
            for p in self.plans_dir.iterdir()
            if p.is_file() and p.name.startswith(prefix) and p.name.endswith(suffix)
        )

    def list_prds(self) -> List[PrdInfo]:
        """List PRDs with the lifecycle status of their task files."""
        prds = []
        for filename in self.list_prd_files():
            feature = self.feature_from_prd_file(filename)
            task_path = self.task_file_path(feature)
            task_file = None
            error = None
            if task_path.exists():
                try:
                    task_file = load_task_file(task_path)
                except XLoopError as e:
                    error = str(e)
            prds.append(
                PrdInfo(
                    filename=filename,
                    feature=feature,
                    task_file=task_path.name if task_file else None,
                    status=calculate_status(task_file),
                    error=error,
                )
            )
        return prds

    def list_incomplete_task_files(self) -> List[TaskFileStatus]:
        """Task files that still have work left, with their next task."""
        statuses = []
        for filename in self.list_task_files():
            feature = self.feature_from_task_file(filename)
            try:
                task_file = load_task_file(self.plans_dir / filename)
            except XLoopError as e:
                statuses.append(
                    TaskFileStatus(
                        filename=filename,
                        feature=feature,
                        status=calculate_status(None),
                        next_task=None,
                        error=str(e),
                    )
                )
                continue

            status = calculate_status(task_file)
            if status.state == LifecycleState.COMPLETED:
                continue
            statuses.append(
                TaskFileStatus(
                    filename=filename,
                    feature=task_file.feature,
                    status=status,
                    next_task=find_next_task(task_file.tasks),
                )
            )
        return statuses

    # Task file persistence

    def load_task_file(self, path: Union[str, Path]) -> TaskFile:
        return load_task_file(path)

    def save_task_file(self, task_file: TaskFile, path: Union[str, Path]) -> None:
        task_file.touch()
        save_task_file(task_file, path)

    def mark_task_completed(
        self,
        path: Union[str, Path],
        task_id: str,
        completed_at: Optional[datetime] = None,
    ) -> Task:
        """Persist a task as completed.

        The file is re-read first so edits made by the agent during the
        phases are kept. Completing an already completed task is a no-op and
        keeps its original completed_at.

        Raises:
            TaskValidationError: If the task ID is not in the task file
        """
        task_file = load_task_file(path)
        task = task_file.get_task(task_id)
        if task is None:
            raise TaskValidationError(f"Task {task_id} not found in {Path(path).name}")

        if task.status == TaskStatus.COMPLETED:
            return task

        task.status = TaskStatus.COMPLETED
        task.completed_at = completed_at or utc_now()
        self.save_task_file(task_file, path)
        return task

    def append_progress(
        self,
        feature: str,
        task: Task,
        summary: str,
        timestamp: Optional[datetime] = None,
    ) -> Path:
        """Append an entry to the feature's progress log.

        Raises:
            PlanStorageError: If the progress file cannot be written
        """
        timestamp = timestamp or task.completed_at or utc_now()
        entry = (
            f"{PROGRESS_RULE}\n"
            f"{task.id}: {task.title}\n"
            f"Date: {timestamp.isoformat()}\n"
            f"{PROGRESS_RULE}\n"
            f"\n"
            f"Summary:\n"
            f"{summary.strip()}\n"
            f"\n"
        )

        progress_path = self.progress_path(feature)
        try:
            self.ensure_plans_dir()
            with open(progress_path, "a", encoding="utf-8") as f:
                f.write(entry)
        except OSError as e:
            raise PlanStorageError(
                f"Failed to append to progress file {progress_path}: {e}"
            ) from e
        return progress_path


def _strip_affixes(name: str, prefix: str, suffix: str) -> Optional[str]:
    if not (name.startswith(prefix) and name.endswith(suffix)):
        return None
    middle = name[len(prefix) : len(name) - len(suffix)]
    return middle or None
