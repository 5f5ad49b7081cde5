"""Task file schema and validation.

A task file (``tasks-<feature>.yml``) holds the ordered list of tasks generated
from one PRD. The models here enforce the document invariants: unique task
IDs, ``updated_at >= created_at``, and ``completed_at`` present exactly when a
task is completed.
"""

import os
import tempfile
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .exceptions import PlanStorageError, TaskValidationError


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TaskStatus(str, Enum):
    """Task lifecycle states as persisted in the task file."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class Task(BaseModel):
    """A single unit of implementation work."""

    id: str = Field(..., description="Unique task identifier within the task file")
    title: str = Field(..., description="Short task title")
    description: str = Field(default="", description="What needs to be done")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="Task status")
    dependencies: List[str] = Field(
        default_factory=list, description="IDs of tasks that must complete first"
    )
    acceptance_criteria: List[str] = Field(
        default_factory=list, description="Conditions for the task to count as done"
    )
    completed_at: Optional[datetime] = Field(
        default=None, description="Completion timestamp (set iff completed)"
    )

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate task ID."""
        v = str(v).strip()
        if not v:
            raise ValueError("Task ID cannot be empty")
        return v

    @field_validator("dependencies", "acceptance_criteria", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("dependencies")
    @classmethod
    def dedupe_dependencies(cls, v: List[str]) -> List[str]:
        """Dependencies are a set; keep first occurrence order."""
        seen: List[str] = []
        for dep in v:
            dep = str(dep).strip()
            if dep and dep not in seen:
                seen.append(dep)
        return seen

    @field_validator("completed_at")
    @classmethod
    def normalize_completed_at(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @model_validator(mode="after")
    def validate_completion(self) -> "Task":
        """Enforce completed_at <=> status == completed."""
        if self.status == TaskStatus.COMPLETED and self.completed_at is None:
            raise ValueError(f"Task {self.id} is completed but has no completed_at")
        if self.status != TaskStatus.COMPLETED and self.completed_at is not None:
            raise ValueError(
                f"Task {self.id} has completed_at but status is {self.status.value}"
            )
        return self

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED


class TaskFile(BaseModel):
    """The ordered collection of tasks tied to one feature's PRD."""

    feature: str = Field(..., description="Feature name")
    prd: str = Field(default="", description="Reference to the source PRD document")
    created_at: datetime = Field(default_factory=utc_now, description="Creation time")
    updated_at: datetime = Field(default_factory=utc_now, description="Last update time")
    tasks: List[Task] = Field(default_factory=list, description="Tasks in priority order")

    @field_validator("tasks", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_timestamps(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @model_validator(mode="after")
    def validate_document(self) -> "TaskFile":
        """Validate ID uniqueness and timestamp ordering."""
        seen = set()
        duplicates = []
        for task in self.tasks:
            if task.id in seen:
                duplicates.append(task.id)
            seen.add(task.id)
        if duplicates:
            raise ValueError(f"Duplicate task IDs: {', '.join(duplicates)}")

        if self.updated_at < self.created_at:
            raise ValueError("updated_at must not be earlier than created_at")
        return self

    def get_task(self, task_id: str) -> Optional[Task]:
        """Find a task by ID."""
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def task_ids(self) -> List[str]:
        return [task.id for task in self.tasks]

    def touch(self) -> None:
        """Bump updated_at, keeping it monotonic."""
        now = utc_now()
        self.updated_at = max(now, self.created_at, self.updated_at)


def validate_task_file(
    data: Dict[str, Any], source: Optional[Union[str, Path]] = None
) -> TaskFile:
    """Validate a task file from a dictionary.

    Args:
        data: Parsed YAML document
        source: File the document came from, named in the error

    Raises:
        TaskValidationError: If the document is not a valid task file
    """
    try:
        return TaskFile(**data)
    except ValidationError as e:
        where = f" {source}" if source else ""
        raise TaskValidationError(f"Invalid task file{where}: {e}") from e


def load_task_file(file_path: Union[str, Path]) -> TaskFile:
    """Load a task file from YAML.

    Raises:
        PlanStorageError: If the file is missing or cannot be read
        TaskValidationError: If the file is not a valid task file
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise PlanStorageError(f"Task file not found: {file_path}")

    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise TaskValidationError(f"Invalid YAML in {file_path}: {e}") from e
    except OSError as e:
        raise PlanStorageError(f"Could not read {file_path}: {e}") from e

    if not isinstance(data, dict):
        raise TaskValidationError(
            f"Task file must contain a YAML object, got {type(data).__name__}"
        )

    return validate_task_file(data, source=file_path)


def save_task_file(task_file: TaskFile, file_path: Union[str, Path]) -> None:
    """Save a task file to YAML.

    The document is written to a temporary file in the same directory and
    moved into place, so readers never observe a half-written file.
    """
    file_path = Path(file_path)
    data = task_file.model_dump(mode="json")

    tmp_name = None
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(file_path.parent), prefix=f".{file_path.name}.", suffix=".tmp"
        )
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            yaml.dump(
                data,
                f,
                default_flow_style=False,
                sort_keys=False,
                indent=2,
                allow_unicode=True,
            )
        os.replace(tmp_name, file_path)
    except OSError as e:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise PlanStorageError(f"Could not save task file {file_path}: {e}") from e
