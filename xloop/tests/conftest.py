"""Shared pytest fixtures and utilities for xloop tests."""

import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional

import pytest
import yaml
from rich.console import Console

from xloop.config.models import XLoopConfig
from xloop.core.plan_store import PlanStore
from xloop.core.prompt_loader import PromptLoader
from xloop.core.task_schema import Task, TaskFile, TaskStatus
from xloop.orchestrator.phase_executor import PhaseExecutor
from xloop.orchestrator.retry_strategy import RetryConfig
from xloop.tests.mocks import MockAgentExecutor, MockResponseLibrary

CREATED_AT = datetime(2025, 1, 1, tzinfo=timezone.utc)


# ============================================================================
# Directory and File Fixtures
# ============================================================================


@pytest.fixture
def project_dir(tmp_path: Path) -> Generator[Path, None, None]:
    """Create a temporary project with an empty .plans directory.

    Yields:
        Path to the project root
    """
    (tmp_path / ".plans").mkdir()
    yield tmp_path


@pytest.fixture
def git_repo(project_dir: Path) -> Generator[Path, None, None]:
    """Turn the project into a git repository with an initial commit.

    Yields:
        Path to the project root
    """
    git(project_dir, "init")
    git(project_dir, "config", "user.name", "Test User")
    git(project_dir, "config", "user.email", "test@example.com")
    git(project_dir, "config", "commit.gpgsign", "false")
    (project_dir / "README.md").write_text("# Test Project\n")
    git(project_dir, "add", ".")
    git(project_dir, "commit", "-m", "Initial commit")
    yield project_dir


def git(repo: Path, *args: str) -> str:
    """Run a git command in repo and return its stdout."""
    result = subprocess.run(
        ["git", *args], cwd=repo, check=True, capture_output=True, text=True
    )
    return result.stdout.strip()


@pytest.fixture
def plan_store(project_dir: Path) -> PlanStore:
    return PlanStore(project_dir)


def make_task(
    task_id: str,
    status: TaskStatus = TaskStatus.PENDING,
    dependencies: Optional[List[str]] = None,
    title: Optional[str] = None,
) -> Task:
    """Build a task; completed tasks get a completed_at timestamp."""
    return Task(
        id=task_id,
        title=title or f"Title of {task_id}",
        description=f"Description of {task_id}",
        status=status,
        dependencies=dependencies or [],
        acceptance_criteria=[f"{task_id} works"],
        completed_at=CREATED_AT if status == TaskStatus.COMPLETED else None,
    )


def make_task_file(feature: str = "auth", tasks: Optional[List[Task]] = None) -> TaskFile:
    return TaskFile(
        feature=feature,
        prd=f"prd-{feature}.md",
        created_at=CREATED_AT,
        updated_at=CREATED_AT,
        tasks=tasks or [],
    )


def task_file_data(feature: str = "auth", tasks: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """Raw task file document as it appears on disk."""
    return {
        "feature": feature,
        "prd": f"prd-{feature}.md",
        "created_at": "2025-01-01T00:00:00+00:00",
        "updated_at": "2025-01-01T00:00:00+00:00",
        "tasks": tasks or [],
    }


@pytest.fixture
def write_task_file(plan_store: PlanStore) -> Callable[..., Path]:
    """Factory writing tasks-<feature>.yml (and optionally the PRD) to .plans/.

    Usage:
        path = write_task_file("auth", [make_task("task-1")], prd=True)
    """

    def _write(
        feature: str = "auth",
        tasks: Optional[List[Task]] = None,
        prd: bool = False,
        progress: bool = False,
    ) -> Path:
        task_file = make_task_file(feature, tasks)
        path = plan_store.task_file_path(feature)
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(task_file.model_dump(mode="json"), f, sort_keys=False)
        if prd:
            plan_store.prd_path(feature).write_text(f"# PRD: {feature}\n", encoding="utf-8")
        if progress:
            plan_store.progress_path(feature).write_text("", encoding="utf-8")
        return path

    return _write


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest.fixture
def config() -> XLoopConfig:
    return XLoopConfig(feedback_command="pytest", commit_prefix="xloop")


@pytest.fixture
def console() -> Console:
    """A console that records output instead of writing to the terminal."""
    return Console(record=True, width=120, force_terminal=False, color_system=None)


@pytest.fixture
def sleeps() -> List[float]:
    """Recorded backoff delays; pass ``sleeps.append`` as the sleep function."""
    return []


@pytest.fixture
def mock_agent() -> MockAgentExecutor:
    """Provide a fresh MockAgentExecutor for each test."""
    return MockAgentExecutor()


@pytest.fixture
def mock_responses():
    """Provide the MockResponseLibrary for easy access."""
    return MockResponseLibrary


@pytest.fixture
def phase_executor_factory(
    plan_store: PlanStore,
    config: XLoopConfig,
    console: Console,
    mock_agent: MockAgentExecutor,
    sleeps: List[float],
) -> Callable[..., PhaseExecutor]:
    """Factory for PhaseExecutor wired to the mock agent and recorded sleeps."""

    def _create(**kwargs) -> PhaseExecutor:
        options = {
            "config": config,
            "prompt_loader": PromptLoader(),
            "retry_config": RetryConfig(max_retries=2, initial_delay=1.0, max_delay=10.0),
            "console": console,
            "sleep": sleeps.append,
        }
        options.update(kwargs)
        return PhaseExecutor(mock_agent, plan_store, **options)

    return _create
