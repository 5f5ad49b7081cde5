"""Iteration controller: run the phase executor over a task file N times.

Iterations are strictly sequential. Each iteration reloads the task file,
asks the dependency resolver for the next eligible task and drives it
through the phases. A run stops early when the agent reports that all work
is complete, when no task is eligible, or when a phase aborts.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Union

from rich.console import Console

from ..config.loader import load_config, resolve_agent
from ..config.models import XLoopConfig
from ..core.agent_executor import SPAWN_FAILED_EXIT_CODE, AgentExecutor
from ..core.exceptions import (
    ConfigurationError,
    GitOperationError,
    PhaseAbortedError,
    XLoopError,
)
from ..core.git_utils import GitUtils
from ..core.lifecycle import LifecycleState, calculate_status
from ..core.plan_store import PlanStore
from ..core.task_resolver import blocked_tasks, find_next_task, validate_dependencies
from ..tracking.activity_logger import ActivityLogger, generate_session_id
from .error_classifier import classify, describe_failure
from .phase_executor import PhaseExecutor, TaskExecutionResult


class StopReason(str, Enum):
    """Why a run stopped."""

    ALL_COMPLETE = "all_complete"
    NO_ELIGIBLE_TASK = "no_eligible_task"
    ITERATIONS_EXHAUSTED = "iterations_exhausted"
    ABORTED = "aborted"
    FAILED = "failed"


# Stop reasons that count as a clean finish.
SUCCESS_REASONS = frozenset(
    {StopReason.ALL_COMPLETE, StopReason.NO_ELIGIBLE_TASK, StopReason.ITERATIONS_EXHAUSTED}
)


@dataclass
class RunResult:
    """Outcome of a controller run."""

    stop_reason: StopReason
    cause: str
    iterations_run: int = 0
    completed_task_ids: List[str] = field(default_factory=list)
    task_results: List[TaskExecutionResult] = field(default_factory=list)
    error: Optional[XLoopError] = None

    @property
    def success(self) -> bool:
        return self.stop_reason in SUCCESS_REASONS

    @property
    def exit_code(self) -> int:
        return 0 if self.success else 1


class IterationController:
    """Runs tasks from one task file, one at a time."""

    def __init__(
        self,
        phase_executor: PhaseExecutor,
        plan_store: PlanStore,
        activity_logger: Optional[ActivityLogger] = None,
        console: Optional[Console] = None,
    ):
        self.phase_executor = phase_executor
        self.plan_store = plan_store
        self.activity_logger = activity_logger
        self.console = console or Console()

    def run(self, task_file_path: Path, max_iterations: int) -> RunResult:
        """Run up to max_iterations iterations over a task file.

        Phase aborts, invalid task files and storage failures end the run
        with a failed result; tasks completed before that stay completed.

        Raises:
            ConfigurationError: If max_iterations is less than 1
        """
        if max_iterations < 1:
            raise ConfigurationError("Number of iterations must be at least 1")

        start_time = time.time()
        completed: List[str] = []
        task_results: List[TaskExecutionResult] = []
        iterations_run = 0

        if self.activity_logger:
            self.activity_logger.log_run_start(
                str(task_file_path), max_iterations, self.phase_executor.agent
            )

        try:
            for iteration in range(1, max_iterations + 1):
                task_file = self.plan_store.load_task_file(task_file_path)
                validate_dependencies(task_file)

                task = find_next_task(task_file.tasks)
                if task is None:
                    if calculate_status(task_file).state == LifecycleState.COMPLETED:
                        result = RunResult(StopReason.ALL_COMPLETE, "All tasks are completed")
                    else:
                        result = RunResult(
                            StopReason.NO_ELIGIBLE_TASK, _no_eligible_cause(task_file.tasks)
                        )
                    break

                self._print_banner(iteration, max_iterations, task.id, task.title)
                if self.activity_logger:
                    self.activity_logger.log_iteration_start(iteration, max_iterations, task.id)

                iterations_run += 1
                task_result = self.phase_executor.execute_task(task_file_path, task_file, task)
                task_results.append(task_result)
                if task_result.completed_task_id:
                    completed.append(task_result.completed_task_id)
                    self.console.print(
                        f"\n[green]✓[/green] Iteration {iteration} complete - "
                        f"Task {task_result.completed_task_id} finalized"
                    )

                if task_result.all_complete:
                    result = RunResult(
                        StopReason.ALL_COMPLETE, "Agent reported that all tasks are complete"
                    )
                    break
            else:
                result = RunResult(
                    StopReason.ITERATIONS_EXHAUSTED, f"Completed {max_iterations} iterations"
                )

        except PhaseAbortedError as e:
            result = RunResult(StopReason.ABORTED, str(e), error=e)
        except XLoopError as e:
            result = RunResult(StopReason.FAILED, str(e), error=e)

        result.iterations_run = iterations_run
        result.completed_task_ids = completed
        result.task_results = task_results

        if result.error and self.activity_logger:
            self.activity_logger.log_error(
                str(result.error), stop_reason=result.stop_reason.value
            )

        self._print_summary(result)
        if self.activity_logger:
            self.activity_logger.log_run_end(
                result.stop_reason.value,
                iterations_run,
                completed,
                int((time.time() - start_time) * 1000),
                error=str(result.error) if result.error else None,
            )
        return result

    def _print_banner(self, iteration: int, total: int, task_id: str, title: str) -> None:
        self.console.print(f"\n{'=' * 80}")
        self.console.print(f"[bold]ITERATION {iteration}/{total}[/bold]")
        self.console.print("=" * 80)
        self.console.print(f"Task: {task_id} - {title}", markup=False)

    def _print_summary(self, result: RunResult) -> None:
        if result.success:
            self.console.print(f"\n{'=' * 80}")
            self.console.print(f"[green]✓[/green] {result.cause}", highlight=False)
            if result.completed_task_ids:
                self.console.print(f"Completed: {', '.join(result.completed_task_ids)}")
            self.console.print("=" * 80)
        elif result.stop_reason == StopReason.ABORTED:
            self.console.print(
                "\n[yellow]The task has NOT been marked as completed. "
                "Running xloop again will retry it.[/yellow]"
            )


def _no_eligible_cause(tasks) -> str:
    waiting = [task.id for task in blocked_tasks(tasks)]
    if not waiting:
        return "No eligible task: no pending task is left to run"
    return f"No eligible task: {', '.join(waiting)} waiting for dependencies"


def run_iterations(
    task_file_ref: Union[str, Path],
    iterations: int,
    agent: Optional[str] = None,
    project_dir: Optional[Path] = None,
    config: Optional[XLoopConfig] = None,
    skip_review: bool = False,
    verbose: bool = False,
    console: Optional[Console] = None,
    agent_executor: Optional[AgentExecutor] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> RunResult:
    """Run N iterations for a task file with the chosen agent.

    Args:
        task_file_ref: Feature name, task file name or path
        iterations: Maximum number of iterations
        agent: Agent name (config default if None)
        project_dir: Project root (current directory if None)
        config: Configuration (loaded from project_dir if None)
        skip_review: Skip the review phase
        verbose: Show retry attempts on the console
        console: Console for operator output
        agent_executor: Executor to use instead of spawning the agent CLI
        sleep: Sleep function used between retries

    Returns:
        RunResult; ``success`` is False when a phase aborted or the task
        file could not be read or validated mid-run

    Raises:
        ConfigurationError: If the configuration or agent choice is invalid, or
            the agent CLI is not on PATH
        PlanStorageError: If the task file cannot be found
        TaskValidationError: If the task file name has no feature name
    """
    project_dir = Path(project_dir) if project_dir else Path.cwd()
    config = config or load_config(project_dir=project_dir)
    agent = resolve_agent(agent, config)
    console = console or Console()

    store = PlanStore(project_dir)
    task_file_path = store.resolve_task_file(task_file_ref)
    feature = store.feature_from_task_file(task_file_path)

    activity_logger = ActivityLogger(
        generate_session_id(), config.get_log_dir(project_dir), feature
    )
    agent_executor = agent_executor or AgentExecutor(
        agent, working_dir=project_dir, timeout=config.agent_timeout
    )
    if not agent_executor.is_available():
        message, details = describe_failure(
            classify(SPAWN_FAILED_EXIT_CODE, ""), agent, SPAWN_FAILED_EXIT_CODE, ""
        )
        raise ConfigurationError(f"{message}\n\n{details}")

    git = None
    if config.commit_tracking_files:
        try:
            git = GitUtils(project_dir)
        except GitOperationError:
            console.print(
                "[dim]Not a git repository; task tracking files will not be committed[/dim]"
            )

    phase_executor = PhaseExecutor(
        agent_executor,
        store,
        config=config,
        activity_logger=activity_logger,
        console=console,
        skip_review=skip_review,
        verbose=verbose,
        sleep=sleep,
        git=git,
    )
    controller = IterationController(
        phase_executor, store, activity_logger=activity_logger, console=console
    )
    return controller.run(task_file_path, iterations)
