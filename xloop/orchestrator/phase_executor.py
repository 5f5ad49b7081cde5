"""Phase executor for driving one task through its agent phases.

A task runs implement -> review (optional) -> finalize. Each phase is a
single agent invocation wrapped in the retry strategy; a failure that
survives retries aborts the task for this iteration. Only a successful
finalize phase marks the task completed in the task file.
"""

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from rich.console import Console

from ..config.models import XLoopConfig
from ..core.agent_executor import AgentExecutor, ExecutionResult
from ..core.exceptions import (
    AgentExecutionError,
    GitOperationError,
    PhaseAbortedError,
    PlanStorageError,
    TaskValidationError,
)
from ..core.git_utils import GitUtils
from ..core.output_parser import MarkerKind, OutputParser
from ..core.phase_state import Phase, PhaseState, PhaseStateMachine
from ..core.plan_store import PlanStore
from ..core.prompt_loader import PromptLoader
from ..core.task_resolver import is_eligible
from ..core.task_schema import Task, TaskFile
from ..tracking.activity_logger import ActivityLogger
from .error_classifier import classify, describe_failure
from .retry_strategy import RetryConfig, RetryContext, RetryStrategy

DEFAULT_REVIEW_FEEDBACK = (
    "No review feedback provided. Proceed with running the feedback loops "
    "and committing the work."
)
AGENTS_FILE = "AGENTS.md"
PROGRESS_EXCERPT_LENGTH = 2000


@dataclass
class PhaseResult:
    """Outcome of one successful phase invocation."""

    phase: Phase
    exit_code: int
    stdout: str
    stderr: str
    marker: Optional[str] = None
    model: Optional[str] = None
    attempts: int = 1
    duration_seconds: float = 0.0


@dataclass
class TaskExecutionResult:
    """Result of driving one task through the phases."""

    task_id: str
    final_state: PhaseState
    completed: bool
    all_complete: bool = False
    completed_task_id: Optional[str] = None
    marker_missing: bool = False
    review_skipped: bool = False
    phase_results: List[PhaseResult] = field(default_factory=list)
    summary: str = ""
    duration_seconds: float = 0.0


class PhaseExecutor:
    """Runs the implement, review and finalize phases for a task."""

    def __init__(
        self,
        agent_executor: AgentExecutor,
        plan_store: PlanStore,
        config: Optional[XLoopConfig] = None,
        prompt_loader: Optional[PromptLoader] = None,
        retry_config: Optional[RetryConfig] = None,
        activity_logger: Optional[ActivityLogger] = None,
        console: Optional[Console] = None,
        skip_review: bool = False,
        verbose: bool = False,
        sleep: Optional[Callable[[float], None]] = None,
        git: Optional[GitUtils] = None,
    ):
        """Initialize phase executor.

        Args:
            agent_executor: Runs the agent CLI
            plan_store: Plan store for the project
            config: xloop configuration (defaults if None)
            prompt_loader: Prompt loader (bundled templates if None)
            retry_config: Backoff settings (taken from config if None)
            activity_logger: Optional JSONL activity logger
            console: Console for operator output
            skip_review: Go straight from implement to finalize
            verbose: Show retry attempts on the console
            sleep: Sleep function used between retries
            git: Commits the task file and progress log after finalize (skipped if None)
        """
        self.agent_executor = agent_executor
        self.plan_store = plan_store
        self.config = config or XLoopConfig()
        self.prompt_loader = prompt_loader or PromptLoader()
        if retry_config is None:
            settings = self.config.retry
            retry_config = RetryConfig(
                max_retries=settings.max_retries,
                initial_delay=settings.initial_delay,
                max_delay=settings.max_delay,
            )
        self.retry_config = retry_config
        self.activity_logger = activity_logger
        self.console = console or Console()
        self.skip_review = skip_review
        self.verbose = verbose
        self._sleep = sleep
        self.git = git

    @property
    def agent(self) -> str:
        return self.agent_executor.agent.value

    def execute_task(
        self, task_file_path: Path, task_file: TaskFile, task: Task
    ) -> TaskExecutionResult:
        """Drive a task through all phases.

        Args:
            task_file_path: Path of the task file on disk
            task_file: The loaded task file
            task: The task selected by the dependency resolver

        Returns:
            TaskExecutionResult describing what happened

        Raises:
            PhaseAbortedError: If a phase fails; the task status is unchanged
            PlanStorageError: If the completed status cannot be persisted
            TaskValidationError: If the task file on disk is no longer valid
        """
        start_time = time.time()
        machine = PhaseStateMachine(task.id)
        context = self._build_context(task_file, task)
        results: List[PhaseResult] = []

        # Implement
        implement = self._run_phase(Phase.IMPLEMENT, machine, context)
        results.append(implement)

        if OutputParser.has_completion_sentinel(implement.stdout):
            machine.transition(PhaseState.DONE, reason="completion sentinel")
            self.console.print("\n[green]✓[/green] All tasks completed!")
            return TaskExecutionResult(
                task_id=task.id,
                final_state=machine.current_state,
                completed=False,
                all_complete=True,
                phase_results=results,
                summary="Agent reported that all tasks are complete",
                duration_seconds=time.time() - start_time,
            )

        implement.marker = OutputParser.find_marker(implement.stdout, MarkerKind.TASK_COMPLETED)
        marker_missing = implement.marker is None
        if marker_missing:
            self._marker_missing(
                Phase.IMPLEMENT,
                task.id,
                MarkerKind.TASK_COMPLETED,
                "implement succeeded without a TASK_COMPLETED marker",
            )
        else:
            self.console.print(
                f"\n[green]✓[/green] Task {implement.marker} implementation complete"
            )
            if implement.marker != task.id:
                self._log_info(
                    f"Implement marker {implement.marker} differs from selected task {task.id}",
                    task.id,
                )

        # Review
        review_feedback = ""
        if self.skip_review:
            self.console.print("\n[dim]Phase 2: Review (skipped)[/dim]")
            machine.transition(PhaseState.FINALIZE, reason="review skipped")
        else:
            machine.transition(PhaseState.REVIEW)
            review = self._run_phase(Phase.REVIEW, machine, context)
            results.append(review)
            review_feedback = review.stdout.strip()
            machine.transition(PhaseState.FINALIZE)

        # Finalize
        context["review_feedback"] = review_feedback or DEFAULT_REVIEW_FEEDBACK
        finalize = self._run_phase(Phase.FINALIZE, machine, context)
        results.append(finalize)
        finalize.marker = OutputParser.find_marker(finalize.stdout, MarkerKind.FINALIZED)
        if finalize.marker is None:
            self._marker_missing(
                Phase.FINALIZE,
                task.id,
                MarkerKind.FINALIZED,
                "finalize succeeded without a FINALIZED marker",
            )

        try:
            target_id = self._resolve_target_id(
                task_file_path, task, finalize.marker, implement.marker
            )
            completed = self.plan_store.mark_task_completed(task_file_path, target_id)
            summary = self._progress_summary(implement, review_feedback, finalize)
            self.plan_store.append_progress(task_file.feature, completed, summary)
        except (PlanStorageError, TaskValidationError):
            machine.abort("could not persist task completion")
            raise

        self._commit_tracking_files(task_file_path, task_file.feature, completed)
        machine.transition(PhaseState.DONE)
        if self.activity_logger:
            self.activity_logger.log_task_completed(completed.id, completed.completed_at)

        return TaskExecutionResult(
            task_id=task.id,
            final_state=machine.current_state,
            completed=True,
            completed_task_id=completed.id,
            marker_missing=marker_missing,
            review_skipped=self.skip_review,
            phase_results=results,
            summary=f"Task {completed.id} finalized",
            duration_seconds=time.time() - start_time,
        )

    def _run_phase(
        self, phase: Phase, machine: PhaseStateMachine, context: Dict[str, Any]
    ) -> PhaseResult:
        """Render the phase prompt and invoke the agent with retries.

        Raises:
            PhaseAbortedError: If the agent fails with a non-retryable error
                or retries are exhausted
        """
        task_id = machine.task_id
        model = self.config.model_for(self.agent, phase.value)
        prompt = self.prompt_loader.render_template(phase.value, context)

        number = list(Phase).index(phase) + 1
        self.console.print(f"\n[bold]Phase {number}: {phase.value.title()}[/bold]")
        self.console.print("-" * 80)
        if self.activity_logger:
            self.activity_logger.log_phase_start(phase.value, task_id, model)

        attempts = 0

        def invoke() -> ExecutionResult:
            nonlocal attempts
            attempts += 1
            result = self.agent_executor.execute(prompt, model=model)
            if not result.success:
                raise AgentExecutionError(
                    result.error_message or f"Agent exited with code {result.exit_code}",
                    result.exit_code,
                    result.stderr,
                    classify(result.exit_code, result.stderr),
                )
            return result

        def on_retry(ctx: RetryContext, error: BaseException) -> None:
            if self.verbose:
                self.console.print(
                    f"[dim]Attempt {ctx.attempt}/{ctx.max_attempts} failed, "
                    f"retrying in {ctx.delay:g}s[/dim]"
                )
            if self.activity_logger:
                self.activity_logger.log_phase_retry(
                    phase.value, task_id, ctx.attempt, ctx.delay, str(error)
                )

        strategy = RetryStrategy(self.retry_config, sleep=self._sleep, on_retry=on_retry)
        try:
            result = strategy.run(invoke)
        except AgentExecutionError as e:
            raise self._abort(phase, machine, model, e) from e

        if self.activity_logger:
            self.activity_logger.log_phase_complete(
                phase.value,
                task_id,
                int(result.duration_seconds * 1000),
                attempts=attempts,
            )

        return PhaseResult(
            phase=phase,
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            model=model,
            attempts=attempts,
            duration_seconds=result.duration_seconds,
        )

    def _abort(
        self,
        phase: Phase,
        machine: PhaseStateMachine,
        model: Optional[str],
        error: AgentExecutionError,
    ) -> PhaseAbortedError:
        """Abort the task and build the PhaseAbortedError for the classified cause."""
        classification = error.classification or classify(error.exit_code, error.stderr)
        machine.abort(f"{phase.value} failed: {classification.name}")

        message, details = describe_failure(
            classification, self.agent, error.exit_code, error.stderr, model
        )
        if self.activity_logger:
            self.activity_logger.log_phase_failed(
                phase.value,
                machine.task_id,
                error.exit_code,
                classification.name,
                error.stderr,
            )

        return PhaseAbortedError(
            f"{phase.value.title()} phase failed: {message}\n\n{details}",
            phase=phase.value,
            task_id=machine.task_id,
            exit_code=error.exit_code,
            stderr=error.stderr,
            classification=classification,
        )

    def _build_context(self, task_file: TaskFile, task: Task) -> Dict[str, Any]:
        context_files = []
        for path in (
            self.plan_store.task_file_path(task_file.feature),
            self.plan_store.progress_path(task_file.feature),
            self.plan_store.project_dir / AGENTS_FILE,
        ):
            if path.exists():
                context_files.append(_relative(path, self.plan_store.project_dir))

        return {
            "feature": task_file.feature,
            "task_id": task.id,
            "task_title": task.title,
            "task_description": task.description,
            "acceptance_criteria": task.acceptance_criteria,
            "context_files": context_files,
            "feedback_command": self.config.feedback_command,
            "lint_command": self.config.lint_command,
            "commit_prefix": self.config.commit_prefix,
        }

    def _resolve_target_id(
        self,
        task_file_path: Path,
        task: Task,
        finalized_id: Optional[str],
        completed_id: Optional[str],
    ) -> str:
        """Pick the task to mark completed.

        FINALIZED wins over TASK_COMPLETED; without a usable marker the task
        chosen by the resolver is used. A marker is usable when it names the
        selected task, or a pending task whose dependencies are all completed
        in the task file as it is on disk now.
        """
        current = self.plan_store.load_task_file(task_file_path)
        for marker_id in (finalized_id, completed_id):
            if not marker_id:
                continue
            if marker_id == task.id or is_eligible(marker_id, current.tasks):
                return marker_id
            if current.get_task(marker_id) is None:
                reason = f"unknown task {marker_id}"
            else:
                reason = f"task {marker_id}, which is not pending with its dependencies completed"
            self.console.print(f"[yellow]⚠[/yellow] Marker names {reason}; using {task.id}")
            self._log_info(f"Marker names {reason}", task.id)
        return task.id

    def _commit_tracking_files(self, task_file_path: Path, feature: str, completed: Task) -> None:
        """Commit the task file and progress log for a finalized task.

        The files are folded into the agent's commit when HEAD carries the
        task's commit prefix, otherwise they get a commit of their own. A git
        failure is reported but does not undo the completion.
        """
        if self.git is None:
            return

        paths = [task_file_path, self.plan_store.progress_path(feature)]
        prefix = f"{self.config.commit_prefix}-{completed.id}:"
        try:
            if not self.git.has_changes(paths):
                return
            subject = self.git.head_subject() or ""
            amend = subject.startswith(prefix)
            self.git.commit_paths(paths, f"{prefix} mark task completed", amend=amend)
        except GitOperationError as e:
            self.console.print(
                f"[yellow]⚠[/yellow] Could not commit task tracking files: {e}"
            )
            if self.activity_logger:
                self.activity_logger.log_error(str(e), task_id=completed.id, phase="finalize")
            return

        self._log_info(
            f"Tracking files {'amended into' if amend else 'committed after'} "
            f"{completed.id} commit",
            completed.id,
        )

    def _progress_summary(
        self, implement: PhaseResult, review_feedback: str, finalize: PhaseResult
    ) -> str:
        lines = [f"Agent: {self.agent}"]
        if implement.marker:
            lines.append(f"Implement: TASK_COMPLETED {implement.marker}")
        else:
            lines.append("Implement: completed without marker")
        if self.skip_review:
            lines.append("Review: skipped")
        elif review_feedback:
            excerpt = OutputParser.sanitize_output(review_feedback, PROGRESS_EXCERPT_LENGTH)
            lines.append(f"Review feedback:\n{excerpt}")
        else:
            lines.append("Review: no feedback")
        if finalize.marker:
            lines.append(f"Finalize: FINALIZED {finalize.marker}")
        else:
            lines.append("Finalize: completed without marker")
        return "\n".join(lines)

    def _marker_missing(
        self, phase: Phase, task_id: str, kind: MarkerKind, note: str
    ) -> None:
        self.console.print(f"\n[yellow]⚠[/yellow] Warning: No {kind.value} marker found in output")
        if self.activity_logger:
            self.activity_logger.log_marker_missing(phase.value, task_id, kind.value, note)

    def _log_info(self, message: str, task_id: str) -> None:
        if self.activity_logger:
            self.activity_logger.log_info(message, task_id=task_id)


def _relative(path: Path, root: Path) -> str:
    try:
        return str(path.relative_to(root))
    except ValueError:
        return str(path)
