"""Tests for driving a task through implement, review and finalize."""

import shutil
from unittest.mock import Mock

import pytest

from xloop.core.exceptions import GitOperationError, PhaseAbortedError
from xloop.core.git_utils import GitUtils
from xloop.core.phase_state import PhaseState
from xloop.core.task_schema import TaskStatus
from xloop.orchestrator.error_classifier import ErrorCategory
from xloop.tests.conftest import CREATED_AT, git, make_task
from xloop.tests.mocks import MockResponse
from xloop.tracking.activity_logger import ActivityLogger, EventType


@pytest.fixture
def task_path(write_task_file):
    return write_task_file(
        "auth",
        [make_task("task-1"), make_task("task-2", dependencies=["task-1"])],
    )


@pytest.fixture
def activity_logger(project_dir):
    return ActivityLogger("test-session", project_dir / ".plans" / "logs", "auth")


def run(executor, plan_store, task_path, task_id="task-1"):
    task_file = plan_store.load_task_file(task_path)
    return executor.execute_task(task_path, task_file, task_file.get_task(task_id))


def status_of(plan_store, task_path, task_id="task-1"):
    return plan_store.load_task_file(task_path).get_task(task_id).status


class TestFullCycle:
    def test_completes_task_and_writes_progress(
        self, phase_executor_factory, mock_agent, plan_store, task_path
    ):
        mock_agent.script_task("task-1")

        result = run(phase_executor_factory(), plan_store, task_path)

        assert result.completed
        assert result.completed_task_id == "task-1"
        assert result.final_state == PhaseState.DONE
        assert mock_agent.phases_called() == ["implement", "review", "finalize"]

        task = plan_store.load_task_file(task_path).get_task("task-1")
        assert task.status == TaskStatus.COMPLETED
        assert task.completed_at is not None
        assert status_of(plan_store, task_path, "task-2") == TaskStatus.PENDING

        progress = plan_store.progress_path("auth").read_text()
        assert "task-1: Title of task-1" in progress
        assert "FINALIZED task-1" in progress

    def test_prompts_carry_task_context(
        self, phase_executor_factory, mock_agent, plan_store, task_path
    ):
        mock_agent.script_task("task-1")

        run(phase_executor_factory(), plan_store, task_path)

        (implement,) = mock_agent.prompts_for("implement")
        assert "task-1" in implement
        assert "Title of task-1" in implement
        assert "task-1 works" in implement
        assert ".plans/tasks-auth.yml" in implement

        (finalize,) = mock_agent.prompts_for("finalize")
        assert "pytest" in finalize
        assert "xloop-task-1" in finalize

    def test_review_feedback_reaches_finalize(
        self, phase_executor_factory, mock_agent, plan_store, task_path
    ):
        mock_agent.script_task("task-1", review="Rename the helper to parse_token.")

        run(phase_executor_factory(), plan_store, task_path)

        (finalize,) = mock_agent.prompts_for("finalize")
        assert "Rename the helper to parse_token." in finalize

    def test_progress_keeps_plain_review_excerpt(
        self, phase_executor_factory, mock_agent, plan_store, task_path
    ):
        mock_agent.script_task("task-1", review="\x1b[1mLooks good\x1b[0m\n" + "x" * 3000)

        run(phase_executor_factory(), plan_store, task_path)

        progress = plan_store.progress_path("auth").read_text()
        assert "Looks good" in progress
        assert "\x1b[" not in progress
        assert "truncated" in progress

    def test_empty_review_uses_default_feedback(
        self, phase_executor_factory, mock_agent, plan_store, task_path
    ):
        mock_agent.script_task("task-1", review=None)
        mock_agent.add_response("review", MockResponse(stdout="  \n"))

        run(phase_executor_factory(), plan_store, task_path)

        (finalize,) = mock_agent.prompts_for("finalize")
        assert "No review feedback provided" in finalize

    def test_skip_review(self, phase_executor_factory, mock_agent, plan_store, task_path, console):
        mock_agent.script_task("task-1", review=None)

        result = run(phase_executor_factory(skip_review=True), plan_store, task_path)

        assert result.completed
        assert result.review_skipped
        assert mock_agent.phases_called() == ["implement", "finalize"]
        assert "Review (skipped)" in console.export_text()
        assert "No review feedback provided" in mock_agent.prompts_for("finalize")[0]

    def test_per_phase_model(
        self, phase_executor_factory, mock_agent, config, plan_store, task_path
    ):
        config.phase_models.review = "claude-haiku"
        mock_agent.script_task("task-1")

        run(phase_executor_factory(config=config), plan_store, task_path)

        models = [call["model"] for call in mock_agent.call_history]
        assert models == [config.models.claude, "claude-haiku", config.models.claude]


class TestCompletionSentinel:
    def test_sentinel_stops_before_review(
        self, phase_executor_factory, mock_agent, mock_responses, plan_store, task_path
    ):
        mock_agent.add_response("implement", mock_responses.all_complete())

        result = run(phase_executor_factory(), plan_store, task_path)

        assert result.all_complete
        assert not result.completed
        assert result.final_state == PhaseState.DONE
        assert mock_agent.phases_called() == ["implement"]
        assert status_of(plan_store, task_path) == TaskStatus.PENDING


class TestFailures:
    def test_implement_failure_aborts(
        self, phase_executor_factory, mock_agent, mock_responses, plan_store, task_path
    ):
        mock_agent.add_response("implement", mock_responses.error_response("boom"))

        with pytest.raises(PhaseAbortedError) as exc_info:
            run(phase_executor_factory(), plan_store, task_path)

        assert exc_info.value.phase == "implement"
        assert exc_info.value.task_id == "task-1"
        assert mock_agent.phases_called() == ["implement"]
        assert status_of(plan_store, task_path) == TaskStatus.PENDING

    def test_review_failure_leaves_status_unchanged(
        self, phase_executor_factory, mock_agent, mock_responses, plan_store, task_path
    ):
        mock_agent.add_response("implement", mock_responses.implement_success("task-1"))
        mock_agent.add_response("review", mock_responses.error_response("review crashed"))

        with pytest.raises(PhaseAbortedError) as exc_info:
            run(phase_executor_factory(), plan_store, task_path)

        assert exc_info.value.phase == "review"
        assert "finalize" not in mock_agent.phases_called()
        assert status_of(plan_store, task_path) == TaskStatus.PENDING
        assert not plan_store.progress_path("auth").exists()

    def test_finalize_failure_leaves_status_unchanged(
        self, phase_executor_factory, mock_agent, mock_responses, plan_store, task_path
    ):
        mock_agent.script_task("task-1")
        mock_agent.responses["finalize"] = [mock_responses.error_response("git failed")]

        with pytest.raises(PhaseAbortedError) as exc_info:
            run(phase_executor_factory(), plan_store, task_path)

        assert exc_info.value.phase == "finalize"
        assert "Finalize phase failed" in str(exc_info.value)
        assert status_of(plan_store, task_path) == TaskStatus.PENDING

    def test_network_error_is_retried(
        self, phase_executor_factory, mock_agent, mock_responses, plan_store, task_path, sleeps
    ):
        mock_agent.add_response(
            "implement",
            mock_responses.network_error(),
            mock_responses.network_error(),
            mock_responses.implement_success("task-1"),
        )
        mock_agent.add_response("review", mock_responses.review_feedback())
        mock_agent.add_response("finalize", mock_responses.finalize_success("task-1"))

        result = run(phase_executor_factory(), plan_store, task_path)

        assert result.completed
        assert sleeps == [1.0, 2.0]
        assert result.phase_results[0].attempts == 3

    def test_network_error_exhausts_retries(
        self, phase_executor_factory, mock_agent, mock_responses, plan_store, task_path, sleeps
    ):
        mock_agent.add_response("implement", mock_responses.network_error())

        with pytest.raises(PhaseAbortedError) as exc_info:
            run(phase_executor_factory(), plan_store, task_path)

        assert mock_agent.call_count == 3
        assert sleeps == [1.0, 2.0]
        assert exc_info.value.classification.category == ErrorCategory.NETWORK_TRANSIENT

    @pytest.mark.parametrize(
        "response,category",
        [
            ("model_not_found", ErrorCategory.MODEL_UNAVAILABLE),
            ("rate_limit_error", ErrorCategory.RATE_LIMITED),
            ("spawn_failure", ErrorCategory.SPAWN_FAILED),
        ],
    )
    def test_non_retryable_errors_abort_immediately(
        self,
        phase_executor_factory,
        mock_agent,
        mock_responses,
        plan_store,
        task_path,
        sleeps,
        response,
        category,
    ):
        mock_agent.add_response("implement", getattr(mock_responses, response)())

        with pytest.raises(PhaseAbortedError) as exc_info:
            run(phase_executor_factory(), plan_store, task_path)

        assert mock_agent.call_count == 1
        assert sleeps == []
        assert exc_info.value.classification.category == category

    def test_failure_is_logged_with_stderr(
        self,
        phase_executor_factory,
        mock_agent,
        mock_responses,
        plan_store,
        task_path,
        activity_logger,
    ):
        mock_agent.add_response("implement", mock_responses.model_not_found("gpt-9"))

        with pytest.raises(PhaseAbortedError):
            run(phase_executor_factory(activity_logger=activity_logger), plan_store, task_path)

        failed = [
            e for e in activity_logger.get_task_events("task-1")
            if e.event_type == EventType.PHASE_FAILED
        ]
        assert len(failed) == 1
        assert "model not found: gpt-9" in failed[0].data["stderr"]


class TestMarkers:
    def test_missing_marker_is_a_diagnostic(
        self,
        phase_executor_factory,
        mock_agent,
        mock_responses,
        plan_store,
        task_path,
        console,
        activity_logger,
    ):
        mock_agent.add_response("implement", mock_responses.implement_without_marker())
        mock_agent.add_response("review", mock_responses.review_feedback())
        mock_agent.add_response("finalize", mock_responses.finalize_success("task-1"))

        result = run(
            phase_executor_factory(activity_logger=activity_logger), plan_store, task_path
        )

        assert result.completed
        assert result.marker_missing
        assert "No TASK_COMPLETED marker found" in console.export_text()
        events = activity_logger.get_task_events("task-1")
        assert EventType.MARKER_MISSING in [e.event_type for e in events]

    def test_finalized_marker_names_another_ready_task(
        self, phase_executor_factory, mock_agent, mock_responses, plan_store, write_task_file
    ):
        path = write_task_file("auth", [make_task("task-1"), make_task("task-3")])
        mock_agent.add_response("implement", mock_responses.implement_success("task-1"))
        mock_agent.add_response("review", mock_responses.review_feedback())
        mock_agent.add_response("finalize", mock_responses.finalize_success("task-3"))

        result = run(phase_executor_factory(), plan_store, path)

        assert result.completed_task_id == "task-3"
        assert status_of(plan_store, path, "task-3") == TaskStatus.COMPLETED
        assert status_of(plan_store, path, "task-1") == TaskStatus.PENDING

    def test_marker_for_blocked_task_falls_back(
        self, phase_executor_factory, mock_agent, mock_responses, plan_store, task_path, console
    ):
        mock_agent.add_response("implement", mock_responses.implement_success("task-1"))
        mock_agent.add_response("review", mock_responses.review_feedback())
        mock_agent.add_response("finalize", mock_responses.finalize_success("task-2"))

        result = run(phase_executor_factory(), plan_store, task_path)

        assert result.completed_task_id == "task-1"
        assert status_of(plan_store, task_path, "task-1") == TaskStatus.COMPLETED
        assert status_of(plan_store, task_path, "task-2") == TaskStatus.PENDING
        assert "Marker names task task-2" in console.export_text()

    def test_marker_for_completed_task_falls_back(
        self, phase_executor_factory, mock_agent, mock_responses, plan_store, write_task_file
    ):
        path = write_task_file(
            "auth",
            [make_task("task-0", status=TaskStatus.COMPLETED), make_task("task-1")],
            progress=True,
        )
        mock_agent.add_response("implement", mock_responses.implement_success("task-0"))
        mock_agent.add_response("review", mock_responses.review_feedback())
        mock_agent.add_response("finalize", mock_responses.finalize_success("task-0"))

        result = run(phase_executor_factory(), plan_store, path)

        assert result.completed_task_id == "task-1"
        assert status_of(plan_store, path, "task-1") == TaskStatus.COMPLETED
        task_0 = plan_store.load_task_file(path).get_task("task-0")
        assert task_0.completed_at == CREATED_AT

        progress = plan_store.progress_path("auth").read_text()
        assert "task-1: Title of task-1" in progress
        assert "task-0: Title of task-0" not in progress

    def test_unknown_marker_falls_back_to_selected_task(
        self, phase_executor_factory, mock_agent, mock_responses, plan_store, task_path, console
    ):
        mock_agent.add_response("implement", mock_responses.implement_success("task-99"))
        mock_agent.add_response("review", mock_responses.review_feedback())
        mock_agent.add_response("finalize", mock_responses.finalize_success("task-99"))

        result = run(phase_executor_factory(), plan_store, task_path)

        assert result.completed_task_id == "task-1"
        assert status_of(plan_store, task_path) == TaskStatus.COMPLETED
        assert "unknown task task-99" in console.export_text()

    def test_no_markers_completes_selected_task(
        self, phase_executor_factory, mock_agent, mock_responses, plan_store, task_path
    ):
        mock_agent.set_default_response(mock_responses.implement_without_marker())

        result = run(phase_executor_factory(), plan_store, task_path)

        assert result.completed_task_id == "task-1"
        assert status_of(plan_store, task_path) == TaskStatus.COMPLETED


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


@requires_git
class TestTrackingCommit:
    @pytest.fixture
    def tracked_task_path(self, git_repo, write_task_file):
        path = write_task_file("auth", [make_task("task-1")])
        git(git_repo, "add", ".plans")
        git(git_repo, "commit", "-m", "Add auth plan")
        return path

    def commit_count(self, repo):
        return int(git(repo, "rev-list", "--count", "HEAD"))

    def test_tracking_files_join_the_task_commit(
        self, phase_executor_factory, mock_agent, plan_store, git_repo, tracked_task_path
    ):
        (git_repo / "login.py").write_text("def login(): ...\n")
        git(git_repo, "add", "login.py")
        git(git_repo, "commit", "-m", "xloop-task-1: add login")
        before = self.commit_count(git_repo)
        mock_agent.script_task("task-1")

        run(phase_executor_factory(git=GitUtils(git_repo)), plan_store, tracked_task_path)

        assert self.commit_count(git_repo) == before
        assert git(git_repo, "log", "-1", "--format=%s") == "xloop-task-1: add login"
        files = git(git_repo, "show", "--name-only", "--format=", "HEAD").splitlines()
        assert ".plans/tasks-auth.yml" in files
        assert f".plans/{plan_store.progress_path('auth').name}" in files
        assert "login.py" in files
        assert git(git_repo, "status", "--porcelain") == ""

    def test_separate_commit_without_task_commit(
        self, phase_executor_factory, mock_agent, plan_store, git_repo, tracked_task_path
    ):
        before = self.commit_count(git_repo)
        mock_agent.script_task("task-1")

        run(phase_executor_factory(git=GitUtils(git_repo)), plan_store, tracked_task_path)

        assert self.commit_count(git_repo) == before + 1
        assert git(git_repo, "log", "-1", "--format=%s") == "xloop-task-1: mark task completed"
        assert git(git_repo, "status", "--porcelain") == ""

    def test_unrelated_changes_stay_uncommitted(
        self, phase_executor_factory, mock_agent, plan_store, git_repo, tracked_task_path
    ):
        (git_repo / "README.md").write_text("# Edited\n")
        mock_agent.script_task("task-1")

        run(phase_executor_factory(git=GitUtils(git_repo)), plan_store, tracked_task_path)

        assert git(git_repo, "status", "--porcelain") == "M README.md"


class TestTrackingCommitFailure:
    def test_git_failure_keeps_completion(
        self,
        phase_executor_factory,
        mock_agent,
        plan_store,
        task_path,
        console,
        activity_logger,
    ):
        repo = Mock(spec=GitUtils)
        repo.has_changes.return_value = True
        repo.head_subject.return_value = "Initial commit"
        repo.commit_paths.side_effect = GitOperationError("Git command failed: git commit")
        mock_agent.script_task("task-1")

        result = run(
            phase_executor_factory(git=repo, activity_logger=activity_logger),
            plan_store,
            task_path,
        )

        assert result.completed
        assert status_of(plan_store, task_path) == TaskStatus.COMPLETED
        assert "Could not commit task tracking files" in console.export_text()
        events = activity_logger.get_task_events("task-1")
        assert EventType.ERROR in [e.event_type for e in events]
        args, kwargs = repo.commit_paths.call_args
        assert args[0] == [task_path, plan_store.progress_path("auth")]
        assert kwargs["amend"] is False
