"""xloop exception classes."""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..orchestrator.error_classifier import ErrorClassification


class XLoopError(Exception):
    """Base exception for all xloop errors."""

    pass


class ConfigurationError(XLoopError):
    """Raised when configuration is invalid."""

    pass


class TaskValidationError(XLoopError):
    """Raised when a task file is malformed or has bad dependency references."""

    pass


class PlanStorageError(XLoopError):
    """Raised when persisted plan state cannot be read, written or moved."""

    pass


class ArchiveError(PlanStorageError):
    """Raised when a completed feature cannot be archived as a group."""

    pass


class GitOperationError(XLoopError):
    """Raised when git operations fail."""

    pass


class ExecutionError(XLoopError):
    """Raised when task execution fails."""

    pass


class AgentExecutionError(ExecutionError):
    """Raised when an agent invocation exits with a non-zero code."""

    def __init__(
        self,
        message: str,
        exit_code: int,
        stderr: str = "",
        classification: Optional["ErrorClassification"] = None,
    ):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr
        self.classification = classification


class PhaseAbortedError(AgentExecutionError):
    """Raised when a phase cannot complete and the task is abandoned for this run."""

    def __init__(
        self,
        message: str,
        phase: str,
        task_id: Optional[str],
        exit_code: int,
        stderr: str = "",
        classification: Optional["ErrorClassification"] = None,
    ):
        super().__init__(message, exit_code, stderr, classification)
        self.phase = phase
        self.task_id = task_id


def format_error(message: str, details: Optional[str] = None) -> str:
    """Format an error for display with the ✗ prefix."""
    output = f"✗ {message}"
    if details:
        output += f"\n\n{details}"
    return output
