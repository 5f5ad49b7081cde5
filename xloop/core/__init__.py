"""Core xloop functionality."""

from .agent_executor import AgentExecutor, AgentType, ExecutionResult
from .archiver import PruneResult, archive_feature, identify_completed_features, prune_completed
from .exceptions import (
    AgentExecutionError,
    ArchiveError,
    ConfigurationError,
    ExecutionError,
    GitOperationError,
    PhaseAbortedError,
    PlanStorageError,
    TaskValidationError,
    XLoopError,
    format_error,
)
from .git_utils import GitUtils
from .lifecycle import LifecycleState, LifecycleStatus, calculate_status
from .output_parser import COMPLETION_SENTINEL, Marker, MarkerKind, OutputParser
from .phase_state import Phase, PhaseState, PhaseStateMachine, StateTransitionError
from .plan_store import PlanStore, PrdInfo, TaskFileStatus
from .prompt_loader import PromptLoader, load_prompt
from .task_resolver import find_next_task, validate_dependencies
from .task_schema import Task, TaskFile, TaskStatus, load_task_file, save_task_file

__all__ = [
    # Exceptions
    "XLoopError",
    "ConfigurationError",
    "TaskValidationError",
    "PlanStorageError",
    "ArchiveError",
    "ExecutionError",
    "GitOperationError",
    "AgentExecutionError",
    "PhaseAbortedError",
    "StateTransitionError",
    "format_error",
    # Task schema
    "Task",
    "TaskFile",
    "TaskStatus",
    "load_task_file",
    "save_task_file",
    # Resolution and lifecycle
    "find_next_task",
    "validate_dependencies",
    "LifecycleState",
    "LifecycleStatus",
    "calculate_status",
    # Phases
    "Phase",
    "PhaseState",
    "PhaseStateMachine",
    # Agent I/O
    "AgentExecutor",
    "AgentType",
    "ExecutionResult",
    "COMPLETION_SENTINEL",
    "Marker",
    "MarkerKind",
    "OutputParser",
    "PromptLoader",
    "GitUtils",
    "load_prompt",
    # Plan storage
    "PlanStore",
    "PrdInfo",
    "TaskFileStatus",
    "PruneResult",
    "archive_feature",
    "identify_completed_features",
    "prune_completed",
]
