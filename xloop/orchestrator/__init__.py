"""Orchestration layer for driving tasks through agent phases.

This package classifies agent failures, retries transient ones with
backoff, runs the implement/review/finalize phases for a task and loops
over a task file iteration by iteration.
"""

from .error_classifier import ErrorCategory, ErrorClassification, classify
from .iteration_controller import IterationController, RunResult, StopReason, run_iterations
from .phase_executor import PhaseExecutor, PhaseResult, TaskExecutionResult
from .retry_strategy import RetryConfig, RetryStrategy, retry_with_backoff

__all__ = [
    "ErrorCategory",
    "ErrorClassification",
    "classify",
    "RetryConfig",
    "RetryStrategy",
    "retry_with_backoff",
    "PhaseExecutor",
    "PhaseResult",
    "TaskExecutionResult",
    "IterationController",
    "RunResult",
    "StopReason",
    "run_iterations",
]
