"""Classify failed agent invocations.

A failed invocation is mapped to a category by an ordered list of rules;
the first rule whose predicate matches wins. Only transient network errors
are retryable: a retry cannot fix a bad model name, a missing binary or an
exhausted quota.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple

from ..core.agent_executor import SPAWN_FAILED_EXIT_CODE
from ..core.exceptions import AgentExecutionError


class ErrorCategory(str, Enum):
    """Categories of agent failure."""

    RATE_LIMITED = "rate_limited"
    MODEL_UNAVAILABLE = "model_unavailable"
    SPAWN_FAILED = "spawn_failed"
    NETWORK_TRANSIENT = "network_transient"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    ErrorCategory.RATE_LIMITED: "RateLimited",
    ErrorCategory.MODEL_UNAVAILABLE: "ModelUnavailable",
    ErrorCategory.SPAWN_FAILED: "ProcessSpawnFailed",
    ErrorCategory.NETWORK_TRANSIENT: "TransientNetwork",
    ErrorCategory.UNKNOWN: "UnknownAgentFailure",
}


@dataclass(frozen=True)
class ErrorClassification:
    """Result of classifying one failed invocation."""

    category: ErrorCategory
    retryable: bool
    retry_after: Optional[float] = None
    rule: Optional[str] = None

    @property
    def name(self) -> str:
        return self.category.display_name


@dataclass(frozen=True)
class ClassificationRule:
    """A named (predicate, category) pair."""

    name: str
    category: ErrorCategory
    predicate: Callable[[int, str], bool]


RATE_LIMIT_PATTERNS = (
    "rate limit",
    "rate_limit",
    "too many requests",
    "quota exceeded",
    "rate exceeded",
)

MODEL_UNAVAILABLE_PATTERNS = (
    "model not found",
    "model unavailable",
    "model does not exist",
    "invalid model",
    "unknown model",
    "unsupported model",
    "model is not supported",
)

SPAWN_FAILED_PATTERNS = (
    "command not found",
    "enoent",
    "spawn failed",
    "failed to spawn",
    "no such file or directory",
)

NETWORK_PATTERNS = (
    "econnrefused",
    "econnreset",
    "etimedout",
    "enotfound",
    "enetunreach",
    "connection refused",
    "connection reset",
    "network",
    "timeout",
    "fetch failed",
    "socket hang up",
)

_RETRY_AFTER = re.compile(r"retry[-_ ]?after[:=\s]+(\d+(?:\.\d+)?)", re.IGNORECASE)
_HTTP_429 = re.compile(r"\b429\b")


def _contains_any(patterns: Tuple[str, ...]) -> Callable[[int, str], bool]:
    def predicate(exit_code: int, text: str) -> bool:
        return any(pattern in text for pattern in patterns)

    return predicate


_mentions_rate_limit = _contains_any(RATE_LIMIT_PATTERNS)


def _rate_limited(exit_code: int, text: str) -> bool:
    # A bare 429 only counts as a whole number, not inside a port or an ID.
    return _mentions_rate_limit(exit_code, text) or bool(_HTTP_429.search(text))


def _spawn_failed(exit_code: int, text: str) -> bool:
    return exit_code == SPAWN_FAILED_EXIT_CODE or any(
        pattern in text for pattern in SPAWN_FAILED_PATTERNS
    )


# Evaluated top to bottom; first match wins.
CLASSIFICATION_RULES: Tuple[ClassificationRule, ...] = (
    ClassificationRule("rate_limit", ErrorCategory.RATE_LIMITED, _rate_limited),
    ClassificationRule("model_unavailable", ErrorCategory.MODEL_UNAVAILABLE, _contains_any(MODEL_UNAVAILABLE_PATTERNS)),
    ClassificationRule("spawn_failed", ErrorCategory.SPAWN_FAILED, _spawn_failed),
    ClassificationRule("network", ErrorCategory.NETWORK_TRANSIENT, _contains_any(NETWORK_PATTERNS)),
)

RETRYABLE_CATEGORIES = frozenset({ErrorCategory.NETWORK_TRANSIENT})


def parse_retry_after(stderr: str) -> Optional[float]:
    """Extract a retry-after hint in seconds, if the agent printed one."""
    match = _RETRY_AFTER.search(stderr or "")
    if not match:
        return None
    return float(match.group(1))


def classify(exit_code: int, stderr: str) -> ErrorClassification:
    """Classify a failed invocation from its exit code and stderr text.

    Only called for failures; ``exit_code`` is never 0 here.
    """
    text = (stderr or "").lower()

    for rule in CLASSIFICATION_RULES:
        if rule.predicate(exit_code, text):
            retry_after = None
            if rule.category == ErrorCategory.RATE_LIMITED:
                retry_after = parse_retry_after(stderr)
            return ErrorClassification(
                category=rule.category,
                retryable=rule.category in RETRYABLE_CATEGORIES,
                retry_after=retry_after,
                rule=rule.name,
            )

    return ErrorClassification(category=ErrorCategory.UNKNOWN, retryable=False)


def is_retryable_error(error: BaseException) -> bool:
    """Default retry predicate: retry only classified transient network errors."""
    if not isinstance(error, AgentExecutionError):
        return False
    classification = error.classification
    if classification is None:
        classification = classify(error.exit_code, error.stderr)
    return classification.retryable


def describe_failure(
    classification: ErrorClassification,
    agent: str,
    exit_code: int,
    stderr: str,
    model: Optional[str] = None,
) -> Tuple[str, str]:
    """Build a (message, details) pair explaining a failure to an operator.

    The raw stderr is always included so the failure can be diagnosed
    without re-running the agent.
    """
    error_output = stderr.strip() or "(no error output)"
    category = classification.category

    if category == ErrorCategory.RATE_LIMITED:
        if classification.retry_after is not None:
            retry_msg = f"Please retry after {classification.retry_after:g} seconds."
        else:
            retry_msg = "Please wait a few minutes before retrying."
        message = "Rate limit exceeded"
        details = f"The {agent} agent has exceeded its rate limit.\n\n{retry_msg}"
    elif category == ErrorCategory.MODEL_UNAVAILABLE:
        message = "Model not available"
        details = (
            f'The model "{model or "(default)"}" is not available for agent "{agent}".\n\n'
            "Please check:\n"
            "  • Model name is correct\n"
            f"  • Model version is supported by {agent} (check with: {agent} --help)\n"
            f"  • Your {agent} CLI is up to date"
        )
    elif category == ErrorCategory.SPAWN_FAILED:
        message = f"Failed to start {agent}"
        details = (
            f"Could not spawn {agent} agent process.\n\n"
            f"Please ensure {agent} is properly installed and in your PATH."
        )
    elif category == ErrorCategory.NETWORK_TRANSIENT:
        message = "Network request failed after retries"
        details = "Please check your internet connection and try again."
    else:
        message = f"{agent} agent failed"
        details = f"The {agent} agent exited with code {exit_code}."

    details += (
        f"\n\nClassification: {classification.name}"
        f"\nExit code: {exit_code}"
        f"\n\nError output:\n{error_output}"
    )
    return message, details
