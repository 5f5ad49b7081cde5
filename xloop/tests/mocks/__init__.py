"""Mock utilities for testing."""

from .agent_mocks import (
    MockAgentExecutor,
    MockResponse,
    MockResponseLibrary,
)

__all__ = [
    "MockAgentExecutor",
    "MockResponse",
    "MockResponseLibrary",
]
