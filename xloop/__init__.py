"""
xloop: AI Coding Agent Orchestrator

Drives autonomous coding-agent subprocesses through an implement, review and
finalize cycle, one task per iteration, until a feature's task list is done.
"""

__version__ = "0.1.0"

from xloop.core.exceptions import XLoopError

__all__ = ["XLoopError", "__version__"]
