"""Execute coding-agent CLIs with subprocess management.

This module spawns the ``claude`` or ``opencode`` CLI for one prompt, streams
its stdout and stderr to the console while capturing both, and reports the
exit code. Failures are reported through the result, not raised, so callers
can classify them from the exit code and stderr text.
"""

import shutil
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

SPAWN_FAILED_EXIT_CODE = 127
TIMEOUT_EXIT_CODE = 124


class AgentType(str, Enum):
    """Supported agent CLIs."""

    CLAUDE = "claude"
    OPENCODE = "opencode"


@dataclass
class ExecutionResult:
    """Result of one agent CLI execution."""

    success: bool
    stdout: str
    stderr: str
    exit_code: int
    duration_seconds: float

    @property
    def error_message(self) -> Optional[str]:
        if self.success:
            return None
        message = f"Agent exited with code {self.exit_code}"
        if self.stderr:
            message += f": {self.stderr[:500]}"
        return message


def build_agent_command(
    agent: Union[AgentType, str], prompt: str, model: Optional[str] = None
) -> List[str]:
    """Build the argv for an agent invocation.

    opencode: ``opencode run [--model anthropic/<model>] <prompt>``
    claude:   ``claude -p <prompt> [--model <model>]``
    """
    agent = AgentType(agent)
    if agent == AgentType.OPENCODE:
        cmd = ["opencode", "run"]
        if model:
            cmd += ["--model", f"anthropic/{model}"]
        cmd.append(prompt)
        return cmd

    cmd = ["claude", "-p", prompt]
    if model:
        cmd += ["--model", model]
    return cmd


class AgentExecutor:
    """Spawn agent CLI processes and collect their output."""

    def __init__(
        self,
        agent: Union[AgentType, str] = AgentType.CLAUDE,
        working_dir: Optional[Path] = None,
        timeout: Optional[float] = None,
        silent: bool = False,
        command: Optional[Sequence[str]] = None,
    ):
        """Initialize agent executor.

        Args:
            agent: Which agent CLI to run
            working_dir: Working directory for the agent process
            timeout: Kill the agent after this many seconds (None = no limit)
            silent: Capture output without echoing it to the console
            command: Explicit argv prefix to run instead of the agent CLI;
                the prompt is appended as ``-p <prompt>``
        """
        self.agent = AgentType(agent)
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()
        self.timeout = timeout
        self.silent = silent
        self.command = list(command) if command else None
        self._output_lock = threading.Lock()

    def build_command(self, prompt: str, model: Optional[str] = None) -> List[str]:
        if self.command:
            cmd = self.command + ["-p", prompt]
            if model:
                cmd += ["--model", model]
            return cmd
        return build_agent_command(self.agent, prompt, model)

    def execute(
        self,
        prompt: str,
        model: Optional[str] = None,
        output_callback: Optional[Callable[[str], None]] = None,
    ) -> ExecutionResult:
        """Run the agent with the given prompt and wait for it to exit.

        stdout and stderr are drained by two reader threads so neither pipe
        can fill up and stall the child; each line is echoed as it arrives.

        Args:
            prompt: Prompt to send to the agent
            model: Model identifier (agent default if None)
            output_callback: Optional callback receiving each stdout line

        Returns:
            ExecutionResult with captured output and exit code
        """
        cmd = self.build_command(prompt, model)
        start_time = time.time()

        stdout_lines: List[str] = []
        stderr_lines: List[str] = []

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=str(self.working_dir),
                text=True,
                bufsize=1,  # Line buffered
            )
        except OSError as e:
            return ExecutionResult(
                success=False,
                stdout="",
                stderr=f"spawn failed: {cmd[0]}: command not found ({e})",
                exit_code=SPAWN_FAILED_EXIT_CODE,
                duration_seconds=time.time() - start_time,
            )

        def read_stdout():
            for line in iter(process.stdout.readline, ""):
                stdout_lines.append(line)
                self._echo(line, sys.stdout)
                if output_callback:
                    output_callback(line.rstrip("\n"))
            process.stdout.close()

        def read_stderr():
            for line in iter(process.stderr.readline, ""):
                stderr_lines.append(line)
                self._echo(line, sys.stderr)
            process.stderr.close()

        stdout_thread = threading.Thread(target=read_stdout, daemon=True)
        stderr_thread = threading.Thread(target=read_stderr, daemon=True)
        stdout_thread.start()
        stderr_thread.start()

        timed_out = False
        try:
            exit_code = process.wait(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            process.kill()
            process.wait()
            exit_code = TIMEOUT_EXIT_CODE

        stdout_thread.join(timeout=5)
        stderr_thread.join(timeout=5)

        stdout = "".join(stdout_lines)
        stderr = "".join(stderr_lines)
        if timed_out:
            # Matches no classifier pattern: a timeout is UNKNOWN and not retried.
            stderr += "\nProcess timed out"

        return ExecutionResult(
            success=exit_code == 0,
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            duration_seconds=time.time() - start_time,
        )

    def is_available(self) -> bool:
        """Check if the agent binary is on PATH."""
        binary = self.command[0] if self.command else self.agent.value
        return shutil.which(binary) is not None

    def _echo(self, line: str, stream) -> None:
        if self.silent:
            return
        with self._output_lock:
            stream.write(line)
            stream.flush()
