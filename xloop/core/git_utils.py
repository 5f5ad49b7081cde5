"""Git helpers for recording task completion in the project history."""

import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from .exceptions import GitOperationError

PathLike = Union[str, Path]


class GitUtils:
    """
    Thin wrapper around the git CLI for one working tree.

    Only the handful of commands xloop needs after a task is finalized:
    checking for changes, reading the last commit subject and committing
    specific paths.
    """

    def __init__(self, repo_path: PathLike):
        """
        Initialize git utilities.

        Args:
            repo_path: Path inside a git working tree

        Raises:
            GitOperationError: If the path is not inside a git repository
        """
        self.repo_path = Path(repo_path)

        if not self.is_git_repo():
            raise GitOperationError(f"Not a git repository: {self.repo_path}")

    def _run_git(self, *args: str, check: bool = True) -> Tuple[int, str, str]:
        """
        Run a git command in the repository.

        Returns:
            Tuple of (returncode, stdout, stderr)

        Raises:
            GitOperationError: If git is missing, or the command fails and check=True
        """
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as e:
            raise GitOperationError("Git command not found") from e
        except OSError as e:
            raise GitOperationError(f"Git operation failed: {e}") from e

        if check and result.returncode != 0:
            raise GitOperationError(
                f"Git command failed: git {' '.join(args)}\n"
                f"Error: {result.stderr.strip()}"
            )

        return result.returncode, result.stdout, result.stderr

    def is_git_repo(self) -> bool:
        """Check if repo_path is inside a git working tree."""
        try:
            returncode, _, _ = self._run_git("rev-parse", "--git-dir", check=False)
        except GitOperationError:
            return False
        return returncode == 0

    def get_current_commit(self) -> Optional[str]:
        """SHA of HEAD, or None before the first commit."""
        returncode, stdout, _ = self._run_git("rev-parse", "--verify", "-q", "HEAD", check=False)
        return stdout.strip() if returncode == 0 else None

    def head_subject(self) -> Optional[str]:
        """Subject line of the HEAD commit, or None before the first commit."""
        if self.get_current_commit() is None:
            return None
        _, stdout, _ = self._run_git("log", "-1", "--format=%s")
        return stdout.strip()

    def has_changes(self, paths: Sequence[PathLike]) -> bool:
        """Check whether any of the paths differ from HEAD or are untracked."""
        _, stdout, _ = self._run_git("status", "--porcelain", "--", *_as_args(paths))
        return bool(stdout.strip())

    def commit_paths(
        self, paths: Sequence[PathLike], message: str, amend: bool = False
    ) -> str:
        """
        Commit only the given paths, leaving other staged changes alone.

        Args:
            paths: Files to commit
            message: Commit message (ignored when amending)
            amend: Fold the paths into the HEAD commit, keeping its message

        Returns:
            Commit hash

        Raises:
            GitOperationError: If staging or committing fails
        """
        args = _as_args(paths)
        self._run_git("add", "--", *args)

        if amend:
            self._run_git("commit", "--amend", "--no-edit", "--", *args)
        else:
            self._run_git("commit", "-m", message, "--", *args)

        return self.get_current_commit()


def _as_args(paths: Sequence[PathLike]) -> List[str]:
    return [str(path) for path in paths]
