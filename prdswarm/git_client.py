"""
Narrow typed client for the git CLI.

All git invocations go through GitClient so that timeouts, a missing binary
and the "already gone" failure texts are classified in one place instead of
at every call site.
"""

import logging
import subprocess
from pathlib import Path
from typing import List, Optional

from .results import ErrorCode, SwarmError

logger = logging.getLogger(__name__)

DEFAULT_GIT_TIMEOUT = 30.0

# Failure texts meaning "the thing you wanted gone is already gone"
_MISSING_WORKTREE_MARKERS = ("is not a working tree", "not a working tree")
_MISSING_BRANCH_MARKERS = ("not found",)
_CONFLICT_MARKERS = ("CONFLICT", "Automatic merge failed")


class GitError(SwarmError):
    """A git command failed."""

    code = ErrorCode.GIT_ERROR

    def __init__(
        self,
        message: str,
        args: Optional[List[str]] = None,
        returncode: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
        code: Optional[ErrorCode] = None,
    ):
        details = {"args": list(args or []), "returncode": returncode}
        super().__init__(message, code=code, details=details)
        self.git_args = list(args or [])
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    @property
    def output(self) -> str:
        """Combined stdout and stderr, for failure-text matching."""
        return f"{self.stdout}\n{self.stderr}"

    def is_missing_worktree(self) -> bool:
        return any(marker in self.output for marker in _MISSING_WORKTREE_MARKERS)

    def is_missing_branch(self) -> bool:
        return any(marker in self.output for marker in _MISSING_BRANCH_MARKERS)

    def is_merge_conflict(self) -> bool:
        return any(marker in self.output for marker in _CONFLICT_MARKERS)


class GitTimeoutError(GitError):
    """A git command exceeded its timeout."""

    code = ErrorCode.GIT_TIMEOUT


class GitNotInstalledError(GitError):
    """git is not installed or not on PATH."""


class GitClient:
    """Runs one-shot git commands bounded by a hard timeout."""

    def __init__(self, timeout: float = DEFAULT_GIT_TIMEOUT, binary: str = "git"):
        self.timeout = timeout
        self.binary = binary

    def run(self, args: List[str], cwd: Path) -> str:
        """Run git and return stripped stdout.

        Raises:
            GitError: non-zero exit
            GitTimeoutError: the command did not finish within the timeout
            GitNotInstalledError: the git binary is missing
        """
        cmd = [self.binary] + args
        logger.debug(f"Running: {' '.join(cmd)} (cwd={cwd})")

        try:
            result = subprocess.run(
                cmd,
                cwd=str(cwd),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                stdin=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired:
            raise GitTimeoutError(
                f"git command timed out after {self.timeout}s: git {' '.join(args)}",
                args=args,
            )
        except FileNotFoundError as e:
            # Either the binary or the cwd is missing
            if not Path(cwd).exists():
                raise GitError(f"Working directory does not exist: {cwd}", args=args) from e
            raise GitNotInstalledError("git executable not found on PATH", args=args) from e

        if result.returncode != 0:
            detail = result.stderr.strip() or result.stdout.strip() or f"git {' '.join(args)} failed"
            raise GitError(
                detail,
                args=args,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        return result.stdout.strip()

    def succeeds(self, args: List[str], cwd: Path) -> bool:
        """Run git and report only whether it exited zero.

        Timeouts and a missing binary still raise.
        """
        try:
            self.run(args, cwd)
        except GitTimeoutError:
            raise
        except GitNotInstalledError:
            raise
        except GitError:
            return False
        return True
