"""Git worktree management for parallel PRD development.

Each PRD gets its own worktree and branch, both named after the PRD:

    <cwd>/<worktree_parent>/<prd-name>   on branch   <prd-name>

Worktrees are siblings of the main checkout by default (worktree_parent="..").
All operations are idempotent where they destroy things: removing a worktree
or branch that is already gone is success.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

from .git_client import GitClient, GitError
from .results import ErrorCode, SwarmError

logger = logging.getLogger(__name__)

DETACHED = "(detached)"

# Entry line of legacy `git merge-tree <base> <ours> <theirs>` output
_MERGE_TREE_ENTRY_RE = re.compile(r"^\s{2}(base|our|their|result)\s+\d+ [0-9a-f]+ (.+)$")
_BOTH_SIDES_HEADINGS = ("changed in both", "added in both")


class WorktreeError(SwarmError):
    """Base exception for worktree operations"""

    code = ErrorCode.GIT_ERROR


class WorktreeWrongBranchError(WorktreeError):
    """The worktree path exists but is checked out on another branch"""

    code = ErrorCode.WORKTREE_WRONG_BRANCH


class WorktreeBranchCheckError(WorktreeError):
    """The worktree path exists but its branch could not be determined"""

    code = ErrorCode.WORKTREE_BRANCH_CHECK_FAILED


class WorktreeCreateError(WorktreeError):
    code = ErrorCode.WORKTREE_CREATE_FAILED


class WorktreeRemoveError(WorktreeError):
    code = ErrorCode.WORKTREE_REMOVE_FAILED


class BranchDeleteError(WorktreeError):
    code = ErrorCode.BRANCH_DELETE_FAILED


class WorktreeNotFoundError(WorktreeError):
    code = ErrorCode.WORKTREE_NOT_FOUND


class DirtyWorkingDirectoryError(WorktreeError):
    """Raised when merging into a checkout with uncommitted changes"""

    code = ErrorCode.MAIN_DIRTY


class MergeConflictError(WorktreeError):
    """Raised when merge has conflicts. The merge has already been aborted."""

    code = ErrorCode.MERGE_CONFLICT

    def __init__(self, branch: str, conflict_files: List[str]):
        super().__init__(
            f"Merge conflicts in: {', '.join(conflict_files) or '(unknown files)'}",
            details={"branch": branch, "conflictFiles": list(conflict_files)},
        )
        self.conflict_files = list(conflict_files)


class MergeFailedError(WorktreeError):
    code = ErrorCode.MERGE_FAILED


@dataclass
class WorktreeInfo:
    """A worktree as reported by `git worktree list --porcelain`"""

    path: Path
    branch: str = ""
    head: str = ""
    is_bare: bool = False

    @property
    def is_detached(self) -> bool:
        return self.branch == DETACHED


@dataclass
class CreatedWorktree:
    path: Path
    branch: str
    reused: bool

    def to_dict(self) -> dict:
        return {"path": str(self.path), "branch": self.branch, "reused": self.reused}


@dataclass
class MergeOutcome:
    commit_sha: str
    files_changed: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"commitSha": self.commit_sha, "filesChanged": self.files_changed}


@dataclass
class ConflictCheck:
    has_conflicts: bool = False
    conflict_files: List[str] = field(default_factory=list)


def resolve_worktree_path(name: str, parent_dir: str, cwd: Path) -> Path:
    """Deterministic PRD -> worktree directory mapping."""
    return (Path(cwd) / parent_dir / name).resolve()


def interpolate_worktree_cmd(template: str, vars: Mapping[str, str]) -> str:
    """
    Substitute {name}, {path} and {branch} placeholders.

    Only the known placeholders are touched, so shell syntax such as ${HOME}
    survives. Quoting and execution are the caller's business.
    """
    result = template
    for key in ("name", "path", "branch"):
        if key in vars:
            result = result.replace("{" + key + "}", str(vars[key]))
    return result


def parse_worktree_list(output: str) -> List[WorktreeInfo]:
    """Parse `git worktree list --porcelain` output."""
    worktrees: List[WorktreeInfo] = []
    current: Optional[WorktreeInfo] = None

    for line in output.splitlines():
        if line.startswith("worktree "):
            if current:
                worktrees.append(current)
            current = WorktreeInfo(path=Path(line[9:]))
        elif current is None:
            continue
        elif line.startswith("HEAD "):
            current.head = line[5:]
        elif line.startswith("branch "):
            current.branch = line[7:].replace("refs/heads/", "", 1)
        elif line == "bare":
            current.is_bare = True
        elif line == "detached":
            current.branch = DETACHED
        elif line == "":
            worktrees.append(current)
            current = None

    if current:
        worktrees.append(current)

    return worktrees


def parse_merge_tree_conflicts(output: str) -> List[str]:
    """
    Extract conflicting paths from legacy `git merge-tree` output.

    A section counts as conflicting when both sides touched the path and the
    merged result carries conflict markers.
    """
    conflicts: List[str] = []
    heading: Optional[str] = None
    path: Optional[str] = None
    has_markers = False

    def flush() -> None:
        if heading in _BOTH_SIDES_HEADINGS and path and has_markers and path not in conflicts:
            conflicts.append(path)

    for line in output.splitlines():
        if line and line[0] not in " +-@\\":
            flush()
            heading, path, has_markers = line.strip(), None, False
            continue
        match = _MERGE_TREE_ENTRY_RE.match(line)
        if match:
            if path is None:
                path = match.group(2)
        elif "<<<<<<<" in line:
            has_markers = True

    flush()
    return conflicts


class WorktreeManager:
    """Safe, idempotent git worktree/branch management and conflict probing"""

    def __init__(self, git: Optional[GitClient] = None):
        self.git = git or GitClient()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_branch(self, path: Path) -> str:
        return self.git.run(["rev-parse", "--abbrev-ref", "HEAD"], path)

    def branch_exists(self, branch: str, cwd: Path) -> bool:
        return self.git.succeeds(["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"], cwd)

    def list_worktrees(self, cwd: Path) -> List[WorktreeInfo]:
        return parse_worktree_list(self.git.run(["worktree", "list", "--porcelain"], cwd))

    def get_main_worktree_path(self, cwd: Path) -> Path:
        """The first entry of the worktree listing is always the main worktree."""
        worktrees = self.list_worktrees(cwd)
        if not worktrees:
            raise WorktreeNotFoundError(f"No worktrees found from {cwd}")
        return worktrees[0].path

    def is_main_worktree(self, cwd: Path) -> bool:
        main = self.get_main_worktree_path(cwd)
        return Path(cwd).resolve() == Path(main).resolve()

    def has_uncommitted_changes(self, path: Path) -> bool:
        return bool(self.git.run(["status", "--porcelain"], path))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_worktree(self, name: str, parent_dir: str, cwd: Path) -> CreatedWorktree:
        """
        Ensure a worktree for a PRD exists on the branch of the same name.

        Existence/branch matrix:
            path exists, on branch <name>   -> reused, nothing mutated
            path exists, on another branch  -> WorktreeWrongBranchError
            path exists, branch unreadable  -> WorktreeBranchCheckError
            path absent, branch exists      -> worktree add <path> <name>
            path absent, branch absent      -> worktree add -b <name> <path>
        """
        path = resolve_worktree_path(name, parent_dir, cwd)
        branch = name

        if path.exists():
            try:
                actual = self.current_branch(path)
            except GitError as e:
                raise WorktreeBranchCheckError(
                    f"Path {path} exists but its branch could not be determined: {e.message}",
                    details={"path": str(path), "expected": branch},
                ) from e

            if actual == branch:
                logger.debug(f"Reusing worktree {path} on branch {branch}")
                return CreatedWorktree(path=path, branch=branch, reused=True)

            raise WorktreeWrongBranchError(
                f'Path {path} exists but is not a worktree for branch "{branch}" '
                f'(found branch: "{actual}")',
                details={"path": str(path), "expected": branch, "actual": actual},
            )

        try:
            if self.branch_exists(branch, cwd):
                self.git.run(["worktree", "add", str(path), branch], cwd)
            else:
                self.git.run(["worktree", "add", "-b", branch, str(path)], cwd)
        except GitError as e:
            raise WorktreeCreateError(
                f"Failed to create worktree: {e.message}",
                details={"path": str(path), "branch": branch},
            ) from e

        logger.info(f"Created worktree {path} on branch {branch}")
        return CreatedWorktree(path=path, branch=branch, reused=False)

    def remove_worktree(
        self,
        path: Path,
        branch: str,
        cwd: Path,
        delete_branch: bool = True,
    ) -> None:
        """Force-remove a worktree, prune metadata, and delete its branch.

        Safe to call repeatedly: an already-removed worktree or branch is success.
        """
        try:
            self.git.run(["worktree", "remove", str(path), "--force"], cwd)
        except GitError as e:
            if not e.is_missing_worktree():
                raise WorktreeRemoveError(
                    e.message, details={"path": str(path)}
                ) from e
            logger.debug(f"Worktree already gone: {path}")

        try:
            self.git.run(["worktree", "prune"], cwd)
        except GitError as e:
            logger.warning(f"git worktree prune failed: {e.message}")

        if not delete_branch:
            return

        try:
            self.git.run(["branch", "-D", branch], cwd)
        except GitError as e:
            if not e.is_missing_branch():
                raise BranchDeleteError(e.message, details={"branch": branch}) from e
            logger.debug(f"Branch already gone: {branch}")

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    def merge_worktree(self, branch: str, cwd: Path) -> MergeOutcome:
        """
        Merge a worktree branch into the branch checked out at cwd (--no-ff).

        Raises:
            DirtyWorkingDirectoryError: cwd has uncommitted changes, nothing attempted
            MergeConflictError: conflicts; the merge was aborted before raising
            MergeFailedError: any other merge failure
        """
        if self.has_uncommitted_changes(cwd):
            raise DirtyWorkingDirectoryError(
                "Main worktree has uncommitted changes. Commit or stash first.",
                details={"cwd": str(cwd)},
            )

        try:
            self.git.run(["merge", branch, "--no-ff", "-m", f"merge: {branch}"], cwd)
        except GitError as e:
            if e.is_merge_conflict():
                conflict_files = self._conflicted_files(cwd)
                self._abort_merge(cwd)
                raise MergeConflictError(branch, conflict_files) from e
            raise MergeFailedError(e.message, details={"branch": branch}) from e

        commit_sha = self.git.run(["rev-parse", "HEAD"], cwd)
        try:
            diff = self.git.run(["diff", "--name-only", "HEAD~1", "HEAD"], cwd)
            files_changed = [line for line in diff.splitlines() if line.strip()]
        except GitError:
            files_changed = []

        logger.info(f"Merged {branch} as {commit_sha[:8]}")
        return MergeOutcome(commit_sha=commit_sha, files_changed=files_changed)

    def check_merge_conflicts(self, branch: str, cwd: Path) -> ConflictCheck:
        """Non-destructive conflict probe via merge-base + merge-tree.

        Any failure in the probe means "no conflicts".
        """
        try:
            base = self.git.run(["merge-base", "HEAD", branch], cwd)
            output = self.git.run(["merge-tree", base, "HEAD", branch], cwd)
        except GitError as e:
            logger.debug(f"Conflict probe for {branch} failed, assuming none: {e.message}")
            return ConflictCheck()

        conflict_files = parse_merge_tree_conflicts(output)
        return ConflictCheck(has_conflicts=bool(conflict_files), conflict_files=conflict_files)

    def _conflicted_files(self, cwd: Path) -> List[str]:
        try:
            output = self.git.run(["diff", "--name-only", "--diff-filter=U"], cwd)
        except GitError:
            return []
        return [line.strip() for line in output.splitlines() if line.strip()]

    def _abort_merge(self, cwd: Path) -> None:
        try:
            self.git.run(["merge", "--abort"], cwd)
        except GitError as e:
            logger.warning(f"git merge --abort failed in {cwd}: {e.message}")
