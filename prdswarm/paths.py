"""Path resolution for swarm state.

All state for a project lives outside the repository, under the XDG state
home, so that every worktree of the same repository shares one ledger:

    $XDG_STATE_HOME/prdswarm/<project>/
    ├── swarm.json        # run ledger
    ├── swarm.json.lock   # ledger lock file
    └── prds/
        ├── pending/<name>/{spec.md,prd.json}
        ├── in_progress/
        ├── testing/
        └── completed/
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

PROJECT_NAME_RE = re.compile(r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$")

STATE_NAMESPACE = "prdswarm"
LEDGER_FILENAME = "swarm.json"


def validate_project_name(name: str) -> bool:
    """Project names are lowercase slugs, 1-64 chars, no leading/trailing hyphen."""
    return 1 <= len(name) <= 64 and PROJECT_NAME_RE.match(name) is not None


def get_xdg_state_home() -> Path:
    """Get the XDG state home, defaulting to ~/.local/state."""
    env_value = os.environ.get("XDG_STATE_HOME")
    if env_value:
        return Path(env_value)
    return Path.home() / ".local" / "state"


def get_state_dir(project_name: str) -> Path:
    """Root state directory for a project, e.g. ~/.local/state/prdswarm/myapp/"""
    return get_xdg_state_home() / STATE_NAMESPACE / project_name


def get_swarm_state_path(project_name: str) -> Path:
    return get_state_dir(project_name) / LEDGER_FILENAME


def get_prds_dir(project_name: str) -> Path:
    return get_state_dir(project_name) / "prds"


def find_repo_root(start: Optional[Path] = None) -> Path:
    """Walk up to find the repository root (a directory containing .git).

    Linked worktrees carry a .git *file*, so this also stops there.
    Falls back to the starting directory if nothing is found.
    """
    cwd = Path(start or Path.cwd()).resolve()
    for parent in [cwd, *cwd.parents]:
        if (parent / ".git").exists():
            return parent
    return cwd


@dataclass(frozen=True)
class SwarmContext:
    """
    Explicit execution context threaded through every swarm call.

    Replaces any reliance on the process working directory or a
    module-level default store.
    """

    project_name: str
    repo_root: Path
    cwd: Path

    def __post_init__(self) -> None:
        if not validate_project_name(self.project_name):
            raise ValueError(
                f"Invalid project name '{self.project_name}': must be a lowercase "
                "slug (a-z, 0-9, '-') of 1-64 characters"
            )
        object.__setattr__(self, "repo_root", Path(self.repo_root))
        object.__setattr__(self, "cwd", Path(self.cwd))

    @classmethod
    def detect(cls, project_name: Optional[str] = None, cwd: Optional[Path] = None) -> "SwarmContext":
        """Build a context from a working directory.

        The project name defaults to a slug of the repository directory name.
        """
        working_dir = Path(cwd or Path.cwd()).resolve()
        repo_root = find_repo_root(working_dir)
        if project_name is None:
            project_name = _slugify(repo_root.name)
        return cls(project_name=project_name, repo_root=repo_root, cwd=working_dir)

    @property
    def state_dir(self) -> Path:
        return get_state_dir(self.project_name)

    @property
    def ledger_path(self) -> Path:
        return get_swarm_state_path(self.project_name)

    @property
    def prds_dir(self) -> Path:
        return get_prds_dir(self.project_name)


def _slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9-]+", "-", name.lower()).strip("-")
    slug = re.sub(r"-{2,}", "-", slug)[:64].strip("-")
    return slug or "project"
