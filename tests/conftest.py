"""Shared fixtures: temporary git repositories and isolated state."""

import shutil
import subprocess
from pathlib import Path

import pytest

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def git(repo: Path, *args: str) -> str:
    """Run git in a test repository and return stdout."""
    result = subprocess.run(
        ["git", *args], cwd=repo, check=True, capture_output=True, text=True
    )
    return result.stdout.strip()


def commit_file(repo: Path, name: str, content: str, message: str = "") -> None:
    (repo / name).write_text(content)
    git(repo, "add", name)
    git(repo, "commit", "-m", message or f"Update {name}")


@pytest.fixture(autouse=True)
def isolated_state(tmp_path, monkeypatch):
    """Keep swarm state out of the real XDG state home."""
    state_home = tmp_path / "state"
    monkeypatch.setenv("XDG_STATE_HOME", str(state_home))
    for var in (
        "PRDSWARM_WORKTREE_PARENT",
        "PRDSWARM_PANES_PER_WINDOW",
        "PRDSWARM_PANE_CLOSE_TIMEOUT",
        "PRDSWARM_MERGE_AGENT",
        "PRDSWARM_PRIMARY_BRANCH",
    ):
        monkeypatch.delenv(var, raising=False)
    return state_home


@pytest.fixture
def git_repo(tmp_path):
    """Create a temporary git repository on branch main with one commit"""
    if shutil.which("git") is None:
        pytest.skip("git not installed")

    repo_path = tmp_path / "repo"
    repo_path.mkdir()

    git(repo_path, "init")
    git(repo_path, "symbolic-ref", "HEAD", "refs/heads/main")
    git(repo_path, "config", "user.email", "test@test.com")
    git(repo_path, "config", "user.name", "Test User")
    git(repo_path, "config", "commit.gpgsign", "false")

    commit_file(repo_path, "README.md", "# Test Repo\n", "Initial commit")
    return repo_path
