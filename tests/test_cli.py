"""End-to-end CLI tests against a temporary repo and the in-memory backend."""

import json

import pytest

from prdswarm import cli


def write_prd(state_home, name, status="pending"):
    prd_dir = state_home / "prdswarm" / "repo" / "prds" / status / name
    prd_dir.mkdir(parents=True)
    (prd_dir / "spec.md").write_text(f"# {name}\n")
    (prd_dir / "prd.json").write_text(json.dumps({"name": name, "dependencies": [], "stories": []}))


def run_cli(repo, *argv):
    return cli.main(["--dir", str(repo), "--backend", "memory", *argv])


class TestCli:

    def test_start_json(self, git_repo, isolated_state, capsys):
        write_prd(isolated_state, "feat-x")

        run_cli(git_repo, "--json", "start", "feat-x")

        data = json.loads(capsys.readouterr().out)
        assert data["ok"] is True
        assert data["data"]["prdName"] == "feat-x"
        assert (git_repo.parent / "feat-x").is_dir()

    def test_failure_exits_nonzero(self, git_repo, capsys):
        with pytest.raises(SystemExit) as exc_info:
            run_cli(git_repo, "start", "ghost")

        assert exc_info.value.code == 1
        assert "PRD_NOT_FOUND" in capsys.readouterr().out

    def test_list_empty(self, git_repo, capsys):
        run_cli(git_repo, "list")

        assert "No runs." in capsys.readouterr().out

    def test_list_after_start_shows_stale_pane(self, git_repo, isolated_state, capsys):
        # Each invocation gets a fresh in-memory backend, so the first pane is gone
        write_prd(isolated_state, "feat-x")
        run_cli(git_repo, "start", "feat-x")
        capsys.readouterr()

        run_cli(git_repo, "--json", "list")

        runs = json.loads(capsys.readouterr().out)["data"]
        assert [(r["prdName"], r["status"]) for r in runs] == [("feat-x", "stale")]

    def test_cleanup_all(self, git_repo, isolated_state, capsys):
        write_prd(isolated_state, "feat-x")
        run_cli(git_repo, "start", "feat-x")
        capsys.readouterr()

        run_cli(git_repo, "cleanup", "--all")

        assert "Cleaned up: feat-x" in capsys.readouterr().out
        assert not (git_repo.parent / "feat-x").exists()

    def test_stop_requires_name_or_all(self, git_repo, capsys):
        with pytest.raises(SystemExit):
            run_cli(git_repo, "stop")

        assert "--all" in capsys.readouterr().out

    def test_no_command_prints_help(self, git_repo, capsys):
        with pytest.raises(SystemExit):
            cli.main(["--dir", str(git_repo)])

        assert "usage" in capsys.readouterr().out

    def test_invalid_project_name(self, git_repo, capsys):
        with pytest.raises(SystemExit):
            run_cli(git_repo, "--project", "Bad Name", "list")

        assert "Error" in capsys.readouterr().out
