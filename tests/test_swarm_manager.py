"""
Scenario tests for SwarmManager.

Real temporary git repositories, the in-memory session backend and fake
PRD store / agent executor, so every run is deterministic.
"""

import json
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from prdswarm.agent_executor import AgentExecutor, AgentResult
from prdswarm.config import AgentConfig, SwarmConfig
from prdswarm.paths import SwarmContext
from prdswarm.prd_store import PRDStatus, PRDStore
from prdswarm.results import ErrorCode
from prdswarm.run_ledger import RunInstance, RunLedger, RunStatus
from prdswarm.session.memory_backend import InMemorySessionBackend
from prdswarm.swarm_manager import MergeOptions, StartOptions, SwarmManager, TestOptions
from prdswarm.worktree_manager import WorktreeManager

from conftest import commit_file, git


class FakePRDStore(PRDStore):
    """PRDs defined in a dict: name -> (has prd.json, dependencies)."""

    def __init__(self):
        self.prds: Dict[str, dict] = {}
        self.completed = set()

    def add(self, name, dependencies=None, spec_only=False, complete=False):
        self.prds[name] = {"deps": dependencies or [], "spec_only": spec_only}
        if complete:
            self.completed.add(name)

    def find_location(self, name: str) -> Optional[PRDStatus]:
        if name not in self.prds:
            return None
        return PRDStatus.COMPLETED if name in self.completed else PRDStatus.PENDING

    def has_prd_file(self, name: str) -> bool:
        return name in self.prds and not self.prds[name]["spec_only"]

    def get_unmet_dependencies(self, name: str) -> List[str]:
        return [d for d in self.prds[name]["deps"] if d not in self.completed]


class FakeAgentExecutor(AgentExecutor):
    """Records prompts; optionally performs the merge itself like a real agent would."""

    def __init__(self, exit_code=0, aborted=False, do_merge=None):
        self.exit_code = exit_code
        self.aborted = aborted
        self.do_merge = do_merge
        self.calls = []

    def run(self, prompt, agent, cwd=None, on_output=None, abort=None):
        self.calls.append({"prompt": prompt, "agent": agent, "cwd": cwd})
        if on_output:
            on_output("merging\n")
        if self.do_merge and self.exit_code == 0 and not self.aborted:
            self.do_merge(cwd)
        return AgentResult(exit_code=self.exit_code, aborted=self.aborted, output="merging\n")


@pytest.fixture
def store():
    store = FakePRDStore()
    store.add("feat-x")
    return store


@pytest.fixture
def backend():
    return InMemorySessionBackend(panes_per_window=4)


@pytest.fixture
def make_manager(git_repo, tmp_path, backend, store):
    def factory(cwd: Optional[Path] = None, executor: Optional[AgentExecutor] = None, **config_kwargs):
        context = SwarmContext("demo", git_repo, cwd or git_repo)
        config = SwarmConfig(**config_kwargs)
        return SwarmManager(
            context,
            config,
            backend,
            prd_store=store,
            agent_executor=executor or FakeAgentExecutor(),
            ledger=RunLedger(tmp_path / "state" / "swarm.json"),
            worktrees=WorktreeManager(),
        )
    return factory


@pytest.fixture
def manager(make_manager):
    return make_manager()


def worktree_count(repo: Path) -> int:
    return len(WorktreeManager().list_worktrees(repo))


def branch_exists(repo: Path, branch: str) -> bool:
    return git(repo, "branch", "--list", branch) != ""


class TestStart:

    def test_start_creates_worktree_pane_and_entry(self, manager, git_repo, backend):
        result = manager.start("feat-x")

        assert result.ok, result.error
        run = result.data
        expected_path = (git_repo.parent / "feat-x").resolve()
        assert run.prd_name == "feat-x"
        assert run.branch == "feat-x"
        assert run.status == RunStatus.RUNNING
        assert Path(run.worktree) == expected_path
        assert expected_path.is_dir()
        assert git(expected_path, "rev-parse", "--abbrev-ref", "HEAD") == "feat-x"

        pane = backend.pane(run.pane_id)
        assert pane.title == "feat-x"
        assert backend.session_exists("swarm-demo")

        persisted = json.loads(manager.ledger.state_path.read_text())["runs"]["feat-x"]
        assert persisted["prdName"] == "feat-x"
        assert persisted["branch"] == "feat-x"
        assert persisted["status"] == "running"

    def test_pane_command(self, manager, backend):
        run = manager.start("feat-x", StartOptions(agent="codex")).data
        command = backend.panes[run.pane_id].command

        assert command.startswith(f"cd {run.worktree} && ralph start feat-x --agent codex;")
        assert 'echo "[finished]"' in command
        assert command.endswith("read -t 30 || true")

    def test_second_start_is_already_running(self, manager, git_repo, backend):
        first = manager.start("feat-x").data
        worktrees_before = worktree_count(git_repo)

        result = manager.start("feat-x")

        assert result.code == ErrorCode.ALREADY_RUNNING
        assert result.error.details == {"paneId": first.pane_id, "worktree": first.worktree}
        assert len(backend.panes) == 1
        assert worktree_count(git_repo) == worktrees_before

    def test_restart_after_pane_died(self, manager, backend):
        first = manager.start("feat-x").data
        backend.kill_pane(first.pane_id)

        second = manager.start("feat-x")

        assert second.ok
        assert second.data.pane_id != first.pane_id
        assert second.data.worktree == first.worktree

    def test_unmet_dependencies(self, manager, store, git_repo, backend):
        store.add("alpha")
        store.add("beta", dependencies=["alpha"])

        result = manager.start("beta")

        assert result.code == ErrorCode.DEPS_UNMET
        assert result.error.details["dependencies"] == ["alpha"]
        assert not (git_repo.parent / "beta").exists()
        assert not branch_exists(git_repo, "beta")
        assert backend.panes == {}

    def test_met_dependencies(self, manager, store):
        store.add("alpha", complete=True)
        store.add("beta", dependencies=["alpha"])

        assert manager.start("beta").ok

    def test_prd_not_found(self, manager):
        assert manager.start("ghost").code == ErrorCode.PRD_NOT_FOUND

    def test_spec_only_prd(self, manager, store):
        store.add("draft", spec_only=True)

        assert manager.start("draft").code == ErrorCode.PRD_INVALID_STATUS

    def test_must_run_from_main_worktree(self, make_manager, git_repo):
        other = WorktreeManager().create_worktree("side", "..", git_repo)
        manager = make_manager(cwd=other.path)

        assert manager.start("feat-x").code == ErrorCode.NOT_MAIN_WORKTREE

    def test_backend_unavailable(self, manager, backend, git_repo):
        backend.available = False

        result = manager.start("feat-x")

        assert result.code == ErrorCode.SESSION_BACKEND_UNAVAILABLE
        assert not (git_repo.parent / "feat-x").exists()

    def test_wrong_branch_at_worktree_path(self, manager, git_repo):
        git(git_repo, "worktree", "add", "-b", "other", str(git_repo.parent / "feat-x"))

        result = manager.start("feat-x")

        assert result.code == ErrorCode.WORKTREE_WRONG_BRANCH
        assert result.error.details["actual"] == "other"

    def test_custom_worktree_command(self, make_manager, git_repo, backend):
        manager = make_manager(worktree_create_cmd="wt new {name} --path {path} --branch {branch}")

        run = manager.start("feat-x").data

        path = (git_repo.parent / "feat-x").resolve()
        assert not path.exists()
        assert backend.panes[run.pane_id].command.startswith(
            f"wt new feat-x --path {path} --branch feat-x && cd {path} && ralph start feat-x"
        )

    def test_custom_command_skipped_when_worktree_exists(self, make_manager, git_repo, backend):
        WorktreeManager().create_worktree("feat-x", "..", git_repo)
        manager = make_manager(worktree_create_cmd="wt new {name}")

        run = manager.start("feat-x").data

        assert not backend.panes[run.pane_id].command.startswith("wt new")

    def test_lost_claim_destroys_new_pane(self, manager, backend, monkeypatch):
        # Another process registered the run after our reconcile
        monkeypatch.setattr(manager.ledger, "reconcile", lambda _backend: [])
        manager.ledger.upsert(RunInstance("feat-x", "/elsewhere", "feat-x", "%99"))

        result = manager.start("feat-x")

        assert result.code == ErrorCode.ALREADY_RUNNING
        assert backend.panes == {}
        assert manager.ledger.get("feat-x").pane_id == "%99"

    def test_result_serializes(self, manager):
        data = manager.start("feat-x").to_dict()

        assert data["ok"] is True
        assert data["data"]["prdName"] == "feat-x"
        assert data["data"]["status"] == "running"


class TestStopAndTest:

    def test_stop_sends_interrupt(self, manager, backend):
        run = manager.start("feat-x").data

        result = manager.stop("feat-x")

        assert result.ok
        assert result.data.status == RunStatus.STOPPED
        assert backend.interrupts == [run.pane_id]
        # Interrupt, not kill
        assert backend.is_pane_alive(run.pane_id)

    def test_stop_unknown(self, manager):
        assert manager.stop("feat-x").code == ErrorCode.NOT_RUNNING

    def test_stop_all_only_running(self, manager, store, backend):
        store.add("feat-y")
        first = manager.start("feat-x").data
        manager.start("feat-y")
        backend.kill_pane(first.pane_id)

        result = manager.stop_all()

        assert result.data == ["feat-y"]
        assert manager.ledger.get("feat-x").status == RunStatus.STALE

    def test_test_replaces_pane_and_keeps_identity(self, manager, backend):
        started = manager.start("feat-x").data

        result = manager.test("feat-x", TestOptions())

        assert result.ok
        tested = result.data
        assert tested.pane_id != started.pane_id
        assert backend.pane(tested.pane_id).title == "test:feat-x"
        assert tested.worktree == started.worktree
        assert tested.branch == started.branch
        assert tested.status == RunStatus.RUNNING
        assert started.pane_id in backend.interrupts

        persisted = manager.ledger.get("feat-x")
        assert persisted.pane_id == tested.pane_id
        assert persisted.worktree == started.worktree
        assert "ralph test feat-x" in backend.panes[tested.pane_id].command

    def test_test_requires_entry(self, manager):
        assert manager.test("feat-x").code == ErrorCode.NOT_RUNNING


class TestListAndQueries:

    def test_list_reports_killed_pane_as_stale_and_persists(self, manager, backend):
        run = manager.start("feat-x").data
        backend.kill_pane(run.pane_id)

        result = manager.list()

        assert [r.status for r in result.data] == [RunStatus.STALE]
        persisted = json.loads(manager.ledger.state_path.read_text())
        assert persisted["runs"]["feat-x"]["status"] == "stale"

    def test_get(self, manager):
        assert manager.get("feat-x").code == ErrorCode.NOT_RUNNING
        manager.start("feat-x")
        assert manager.get("feat-x").data.prd_name == "feat-x"

    def test_attach_focuses_pane(self, manager, backend):
        run = manager.start("feat-x").data

        assert manager.attach("feat-x").ok
        assert backend.focused == run.pane_id

    def test_logs_tail(self, manager, backend):
        run = manager.start("feat-x").data
        backend.emit_output(run.pane_id, "a", "b", "c")

        assert manager.logs("feat-x", tail=2).data == "b\nc"

    def test_logs_capture_failure(self, manager, backend):
        run = manager.start("feat-x").data
        backend.destroy_pane(run.pane_id)

        result = manager.logs("feat-x")

        assert result.code == ErrorCode.CAPTURE_FAILED
        assert result.error.details["paneId"] == run.pane_id

    def test_conflicts(self, manager, git_repo):
        run = manager.start("feat-x").data
        commit_file(Path(run.worktree), "README.md", "feature side\n")
        commit_file(git_repo, "README.md", "main side\n")

        reports = manager.conflicts().data

        assert len(reports) == 1
        assert reports[0].prd_name == "feat-x"
        assert reports[0].conflict_files == ["README.md"]


class TestMerge:

    def test_in_process_merge(self, manager, git_repo, backend):
        run = manager.start("feat-x").data
        commit_file(Path(run.worktree), "feature.txt", "feature\n")
        manager.stop("feat-x")
        rebalances = backend.rebalance_calls

        result = manager.merge("feat-x")

        assert result.ok, result.error
        report = result.data
        assert report.strategy == "git"
        assert report.merged == ["feat-x"]
        assert report.target_branch == "main"
        assert "feature.txt" in report.files_changed
        assert (git_repo / "feature.txt").exists()
        assert not Path(run.worktree).exists()
        assert not branch_exists(git_repo, "feat-x")
        assert manager.ledger.get("feat-x") is None
        assert run.pane_id not in backend.panes
        assert backend.rebalance_calls == rebalances + 1

    def test_merge_conflict_leaves_no_merge_in_progress(self, manager, git_repo, backend):
        run = manager.start("feat-x").data
        commit_file(Path(run.worktree), "README.md", "feature side\n")
        commit_file(git_repo, "README.md", "main side\n")
        rebalances = backend.rebalance_calls

        result = manager.merge("feat-x")

        assert result.code == ErrorCode.MERGE_CONFLICT
        assert result.error.details["conflictFiles"] == ["README.md"]
        assert not (git_repo / ".git" / "MERGE_HEAD").exists()
        assert manager.ledger.get("feat-x") is not None
        assert backend.rebalance_calls == rebalances + 1

    def test_merge_dirty_main(self, manager, git_repo):
        run = manager.start("feat-x").data
        commit_file(Path(run.worktree), "feature.txt", "feature\n")
        (git_repo / "README.md").write_text("local edit\n")

        assert manager.merge("feat-x").code == ErrorCode.MAIN_DIRTY

    def test_merge_dirty_worktree(self, manager):
        run = manager.start("feat-x").data
        (Path(run.worktree) / "wip.txt").write_text("wip")

        assert manager.merge("feat-x").code == ErrorCode.WORKTREE_DIRTY

    def test_merge_missing_worktree(self, manager):
        assert manager.merge("feat-x").code == ErrorCode.WORKTREE_NOT_FOUND

    def test_agent_merge(self, make_manager, git_repo, backend):
        executor = FakeAgentExecutor()
        agents = {"claude": AgentConfig(command="claude", args=("--print",))}
        manager = make_manager(executor=executor, merge_agent="claude", agents=agents)
        run = manager.start("feat-x").data
        seen = []

        result = manager.merge("feat-x", MergeOptions(on_output=seen.append))

        assert result.ok, result.error
        assert result.data.strategy == "agent"
        assert result.data.target_branch == "main"
        call = executor.calls[0]
        assert call["agent"] == agents["claude"]
        assert Path(call["cwd"]).resolve() == git_repo.resolve()
        assert "`feat-x`" in call["prompt"]
        assert run.worktree in call["prompt"]
        assert "`main`" in call["prompt"]
        assert seen == ["merging\n"]
        assert manager.ledger.get("feat-x") is None
        assert run.pane_id not in backend.panes

    def test_agent_merge_includes_probe_results(self, make_manager, git_repo):
        executor = FakeAgentExecutor()
        manager = make_manager(
            executor=executor, merge_agent="claude", agents={"claude": AgentConfig("claude")}
        )
        run = manager.start("feat-x").data
        commit_file(Path(run.worktree), "README.md", "feature side\n")
        commit_file(git_repo, "README.md", "main side\n")

        result = manager.merge("feat-x")

        assert result.data.conflicts == {"feat-x": ["README.md"]}
        assert "Expected conflicts in: README.md" in executor.calls[0]["prompt"]

    def test_agent_merge_failure_keeps_entry(self, make_manager, backend):
        manager = make_manager(
            executor=FakeAgentExecutor(exit_code=1),
            merge_agent="claude",
            agents={"claude": AgentConfig("claude")},
        )
        manager.start("feat-x")
        rebalances = backend.rebalance_calls

        result = manager.merge("feat-x")

        assert result.code == ErrorCode.MERGE_FAILED
        assert result.error.details["exitCode"] == 1
        assert manager.ledger.get("feat-x") is not None
        assert backend.rebalance_calls == rebalances + 1

    def test_agent_merge_aborted(self, make_manager):
        manager = make_manager(
            executor=FakeAgentExecutor(exit_code=143, aborted=True),
            merge_agent="claude",
            agents={"claude": AgentConfig("claude")},
        )
        manager.start("feat-x")

        assert manager.merge("feat-x").code == ErrorCode.MERGE_ABORTED

    def test_unknown_merge_agent(self, manager):
        manager.start("feat-x")

        result = manager.merge("feat-x", MergeOptions(agent="nobody"))

        assert result.code == ErrorCode.AGENT_NOT_FOUND

    def test_primary_branch_override(self, make_manager):
        executor = FakeAgentExecutor()
        manager = make_manager(
            executor=executor,
            merge_agent="claude",
            agents={"claude": AgentConfig("claude")},
            primary_branch="develop",
        )
        manager.start("feat-x")

        assert manager.merge("feat-x").data.target_branch == "develop"
        assert "into `develop`" in executor.calls[0]["prompt"]

    def test_merge_all_with_agent_batches_entries(self, make_manager, store, backend):
        executor = FakeAgentExecutor()
        manager = make_manager(
            executor=executor, merge_agent="claude", agents={"claude": AgentConfig("claude")}
        )
        store.add("feat-y")
        store.add("feat-z")
        manager.start("feat-x")
        manager.start("feat-y")
        manager.start("feat-z")
        manager.stop("feat-x")
        manager.stop("feat-y")

        result = manager.merge_all()

        assert result.ok, result.error
        assert sorted(result.data.merged) == ["feat-x", "feat-y"]
        assert len(executor.calls) == 1
        prompt = executor.calls[0]["prompt"]
        assert "`feat-x`" in prompt and "`feat-y`" in prompt
        assert "`feat-z`" not in prompt
        assert manager.ledger.get("feat-x") is None
        assert manager.ledger.get("feat-y") is None
        assert manager.ledger.get("feat-z") is not None

    def test_merge_all_in_process(self, manager, store, git_repo):
        store.add("feat-y")
        for name in ("feat-x", "feat-y"):
            run = manager.start(name).data
            commit_file(Path(run.worktree), f"{name}.txt", name)
            manager.stop(name)

        result = manager.merge_all()

        assert sorted(result.data.merged) == ["feat-x", "feat-y"]
        assert (git_repo / "feat-x.txt").exists()
        assert (git_repo / "feat-y.txt").exists()
        assert manager.ledger.get_all() == []


class TestCleanup:

    def test_cleanup_tears_down_everything(self, manager, git_repo, backend):
        run = manager.start("feat-x").data

        assert manager.cleanup("feat-x").ok

        assert not Path(run.worktree).exists()
        assert not branch_exists(git_repo, "feat-x")
        assert manager.ledger.get("feat-x") is None
        assert backend.panes == {}

    def test_cleanup_twice_is_success(self, manager):
        manager.start("feat-x")

        assert manager.cleanup("feat-x").ok
        assert manager.cleanup("feat-x").ok

    def test_cleanup_all_skips_running(self, manager, store, backend):
        store.add("feat-y")
        store.add("feat-z")
        dead = manager.start("feat-x").data
        manager.start("feat-y")
        manager.start("feat-z")
        backend.kill_pane(dead.pane_id)
        manager.stop("feat-y")

        result = manager.cleanup_all()

        assert sorted(result.data) == ["feat-x", "feat-y"]
        assert [r.prd_name for r in manager.ledger.get_all()] == ["feat-z"]


class TestRecover:

    def test_recover_classifies_entries(self, manager, store, backend, git_repo):
        store.add("alive")
        store.add("dead")
        store.add("gone")
        manager.start("alive")
        dead = manager.start("dead").data
        gone = manager.start("gone").data
        backend.kill_pane(dead.pane_id)
        WorktreeManager().remove_worktree(Path(gone.worktree), "gone", git_repo)

        report = manager.recover().data

        assert [r.prd_name for r in report.recovered] == ["alive"]
        assert [o.prd_name for o in report.orphaned] == ["dead"]
        assert report.cleaned == ["gone"]
        assert manager.ledger.get("gone") is None
        assert manager.ledger.get("dead").status == RunStatus.STALE
        assert manager.ledger.get("alive").status == RunStatus.RUNNING

    def test_recover_finds_worktree_without_entry(self, manager, store, git_repo):
        store.add("lost")
        path = WorktreeManager().create_worktree("lost", "..", git_repo).path
        # A worktree for a branch that is not a PRD is left alone
        WorktreeManager().create_worktree("unrelated", "..", git_repo)

        report = manager.recover().data

        assert [(o.prd_name, Path(o.worktree).resolve()) for o in report.orphaned] == [
            ("lost", path.resolve())
        ]
        assert report.cleaned == []

    def test_recover_keeps_stopped_run_stopped(self, manager, backend):
        run = manager.start("feat-x").data
        manager.stop("feat-x")

        report = manager.recover().data

        assert [r.prd_name for r in report.recovered] == ["feat-x"]
        assert manager.ledger.get("feat-x").status == RunStatus.STOPPED
        assert backend.is_pane_alive(run.pane_id)

    def test_recover_promotes_stale_run_with_live_pane(self, manager):
        manager.start("feat-x")
        manager.ledger.update_status("feat-x", RunStatus.STALE)

        manager.recover()

        assert manager.ledger.get("feat-x").status == RunStatus.RUNNING

    def test_recover_probes_panes_without_holding_ledger_lock(self, manager, backend, monkeypatch):
        manager.start("feat-x")
        original = backend.is_pane_alive
        lock_held = []

        def check(pane_id):
            lock_held.append(manager.ledger._lock.is_locked)
            return original(pane_id)

        monkeypatch.setattr(backend, "is_pane_alive", check)

        manager.recover()

        assert lock_held == [False]

    def test_recover_skips_entry_moved_to_new_pane(self, manager, backend, monkeypatch):
        first = manager.start("feat-x").data
        backend.kill_pane(first.pane_id)
        original = backend.is_pane_alive

        def restart_then_check(pane_id):
            # A concurrent test run moves the entry to a new pane
            manager.test("feat-x")
            return original(pane_id)

        monkeypatch.setattr(backend, "is_pane_alive", restart_then_check)

        manager.recover()

        run = manager.ledger.get("feat-x")
        assert run.pane_id != first.pane_id
        assert run.status == RunStatus.RUNNING
