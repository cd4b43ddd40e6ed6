"""
SwarmManager - the main API for parallel PRD execution.

Consumer-agnostic: a CLI, a web service or a test builds one with a context,
a config and a session backend, then calls structured methods. Every public
method returns an OperationResult and never raises a SwarmError.

Per-PRD state machine:

    absent -> running -> {stopped, stale} -> absent   (merge / cleanup)
    running -> running                                 (test: same worktree, new pane)
"""

import functools
import logging
import shlex
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .agent_executor import AgentExecutor, SubprocessAgentExecutor
from .config import SwarmConfig
from .paths import SwarmContext
from .prd_store import FilePRDStore, PRDStore
from .results import ErrorCode, OperationResult, SwarmError, err, from_exception, ok
from .run_ledger import AlreadyRunningError, RunInstance, RunLedger, RunStatus
from .session.interface import PaneOptions, SessionBackend
from .worktree_manager import (
    WorktreeManager,
    interpolate_worktree_cmd,
    resolve_worktree_path,
)

logger = logging.getLogger(__name__)

FINISHED_SENTINEL = "[finished]"
MERGEABLE_STATUSES = (RunStatus.COMPLETED, RunStatus.STOPPED, RunStatus.STALE)
CLEANABLE_STATUSES = (RunStatus.STALE, RunStatus.STOPPED, RunStatus.COMPLETED)


@dataclass
class StartOptions:
    agent: Optional[str] = None


@dataclass
class TestOptions:
    __test__ = False  # not a pytest class

    agent: Optional[str] = None


@dataclass
class MergeOptions:
    """Options for merge / merge_all."""
    # Agent name from config.agents; overrides config.merge_agent
    agent: Optional[str] = None
    on_output: Optional[Callable[[str], None]] = None
    abort: Optional[threading.Event] = None


@dataclass
class MergeReport:
    """What a merge did."""
    merged: List[str]
    target_branch: str
    strategy: str  # "agent" or "git"
    commit_sha: Optional[str] = None
    files_changed: List[str] = field(default_factory=list)
    # Branches the pre-flight probe expected to conflict
    conflicts: Dict[str, List[str]] = field(default_factory=dict)
    skipped: Dict[str, str] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)
    exit_code: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "merged": self.merged,
            "targetBranch": self.target_branch,
            "strategy": self.strategy,
            "commitSha": self.commit_sha,
            "filesChanged": self.files_changed,
            "conflicts": self.conflicts,
            "skipped": self.skipped,
            "failed": self.failed,
            "exitCode": self.exit_code,
        }


@dataclass
class ConflictReport:
    prd_name: str
    branch: str
    conflict_files: List[str]
    summary: str

    def to_dict(self) -> dict:
        return {
            "prdName": self.prd_name,
            "branch": self.branch,
            "conflictFiles": self.conflict_files,
            "summary": self.summary,
        }


@dataclass
class OrphanInfo:
    """A worktree with no live pane, or a worktree with no ledger entry."""
    prd_name: str
    worktree: str
    branch: str

    def to_dict(self) -> dict:
        return {"prdName": self.prd_name, "worktree": self.worktree, "branch": self.branch}


@dataclass
class RecoverReport:
    recovered: List[RunInstance] = field(default_factory=list)
    orphaned: List[OrphanInfo] = field(default_factory=list)
    cleaned: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "recovered": [r.to_dict() for r in self.recovered],
            "orphaned": [o.to_dict() for o in self.orphaned],
            "cleaned": self.cleaned,
        }


@dataclass
class _MergeTarget:
    prd_name: str
    branch: str
    worktree: str
    conflict_files: List[str] = field(default_factory=list)


def build_pane_command(
    prefix: str,
    prd_command: str,
    action: str,
    prd_name: str,
    agent: Optional[str],
    close_timeout: int,
) -> str:
    """
    Command run inside a pane: enter the worktree, run the action, print the
    completion sentinel, then idle so the output stays readable.
    """
    agent_flag = f" --agent {shlex.quote(agent)}" if agent else ""
    return (
        f"{prefix} && {prd_command} {action} {shlex.quote(prd_name)}{agent_flag}; "
        f'echo "{FINISHED_SENTINEL}"; read -t {close_timeout} || true'
    )


def build_merge_prompt(targets: List[_MergeTarget], target_branch: str, main_worktree: Path) -> str:
    """Instructions for a merge agent processing one or more branches in order."""
    sections = []
    for index, target in enumerate(targets, start=1):
        if target.conflict_files:
            probe = "Expected conflicts in: " + ", ".join(target.conflict_files)
        else:
            probe = "No conflicts expected"
        sections.append(
            f"""### {index}. {target.prd_name}
- Branch: `{target.branch}`
- Worktree: `{target.worktree}`
- Pre-flight probe: {probe}"""
        )

    return f"""# Merge PRD branches into `{target_branch}`

You are working in the main worktree at `{main_worktree}`, on branch `{target_branch}`.
Process the branches below sequentially, in the order given.

## Branches
{chr(10).join(sections)}

## Instructions

For each branch:

1. Run `git merge --no-ff <branch>` from the main worktree
2. If there are conflicts, resolve them preserving the intent of both sides
3. Commit the merge
4. Remove the worktree: `git worktree remove --force <worktree>`
5. Prune worktree metadata: `git worktree prune`
6. Delete the branch: `git branch -D <branch>`
7. Verify the build and tests still pass before moving to the next branch

If a conflict cannot be resolved safely, run `git merge --abort` and exit with a non-zero status.
"""


def _operation(func):
    """Convert SwarmErrors raised inside a public operation into failed results."""

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except SwarmError as e:
            logger.debug(f"{func.__name__} failed: [{e.code.value}] {e.message}")
            return from_exception(e)

    return wrapper


class SwarmManager:
    """
    Orchestrates PRD runs across git worktrees and session panes.

    Composes WorktreeManager (git), a SessionBackend (panes) and RunLedger
    (persisted run metadata). All three can drift apart; every listing goes
    through ledger reconciliation, and destructive operations are idempotent.
    """

    def __init__(
        self,
        context: SwarmContext,
        config: SwarmConfig,
        backend: SessionBackend,
        prd_store: Optional[PRDStore] = None,
        agent_executor: Optional[AgentExecutor] = None,
        ledger: Optional[RunLedger] = None,
        worktrees: Optional[WorktreeManager] = None,
    ):
        self.context = context
        self.config = config
        self.backend = backend
        self.prd_store = prd_store or FilePRDStore.for_context(context)
        self.agent_executor = agent_executor or SubprocessAgentExecutor()
        self.ledger = ledger or RunLedger.for_context(context)
        self.worktrees = worktrees or WorktreeManager()
        self.session_name = config.session_name(context.project_name)

    @property
    def cwd(self) -> Path:
        return self.context.cwd

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    @_operation
    def start(self, prd_name: str, options: Optional[StartOptions] = None) -> OperationResult[RunInstance]:
        """Start a PRD in its own worktree and a new session pane."""
        options = options or StartOptions()

        failed = self._preflight(prd_name)
        if failed:
            return failed

        for run in self.ledger.reconcile(self.backend):
            if run.prd_name == prd_name and run.status == RunStatus.RUNNING:
                return err(
                    ErrorCode.ALREADY_RUNNING,
                    f'PRD "{prd_name}" is already running',
                    {"paneId": run.pane_id, "worktree": run.worktree},
                )

        unmet = self.prd_store.get_unmet_dependencies(prd_name)
        if unmet:
            return err(
                ErrorCode.DEPS_UNMET,
                f'PRD "{prd_name}" has unmet dependencies: {", ".join(unmet)}',
                {"dependencies": unmet},
            )

        if not self.backend.is_available():
            return err(
                ErrorCode.SESSION_BACKEND_UNAVAILABLE,
                f'Session backend "{self.backend.name}" is not available. '
                f"Is {self.backend.name} installed?",
            )

        worktree_path, prefix = self._prepare_worktree(prd_name)

        self.backend.ensure_session(self.session_name)
        command = build_pane_command(
            prefix,
            self.config.prd_command,
            "start",
            prd_name,
            options.agent,
            self.config.pane_close_timeout,
        )
        pane = self.backend.create_pane(self.session_name, PaneOptions(title=prd_name, command=command))

        instance = RunInstance(
            prd_name=prd_name,
            worktree=str(worktree_path),
            branch=prd_name,
            pane_id=pane.pane_id,
            window_id=pane.window_id,
            status=RunStatus.RUNNING,
        )
        try:
            self.ledger.claim(instance, session=self.session_name)
        except SwarmError as e:
            self._destroy_pane_quietly(pane.pane_id)
            if isinstance(e, AlreadyRunningError):
                logger.warning(f"Lost start race for {prd_name}; destroyed pane {pane.pane_id}")
            raise

        logger.info(f"Started {prd_name} in pane {pane.pane_id} ({worktree_path})")
        return ok(instance)

    @_operation
    def stop(self, prd_name: str) -> OperationResult[RunInstance]:
        """Interrupt a run (Ctrl-C, not a kill) and mark it stopped."""
        run = self.ledger.get(prd_name)
        if run is None:
            return self._not_running(prd_name)

        self.backend.send_interrupt(run.pane_id)
        updated = self.ledger.update_status(prd_name, RunStatus.STOPPED)
        if updated is None:
            return self._not_running(prd_name)

        logger.info(f"Stopped {prd_name} (pane {run.pane_id})")
        return ok(updated)

    @_operation
    def stop_all(self) -> OperationResult[List[str]]:
        """Stop every run that is actually running. Returns the stopped names."""
        stopped = []
        for run in self.ledger.reconcile(self.backend):
            if run.status != RunStatus.RUNNING:
                continue
            result = self.stop(run.prd_name)
            if result.ok:
                stopped.append(run.prd_name)
            else:
                logger.warning(f"Failed to stop {run.prd_name}: {result.error.message}")
        return ok(stopped)

    @_operation
    def test(self, prd_name: str, options: Optional[TestOptions] = None) -> OperationResult[RunInstance]:
        """Run the test action for a PRD in a new pane in the same worktree."""
        options = options or TestOptions()

        run = self.ledger.get(prd_name)
        if run is None:
            return err(ErrorCode.NOT_RUNNING, f'PRD "{prd_name}" has no worktree. Start it first.')
        if not Path(run.worktree).exists():
            return err(
                ErrorCode.WORKTREE_NOT_FOUND,
                f'No worktree found for PRD "{prd_name}" at {run.worktree}',
            )

        if run.status == RunStatus.RUNNING:
            try:
                self.backend.send_interrupt(run.pane_id)
            except SwarmError as e:
                logger.warning(f"Could not interrupt {prd_name} before testing: {e.message}")

        self.backend.ensure_session(self.session_name)
        command = build_pane_command(
            f"cd {shlex.quote(run.worktree)}",
            self.config.prd_command,
            "test",
            prd_name,
            options.agent,
            self.config.pane_close_timeout,
        )
        pane = self.backend.create_pane(
            self.session_name, PaneOptions(title=f"test:{prd_name}", command=command)
        )

        run.pane_id = pane.pane_id
        run.window_id = pane.window_id
        run.status = RunStatus.RUNNING
        self.ledger.upsert(run, session=self.session_name)

        logger.info(f"Testing {prd_name} in pane {pane.pane_id}")
        return ok(run)

    # ------------------------------------------------------------------
    # Merge / cleanup
    # ------------------------------------------------------------------

    @_operation
    def merge(self, prd_name: str, options: Optional[MergeOptions] = None) -> OperationResult[MergeReport]:
        """
        Merge a PRD branch into the primary branch and tear the run down.

        With a merge agent configured, the agent does the merge, conflict
        resolution and worktree/branch removal; only its exit status is
        interpreted. Without one, the merge is done in-process and aborts on
        conflict.
        """
        options = options or MergeOptions()
        try:
            run = self.ledger.get(prd_name)
            target = self._merge_target(prd_name, run)
            failed = self._check_mergeable(target)
            if failed:
                return failed

            agent_name = options.agent or self.config.merge_agent
            if agent_name:
                report = self._merge_with_agent([target], agent_name, options)
            else:
                report = self._merge_in_process(target)

            self._finish_run(prd_name, run)
            logger.info(f"Merged {prd_name} into {report.target_branch} ({report.strategy})")
            return ok(report)
        finally:
            self._rebalance_quietly()

    @_operation
    def merge_all(self, options: Optional[MergeOptions] = None) -> OperationResult[MergeReport]:
        """Merge every completed, stopped or stale run."""
        options = options or MergeOptions()
        try:
            runs = [r for r in self.ledger.reconcile(self.backend) if r.status in MERGEABLE_STATUSES]
            agent_name = options.agent or self.config.merge_agent

            targets = []
            skipped = {}
            for run in runs:
                target = self._merge_target(run.prd_name, run)
                failed = self._check_mergeable(target)
                if failed:
                    skipped[run.prd_name] = failed.error.message
                    continue
                targets.append(target)

            if agent_name:
                if not targets:
                    report = MergeReport(
                        merged=[], target_branch=self._target_branch(), strategy="agent"
                    )
                else:
                    report = self._merge_with_agent(targets, agent_name, options)
                    for target in targets:
                        self._finish_run(target.prd_name, self.ledger.get(target.prd_name))
                report.skipped = skipped
                return ok(report)

            report = MergeReport(merged=[], target_branch=self._target_branch(), strategy="git")
            for target in targets:
                try:
                    single = self._merge_in_process(target)
                except SwarmError as e:
                    logger.warning(f"Merge of {target.prd_name} failed: {e.message}")
                    report.failed[target.prd_name] = e.message
                    continue
                self._finish_run(target.prd_name, self.ledger.get(target.prd_name))
                report.merged.append(target.prd_name)
                report.commit_sha = single.commit_sha
                report.files_changed.extend(single.files_changed)
            report.skipped = skipped
            return ok(report)
        finally:
            self._rebalance_quietly()

    @_operation
    def cleanup(self, prd_name: str) -> OperationResult[None]:
        """Tear a run down without merging: pane, worktree, branch, ledger entry."""
        try:
            run = self.ledger.get(prd_name)
            target = self._merge_target(prd_name, run)

            if run is not None:
                self._destroy_pane_quietly(run.pane_id)

            self.worktrees.remove_worktree(Path(target.worktree), target.branch, self.cwd)
            self.ledger.remove(prd_name)
            logger.info(f"Cleaned up {prd_name}")
            return ok(None)
        finally:
            self._rebalance_quietly()

    @_operation
    def cleanup_all(self) -> OperationResult[List[str]]:
        """Clean up every stale, stopped or completed run. Returns cleaned names."""
        cleaned = []
        for run in self.ledger.reconcile(self.backend):
            if run.status not in CLEANABLE_STATUSES:
                continue
            result = self.cleanup(run.prd_name)
            if result.ok:
                cleaned.append(run.prd_name)
            else:
                logger.warning(f"Failed to clean up {run.prd_name}: {result.error.message}")
        return ok(cleaned)

    # ------------------------------------------------------------------
    # Recovery / queries
    # ------------------------------------------------------------------

    @_operation
    def recover(self) -> OperationResult[RecoverReport]:
        """
        Cross-reference the ledger with live panes and worktrees, both ways.

            worktree + live pane  -> recovered (running)
            worktree, dead pane   -> orphaned (stale)
            no worktree           -> cleaned (entry dropped)

        Worktrees whose branch names a known PRD but have no ledger entry are
        reported as orphaned too.

        Only a stale entry is promoted back to running; a stopped or completed
        run with a live pane is reported as recovered but keeps its status.
        Panes and worktrees are probed before the ledger lock is taken, and an
        entry that moved to another pane in the meantime is left alone.
        """
        report = RecoverReport()

        # pane id, worktree exists, pane alive
        observed = {
            name: (run.pane_id, Path(run.worktree).exists(), self._pane_alive(run.pane_id))
            for name, run in self.ledger.load().runs.items()
        }
        try:
            worktrees = self.worktrees.list_worktrees(self.cwd)
        except SwarmError as e:
            logger.warning(f"Could not list worktrees during recovery: {e.message}")
            worktrees = []

        with self.ledger.transaction() as state:
            for name, (pane_id, worktree_exists, pane_alive) in observed.items():
                run = state.runs.get(name)
                if run is None or run.pane_id != pane_id:
                    continue

                if worktree_exists and pane_alive:
                    if run.status == RunStatus.STALE:
                        run.status = RunStatus.RUNNING
                    report.recovered.append(run)
                elif worktree_exists:
                    run.status = RunStatus.STALE
                    report.orphaned.append(OrphanInfo(name, run.worktree, run.branch))
                else:
                    del state.runs[name]
                    report.cleaned.append(name)

            # The first entry is the main worktree
            for wt in worktrees[1:]:
                if wt.is_bare or wt.is_detached or not wt.branch:
                    continue
                if wt.branch in state.runs:
                    continue
                if self.prd_store.exists(wt.branch):
                    report.orphaned.append(OrphanInfo(wt.branch, str(wt.path), wt.branch))

        logger.info(
            f"Recovered {len(report.recovered)}, orphaned {len(report.orphaned)}, "
            f"cleaned {len(report.cleaned)}"
        )
        return ok(report)

    @_operation
    def list(self) -> OperationResult[List[RunInstance]]:
        """All runs, with status corrected against live panes."""
        return ok(self.ledger.reconcile(self.backend))

    @_operation
    def get(self, prd_name: str) -> OperationResult[RunInstance]:
        run = self.ledger.get(prd_name)
        if run is None:
            return self._not_running(prd_name)
        return ok(run)

    @_operation
    def attach(self, prd_name: str) -> OperationResult[None]:
        """Focus the PRD's pane (interactive consumers only)."""
        run = self.ledger.get(prd_name)
        if run is None:
            return self._not_running(prd_name)
        self.backend.focus_pane(run.pane_id)
        return ok(None)

    @_operation
    def logs(self, prd_name: str, tail: int = 100) -> OperationResult[str]:
        """Recent scrollback of the PRD's pane, at most `tail` lines."""
        run = self.ledger.get(prd_name)
        if run is None:
            return self._not_running(prd_name)
        try:
            return ok(self.backend.capture_pane(run.pane_id, tail))
        except SwarmError as e:
            return err(
                ErrorCode.CAPTURE_FAILED,
                e.message,
                {"paneId": run.pane_id, "cause": e.code.value},
            )

    @_operation
    def conflicts(self) -> OperationResult[List[ConflictReport]]:
        """Branches that would conflict if merged into the main worktree now."""
        main = self.worktrees.get_main_worktree_path(self.cwd)
        reports = []
        for run in self.ledger.reconcile(self.backend):
            check = self.worktrees.check_merge_conflicts(run.branch, main)
            if check.has_conflicts:
                reports.append(ConflictReport(
                    prd_name=run.prd_name,
                    branch=run.branch,
                    conflict_files=check.conflict_files,
                    summary=(
                        f"{len(check.conflict_files)} file(s) would conflict when merging "
                        f'"{run.branch}" into current branch'
                    ),
                ))
        return ok(reports)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _preflight(self, prd_name: str) -> Optional[OperationResult]:
        if not self.worktrees.is_main_worktree(self.cwd):
            return err(
                ErrorCode.NOT_MAIN_WORKTREE,
                "Swarm commands must be executed from the main worktree",
                {"cwd": str(self.cwd)},
            )
        if not self.prd_store.exists(prd_name):
            return err(ErrorCode.PRD_NOT_FOUND, f'PRD "{prd_name}" not found')
        if not self.prd_store.has_prd_file(prd_name):
            return err(
                ErrorCode.PRD_INVALID_STATUS,
                f'PRD "{prd_name}" only has a spec. Stories must be defined before running',
            )
        return None

    def _prepare_worktree(self, prd_name: str):
        """
        Resolve the worktree for a start and the shell prefix that enters it.

        An existing path on the right branch is reused. Otherwise a configured
        custom command creates it inside the pane, or git creates it here.
        """
        path = resolve_worktree_path(prd_name, self.config.worktree_parent, self.cwd)

        if self.config.worktree_create_cmd and not path.exists():
            custom = interpolate_worktree_cmd(
                self.config.worktree_create_cmd,
                {"name": prd_name, "path": str(path), "branch": prd_name},
            )
            return path, f"{custom} && cd {shlex.quote(str(path))}"

        created = self.worktrees.create_worktree(prd_name, self.config.worktree_parent, self.cwd)
        return created.path, f"cd {shlex.quote(str(created.path))}"

    def _merge_target(self, prd_name: str, run: Optional[RunInstance]) -> _MergeTarget:
        if run is not None:
            return _MergeTarget(prd_name, run.branch, run.worktree)
        path = resolve_worktree_path(prd_name, self.config.worktree_parent, self.cwd)
        return _MergeTarget(prd_name, prd_name, str(path))

    def _check_mergeable(self, target: _MergeTarget) -> Optional[OperationResult]:
        if not Path(target.worktree).exists():
            return err(
                ErrorCode.WORKTREE_NOT_FOUND,
                f'No worktree found for PRD "{target.prd_name}" at {target.worktree}',
            )
        if self.worktrees.has_uncommitted_changes(Path(target.worktree)):
            return err(
                ErrorCode.WORKTREE_DIRTY,
                f'Worktree for "{target.prd_name}" has uncommitted changes. Commit or stash first.',
                {"worktree": target.worktree},
            )
        return None

    def _target_branch(self) -> str:
        if self.config.primary_branch:
            return self.config.primary_branch
        main = self.worktrees.get_main_worktree_path(self.cwd)
        return self.worktrees.current_branch(main)

    def _merge_with_agent(
        self,
        targets: List[_MergeTarget],
        agent_name: str,
        options: MergeOptions,
    ) -> MergeReport:
        agent = self.config.get_agent(agent_name)
        if agent is None:
            raise SwarmError(
                f'Merge agent "{agent_name}" is not configured',
                code=ErrorCode.AGENT_NOT_FOUND,
                details={"agent": agent_name, "available": sorted(self.config.agents)},
            )

        main = self.worktrees.get_main_worktree_path(self.cwd)
        target_branch = self._target_branch()
        for target in targets:
            target.conflict_files = self.worktrees.check_merge_conflicts(target.branch, main).conflict_files

        prompt = build_merge_prompt(targets, target_branch, main)
        names = [t.prd_name for t in targets]
        logger.info(f"Delegating merge of {', '.join(names)} to agent {agent_name}")

        result = self.agent_executor.run(
            prompt,
            agent,
            cwd=main,
            on_output=options.on_output,
            abort=options.abort,
        )

        if result.aborted:
            raise SwarmError(
                f"Merge agent was aborted while merging {', '.join(names)}",
                code=ErrorCode.MERGE_ABORTED,
                details={"prdNames": names},
            )
        if result.exit_code != 0:
            raise SwarmError(
                f"Merge agent exited with code {result.exit_code}",
                code=ErrorCode.MERGE_FAILED,
                details={"prdNames": names, "exitCode": result.exit_code},
            )

        return MergeReport(
            merged=names,
            target_branch=target_branch,
            strategy="agent",
            conflicts={t.prd_name: t.conflict_files for t in targets if t.conflict_files},
            exit_code=result.exit_code,
        )

    def _merge_in_process(self, target: _MergeTarget) -> MergeReport:
        main = self.worktrees.get_main_worktree_path(self.cwd)
        target_branch = self._target_branch()
        outcome = self.worktrees.merge_worktree(target.branch, main)
        try:
            self.worktrees.remove_worktree(Path(target.worktree), target.branch, main)
        except SwarmError as e:
            # The merge commit exists; a leftover worktree is for cleanup to handle
            logger.warning(f"Merged {target.branch} but could not remove its worktree: {e.message}")
        return MergeReport(
            merged=[target.prd_name],
            target_branch=target_branch,
            strategy="git",
            commit_sha=outcome.commit_sha,
            files_changed=outcome.files_changed,
        )

    def _finish_run(self, prd_name: str, run: Optional[RunInstance]) -> None:
        if run is not None:
            self._destroy_pane_quietly(run.pane_id)
        self.ledger.remove(prd_name)

    def _pane_alive(self, pane_id: str) -> bool:
        try:
            return self.backend.is_pane_alive(pane_id)
        except SwarmError as e:
            logger.warning(f"Liveness check for pane {pane_id} failed: {e.message}")
            return False

    def _destroy_pane_quietly(self, pane_id: str) -> None:
        try:
            self.backend.destroy_pane(pane_id)
        except SwarmError as e:
            logger.warning(f"Failed to destroy pane {pane_id}: {e.message}")

    def _rebalance_quietly(self) -> None:
        try:
            self.backend.rebalance(self.session_name)
        except SwarmError as e:
            logger.warning(f"Rebalance failed: {e.message}")

    @staticmethod
    def _not_running(prd_name: str) -> OperationResult:
        return err(ErrorCode.NOT_RUNNING, f"No run found for PRD: {prd_name}")
