#!/usr/bin/env python3
"""
prdswarm CLI

Thin command-line surface over SwarmManager. Every command prints the
operation's structured result (--json) or a short human rendering, and exits
non-zero when the operation failed.
"""

import argparse
import json
import logging
import os
import subprocess
import sys
from pathlib import Path

from . import __version__
from .config import ConfigError, load_swarm_config
from .git_client import GitClient
from .paths import SwarmContext
from .results import OperationResult
from .session.backend_selector import BackendSelector
from .swarm_manager import MergeOptions, StartOptions, SwarmManager, TestOptions
from .worktree_manager import WorktreeManager

logger = logging.getLogger(__name__)


def build_manager(args) -> SwarmManager:
    """Wire a SwarmManager from command-line arguments and the repo config."""
    context = SwarmContext.detect(project_name=args.project, cwd=Path(args.dir))
    config = load_swarm_config(context.repo_root)
    backend = BackendSelector().create(
        args.backend,
        panes_per_window=config.panes_per_window,
        command_timeout=config.tmux_timeout,
    )
    worktrees = WorktreeManager(GitClient(timeout=config.git_timeout))
    return SwarmManager(context, config, backend, worktrees=worktrees)


def emit(args, result: OperationResult, render=None) -> None:
    """Print a result and exit 1 if it failed."""
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    elif result.ok:
        if render:
            render(result.data)
    else:
        print(f"Error [{result.error.code.value}]: {result.error.message}")
        details = result.error.details
        if details.get("dependencies"):
            print(f"  Unmet: {', '.join(details['dependencies'])}")
        if details.get("conflictFiles"):
            for path in details["conflictFiles"]:
                print(f"  conflict: {path}")

    if not result.ok:
        sys.exit(1)


def _print_run(run) -> None:
    print(f"  {run.prd_name:<24} {run.status.value:<10} pane={run.pane_id:<6} {run.worktree}")


def cmd_start(args):
    """Start PRDs in new worktrees and panes."""
    manager = build_manager(args)
    for name in args.prds:
        result = manager.start(name, StartOptions(agent=args.agent))
        emit(args, result, lambda run: print(f"✓ Started {run.prd_name} in pane {run.pane_id}"))


def cmd_stop(args):
    manager = build_manager(args)
    if args.all:
        emit(args, manager.stop_all(), lambda names: print(f"✓ Stopped: {', '.join(names) or 'nothing running'}"))
        return
    if not args.prd:
        print("Error: give a PRD name or --all")
        sys.exit(1)
    emit(args, manager.stop(args.prd), lambda run: print(f"✓ Stopped {run.prd_name}"))


def cmd_test(args):
    manager = build_manager(args)
    result = manager.test(args.prd, TestOptions(agent=args.agent))
    emit(args, result, lambda run: print(f"✓ Testing {run.prd_name} in pane {run.pane_id}"))


def cmd_merge(args):
    """Merge PRD branches back into the primary branch."""
    manager = build_manager(args)
    on_output = None if args.json else (lambda line: print(line, end=""))
    options = MergeOptions(agent=args.agent, on_output=on_output)

    def render(report):
        merged = ", ".join(report.merged) or "nothing"
        print(f"✓ Merged into {report.target_branch} ({report.strategy}): {merged}")
        if report.commit_sha:
            print(f"  Commit: {report.commit_sha[:12]}")
        for name, reason in {**report.skipped, **report.failed}.items():
            print(f"  ✗ {name}: {reason}")

    if args.all:
        emit(args, manager.merge_all(options), render)
        return
    if not args.prd:
        print("Error: give a PRD name or --all")
        sys.exit(1)
    emit(args, manager.merge(args.prd, options), render)


def cmd_cleanup(args):
    manager = build_manager(args)
    if args.all:
        emit(args, manager.cleanup_all(), lambda names: print(f"✓ Cleaned up: {', '.join(names) or 'nothing'}"))
        return
    if not args.prd:
        print("Error: give a PRD name or --all")
        sys.exit(1)
    emit(args, manager.cleanup(args.prd), lambda _: print(f"✓ Cleaned up {args.prd}"))


def cmd_recover(args):
    manager = build_manager(args)

    def render(report):
        print(f"Recovered: {len(report.recovered)}")
        for run in report.recovered:
            _print_run(run)
        print(f"Orphaned: {len(report.orphaned)}")
        for orphan in report.orphaned:
            print(f"  {orphan.prd_name:<24} {orphan.worktree}")
        print(f"Cleaned: {', '.join(report.cleaned) or 'none'}")

    emit(args, manager.recover(), render)


def cmd_list(args):
    manager = build_manager(args)

    def render(runs):
        if not runs:
            print("No runs.")
            return
        for run in runs:
            _print_run(run)

    emit(args, manager.list(), render)


def cmd_logs(args):
    manager = build_manager(args)
    emit(args, manager.logs(args.prd, tail=args.tail), print)


def cmd_attach(args):
    """Focus a PRD's pane, attaching to the session when outside tmux."""
    manager = build_manager(args)
    result = manager.attach(args.prd)
    emit(args, result)
    if not args.json and manager.backend.name == "tmux" and "TMUX" not in os.environ:
        subprocess.run(["tmux", "attach-session", "-t", manager.session_name])


def cmd_conflicts(args):
    manager = build_manager(args)

    def render(reports):
        if not reports:
            print("✓ No conflicts expected")
            return
        for report in reports:
            print(f"✗ {report.prd_name}: {report.summary}")
            for path in report.conflict_files:
                print(f"    {path}")

    emit(args, manager.conflicts(), render)


def configure_logging(verbose: bool) -> None:
    level_name = "DEBUG" if verbose else os.environ.get("PRDSWARM_LOG_LEVEL", "WARNING")
    logging.basicConfig(
        level=getattr(logging, level_name.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="prdswarm",
        description="Run PRDs in parallel, one git worktree and one tmux pane each",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  prdswarm start auth-flow billing
  prdswarm list
  prdswarm logs auth-flow --tail 50
  prdswarm test auth-flow
  prdswarm merge --all
  prdswarm recover
        """
    )

    parser.add_argument('--dir', '-d', default='.', help='Working directory (default: current)')
    parser.add_argument('--project', '-p', help='Project name (default: repository directory name)')
    parser.add_argument('--backend', choices=['tmux', 'memory'], help='Session backend (default: tmux)')
    parser.add_argument('--json', action='store_true', help='Print the structured result as JSON')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')
    parser.add_argument('--version', '-V', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    start_parser = subparsers.add_parser('start', help='Start PRDs in new worktrees')
    start_parser.add_argument('prds', nargs='+', help='PRD names')
    start_parser.add_argument('--agent', help='Agent passed through to the develop action')
    start_parser.set_defaults(func=cmd_start)

    stop_parser = subparsers.add_parser('stop', help='Interrupt a running PRD')
    stop_parser.add_argument('prd', nargs='?', help='PRD name')
    stop_parser.add_argument('--all', action='store_true', help='Stop every running PRD')
    stop_parser.set_defaults(func=cmd_stop)

    test_parser = subparsers.add_parser('test', help='Run the test action in the PRD worktree')
    test_parser.add_argument('prd', help='PRD name')
    test_parser.add_argument('--agent', help='Agent passed through to the test action')
    test_parser.set_defaults(func=cmd_test)

    merge_parser = subparsers.add_parser('merge', help='Merge PRD branches and tear down their runs')
    merge_parser.add_argument('prd', nargs='?', help='PRD name')
    merge_parser.add_argument('--all', action='store_true', help='Merge every completed/stopped/stale run')
    merge_parser.add_argument('--agent', help='Merge agent (overrides swarm.merge_agent)')
    merge_parser.set_defaults(func=cmd_merge)

    cleanup_parser = subparsers.add_parser('cleanup', help='Tear down runs without merging')
    cleanup_parser.add_argument('prd', nargs='?', help='PRD name')
    cleanup_parser.add_argument('--all', action='store_true', help='Clean up every stale/stopped/completed run')
    cleanup_parser.set_defaults(func=cmd_cleanup)

    recover_parser = subparsers.add_parser('recover', help='Reconcile the ledger with panes and worktrees')
    recover_parser.set_defaults(func=cmd_recover)

    list_parser = subparsers.add_parser('list', help='List runs with live status')
    list_parser.set_defaults(func=cmd_list)

    logs_parser = subparsers.add_parser('logs', help='Show recent pane output')
    logs_parser.add_argument('prd', help='PRD name')
    logs_parser.add_argument('--tail', '-n', type=int, default=100, help='Number of lines (default: 100)')
    logs_parser.set_defaults(func=cmd_logs)

    attach_parser = subparsers.add_parser('attach', help="Focus a PRD's pane")
    attach_parser.add_argument('prd', help='PRD name')
    attach_parser.set_defaults(func=cmd_attach)

    conflicts_parser = subparsers.add_parser('conflicts', help='Probe running branches for merge conflicts')
    conflicts_parser.set_defaults(func=cmd_conflicts)

    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except (ConfigError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
