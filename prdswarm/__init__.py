"""
prdswarm - parallel PRD execution across git worktrees and tmux panes.

Each PRD runs in its own worktree (branch named after the PRD) inside a pane
of a shared terminal-multiplexer session. SwarmManager is the entry point.
"""

__version__ = "0.1.0"

from .config import AgentConfig, ConfigError, SwarmConfig, load_swarm_config
from .paths import SwarmContext
from .results import ErrorCode, OperationError, OperationResult, SwarmError
from .run_ledger import RunInstance, RunLedger, RunStatus
from .swarm_manager import (
    ConflictReport,
    MergeOptions,
    MergeReport,
    OrphanInfo,
    RecoverReport,
    StartOptions,
    SwarmManager,
    TestOptions,
)

__all__ = [
    "AgentConfig",
    "ConfigError",
    "ConflictReport",
    "ErrorCode",
    "MergeOptions",
    "MergeReport",
    "OperationError",
    "OperationResult",
    "OrphanInfo",
    "RecoverReport",
    "RunInstance",
    "RunLedger",
    "RunStatus",
    "StartOptions",
    "SwarmConfig",
    "SwarmContext",
    "SwarmError",
    "SwarmManager",
    "TestOptions",
    "load_swarm_config",
]
