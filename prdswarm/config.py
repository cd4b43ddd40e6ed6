"""
Swarm configuration.

Loaded from <repo_root>/.prdswarm/config.yaml:

    swarm:
      worktree_parent: ".."
      panes_per_window: 4
      pane_close_timeout: 30
      worktree_create_cmd: "wt new {name} --path {path}"
      primary_branch: main
      merge_agent: claude
      prd_command: ralph
    agents:
      claude:
        command: claude
        args: ["--print", "--dangerously-skip-permissions"]

Environment variables (PRDSWARM_*) override file values.
"""

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .results import ErrorCode, SwarmError

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".prdswarm"
CONFIG_FILE_NAME = "config.yaml"

ENV_OVERRIDES = {
    "PRDSWARM_WORKTREE_PARENT": ("worktree_parent", str),
    "PRDSWARM_PANES_PER_WINDOW": ("panes_per_window", int),
    "PRDSWARM_PANE_CLOSE_TIMEOUT": ("pane_close_timeout", int),
    "PRDSWARM_MERGE_AGENT": ("merge_agent", str),
    "PRDSWARM_PRIMARY_BRANCH": ("primary_branch", str),
}


class ConfigError(SwarmError):
    """Configuration is malformed or out of range."""

    code = ErrorCode.CONFIG_INVALID


@dataclass(frozen=True)
class AgentConfig:
    """How to spawn an agent process."""

    command: str
    args: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AgentConfig":
        if "command" not in data:
            raise ConfigError("Agent config requires a 'command'")
        return cls(command=str(data["command"]), args=tuple(str(a) for a in data.get("args", [])))


@dataclass(frozen=True)
class SwarmConfig:
    """Immutable swarm configuration, supplied by the caller."""

    worktree_parent: str = ".."
    panes_per_window: int = 4
    pane_close_timeout: int = 30
    # Custom worktree creation. Placeholders: {name}, {path}, {branch}
    worktree_create_cmd: Optional[str] = None
    primary_branch: Optional[str] = None
    merge_agent: Optional[str] = None
    agents: Mapping[str, AgentConfig] = field(default_factory=dict)
    prd_command: str = "ralph"
    session_prefix: str = "swarm"
    tmux_timeout: float = 10.0
    git_timeout: float = 30.0

    def __post_init__(self) -> None:
        if self.panes_per_window < 1:
            raise ConfigError(f"panes_per_window must be >= 1 (got {self.panes_per_window})")
        if self.pane_close_timeout < 0:
            raise ConfigError(f"pane_close_timeout must be >= 0 (got {self.pane_close_timeout})")
        if self.tmux_timeout <= 0 or self.git_timeout <= 0:
            raise ConfigError("Command timeouts must be positive")

    def session_name(self, project_name: str) -> str:
        return f"{self.session_prefix}-{project_name}"

    def get_agent(self, name: str) -> Optional[AgentConfig]:
        return self.agents.get(name)


def get_config_path(repo_root: Path) -> Path:
    return Path(repo_root) / CONFIG_DIR_NAME / CONFIG_FILE_NAME


def _read_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Syntax error in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config root in {path} must be a mapping")
    return data


def load_swarm_config(
    repo_root: Path,
    path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> SwarmConfig:
    """
    Load SwarmConfig from YAML with environment overrides.

    Missing file -> defaults. Environment wins over the file.
    """
    config_path = path or get_config_path(repo_root)
    data = _read_yaml(config_path)

    swarm_section = data.get("swarm") or {}
    if not isinstance(swarm_section, dict):
        raise ConfigError("'swarm' section must be a mapping")

    known = {f.name for f in fields(SwarmConfig)} - {"agents"}
    values: dict[str, Any] = {}
    for key, value in swarm_section.items():
        if key in known:
            values[key] = value
        else:
            logger.warning(f"Ignoring unknown swarm config key: {key}")

    agents_section = data.get("agents") or {}
    if not isinstance(agents_section, dict):
        raise ConfigError("'agents' section must be a mapping")
    agents = {name: AgentConfig.from_dict(spec or {}) for name, spec in agents_section.items()}

    try:
        config = SwarmConfig(agents=agents, **values)
    except TypeError as e:
        raise ConfigError(f"Invalid swarm config in {config_path}: {e}") from e

    return apply_env_overrides(config, os.environ if env is None else env)


def apply_env_overrides(config: SwarmConfig, env: Mapping[str, str]) -> SwarmConfig:
    updates: dict[str, Any] = {}
    for var, (attr, cast) in ENV_OVERRIDES.items():
        raw = env.get(var)
        if not raw:
            continue
        try:
            updates[attr] = cast(raw)
        except ValueError as e:
            raise ConfigError(f"{var}={raw!r} is not a valid {cast.__name__}") from e
    return replace(config, **updates) if updates else config
