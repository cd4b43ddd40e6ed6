"""
Agent executor - runs an external agent process for merge/fix delegation.

The swarm only cares whether the agent exited cleanly or was aborted; the
output is passed through for display and never interpreted.
"""

import logging
import subprocess
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .config import AgentConfig
from .results import ErrorCode, SwarmError

logger = logging.getLogger(__name__)

OutputCallback = Callable[[str], None]


class AgentError(SwarmError):
    """The agent process could not be started."""

    code = ErrorCode.AGENT_FAILED


@dataclass
class AgentResult:
    """Result of running an agent"""
    exit_code: int
    aborted: bool = False
    output: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.aborted


class AgentExecutor(ABC):
    """Runs an agent with a prompt and reports its exit status."""

    @abstractmethod
    def run(
        self,
        prompt: str,
        agent: AgentConfig,
        cwd: Optional[Path] = None,
        on_output: Optional[OutputCallback] = None,
        abort: Optional[threading.Event] = None,
    ) -> AgentResult:
        """
        Run the agent to completion.

        Args:
            prompt: Instructions, written to the agent's stdin
            agent: Command and arguments to spawn
            cwd: Working directory for the agent
            on_output: Called with each line of output as it arrives
            abort: When set, the agent is terminated and the result is aborted

        Raises:
            AgentError: the agent binary could not be started
        """
        pass


class SubprocessAgentExecutor(AgentExecutor):
    """
    Runs agents as local subprocesses.

    The prompt goes to stdin, stdout and stderr are merged and streamed line
    by line to on_output.
    """

    def __init__(self, terminate_grace: float = 5.0):
        self.terminate_grace = terminate_grace

    def run(
        self,
        prompt: str,
        agent: AgentConfig,
        cwd: Optional[Path] = None,
        on_output: Optional[OutputCallback] = None,
        abort: Optional[threading.Event] = None,
    ) -> AgentResult:
        cmd = [agent.command, *agent.args]
        logger.debug(f"Running agent: {' '.join(cmd)} (cwd={cwd})")

        try:
            proc = subprocess.Popen(
                cmd,
                cwd=str(cwd) if cwd else None,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except FileNotFoundError as e:
            raise AgentError(
                f"Agent binary not found: {agent.command}. Ensure it is installed and in PATH.",
                code=ErrorCode.AGENT_NOT_FOUND,
            ) from e
        except OSError as e:
            raise AgentError(f"Failed to start agent {agent.command}: {e}") from e

        aborted = threading.Event()
        watcher = None
        if abort is not None:
            watcher = threading.Thread(
                target=self._watch_abort, args=(proc, abort, aborted), daemon=True
            )
            watcher.start()

        try:
            proc.stdin.write(prompt)
            proc.stdin.close()
        except BrokenPipeError:
            logger.debug("Agent closed stdin before reading the whole prompt")

        lines = []
        for line in proc.stdout:
            lines.append(line)
            if on_output:
                on_output(line)

        exit_code = proc.wait()
        if watcher is not None:
            # The watcher exits on its own once the process is gone
            watcher.join(timeout=1.0)

        return AgentResult(
            exit_code=exit_code,
            aborted=aborted.is_set(),
            output="".join(lines),
        )

    def _watch_abort(
        self,
        proc: subprocess.Popen,
        abort: threading.Event,
        aborted: threading.Event,
    ) -> None:
        while proc.poll() is None:
            if abort.wait(timeout=0.2):
                if proc.poll() is None:
                    logger.info(f"Aborting agent (pid {proc.pid})")
                    aborted.set()
                    proc.terminate()
                    try:
                        proc.wait(timeout=self.terminate_grace)
                    except subprocess.TimeoutExpired:
                        proc.kill()
                return
