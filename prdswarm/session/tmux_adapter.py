"""
TmuxSessionBackend - SessionBackend implemented on the tmux CLI.

Panes are packed into windows, at most `panes_per_window` per window
(default 4). Every tmux call is a one-shot subprocess bounded by a timeout.
"""

import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from ..results import ErrorCode
from .interface import PaneInfo, PaneOptions, SessionBackend, SessionError, choose_window

logger = logging.getLogger(__name__)

# Failure texts tmux prints when the target does not exist
# No server at all: older tmux says "no server running", 3.x says
# "error connecting to <socket> (No such file or directory)"
_NO_SERVER_MARKERS = ("no server running", "error connecting to")
_MISSING_SESSION_MARKERS = ("can't find session", "session not found", *_NO_SERVER_MARKERS)
_MISSING_PANE_MARKERS = ("can't find pane", *_NO_SERVER_MARKERS)
_MISSING_WINDOW_MARKERS = ("can't find window", "can't find session", *_NO_SERVER_MARKERS)
# Shell failure text meaning tmux itself is not installed; a missing binary
# under exec surfaces as FileNotFoundError instead
_NOT_INSTALLED_MARKERS = ("command not found",)

_PROBE_SESSION = "__prdswarm_probe__"


@dataclass
class TmuxConfig:
    """Configuration for tmux-based session management."""
    binary: str = "tmux"
    command_timeout: float = 10.0
    panes_per_window: int = 4
    # Size of detached sessions so split panes are not squeezed to nothing
    session_width: int = 200
    session_height: int = 50


class TmuxError(SessionError):
    """Base exception for tmux operations."""

    code = ErrorCode.TMUX_ERROR

    def __init__(self, message: str, code: Optional[ErrorCode] = None, stderr: str = ""):
        super().__init__(message, code=code, details={"stderr": stderr} if stderr else None)
        self.stderr = stderr

    def is_missing_session(self) -> bool:
        return _contains(self.stderr, _MISSING_SESSION_MARKERS)

    def is_missing_pane(self) -> bool:
        return _contains(self.stderr, _MISSING_PANE_MARKERS)

    def is_missing_window(self) -> bool:
        return _contains(self.stderr, _MISSING_WINDOW_MARKERS)


class TmuxNotAvailableError(TmuxError):
    """tmux is not installed or not available."""


class TmuxTimeoutError(TmuxError):
    """A tmux command exceeded its timeout."""

    code = ErrorCode.TMUX_TIMEOUT


def _contains(text: str, markers: tuple) -> bool:
    return any(marker in text for marker in markers)


class TmuxClient:
    """Narrow client around the tmux binary."""

    def __init__(self, config: Optional[TmuxConfig] = None):
        self.config = config or TmuxConfig()

    def run(self, *args: str) -> str:
        """Run tmux and return stripped stdout, raising TmuxError on failure."""
        cmd = [self.config.binary, *args]
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.config.command_timeout,
                stdin=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired:
            raise TmuxTimeoutError(f"tmux command timed out: {' '.join(args)}")
        except FileNotFoundError as e:
            raise TmuxNotAvailableError(
                "tmux is not installed. Install with: brew install tmux (macOS) "
                "or apt install tmux (Linux)",
                stderr=str(e),
            ) from e

        if result.returncode != 0:
            stderr = (result.stderr or result.stdout or "").strip()
            raise TmuxError(stderr or f"tmux {' '.join(args)} failed", stderr=stderr)

        return result.stdout.strip()


class TmuxSessionBackend(SessionBackend):
    """
    Direct tmux management for parallel PRD runs.

    Features:
    - Sessions survive orchestrator crashes
    - Human can attach to any pane
    - Output capture via capture-pane
    - Idempotent destroy operations
    """

    name = "tmux"

    def __init__(self, config: Optional[TmuxConfig] = None, client: Optional[TmuxClient] = None):
        self.config = config or TmuxConfig()
        self.client = client or TmuxClient(self.config)

    def is_available(self) -> bool:
        """
        Probe tmux with a has-session on a session that never exists.

        A missing server or a missing session means tmux is installed but
        idle, which is still available. Only a missing binary is unavailable.
        """
        try:
            self.client.run("has-session", "-t", _PROBE_SESSION)
        except TmuxNotAvailableError:
            return False
        except TmuxTimeoutError:
            return False
        except TmuxError as e:
            return not _contains(e.stderr, _NOT_INSTALLED_MARKERS)
        return True

    # --- Sessions ---

    def ensure_session(self, name: str) -> None:
        if self.session_exists(name):
            return
        try:
            self.client.run(
                "new-session", "-d", "-s", name,
                "-x", str(self.config.session_width),
                "-y", str(self.config.session_height),
            )
        except TmuxError as e:
            if isinstance(e, TmuxTimeoutError):
                raise
            raise TmuxError(
                f'Failed to create tmux session "{name}": {e.message}',
                code=ErrorCode.SESSION_CREATE_FAILED,
                stderr=e.stderr,
            ) from e
        logger.info(f"Created tmux session: {name}")

    def session_exists(self, name: str) -> bool:
        try:
            self.client.run("has-session", "-t", name)
        except TmuxError as e:
            if e.is_missing_session():
                return False
            raise
        return True

    def destroy_session(self, name: str) -> None:
        try:
            self.client.run("kill-session", "-t", name)
        except TmuxError as e:
            if e.is_missing_session():
                return
            raise TmuxError(e.message, code=ErrorCode.SESSION_DESTROY_FAILED, stderr=e.stderr) from e
        logger.info(f"Destroyed tmux session: {name}")

    # --- Panes ---

    def find_available_window(self, session: str) -> Optional[str]:
        """First window with room for another pane, or None to open a new one."""
        try:
            output = self.client.run(
                "list-windows", "-t", session, "-F", "#{window_id}\t#{window_panes}"
            )
        except TmuxError as e:
            logger.debug(f"list-windows failed for {session}, opening a new window: {e.message}")
            return None

        windows = []
        for line in output.splitlines():
            if not line.strip():
                continue
            window_id, _, count = line.partition("\t")
            try:
                windows.append((window_id, int(count or 0)))
            except ValueError:
                windows.append((window_id, 0))
        return choose_window(windows, self.config.panes_per_window)

    def create_pane(self, session: str, options: PaneOptions) -> PaneInfo:
        window_id = options.window_id or self.find_available_window(session)
        command_args = [options.command] if options.command else []

        try:
            if window_id:
                pane_id = self.client.run(
                    "split-window", "-t", window_id, "-P", "-F", "#{pane_id}", *command_args
                )
            else:
                pane_id = self.client.run(
                    "new-window", "-t", session, "-P", "-F", "#{pane_id}", *command_args
                )
        except TmuxError as e:
            if isinstance(e, TmuxTimeoutError):
                raise
            raise TmuxError(e.message, code=ErrorCode.PANE_CREATE_FAILED, stderr=e.stderr) from e

        try:
            self.client.run("select-pane", "-t", pane_id, "-T", options.title)
        except TmuxError as e:
            logger.warning(f"Failed to set title on pane {pane_id}: {e.message}")

        try:
            resolved_window = self.client.run("display-message", "-t", pane_id, "-p", "#{window_id}")
        except TmuxError:
            resolved_window = window_id or ""

        try:
            self.rebalance(session, resolved_window or None)
        except TmuxError as e:
            logger.warning(f"Rebalance after pane creation failed: {e.message}")

        logger.info(f"Created pane {pane_id} ({options.title}) in window {resolved_window}")
        return PaneInfo(pane_id=pane_id, window_id=resolved_window, title=options.title, alive=True)

    def destroy_pane(self, pane_id: str) -> None:
        try:
            self.client.run("kill-pane", "-t", pane_id)
        except TmuxError as e:
            if e.is_missing_pane():
                return
            raise TmuxError(e.message, code=ErrorCode.PANE_DESTROY_FAILED, stderr=e.stderr) from e

    def send_command(self, pane_id: str, command: str) -> None:
        try:
            self.client.run("send-keys", "-t", pane_id, command, "Enter")
        except TmuxError as e:
            raise TmuxError(e.message, code=ErrorCode.SEND_COMMAND_FAILED, stderr=e.stderr) from e

    def send_interrupt(self, pane_id: str) -> None:
        try:
            self.client.run("send-keys", "-t", pane_id, "C-c")
        except TmuxError as e:
            raise TmuxError(e.message, code=ErrorCode.SEND_INTERRUPT_FAILED, stderr=e.stderr) from e

    # --- Layout ---

    def rebalance(self, session: str, window_id: Optional[str] = None) -> None:
        try:
            self.client.run("select-layout", "-t", window_id or session, "tiled")
        except TmuxError as e:
            raise TmuxError(e.message, code=ErrorCode.REBALANCE_FAILED, stderr=e.stderr) from e

    def get_pane_count(self, session: str, window_id: Optional[str] = None) -> int:
        try:
            output = self.client.run("list-panes", "-t", window_id or session, "-F", "#{pane_id}")
        except TmuxError as e:
            if e.is_missing_window():
                return 0
            raise
        return len([line for line in output.splitlines() if line.strip()])

    # --- Query ---

    def list_panes(self, session: str) -> List[PaneInfo]:
        try:
            output = self.client.run(
                "list-panes", "-s", "-t", session,
                "-F", "#{pane_id}\t#{window_id}\t#{pane_title}\t#{pane_pid}",
            )
        except TmuxError as e:
            if e.is_missing_session():
                return []
            raise

        panes = []
        for line in output.splitlines():
            if not line.strip():
                continue
            parts = line.split("\t")
            parts += [""] * (4 - len(parts))
            pane_id, window_id, title, pid = parts[:4]
            panes.append(PaneInfo(
                pane_id=pane_id,
                window_id=window_id,
                title=title,
                alive=_pid_alive(pid),
            ))
        return panes

    def is_pane_alive(self, pane_id: str) -> bool:
        try:
            pid = self.client.run("display-message", "-t", pane_id, "-p", "#{pane_pid}")
        except TmuxError as e:
            if e.is_missing_pane():
                return False
            raise
        return _pid_alive(pid)

    def capture_pane(self, pane_id: str, lines: int = 100) -> str:
        try:
            return self.client.run("capture-pane", "-t", pane_id, "-p", "-S", f"-{lines}")
        except TmuxError as e:
            code = ErrorCode.PANE_NOT_FOUND if e.is_missing_pane() else ErrorCode.CAPTURE_FAILED
            raise TmuxError(e.message, code=code, stderr=e.stderr) from e

    def focus_pane(self, pane_id: str) -> None:
        try:
            self.client.run("select-pane", "-t", pane_id)
            self.client.run("select-window", "-t", pane_id)
        except TmuxError as e:
            raise TmuxError(e.message, code=ErrorCode.FOCUS_FAILED, stderr=e.stderr) from e


def _pid_alive(pid: str) -> bool:
    pid = pid.strip()
    return bool(pid) and pid != "0"
