"""
In-memory SessionBackend.

Implements the same contract as the tmux backend without any external
process, for deterministic tests and dry runs. Pane ids look like tmux's
("%1", "%2", ...) and window ids like "@1".
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..results import ErrorCode
from .interface import PaneInfo, PaneOptions, SessionBackend, SessionError, choose_window

logger = logging.getLogger(__name__)


@dataclass
class _FakePane:
    pane_id: str
    window_id: str
    session: str
    title: str
    command: Optional[str] = None
    alive: bool = True
    output: List[str] = field(default_factory=list)


class InMemorySessionBackend(SessionBackend):
    """Fake multiplexer holding sessions, windows and panes in dicts."""

    name = "memory"

    def __init__(self, panes_per_window: int = 4, available: bool = True):
        self.panes_per_window = panes_per_window
        self.available = available
        # session -> ordered window ids
        self.sessions: Dict[str, List[str]] = {}
        # window id -> ordered pane ids
        self.windows: Dict[str, List[str]] = {}
        self.panes: Dict[str, _FakePane] = {}
        self.sent_commands: List[Tuple[str, str]] = []
        self.interrupts: List[str] = []
        self.focused: Optional[str] = None
        self.rebalance_calls: int = 0
        self._next_pane = 0
        self._next_window = 0

    # --- Test hooks ---

    def kill_pane(self, pane_id: str) -> None:
        """Simulate the pane's process exiting behind the manager's back."""
        if pane_id in self.panes:
            self.panes[pane_id].alive = False

    def emit_output(self, pane_id: str, *lines: str) -> None:
        self._require_pane(pane_id).output.extend(lines)

    def window_pane_counts(self, session: str) -> List[int]:
        return [len(self.windows[w]) for w in self.sessions.get(session, [])]

    def pane(self, pane_id: str) -> Optional[PaneInfo]:
        pane = self.panes.get(pane_id)
        return self._info(pane) if pane else None

    # --- SessionBackend ---

    def is_available(self) -> bool:
        return self.available

    def ensure_session(self, name: str) -> None:
        self._check_available()
        if name not in self.sessions:
            self.sessions[name] = []
            logger.info(f"Created session: {name}")

    def session_exists(self, name: str) -> bool:
        return name in self.sessions

    def destroy_session(self, name: str) -> None:
        for window_id in self.sessions.pop(name, []):
            for pane_id in self.windows.pop(window_id, []):
                self.panes.pop(pane_id, None)

    def create_pane(self, session: str, options: PaneOptions) -> PaneInfo:
        self._check_available()
        if session not in self.sessions:
            raise SessionError(
                f"can't find session: {session}", code=ErrorCode.PANE_CREATE_FAILED
            )

        window_id = options.window_id
        if window_id is None:
            counts = [(w, len(self.windows[w])) for w in self.sessions[session]]
            window_id = choose_window(counts, self.panes_per_window)
        if window_id is None:
            self._next_window += 1
            window_id = f"@{self._next_window}"
            self.sessions[session].append(window_id)
            self.windows[window_id] = []
        elif window_id not in self.windows:
            raise SessionError(
                f"can't find window: {window_id}", code=ErrorCode.PANE_CREATE_FAILED
            )

        self._next_pane += 1
        pane = _FakePane(
            pane_id=f"%{self._next_pane}",
            window_id=window_id,
            session=session,
            title=options.title,
            command=options.command,
        )
        self.panes[pane.pane_id] = pane
        self.windows[window_id].append(pane.pane_id)
        return self._info(pane)

    def destroy_pane(self, pane_id: str) -> None:
        pane = self.panes.pop(pane_id, None)
        if pane is None:
            return
        window = self.windows.get(pane.window_id, [])
        if pane_id in window:
            window.remove(pane_id)
        if not window:
            # tmux closes a window together with its last pane
            self.windows.pop(pane.window_id, None)
            windows = self.sessions.get(pane.session, [])
            if pane.window_id in windows:
                windows.remove(pane.window_id)

    def send_command(self, pane_id: str, command: str) -> None:
        self._require_pane(pane_id, ErrorCode.SEND_COMMAND_FAILED)
        self.sent_commands.append((pane_id, command))

    def send_interrupt(self, pane_id: str) -> None:
        self._require_pane(pane_id, ErrorCode.SEND_INTERRUPT_FAILED)
        self.interrupts.append(pane_id)

    def rebalance(self, session: str, window_id: Optional[str] = None) -> None:
        self.rebalance_calls += 1

    def get_pane_count(self, session: str, window_id: Optional[str] = None) -> int:
        if window_id is not None:
            return len(self.windows.get(window_id, []))
        return sum(self.window_pane_counts(session))

    def list_panes(self, session: str) -> List[PaneInfo]:
        return [
            self._info(self.panes[pane_id])
            for window_id in self.sessions.get(session, [])
            for pane_id in self.windows[window_id]
        ]

    def is_pane_alive(self, pane_id: str) -> bool:
        pane = self.panes.get(pane_id)
        return pane is not None and pane.alive

    def capture_pane(self, pane_id: str, lines: int = 100) -> str:
        pane = self._require_pane(pane_id, ErrorCode.PANE_NOT_FOUND)
        return "\n".join(pane.output[-lines:] if lines > 0 else [])

    def focus_pane(self, pane_id: str) -> None:
        self._require_pane(pane_id, ErrorCode.FOCUS_FAILED)
        self.focused = pane_id

    # --- Helpers ---

    def _check_available(self) -> None:
        if not self.available:
            raise SessionError("session backend unavailable", code=ErrorCode.SESSION_BACKEND_UNAVAILABLE)

    def _require_pane(self, pane_id: str, code: ErrorCode = ErrorCode.PANE_NOT_FOUND) -> _FakePane:
        pane = self.panes.get(pane_id)
        if pane is None:
            raise SessionError(f"can't find pane: {pane_id}", code=code)
        return pane

    @staticmethod
    def _info(pane: _FakePane) -> PaneInfo:
        return PaneInfo(
            pane_id=pane.pane_id,
            window_id=pane.window_id,
            title=pane.title,
            alive=pane.alive,
        )
