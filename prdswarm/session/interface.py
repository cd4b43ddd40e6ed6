"""
Session Backend Interface - abstract base class for terminal multiplexers.

The swarm manager talks to a SessionBackend only; tmux is one implementation,
the in-memory backend is another (used for tests and dry runs).

Error contract:
- Destroy-style operations (destroy_session, destroy_pane) succeed when the
  target is already gone.
- is_pane_alive is always a live query, never cached.
- Everything else raises SessionError (or a subclass) on failure.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from ..results import ErrorCode, SwarmError


class SessionError(SwarmError):
    """A session backend operation failed."""

    code = ErrorCode.TMUX_ERROR


@dataclass
class PaneInfo:
    """A terminal pane, as observed from the backend at query time."""

    pane_id: str
    window_id: str
    title: str
    alive: bool

    def to_dict(self) -> dict:
        return {
            "paneId": self.pane_id,
            "windowId": self.window_id,
            "title": self.title,
            "alive": self.alive,
        }


@dataclass
class PaneOptions:
    """Options for creating a pane."""

    title: str
    command: Optional[str] = None
    # Preferred window. The backend bin-packs when not given.
    window_id: Optional[str] = None


def choose_window(windows: Iterable[Tuple[str, int]], max_panes: int) -> Optional[str]:
    """
    Pick the first window whose pane count is below max_panes.

    `windows` is (window_id, pane_count) in listing order. Returns None when
    every window is full, meaning "create a new window". This is first-fit
    bin-packing, not round-robin.
    """
    for window_id, pane_count in windows:
        if pane_count < max_panes:
            return window_id
    return None


class SessionBackend(ABC):
    """
    Abstract terminal-multiplexer backend.

    All backends must implement these methods to host swarm runs.
    """

    name: str = "abstract"

    # --- Capabilities ---

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check whether the backend can be used at all.

        Returns:
            bool: False only when the backend is missing (e.g. binary not
            installed); an idle backend with no sessions is still available.
        """

    # --- Session management ---

    @abstractmethod
    def ensure_session(self, name: str) -> None:
        """Create the session if it does not exist."""

    @abstractmethod
    def session_exists(self, name: str) -> bool:
        pass

    @abstractmethod
    def destroy_session(self, name: str) -> None:
        """Kill the session. Already gone is success."""

    # --- Pane management ---

    @abstractmethod
    def create_pane(self, session: str, options: PaneOptions) -> PaneInfo:
        """
        Create a pane, bin-packing into the first window under capacity.

        Args:
            session: Session name
            options: Title, optional command and optional target window

        Returns:
            PaneInfo for the new pane
        """

    @abstractmethod
    def destroy_pane(self, pane_id: str) -> None:
        """Kill a pane. Already gone is success."""

    @abstractmethod
    def send_command(self, pane_id: str, command: str) -> None:
        """Type a command into the pane and press Enter (fire-and-forget)."""

    @abstractmethod
    def send_interrupt(self, pane_id: str) -> None:
        """Send a graceful-stop keystroke (Ctrl-C)."""

    # --- Layout ---

    @abstractmethod
    def rebalance(self, session: str, window_id: Optional[str] = None) -> None:
        """Normalize the pane layout. Callers treat failures as best-effort."""

    @abstractmethod
    def get_pane_count(self, session: str, window_id: Optional[str] = None) -> int:
        pass

    # --- Query ---

    @abstractmethod
    def list_panes(self, session: str) -> List[PaneInfo]:
        pass

    @abstractmethod
    def is_pane_alive(self, pane_id: str) -> bool:
        """Live liveness query: a pane without a running process is dead."""

    @abstractmethod
    def capture_pane(self, pane_id: str, lines: int = 100) -> str:
        """Return up to `lines` lines of recent scrollback from the pane."""

    # --- Focus (interactive consumers only) ---

    @abstractmethod
    def focus_pane(self, pane_id: str) -> None:
        pass
