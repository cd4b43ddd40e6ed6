"""
Backend selector for swarm sessions.

tmux is used whenever it is usable. The in-memory backend is only chosen
when explicitly requested (dry runs, tests).
"""

import logging
import shutil
from enum import Enum
from typing import Optional

from .interface import SessionBackend

logger = logging.getLogger(__name__)


class BackendKind(Enum):
    """Session backend kinds."""
    TMUX = "tmux"      # Real multiplexer (user can attach)
    MEMORY = "memory"  # In-process fake, nothing is actually spawned


class BackendSelector:
    """
    Select the session backend.

    Strategy:
    - Explicit request -> that backend
    - tmux on PATH -> TMUX
    - Otherwise -> TMUX anyway; the manager reports SESSION_BACKEND_UNAVAILABLE
      on start rather than silently pretending to run anything
    """

    def __init__(self, tmux_available: Optional[bool] = None):
        # Auto-detect tmux if not specified
        if tmux_available is None:
            self.tmux_available = shutil.which("tmux") is not None
        else:
            self.tmux_available = tmux_available

    def select(self, requested: Optional[str] = None) -> BackendKind:
        if requested:
            try:
                return BackendKind(requested)
            except ValueError:
                raise ValueError(
                    f"Unknown session backend '{requested}'. "
                    f"Choose from: {', '.join(k.value for k in BackendKind)}"
                )

        if not self.tmux_available:
            logger.info("tmux not found on PATH; starts will report the backend as unavailable")
        return BackendKind.TMUX

    def get_status(self) -> dict:
        """Get status of all backends."""
        return {
            BackendKind.TMUX.value: {
                "available": self.tmux_available,
                "description": "Direct tmux session management (preferred)",
            },
            BackendKind.MEMORY.value: {
                "available": True,
                "description": "In-memory backend for dry runs and tests",
            },
        }

    def create(
        self,
        requested: Optional[str] = None,
        panes_per_window: int = 4,
        command_timeout: float = 10.0,
    ) -> SessionBackend:
        """Build the selected backend."""
        kind = self.select(requested)

        if kind == BackendKind.MEMORY:
            from .memory_backend import InMemorySessionBackend
            return InMemorySessionBackend(panes_per_window=panes_per_window)

        from .tmux_adapter import TmuxConfig, TmuxSessionBackend
        config = TmuxConfig(command_timeout=command_timeout, panes_per_window=panes_per_window)
        return TmuxSessionBackend(config=config)
