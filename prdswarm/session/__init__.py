"""Session backends: the terminal-multiplexer abstraction hosting swarm runs."""

from .backend_selector import BackendKind, BackendSelector
from .interface import PaneInfo, PaneOptions, SessionBackend, SessionError, choose_window
from .memory_backend import InMemorySessionBackend
from .tmux_adapter import (
    TmuxClient,
    TmuxConfig,
    TmuxError,
    TmuxNotAvailableError,
    TmuxSessionBackend,
    TmuxTimeoutError,
)

__all__ = [
    "BackendKind",
    "BackendSelector",
    "InMemorySessionBackend",
    "PaneInfo",
    "PaneOptions",
    "SessionBackend",
    "SessionError",
    "TmuxClient",
    "TmuxConfig",
    "TmuxError",
    "TmuxNotAvailableError",
    "TmuxSessionBackend",
    "TmuxTimeoutError",
    "choose_window",
]
