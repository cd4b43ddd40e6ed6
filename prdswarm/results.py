"""
Structured results and error taxonomy for swarm operations.

Every public SwarmManager operation returns an OperationResult. Inner layers
(git client, worktree manager, session backends, run ledger) raise SwarmError
subclasses, which the manager converts at its boundary.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    """Error codes surfaced by swarm operations."""

    # Preconditions
    ALREADY_RUNNING = "ALREADY_RUNNING"
    DEPS_UNMET = "DEPS_UNMET"
    SESSION_BACKEND_UNAVAILABLE = "SESSION_BACKEND_UNAVAILABLE"
    NOT_RUNNING = "NOT_RUNNING"
    NOT_MAIN_WORKTREE = "NOT_MAIN_WORKTREE"
    PRD_NOT_FOUND = "PRD_NOT_FOUND"
    PRD_INVALID_STATUS = "PRD_INVALID_STATUS"

    # Worktrees
    WORKTREE_WRONG_BRANCH = "WORKTREE_WRONG_BRANCH"
    WORKTREE_BRANCH_CHECK_FAILED = "WORKTREE_BRANCH_CHECK_FAILED"
    WORKTREE_CREATE_FAILED = "WORKTREE_CREATE_FAILED"
    WORKTREE_REMOVE_FAILED = "WORKTREE_REMOVE_FAILED"
    WORKTREE_NOT_FOUND = "WORKTREE_NOT_FOUND"
    WORKTREE_DIRTY = "WORKTREE_DIRTY"
    BRANCH_DELETE_FAILED = "BRANCH_DELETE_FAILED"

    # Merging
    MAIN_DIRTY = "MAIN_DIRTY"
    MERGE_CONFLICT = "MERGE_CONFLICT"
    MERGE_FAILED = "MERGE_FAILED"
    MERGE_ABORTED = "MERGE_ABORTED"

    # Session backend
    CAPTURE_FAILED = "CAPTURE_FAILED"
    SESSION_CREATE_FAILED = "SESSION_CREATE_FAILED"
    SESSION_DESTROY_FAILED = "SESSION_DESTROY_FAILED"
    PANE_CREATE_FAILED = "PANE_CREATE_FAILED"
    PANE_DESTROY_FAILED = "PANE_DESTROY_FAILED"
    PANE_NOT_FOUND = "PANE_NOT_FOUND"
    SEND_COMMAND_FAILED = "SEND_COMMAND_FAILED"
    SEND_INTERRUPT_FAILED = "SEND_INTERRUPT_FAILED"
    FOCUS_FAILED = "FOCUS_FAILED"
    REBALANCE_FAILED = "REBALANCE_FAILED"

    # External tools
    GIT_ERROR = "GIT_ERROR"
    GIT_TIMEOUT = "GIT_TIMEOUT"
    TMUX_ERROR = "TMUX_ERROR"
    TMUX_TIMEOUT = "TMUX_TIMEOUT"

    # Ledger / collaborators / config
    STATE_READ_FAILED = "STATE_READ_FAILED"
    STATE_WRITE_FAILED = "STATE_WRITE_FAILED"
    AGENT_NOT_FOUND = "AGENT_NOT_FOUND"
    AGENT_FAILED = "AGENT_FAILED"
    CONFIG_INVALID = "CONFIG_INVALID"


class SwarmError(Exception):
    """Base exception for all swarm errors. Carries a stable error code."""

    code: ErrorCode = ErrorCode.GIT_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_error(self) -> "OperationError":
        return OperationError(code=self.code, message=self.message, details=dict(self.details))


@dataclass
class OperationError:
    """Error payload of a failed operation."""

    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


@dataclass
class OperationResult(Generic[T]):
    """
    Result of a public swarm operation: {ok, data?, error?}.

    This is the only contract surface for consumers (CLI, web UI, ...).
    """

    ok: bool
    data: Optional[T] = None
    error: Optional[OperationError] = None

    @property
    def code(self) -> Optional[ErrorCode]:
        return self.error.code if self.error else None

    def unwrap(self) -> T:
        """Return data, raising SwarmError if the operation failed."""
        if not self.ok:
            if self.error is None:
                raise SwarmError("Operation failed without an error")
            raise SwarmError(self.error.message, self.error.code, self.error.details)
        return self.data  # type: ignore[return-value]

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"ok": self.ok}
        if self.data is not None:
            data["data"] = _serialize(self.data)
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data


def ok(data: T = None) -> OperationResult[T]:  # type: ignore[assignment]
    """Create a success result."""
    return OperationResult(ok=True, data=data)


def err(
    code: ErrorCode,
    message: str,
    details: Optional[dict[str, Any]] = None,
) -> OperationResult[Any]:
    """Create an error result."""
    return OperationResult(ok=False, error=OperationError(code, message, details or {}))


def from_exception(exc: SwarmError) -> OperationResult[Any]:
    """Convert a raised SwarmError into a failed result."""
    return OperationResult(ok=False, error=exc.to_error())


def _serialize(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    if isinstance(value, Enum):
        return value.value
    return value
