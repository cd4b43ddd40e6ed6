"""
Persistent run ledger for swarm runs.

Maps PRD name -> run metadata in swarm.json under the project's state
directory. The ledger is the one piece of state shared across processes (a
CLI and a service acting on the same project), so:
- every read-modify-write cycle holds a FileLock on swarm.json.lock
- writes go to a temp file that is renamed over the ledger
- readers re-derive truth with reconcile() instead of trusting `status`
"""

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from filelock import FileLock, Timeout

from .paths import SwarmContext
from .results import ErrorCode, SwarmError
from .session.interface import SessionBackend

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 10.0


class RunStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    STALE = "stale"
    COMPLETED = "completed"


class LedgerError(SwarmError):
    """The ledger could not be read or written."""

    code = ErrorCode.STATE_READ_FAILED


class AlreadyRunningError(SwarmError):
    """Another live run already owns this PRD."""

    code = ErrorCode.ALREADY_RUNNING

    def __init__(self, existing: "RunInstance"):
        super().__init__(
            f'PRD "{existing.prd_name}" is already running',
            details={"paneId": existing.pane_id, "worktree": existing.worktree},
        )
        self.existing = existing


@dataclass
class RunInstance:
    """One run of a PRD: its worktree, branch and the pane hosting it."""
    prd_name: str
    worktree: str
    branch: str
    pane_id: str
    window_id: str = ""
    started_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    status: RunStatus = RunStatus.RUNNING

    def to_dict(self) -> dict:
        return {
            "prdName": self.prd_name,
            "worktree": self.worktree,
            "branch": self.branch,
            "paneId": self.pane_id,
            "windowId": self.window_id,
            "startedAt": self.started_at,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict, prd_name: Optional[str] = None) -> "RunInstance":
        return cls(
            prd_name=prd_name or data["prdName"],
            worktree=data["worktree"],
            branch=data.get("branch") or prd_name or data["prdName"],
            pane_id=data.get("paneId", ""),
            window_id=data.get("windowId", ""),
            started_at=data.get("startedAt", ""),
            status=RunStatus(data.get("status", RunStatus.STALE.value)),
        )


@dataclass
class LedgerState:
    """Contents of swarm.json."""
    session: str = ""
    runs: Dict[str, RunInstance] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "session": self.session,
            "runs": {name: run.to_dict() for name, run in self.runs.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LedgerState":
        runs = data.get("runs") or {}
        return cls(
            session=data.get("session", ""),
            runs={name: RunInstance.from_dict(run, prd_name=name) for name, run in runs.items()},
        )


class RunLedger:
    """
    Durable PRD name -> RunInstance mapping for one project.

    Features:
    - Survives orchestrator restart
    - Cross-process safe via file locking
    - Reconciliation against live pane state
    """

    def __init__(self, state_path: Path, lock_timeout: float = DEFAULT_LOCK_TIMEOUT):
        self.state_path = Path(state_path)
        self.lock_path = self.state_path.with_name(self.state_path.name + ".lock")
        # One lock object per ledger so nested acquisitions are re-entrant
        self._lock = FileLock(str(self.lock_path), timeout=lock_timeout)

    @classmethod
    def for_context(cls, context: SwarmContext) -> "RunLedger":
        return cls(context.ledger_path)

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._lock:
                yield
        except Timeout as e:
            raise LedgerError(
                f"Timed out waiting for ledger lock {self.lock_path}",
                code=ErrorCode.STATE_WRITE_FAILED,
            ) from e

    def load(self) -> LedgerState:
        """Load the ledger. A missing file is an empty ledger."""
        with self._locked():
            return self._read()

    def save(self, state: LedgerState) -> None:
        """Atomically replace the ledger."""
        with self._locked():
            self._write(state)

    @contextmanager
    def transaction(self) -> Iterator[LedgerState]:
        """Hold the lock across a load/modify/save cycle."""
        with self._locked():
            state = self._read()
            yield state
            self._write(state)

    def _read(self) -> LedgerState:
        if not self.state_path.exists():
            return LedgerState()
        try:
            data = json.loads(self.state_path.read_text())
            return LedgerState.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise LedgerError(f"Failed to read swarm state: {e}") from e

    def _write(self, state: LedgerState) -> None:
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self.state_path.parent),
                prefix=f".{self.state_path.name}.",
                suffix=".tmp",
            )
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(state.to_dict(), f, indent=2)
                os.replace(tmp_path, self.state_path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise LedgerError(
                f"Failed to save swarm state: {e}", code=ErrorCode.STATE_WRITE_FAILED
            ) from e

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def upsert(self, instance: RunInstance, session: Optional[str] = None) -> None:
        with self.transaction() as state:
            if session is not None:
                state.session = session
            state.runs[instance.prd_name] = instance

    def claim(self, instance: RunInstance, session: Optional[str] = None) -> None:
        """
        Compare-and-swap write used by start.

        Refuses to replace a running entry that belongs to another pane.

        Raises:
            AlreadyRunningError: the PRD is already running elsewhere
        """
        with self.transaction() as state:
            existing = state.runs.get(instance.prd_name)
            if (
                existing is not None
                and existing.status == RunStatus.RUNNING
                and existing.pane_id != instance.pane_id
            ):
                raise AlreadyRunningError(existing)
            if session is not None:
                state.session = session
            state.runs[instance.prd_name] = instance

    def update_status(self, prd_name: str, status: RunStatus) -> Optional[RunInstance]:
        """Set the status of an entry. Returns None if there is no entry."""
        with self.transaction() as state:
            run = state.runs.get(prd_name)
            if run is None:
                return None
            run.status = status
            return run

    def remove(self, prd_name: str) -> bool:
        with self.transaction() as state:
            return state.runs.pop(prd_name, None) is not None

    def get(self, prd_name: str) -> Optional[RunInstance]:
        return self.load().runs.get(prd_name)

    def get_all(self) -> List[RunInstance]:
        return list(self.load().runs.values())

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, backend: SessionBackend) -> List[RunInstance]:
        """
        Correct recorded status against live pane state.

        Every running entry whose pane is dead is demoted to stale, in the
        returned list and in the persisted file. Liveness is queried without
        holding the lock; a demotion is only applied if the entry still points
        at the pane that was found dead.
        """
        snapshot = self.load()
        dead: Dict[str, str] = {}

        for name, run in snapshot.runs.items():
            if run.status != RunStatus.RUNNING:
                continue
            try:
                alive = backend.is_pane_alive(run.pane_id)
            except SwarmError as e:
                logger.warning(f"Liveness check for {name} ({run.pane_id}) failed: {e.message}")
                continue
            if not alive:
                dead[name] = run.pane_id

        if not dead:
            return list(snapshot.runs.values())

        with self.transaction() as state:
            for name, pane_id in dead.items():
                run = state.runs.get(name)
                if run and run.pane_id == pane_id and run.status == RunStatus.RUNNING:
                    logger.warning(f"Run {name} has a dead pane ({pane_id}), marking stale")
                    run.status = RunStatus.STALE
            return list(state.runs.values())
