"""
PRD Store - read-only view of the PRDs a swarm can run.

The swarm manager only needs three facts about a PRD: does it exist, are its
stories materialized (prd.json, not just a spec), and which of its
dependencies are unmet. Anything else about PRDs is owned elsewhere.

Layout of FilePRDStore (under the project's state directory):

    prds/<status>/<name>/spec.md
    prds/<status>/<name>/prd.json   {"dependencies": [...], "stories": [{"status": ...}]}
"""

import json
import logging
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .paths import SwarmContext

logger = logging.getLogger(__name__)

PRD_FILENAME = "prd.json"


class PRDStatus(str, Enum):
    """Lifecycle folder a PRD lives in."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    TESTING = "testing"
    COMPLETED = "completed"


class PRDStore(ABC):
    """
    Abstract read-only PRD store.

    Implementations answer existence and readiness questions; they never
    mutate PRDs on behalf of the swarm.
    """

    @abstractmethod
    def find_location(self, name: str) -> Optional[PRDStatus]:
        """
        Find which status a PRD is in.

        Returns:
            PRDStatus, or None if the PRD does not exist
        """
        pass

    def exists(self, name: str) -> bool:
        return self.find_location(name) is not None

    @abstractmethod
    def has_prd_file(self, name: str) -> bool:
        """True when the PRD's stories have been materialized."""
        pass

    @abstractmethod
    def get_unmet_dependencies(self, name: str) -> List[str]:
        """Names of dependencies that are not yet complete, in declared order."""
        pass


class FilePRDStore(PRDStore):
    """PRD store backed by the prds/<status>/<name>/ directory layout."""

    def __init__(self, prds_dir: Path):
        self.prds_dir = Path(prds_dir)

    @classmethod
    def for_context(cls, context: SwarmContext) -> "FilePRDStore":
        return cls(context.prds_dir)

    def _prd_dir(self, name: str, status: PRDStatus) -> Path:
        return self.prds_dir / status.value / name

    def find_location(self, name: str) -> Optional[PRDStatus]:
        for status in PRDStatus:
            if self._prd_dir(name, status).is_dir():
                return status
        return None

    def has_prd_file(self, name: str) -> bool:
        status = self.find_location(name)
        if status is None:
            return False
        return (self._prd_dir(name, status) / PRD_FILENAME).is_file()

    def _read_prd(self, name: str) -> Optional[dict]:
        status = self.find_location(name)
        if status is None:
            return None
        path = self._prd_dir(name, status) / PRD_FILENAME
        if not path.is_file():
            return None
        try:
            data = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read {path}: {e}")
            return None
        return data if isinstance(data, dict) else None

    def is_complete(self, name: str) -> bool:
        """
        A PRD counts as complete when it is in `completed`, or when it is in
        `pending`/`testing` and every story is completed.
        """
        status = self.find_location(name)
        if status == PRDStatus.COMPLETED:
            return True
        if status not in (PRDStatus.PENDING, PRDStatus.TESTING):
            return False

        prd = self._read_prd(name)
        if prd is None:
            return False
        stories = prd.get("stories") or []
        if not isinstance(stories, list):
            logger.warning(f"PRD {name} has a malformed stories field, treating it as incomplete")
            return False
        # Entries that are not objects are not stories
        return all(
            story.get("status") == "completed" for story in stories if isinstance(story, dict)
        )

    def get_unmet_dependencies(self, name: str) -> List[str]:
        prd = self._read_prd(name) or {}
        dependencies = prd.get("dependencies") or []
        if not isinstance(dependencies, list):
            dependencies = [dependencies]
        dependencies = [str(dep) for dep in dependencies]
        return [dep for dep in dependencies if not self.is_complete(dep)]
