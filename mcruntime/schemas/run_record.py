"""
Run record schema - snapshot of a processor's run lifecycle.

A RunRecord is informational: it is what the processor logs and what the
CLI prints. It is not persisted anywhere.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class RunState(str, Enum):
    """State of a processor run."""
    CREATED = "created"
    BOUND = "bound"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.FAILED)


@dataclass(frozen=True)
class RunRecord:
    """
    Snapshot of a single processor run.

    Attributes:
        run_id: Unique identifier of the run
        package_id: Package being executed
        backend_id: Backend selected by the factory
        state: Current run state
        started_at: When the run entered RUNNING (None before)
        completed_at: When the run reached a terminal state
        workspace: Path of the run workspace, if one was allocated
        error: {"type", "message"} for failed runs
    """
    run_id: str
    package_id: str
    backend_id: str
    state: RunState
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    workspace: Optional[str] = None
    error: Optional[dict[str, Any]] = None

    def __post_init__(self):
        if self.state == RunState.RUNNING and self.started_at is None:
            raise ValueError("Running records must have started_at")
        if self.state == RunState.FAILED and self.error is None:
            raise ValueError("Failed records must carry an error")

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.COMPLETED

    @property
    def duration_ms(self) -> Optional[int]:
        """Run duration in milliseconds if both timestamps present."""
        if self.started_at and self.completed_at:
            delta = self.completed_at - self.started_at
            return int(delta.total_seconds() * 1000)
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {
            "run_id": self.run_id,
            "package_id": self.package_id,
            "backend_id": self.backend_id,
            "state": self.state.value,
        }
        if self.started_at is not None:
            result["started_at"] = self.started_at.isoformat()
        if self.completed_at is not None:
            result["completed_at"] = self.completed_at.isoformat()
        if self.duration_ms is not None:
            result["duration_ms"] = self.duration_ms
        if self.workspace is not None:
            result["workspace"] = self.workspace
        if self.error is not None:
            result["error"] = self.error
        return result
