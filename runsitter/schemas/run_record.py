"""
RunRecord schema - tracks one orchestrated run.

A RunRecord is created by create_run and afterwards mutated only by the
IterationController. Its ``state`` is a cache of what the ledger implies
(see runsitter.state.derive_state); it is rewritten from ledger contents on
every iteration and never treated as independent truth.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from runsitter.clock import utcnow

# ULID type alias for documentation
ULID = str


class RunState(str, Enum):
    """Lifecycle state of a run."""
    PENDING = "pending"
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.FAILED)


@dataclass
class RunRecord:
    """
    A record of a run.

    Attributes:
        run_id: ULID uniquely identifying this run
        process_id: The process being run (registered id or "module:function")
        inputs: Process inputs, passed unchanged on every replay
        state: Current run state (derived from the ledger)
        iteration_count: Number of iterations that advanced the run
        version: Optimistic concurrency counter, bumped on every write
        last_status: Last IterationRecord status reported for this run
        waiting_on: Breakpoint ids the run was last reported waiting on
        created_at: When the run was created
        updated_at: When the record was last written
    """
    run_id: ULID
    process_id: str
    inputs: Any = None
    state: RunState = RunState.PENDING
    iteration_count: int = 0
    version: int = 0
    last_status: Optional[str] = None
    waiting_on: tuple[str, ...] = ()
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result = {
            "run_id": self.run_id,
            "process_id": self.process_id,
            "inputs": self.inputs,
            "state": self.state.value,
            "iteration_count": self.iteration_count,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if self.last_status is not None:
            result["last_status"] = self.last_status
        if self.waiting_on:
            result["waiting_on"] = list(self.waiting_on)
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunRecord":
        """Deserialize from dictionary."""
        return cls(
            run_id=data["run_id"],
            process_id=data["process_id"],
            inputs=data.get("inputs"),
            state=RunState(data.get("state", "pending")),
            iteration_count=data.get("iteration_count", 0),
            version=data.get("version", 0),
            last_status=data.get("last_status"),
            waiting_on=tuple(data.get("waiting_on", ())),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


@dataclass(frozen=True)
class RunOutput:
    """
    Terminal outcome of a run. Written exactly once.

    Attributes:
        status: 'completed' or 'failed'
        value: The process return value (completed runs)
        error: Error details (failed runs)
        finished_at: When the terminal state was recorded
    """
    status: RunState
    value: Any = None
    error: Optional[dict[str, Any]] = None
    finished_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if not self.status.is_terminal:
            raise ValueError(f"RunOutput status must be terminal, got {self.status.value}")

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "status": self.status.value,
            "value": self.value,
            "finished_at": self.finished_at.isoformat(),
        }
        if self.error is not None:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunOutput":
        return cls(
            status=RunState(data["status"]),
            value=data.get("value"),
            error=data.get("error"),
            finished_at=datetime.fromisoformat(data["finished_at"]),
        )
