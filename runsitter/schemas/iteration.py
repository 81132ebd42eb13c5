"""
IterationRecord schema - one audit record per iterate call.

The status vocabulary is closed. Drivers only ever branch on these five
values:

- executed:  progress was made, call iterate again
- waiting:   a breakpoint or an external delay blocks progress, stop looping
- completed: the run finished (reported once)
- failed:    the run failed (terminal)
- none:      nothing actionable changed (e.g. run already terminal)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class IterationStatus(str, Enum):
    """Closed vocabulary of iterate outcomes."""
    EXECUTED = "executed"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    NONE = "none"


@dataclass(frozen=True)
class IterationRecord:
    """
    Outcome of a single IterationController step.

    Attributes:
        iteration: The run's iteration counter after this call
        status: One of IterationStatus
        action: Action reported by the iteration-start hook, if any
        reason: Short machine-friendly explanation
        count: Number of effects the hook reported executing
        run_id: Run this record belongs to
        process_id: Process of the run
        hook_status: Status field of the merged hook decision, if hooks ran
        run_state: Run state after this call
    """
    iteration: int
    status: IterationStatus
    run_id: str
    process_id: str
    action: Optional[str] = None
    reason: Optional[str] = None
    count: Optional[int] = None
    hook_status: Optional[str] = None
    run_state: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Reject anything outside the closed vocabulary, even raw strings.
        object.__setattr__(self, "status", IterationStatus(self.status))

    @property
    def metadata(self) -> dict[str, Any]:
        meta: dict[str, Any] = {"runId": self.run_id, "processId": self.process_id}
        if self.hook_status is not None:
            meta["hookStatus"] = self.hook_status
        if self.run_state is not None:
            meta["runState"] = self.run_state
        meta.update(self.extra)
        return meta

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire shape handed to drivers."""
        result: dict[str, Any] = {
            "iteration": self.iteration,
            "status": self.status.value,
        }
        if self.action is not None:
            result["action"] = self.action
        if self.reason is not None:
            result["reason"] = self.reason
        if self.count is not None:
            result["count"] = self.count
        result["metadata"] = self.metadata
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IterationRecord":
        meta = dict(data.get("metadata", {}))
        run_id = meta.pop("runId")
        process_id = meta.pop("processId")
        hook_status = meta.pop("hookStatus", None)
        run_state = meta.pop("runState", None)
        return cls(
            iteration=data["iteration"],
            status=IterationStatus(data["status"]),
            run_id=run_id,
            process_id=process_id,
            action=data.get("action"),
            reason=data.get("reason"),
            count=data.get("count"),
            hook_status=hook_status,
            run_state=run_state,
            extra=meta,
        )
