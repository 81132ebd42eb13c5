"""
Effect schemas - durable, at-most-once units of work within a run.

EffectRecord is created (pending) when the replay engine first reaches an
effect-issuing call. EffectResult is attached exactly once, by the
TaskExecutor (delegated/local effects), by resolve_breakpoint (breakpoints),
or inline by the replay engine for intrinsic effects such as ctx.now().
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from runsitter.clock import utcnow

# Reserved task ids for effects that do not come from a TaskDef
BREAKPOINT_TASK_ID = "__breakpoint__"
NOW_TASK_ID = "__now__"


class EffectKind(str, Enum):
    """What performs an effect."""
    DELEGATED = "delegated"
    LOCAL = "local"
    BREAKPOINT = "breakpoint"


class EffectStatus(str, Enum):
    """Status of an effect."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class EffectResult:
    """
    The committed outcome of an effect.

    Attributes:
        status: succeeded or failed
        value: Result value (succeeded) - for breakpoints, the resolution
        error: Error details if status is failed ({"type", "message"})
        finished_at: When the result was committed
    """
    status: EffectStatus
    value: Any = None
    error: Optional[dict[str, Any]] = None
    finished_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        if self.status not in (EffectStatus.SUCCEEDED, EffectStatus.FAILED):
            raise ValueError(f"EffectResult status must be terminal, got {self.status.value}")
        if self.status == EffectStatus.FAILED and self.error is None:
            raise ValueError("Failed results must carry error details")

    @classmethod
    def succeeded(cls, value: Any) -> "EffectResult":
        return cls(status=EffectStatus.SUCCEEDED, value=value)

    @classmethod
    def failed(cls, error: BaseException) -> "EffectResult":
        return cls(
            status=EffectStatus.FAILED,
            error={"type": type(error).__name__, "message": str(error)},
        )

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
    def from_dict(cls, data: dict[str, Any]) -> "EffectResult":
        return cls(
            status=EffectStatus(data["status"]),
            value=data.get("value"),
            error=data.get("error"),
            finished_at=datetime.fromisoformat(data["finished_at"]),
        )


@dataclass(frozen=True)
class EffectRecord:
    """
    A durable record of one effect.

    Attributes:
        effect_id: Position-derived id (see runsitter.context)
        run_id: The run this effect belongs to
        kind: delegated, local or breakpoint
        task_id: Name of the TaskDef (or a reserved id for intrinsics)
        input: Task input ({"args": ..., "definition": ...} or breakpoint payload)
        input_digest: sha256 of the canonical input JSON, checked on replay
        labels: Free-form labels copied from the TaskDef / call site
        parent_id: Id of the enclosing parallel group, if any
        branch_index: Branch index inside the parent group, if any
        requested_at: When replay first issued the effect
        claimed_at: When a TaskExecutor claimed it (None if unclaimed)
        result: The committed result (None while pending/running)
    """
    effect_id: str
    run_id: str
    kind: EffectKind
    task_id: str
    input: Any = None
    input_digest: str = ""
    labels: tuple[str, ...] = ()
    parent_id: Optional[str] = None
    branch_index: Optional[int] = None
    requested_at: datetime = field(default_factory=utcnow)
    claimed_at: Optional[datetime] = None
    result: Optional[EffectResult] = None

    @property
    def status(self) -> EffectStatus:
        """Derived status: result wins, then claim, else pending."""
        if self.result is not None:
            return self.result.status
        if self.claimed_at is not None:
            return EffectStatus.RUNNING
        return EffectStatus.PENDING

    @property
    def is_breakpoint(self) -> bool:
        return self.kind == EffectKind.BREAKPOINT

    @property
    def is_resolved(self) -> bool:
        return self.result is not None

    def with_claim(self, claimed_at: datetime) -> "EffectRecord":
        return replace(self, claimed_at=claimed_at)

    def with_result(self, result: EffectResult) -> "EffectRecord":
        return replace(self, result=result)

    def request_dict(self) -> dict[str, Any]:
        """The immutable request part, stored as input.json."""
        result: dict[str, Any] = {
            "effect_id": self.effect_id,
            "run_id": self.run_id,
            "kind": self.kind.value,
            "task_id": self.task_id,
            "input": self.input,
            "input_digest": self.input_digest,
            "labels": list(self.labels),
            "requested_at": self.requested_at.isoformat(),
        }
        if self.parent_id is not None:
            result["parent_id"] = self.parent_id
            result["branch_index"] = self.branch_index
        return result

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output (includes status/result)."""
        result = self.request_dict()
        result["status"] = self.status.value
        if self.claimed_at is not None:
            result["claimed_at"] = self.claimed_at.isoformat()
        if self.result is not None:
            result["result"] = self.result.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EffectRecord":
        """Deserialize from dictionary."""
        result = data.get("result")
        return cls(
            effect_id=data["effect_id"],
            run_id=data["run_id"],
            kind=EffectKind(data["kind"]),
            task_id=data["task_id"],
            input=data.get("input"),
            input_digest=data.get("input_digest", ""),
            labels=tuple(data.get("labels", ())),
            parent_id=data.get("parent_id"),
            branch_index=data.get("branch_index"),
            requested_at=datetime.fromisoformat(data["requested_at"]),
            claimed_at=datetime.fromisoformat(data["claimed_at"]) if data.get("claimed_at") else None,
            result=EffectResult.from_dict(result) if result else None,
        )
