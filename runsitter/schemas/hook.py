"""
Hook schemas - decisions returned by hooks and per-invocation audit records.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

# Status a hook uses to report its own logical failure
HOOK_STATUS_FAILED = "failed"


@dataclass(frozen=True)
class HookDecision:
    """
    Structured decision read from a hook's result channel.

    Attributes:
        action: What the hook did (e.g. "executed-tasks", "noop")
        status: The hook's own logical status (e.g. "ok", "failed")
        count: How many effects the hook executed
        reason: Free-text explanation
    """
    action: Optional[str] = None
    status: Optional[str] = None
    count: Optional[int] = None
    reason: Optional[str] = None

    def __post_init__(self):
        if self.count is not None:
            if isinstance(self.count, bool) or not isinstance(self.count, int) or self.count < 0:
                raise ValueError(f"count must be a non-negative integer, got {self.count!r}")

    @property
    def failed(self) -> bool:
        return self.status == HOOK_STATUS_FAILED

    def merge(self, other: "HookDecision") -> "HookDecision":
        """
        Combine decisions of hooks registered on the same extension point.

        Counts add up, the later action/reason wins, a failed status sticks.
        """
        if self.count is None and other.count is None:
            count = None
        else:
            count = (self.count or 0) + (other.count or 0)
        status = other.status if other.status is not None else self.status
        if self.failed or other.failed:
            status = HOOK_STATUS_FAILED
        return HookDecision(
            action=other.action if other.action is not None else self.action,
            status=status,
            count=count,
            reason=other.reason if other.reason is not None else self.reason,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "status": self.status,
            "count": self.count,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HookDecision":
        """Build from a parsed decision object, ignoring unknown keys."""
        return cls(
            action=data.get("action"),
            status=data.get("status"),
            count=data.get("count"),
            reason=data.get("reason"),
        )


@dataclass(frozen=True)
class HookInvocationRecord:
    """
    Audit record of one hook invocation.

    Ephemeral: written to the run journal, never read back by the engine.
    """
    extension_point: str
    hook: str
    payload: dict[str, Any]
    raw_stdout: str
    exit_code: int
    decision: HookDecision = field(default_factory=HookDecision)

    def to_dict(self) -> dict[str, Any]:
        return {
            "extension_point": self.extension_point,
            "hook": self.hook,
            "payload": self.payload,
            "raw_stdout": self.raw_stdout,
            "exit_code": self.exit_code,
            "decision": self.decision.to_dict(),
        }
