"""
runsitter.schemas - Record definitions for the orchestration engine.

RunRecord -> EffectRecord/EffectResult -> RunOutput, plus the audit records
IterationRecord and HookInvocationRecord.

Lifecycle:
1. RunRecord: created by create_run, rewritten by the IterationController
2. EffectRecord: created pending when replay first reaches an effect call
3. EffectResult: attached exactly once (task executor / breakpoint resolution)
4. RunOutput: written exactly once when the process returns or fails
5. IterationRecord: one per iterate call, appended to the run journal
"""

from .run_record import (
    RunRecord,
    RunOutput,
    RunState,
    ULID,
)
from .effect import (
    EffectRecord,
    EffectResult,
    EffectKind,
    EffectStatus,
    BREAKPOINT_TASK_ID,
    NOW_TASK_ID,
)
from .iteration import (
    IterationRecord,
    IterationStatus,
)
from .hook import (
    HookDecision,
    HookInvocationRecord,
    HOOK_STATUS_FAILED,
)

__all__ = [
    # Run
    "RunRecord",
    "RunOutput",
    "RunState",
    "ULID",
    # Effect
    "EffectRecord",
    "EffectResult",
    "EffectKind",
    "EffectStatus",
    "BREAKPOINT_TASK_ID",
    "NOW_TASK_ID",
    # Iteration
    "IterationRecord",
    "IterationStatus",
    # Hook
    "HookDecision",
    "HookInvocationRecord",
    "HOOK_STATUS_FAILED",
]
