"""
Run state derivation.

RunRecord.state is never independent truth. It is recomputed from the ledger
(effects + output) every time the controller persists a run, so a crash
between a ledger write and a run.json write heals on the next iterate.
"""

from collections import Counter
from typing import Any, Optional

from runsitter.schemas import EffectRecord, RunOutput, RunRecord, RunState


def pending_effects(effects: list[EffectRecord]) -> list[EffectRecord]:
    """Effects without a committed result, in ledger order."""
    return [e for e in effects if e.result is None]


def waiting_breakpoints(effects: list[EffectRecord]) -> list[EffectRecord]:
    """Unresolved breakpoints, in ledger order."""
    return [e for e in effects if e.is_breakpoint and e.result is None]


def ready_effects(effects: list[EffectRecord]) -> list[EffectRecord]:
    """Pending effects a task executor may pick up (unclaimed, not breakpoints)."""
    return [
        e for e in effects
        if e.result is None and not e.is_breakpoint and e.claimed_at is None
    ]


def derive_state(
    run: RunRecord,
    effects: list[EffectRecord],
    output: Optional[RunOutput] = None,
) -> RunState:
    """
    Recompute a run's state from ledger contents.

    - output present          -> its terminal status
    - unresolved breakpoint   -> waiting
    - any recorded effect or prior iteration -> running
    - otherwise               -> pending
    """
    if output is not None:
        return output.status
    if waiting_breakpoints(effects):
        return RunState.WAITING
    if effects or run.iteration_count > 0:
        return RunState.RUNNING
    return RunState.PENDING


def _effect_summary(effect: EffectRecord) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "effectId": effect.effect_id,
        "kind": effect.kind.value,
        "taskId": effect.task_id,
        "status": effect.status.value,
    }
    if effect.labels:
        summary["labels"] = list(effect.labels)
    return summary


def summarize(
    run: RunRecord,
    effects: list[EffectRecord],
    output: Optional[RunOutput] = None,
) -> dict[str, Any]:
    """
    Build the ``runState`` object handed to hooks.

    Example:
        {
            "state": "running",
            "pendingEffects": [{"effectId": "0000", "kind": "delegated", ...}],
            "pendingByKind": {"delegated": 1},
            "waitingBreakpoints": [],
            "effectCount": 1
        }
    """
    pending = pending_effects(effects)
    by_kind = Counter(e.kind.value for e in pending)
    return {
        "state": derive_state(run, effects, output).value,
        "pendingEffects": [_effect_summary(e) for e in pending],
        "pendingByKind": dict(sorted(by_kind.items())),
        "waitingBreakpoints": [e.effect_id for e in waiting_breakpoints(effects)],
        "effectCount": len(effects),
    }
