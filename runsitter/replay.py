"""
ProcessExecutor - the replay engine.

A process is re-run from the top on every invocation. Effect-issuing calls
whose result is already in the ledger return immediately; the first call
without a result suspends the invocation. Repeated replays against an
unchanged ledger always reach the same suspension point.

Replay flow:
1. Resolve the run's process callable
2. Build a fresh ProcessContext and call process(inputs, ctx)
3. Map how the call ended to a ReplayOutcome:
   - returned          -> completed (value must be JSON-serializable)
   - EffectPending     -> suspended (pending effect ids collected)
   - divergence        -> failed, divergence=True (always fatal)
   - other exception   -> failed (the process's own terminal failure)
4. Cross-check: every effect recorded in the ledger must have been revisited,
   otherwise the process took a different path given identical results
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from runsitter.context import EffectPending, ProcessContext
from runsitter.errors import ReplayDivergenceError
from runsitter.registry import ProcessRegistry
from runsitter.run_store import RunStore
from runsitter.schemas import EffectRecord, RunRecord

logger = logging.getLogger(__name__)


class ReplayStatus(str, Enum):
    """How one replay ended."""
    COMPLETED = "completed"
    SUSPENDED = "suspended"
    FAILED = "failed"


@dataclass
class ReplayOutcome:
    """
    Result of replaying a process once.

    Attributes:
        status: completed, suspended or failed
        value: Process return value (completed)
        error: {"type", "message"} (failed)
        pending_effect_ids: Effects the process is blocked on (suspended)
        requested_effect_ids: Effects written to the ledger by this replay
        divergence: True if failure was a ReplayDivergenceError
    """
    status: ReplayStatus
    value: Any = None
    error: Optional[dict[str, Any]] = None
    pending_effect_ids: list[str] = field(default_factory=list)
    requested_effect_ids: list[str] = field(default_factory=list)
    divergence: bool = False

    @property
    def ledger_changed(self) -> bool:
        return bool(self.requested_effect_ids)

    def waiting_breakpoints(self, effects: list[EffectRecord]) -> list[EffectRecord]:
        """Unresolved breakpoints among the pending effects."""
        pending = set(self.pending_effect_ids)
        return [e for e in effects if e.effect_id in pending and e.is_breakpoint and not e.is_resolved]


def _error_info(exc: BaseException) -> dict[str, Any]:
    return {"type": type(exc).__name__, "message": str(exc)}


class ProcessExecutor:
    """
    Replays processes against the ledger.

    The executor never performs work. It only reads results, and writes
    pending requests (plus intrinsic values such as ctx.now()).
    """

    def __init__(self, store: RunStore, processes: ProcessRegistry):
        self._store = store
        self._processes = processes

    def replay(self, run: RunRecord) -> ReplayOutcome:
        """
        Replay the run's process once.

        Raises:
            ProcessNotFoundError: If the process id cannot be resolved
        """
        process = self._processes.resolve(run.process_id)
        ctx = ProcessContext(run, self._store)

        try:
            value = process(copy.deepcopy(run.inputs), ctx)
        except EffectPending as exc:
            outcome = ReplayOutcome(
                status=ReplayStatus.SUSPENDED,
                pending_effect_ids=list(dict.fromkeys(exc.effect_ids)),
            )
        except ReplayDivergenceError as exc:
            return self._diverged(run, ctx, exc)
        except Exception as exc:
            logger.warning(
                f"Process {run.process_id} raised {type(exc).__name__}: {exc}",
                extra={"run_id": run.run_id, "event": "process_failed"},
            )
            outcome = ReplayOutcome(status=ReplayStatus.FAILED, error=_error_info(exc))
        else:
            outcome = self._completed(value)

        outcome.requested_effect_ids = list(ctx.requested)

        try:
            self._check_unvisited(run, ctx)
        except ReplayDivergenceError as exc:
            return self._diverged(run, ctx, exc)

        logger.debug(
            f"Replay of {run.run_id} ended {outcome.status.value}",
            extra={
                "run_id": run.run_id,
                "event": "replay_finished",
                "metadata": {
                    "status": outcome.status.value,
                    "visited": len(ctx.visited),
                    "requested": outcome.requested_effect_ids,
                    "pending": outcome.pending_effect_ids,
                },
            },
        )
        return outcome

    @staticmethod
    def _completed(value: Any) -> ReplayOutcome:
        try:
            json.dumps(value)
        except (TypeError, ValueError) as exc:
            return ReplayOutcome(
                status=ReplayStatus.FAILED,
                error={"type": type(exc).__name__, "message": f"Process output is not JSON-serializable: {exc}"},
            )
        return ReplayOutcome(status=ReplayStatus.COMPLETED, value=value)

    def _check_unvisited(self, run: RunRecord, ctx: ProcessContext) -> None:
        visited = set(ctx.visited)
        for record in self._store.list_effects(run.run_id):
            if record.effect_id not in visited:
                raise ReplayDivergenceError(
                    run.run_id,
                    record.effect_id,
                    f"recorded effect {record.task_id} was not reached by replay",
                )

    @staticmethod
    def _diverged(run: RunRecord, ctx: ProcessContext, exc: ReplayDivergenceError) -> ReplayOutcome:
        logger.error(
            str(exc),
            extra={"run_id": run.run_id, "effect_id": exc.effect_id, "event": "replay_diverged"},
        )
        return ReplayOutcome(
            status=ReplayStatus.FAILED,
            error=_error_info(exc),
            requested_effect_ids=list(ctx.requested),
            divergence=True,
        )
