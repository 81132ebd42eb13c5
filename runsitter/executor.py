"""
TaskExecutor - performs pending effects and commits their results.

The executor is the only component that does work. It is invoked by hooks
(or by a driver through Orchestrator.run_effect), never by the iteration
controller on its own initiative.

Execution flow for one effect:
1. Load the EffectRecord; a committed result is returned as-is (no re-run)
2. Claim the effect (at most one executor performs it)
3. Perform it:
   - local: call the TaskDef's fn(args)
   - delegated: dispatch to the Worker registered for the definition kind
4. TransientError is retried with exponential backoff
5. Commit the single EffectResult (failures are committed as failed results)
"""

import copy
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional

from runsitter.clock import utcnow
from runsitter.config import RetryPolicy
from runsitter.errors import (
    EffectAlreadyResolvedError,
    EffectInFlightError,
    InvalidEffectError,
    PermanentError,
    TransientError,
)
from runsitter.registry import ProcessRegistry
from runsitter.run_store import RunStore
from runsitter.schemas import NOW_TASK_ID, EffectKind, EffectRecord, EffectResult
from runsitter.state import ready_effects
from runsitter.tasks import get_task
from runsitter.utils import retry_with_backoff
from runsitter.workers import WorkerRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


class TaskExecutor:
    """
    Executes delegated and local effects against the ledger.

    Usage:
        executor = TaskExecutor(store, processes, workers)
        result = executor.run_effect(run_id, "0000")
        results = executor.run_pending(run_id, max_workers=4)
    """

    def __init__(
        self,
        store: RunStore,
        processes: Optional[ProcessRegistry] = None,
        workers: Optional[WorkerRegistry] = None,
        retry: Optional[RetryPolicy] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        self.store = store
        self.processes = processes or ProcessRegistry()
        self.workers = workers or WorkerRegistry()
        self.retry = retry or RetryPolicy()
        self.max_workers = max_workers

    def run_effect(self, run_id: str, effect_id: str, force: bool = False) -> EffectResult:
        """
        Perform one effect and commit its result.

        Args:
            run_id: Run the effect belongs to
            effect_id: Effect to perform
            force: Take over a claim left by an executor that died mid-flight

        Returns:
            The committed EffectResult (cached if already resolved)

        Raises:
            RunNotFoundError / EffectNotFoundError: Unknown ids
            InvalidEffectError: If the effect is a breakpoint
            EffectInFlightError: If another executor holds the claim
        """
        record = self.store.require_effect(run_id, effect_id)
        if record.result is not None:
            logger.debug(
                f"Effect {effect_id} already resolved, returning cached result",
                extra={"run_id": run_id, "effect_id": effect_id, "event": "effect_cached"},
            )
            return record.result

        if record.is_breakpoint:
            raise InvalidEffectError(
                f"Effect {effect_id} is a breakpoint; resolve it with resolve_breakpoint"
            )

        if not self.store.claim_effect(run_id, effect_id, force=force):
            current = self.store.require_effect(run_id, effect_id)
            if current.result is not None:
                return current.result
            raise EffectInFlightError(run_id, effect_id)

        logger.info(
            f"Running effect {effect_id} ({record.task_id})",
            extra={
                "run_id": run_id,
                "effect_id": effect_id,
                "event": "effect_started",
                "metadata": {"kind": record.kind.value, "labels": list(record.labels)},
            },
        )

        result = self._execute(record)

        try:
            self.store.put_effect_result(run_id, effect_id, result)
        except EffectAlreadyResolvedError:
            # A forced executor committed first; its result stands.
            committed = self.store.require_effect(run_id, effect_id).result
            logger.warning(
                f"Effect {effect_id} was resolved concurrently, discarding local result",
                extra={"run_id": run_id, "effect_id": effect_id, "event": "effect_race_lost"},
            )
            return committed

        logger.info(
            f"Effect {effect_id} {result.status.value}",
            extra={
                "run_id": run_id,
                "effect_id": effect_id,
                "event": "effect_finished",
                "metadata": {"status": result.status.value, "error": result.error},
            },
        )
        return result

    def _execute(self, record: EffectRecord) -> EffectResult:
        try:
            value = retry_with_backoff(
                lambda: self._perform(record),
                max_attempts=self.retry.max_attempts,
                backoff_seconds=self.retry.backoff_seconds,
                backoff_multiplier=self.retry.backoff_multiplier,
                retry_on=(TransientError,),
                logger=logger,
            )
            json.dumps(value)
        except Exception as e:
            logger.warning(
                f"Effect {record.effect_id} failed: {type(e).__name__}: {e}",
                extra={"run_id": record.run_id, "effect_id": record.effect_id, "event": "effect_failed"},
            )
            return EffectResult.failed(e)
        return EffectResult.succeeded(value)

    def _perform(self, record: EffectRecord) -> Any:
        if record.kind == EffectKind.DELEGATED:
            return self.workers.dispatch(record)

        if record.task_id == NOW_TASK_ID:
            return utcnow().isoformat()

        task = get_task(record.task_id)
        if task is None:
            # Tasks register on import; loading the process imports its module.
            run = self.store.require_run(record.run_id)
            self.processes.resolve(run.process_id)
            task = get_task(record.task_id)
        if task is None or task.fn is None:
            raise PermanentError(f"No local task registered for: {record.task_id}")

        args = (record.input or {}).get("args")
        return task.fn(copy.deepcopy(args))

    def run_pending(self, run_id: str, max_workers: Optional[int] = None) -> dict[str, EffectResult]:
        """
        Perform every ready effect of a run concurrently.

        Ready means pending, unclaimed and not a breakpoint. Effects another
        executor claims first are skipped.

        Returns:
            effect_id -> committed result, in ledger order
        """
        self.store.require_run(run_id)
        ready = ready_effects(self.store.list_effects(run_id))
        if not ready:
            return {}

        workers = max(1, min(max_workers or self.max_workers, len(ready)))
        results: dict[str, EffectResult] = {}
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="runsitter-task") as pool:
            futures = [
                (effect.effect_id, pool.submit(self.run_effect, run_id, effect.effect_id))
                for effect in ready
            ]
            for effect_id, future in futures:
                try:
                    results[effect_id] = future.result()
                except EffectInFlightError:
                    logger.debug(
                        f"Effect {effect_id} claimed elsewhere, skipping",
                        extra={"run_id": run_id, "effect_id": effect_id, "event": "effect_skipped"},
                    )
        return results
