"""
IterationController - the single entry point that advances a run.

One iterate call is one synchronous step:

1. Load the run. A terminal run reports its terminal status once, then
   ``none``; effect records are never touched again. A run still blocked
   on the breakpoints it was last reported waiting on is a no-op.
2. Take the run lease (compare-and-swap on version), then replay the
   process against the ledger. Blocked on breakpoints -> report
   ``waiting`` without consulting the iteration hooks; "breakpoint-reached"
   fires only for breakpoints not already reported.
3. Otherwise dispatch "iteration-start", replay again, dispatch
   "iteration-end".
4. Persist the state derived from the ledger and report:
   - ``completed`` / ``failed``  the replay finished and the ledger did not
     move during this call (the output is written here)
   - ``executed`` the ledger changed or a hook reported work done
   - ``waiting``  nothing moved (pending effects nobody ran)

A hook decision with ``status: failed`` never fails the run; it shows up in
the record's ``hookStatus``.

The controller never performs work itself; hooks decide and execute.
"""

import logging
from dataclasses import replace
from typing import Any, Optional

from runsitter.errors import ConcurrentIterationError, EffectAlreadyResolvedError
from runsitter.hooks import (
    BREAKPOINT_REACHED,
    ITERATION_END,
    ITERATION_START,
    HookDispatcher,
    HookDispatchResult,
)
from runsitter.replay import ProcessExecutor, ReplayOutcome, ReplayStatus
from runsitter.run_store import RunStore
from runsitter.schemas import (
    EffectRecord,
    IterationRecord,
    IterationStatus,
    RunOutput,
    RunRecord,
    RunState,
)
from runsitter.state import derive_state, ready_effects, summarize, waiting_breakpoints

logger = logging.getLogger(__name__)


class IterationController:
    """
    Advances runs one step at a time.

    Usage:
        controller = IterationController(store, process_executor, dispatcher)
        record = controller.iterate(run_id)
        if record.status == IterationStatus.EXECUTED:
            ...  # call again
    """

    def __init__(
        self,
        store: RunStore,
        process_executor: ProcessExecutor,
        dispatcher: HookDispatcher,
    ):
        self.store = store
        self.process_executor = process_executor
        self.dispatcher = dispatcher

    def iterate(self, run_id: str) -> IterationRecord:
        """
        Advance a run by one step.

        Returns:
            IterationRecord with a status from the closed vocabulary

        Raises:
            RunNotFoundError: Unknown run
            HookExecutionError: A hook failed hard (run fields are restored)
            ConcurrentIterationError: Another iterate call holds the run
            ProcessNotFoundError: The run's process cannot be resolved
        """
        run = self.store.require_run(run_id)
        output = self.store.get_output(run_id)
        if output is not None or run.state.is_terminal:
            return self._report_terminal(run, output)

        if self._still_waiting(run, self.store.list_effects(run_id)):
            record = self._record(
                run,
                IterationStatus.WAITING,
                reason="breakpoint-unresolved",
                extra={"breakpoints": list(run.waiting_on)},
            )
            self._log(record)
            return record

        return self._advance(run)

    # -- terminal -------------------------------------------------------------

    def _report_terminal(self, run: RunRecord, output: Optional[RunOutput]) -> IterationRecord:
        state = output.status if output is not None else run.state
        terminal = IterationStatus(state.value)

        if run.state == state and run.last_status == terminal.value:
            record = self._record(run, IterationStatus.NONE, reason="run-already-terminal")
            self._log(record)
            return record

        stored = self.store.put_run(
            replace(run, state=state, last_status=terminal.value),
            expected_version=run.version,
        )
        record = self._record(stored, terminal, reason=f"run-{state.value}")
        self._journal(record)
        return record

    def _finish(self, leased: RunRecord, outcome: ReplayOutcome, hooks: HookDispatchResult) -> IterationRecord:
        """Record the terminal output of a completed or failed replay."""
        state = RunState.COMPLETED if outcome.status == ReplayStatus.COMPLETED else RunState.FAILED
        output = RunOutput(status=state, value=outcome.value, error=outcome.error)
        try:
            self.store.put_output(leased.run_id, output)
        except EffectAlreadyResolvedError:
            output = self.store.get_output(leased.run_id)
            state = output.status

        status = IterationStatus(state.value)
        stored = self.store.put_run(
            replace(leased, state=state, last_status=status.value, waiting_on=()),
            expected_version=leased.version,
        )
        self.store.append_event(
            leased.run_id,
            "RUN_COMPLETED" if state == RunState.COMPLETED else "RUN_FAILED",
            {"error": output.error} if output.error else {},
        )

        if outcome.divergence:
            reason = "replay-diverged"
        elif state == RunState.FAILED:
            reason = "process-failed"
        else:
            reason = "process-completed"

        extra = {"error": output.error} if output.error else None
        record = self._record(stored, status, hooks=hooks, reason=reason, extra=extra)
        self._journal(record)
        return record

    # -- breakpoints ----------------------------------------------------------

    @staticmethod
    def _still_waiting(run: RunRecord, effects: list[EffectRecord]) -> bool:
        """True if the ledger has not moved since the run was reported waiting."""
        if run.state != RunState.WAITING or not run.waiting_on:
            return False
        open_ids = tuple(e.effect_id for e in waiting_breakpoints(effects))
        return open_ids == run.waiting_on and not ready_effects(effects)

    @staticmethod
    def _blocking_breakpoints(outcome: ReplayOutcome, effects: list[EffectRecord]) -> list[str]:
        if outcome.status != ReplayStatus.SUSPENDED or ready_effects(effects):
            return []
        return [e.effect_id for e in waiting_breakpoints(effects)]

    def _notify_breakpoints(
        self,
        run: RunRecord,
        leased: RunRecord,
        effects: list[EffectRecord],
        blocked: list[str],
    ) -> Optional[HookDispatchResult]:
        """Dispatch breakpoint-reached for breakpoints not reported before."""
        reached = [effect_id for effect_id in blocked if effect_id not in run.waiting_on]
        if not reached:
            return None
        hooks = self.dispatcher.dispatch(BREAKPOINT_REACHED, self._payload(leased, effects))
        logger.info(
            f"Run {run.run_id} waiting on breakpoint(s) {', '.join(reached)}",
            extra={"run_id": run.run_id, "event": "breakpoint_reached", "metadata": {"hooks": hooks.hook_count}},
        )
        return hooks

    def _wait_on_breakpoints(
        self,
        leased: RunRecord,
        blocked: list[str],
        notified: Optional[HookDispatchResult],
    ) -> IterationRecord:
        stored = self.store.put_run(
            replace(
                leased,
                state=RunState.WAITING,
                last_status=IterationStatus.WAITING.value,
                waiting_on=tuple(blocked),
            ),
            expected_version=leased.version,
        )
        record = self._record(
            stored,
            IterationStatus.WAITING,
            reason="breakpoint-reached" if notified is not None else "breakpoint-unresolved",
            extra={"breakpoints": blocked},
        )
        self._journal(record)
        return record

    # -- hook-driven step -----------------------------------------------------

    def _advance(self, run: RunRecord) -> IterationRecord:
        leased = self.store.put_run(
            replace(run, state=RunState.RUNNING, iteration_count=run.iteration_count + 1),
            expected_version=run.version,
        )

        # Hook failures inside this block put the run back as it was
        try:
            before = self._fingerprint(run.run_id)
            outcome = self.process_executor.replay(leased)
            effects = self.store.list_effects(run.run_id)
            blocked = self._blocking_breakpoints(outcome, effects)
            if blocked:
                notified = self._notify_breakpoints(run, leased, effects, blocked)
            else:
                start = self.dispatcher.dispatch(ITERATION_START, self._payload(leased))
                outcome = self.process_executor.replay(leased)
                end = self.dispatcher.dispatch(ITERATION_END, self._payload(leased, outcome=outcome))
        except Exception:
            self._restore(run, leased)
            raise

        if blocked:
            return self._wait_on_breakpoints(leased, blocked, notified)

        hooks = start.merge(end)
        decision = hooks.decision
        ledger_changed = self._fingerprint(run.run_id) != before

        # A replay that finished while the ledger moved reports executed; the
        # output is written by the next step.
        if outcome.status != ReplayStatus.SUSPENDED and not ledger_changed:
            return self._finish(leased, outcome, hooks)

        effects = self.store.list_effects(run.run_id)
        state = derive_state(leased, effects)
        open_ids = {e.effect_id for e in waiting_breakpoints(effects)}

        if ledger_changed or (decision.count or 0) > 0:
            status = IterationStatus.EXECUTED
            reason = decision.reason
        else:
            status = IterationStatus.WAITING
            reason = decision.reason or "no-progress"
        if decision.failed and reason is None:
            reason = "hook-reported-failure"

        stored = self.store.put_run(
            replace(
                leased,
                state=state,
                last_status=status.value,
                waiting_on=tuple(i for i in run.waiting_on if i in open_ids),
            ),
            expected_version=leased.version,
        )
        record = self._record(stored, status, hooks=hooks, reason=reason)
        self._journal(record)
        return record

    def _restore(self, original: RunRecord, leased: RunRecord) -> None:
        """Put back the fields the lease changed."""
        restored = replace(
            leased,
            state=original.state,
            iteration_count=original.iteration_count,
            last_status=original.last_status,
        )
        try:
            self.store.put_run(restored, expected_version=leased.version)
        except ConcurrentIterationError as e:
            logger.error(
                f"Could not restore run {original.run_id} after a failed iteration: {e}",
                extra={"run_id": original.run_id, "event": "restore_failed"},
            )

    # -- helpers --------------------------------------------------------------

    def _fingerprint(self, run_id: str) -> tuple[tuple[str, str], ...]:
        return tuple((e.effect_id, e.status.value) for e in self.store.list_effects(run_id))

    def _payload(
        self,
        run: RunRecord,
        effects: Optional[list[EffectRecord]] = None,
        outcome: Optional[ReplayOutcome] = None,
    ) -> dict[str, Any]:
        if effects is None:
            effects = self.store.list_effects(run.run_id)
        payload: dict[str, Any] = {
            "runId": run.run_id,
            "processId": run.process_id,
            "iteration": run.iteration_count,
            "runState": summarize(run, effects),
        }
        if self.store.runs_root is not None:
            payload["runsRoot"] = str(self.store.runs_root)
        if outcome is not None:
            payload["replayStatus"] = outcome.status.value
        return payload

    @staticmethod
    def _record(
        run: RunRecord,
        status: IterationStatus,
        hooks: Optional[HookDispatchResult] = None,
        reason: Optional[str] = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> IterationRecord:
        decision = hooks.decision if hooks is not None and hooks.hook_count else None
        return IterationRecord(
            iteration=run.iteration_count,
            status=status,
            run_id=run.run_id,
            process_id=run.process_id,
            action=decision.action if decision else None,
            reason=reason,
            count=decision.count if decision else None,
            hook_status=decision.status if decision else None,
            run_state=run.state.value,
            extra=extra or {},
        )

    def _journal(self, record: IterationRecord) -> None:
        self.store.append_event(record.run_id, "ITERATION", record.to_dict())
        self._log(record)

    @staticmethod
    def _log(record: IterationRecord) -> None:
        logger.info(
            f"Iteration {record.iteration} of run {record.run_id}: {record.status.value}",
            extra={"run_id": record.run_id, "event": "iteration", "metadata": record.to_dict()},
        )
