"""
Orchestrator - the operation surface drivers call.

    create_run(process_id, inputs)                  -> run_id
    iterate(run_id)                                 -> IterationRecord
    status(run_id)                                  -> {state, effects, output?}
    run_effect(run_id, effect_id)                   -> EffectResult
    resolve_breakpoint(run_id, breakpoint_id, res)  -> EffectRecord
    loop(run_id, max_iterations)                    -> [IterationRecord]

Usage:
    orch = Orchestrator.from_config(load_config())
    run_id = orch.create_run("scrum", {"project": "atlas"})
    for record in orch.loop(run_id):
        print(record.to_dict())
"""

import json
import logging
from typing import Any, Callable, Optional

from runsitter.config import RunsitterConfig
from runsitter.controller import IterationController
from runsitter.errors import EffectAlreadyResolvedError, InvalidEffectError
from runsitter.executor import TaskExecutor
from runsitter.hooks import HookDispatcher, HookRegistry, HookRuntime
from runsitter.registry import ProcessRegistry
from runsitter.replay import ProcessExecutor
from runsitter.run_store import FileRunStore, InMemoryRunStore, RunStore
from runsitter.schemas import EffectRecord, EffectResult, IterationRecord, IterationStatus
from runsitter.state import derive_state, summarize
from runsitter.workers import WorkerRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 100


class Orchestrator:
    """Facade wiring the ledger, replay engine, hooks and task executor."""

    def __init__(
        self,
        store: Optional[RunStore] = None,
        processes: Optional[ProcessRegistry] = None,
        hooks: Optional[HookRegistry] = None,
        workers: Optional[WorkerRegistry] = None,
        config: Optional[RunsitterConfig] = None,
    ):
        self.config = config or RunsitterConfig.default()
        self.store = store if store is not None else InMemoryRunStore()
        self.processes = processes or ProcessRegistry(dict(self.config.processes))
        self.hooks = hooks or HookRegistry()
        self.workers = workers or WorkerRegistry()

        self.task_executor = TaskExecutor(
            self.store,
            processes=self.processes,
            workers=self.workers,
            retry=self.config.task_retry,
            max_workers=self.config.max_task_workers,
        )
        self.runtime = HookRuntime(
            store=self.store,
            task_executor=self.task_executor,
            max_task_workers=self.config.max_task_workers,
        )
        self.dispatcher = HookDispatcher(self.hooks, self.store, self.runtime)
        self.process_executor = ProcessExecutor(self.store, self.processes)
        self.controller = IterationController(self.store, self.process_executor, self.dispatcher)

    @classmethod
    def from_config(cls, config: RunsitterConfig) -> "Orchestrator":
        """Build a file-backed orchestrator from configuration."""
        return cls(
            store=FileRunStore(config.runs_root),
            processes=ProcessRegistry(dict(config.processes)),
            hooks=HookRegistry.create_default(config),
            workers=WorkerRegistry.create_default(config),
            config=config,
        )

    def register_process(self, process_id: str, process: Callable[..., Any] | str) -> None:
        self.processes.register(process_id, process)

    # -- operations -----------------------------------------------------------

    def create_run(self, process_id: str, inputs: Any = None) -> str:
        """
        Create a run.

        Raises:
            ProcessNotFoundError: If the process id cannot be resolved
            ValueError: If inputs are not JSON-serializable
        """
        self.processes.resolve(process_id)
        try:
            json.dumps(inputs)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Run inputs must be JSON-serializable: {e}") from e

        run = self.store.create_run(process_id, inputs)
        logger.info(
            f"Created run {run.run_id} for process {process_id}",
            extra={"run_id": run.run_id, "event": "run_created"},
        )
        return run.run_id

    def iterate(self, run_id: str) -> IterationRecord:
        return self.controller.iterate(run_id)

    def status(self, run_id: str) -> dict[str, Any]:
        """State derived from the ledger, plus every effect record."""
        run = self.store.require_run(run_id)
        effects = self.store.list_effects(run_id)
        output = self.store.get_output(run_id)

        result: dict[str, Any] = {
            "runId": run.run_id,
            "processId": run.process_id,
            "state": derive_state(run, effects, output).value,
            "iteration": run.iteration_count,
            "summary": summarize(run, effects, output),
            "effects": [e.to_dict() for e in effects],
        }
        if output is not None:
            result["output"] = output.to_dict()
        return result

    def run_effect(self, run_id: str, effect_id: str, force: bool = False) -> EffectResult:
        return self.task_executor.run_effect(run_id, effect_id, force=force)

    def resolve_breakpoint(self, run_id: str, breakpoint_id: str, resolution: Any) -> EffectRecord:
        """
        Commit a human resolution for a breakpoint.

        The resolution becomes the return value of ctx.breakpoint() on the
        next replay.

        Raises:
            EffectNotFoundError: Unknown breakpoint id
            InvalidEffectError: The effect is not a breakpoint
            EffectAlreadyResolvedError: The breakpoint was already resolved
        """
        record = self.store.require_effect(run_id, breakpoint_id)
        if not record.is_breakpoint:
            raise InvalidEffectError(
                f"Effect {breakpoint_id} is a {record.kind.value} effect, not a breakpoint"
            )
        if record.result is not None:
            raise EffectAlreadyResolvedError(run_id, breakpoint_id)
        try:
            json.dumps(resolution)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Breakpoint resolution must be JSON-serializable: {e}") from e

        resolved = self.store.put_effect_result(run_id, breakpoint_id, EffectResult.succeeded(resolution))
        self.store.append_event(run_id, "BREAKPOINT_RESOLVED", {"effect_id": breakpoint_id})
        logger.info(
            f"Resolved breakpoint {breakpoint_id} of run {run_id}",
            extra={"run_id": run_id, "effect_id": breakpoint_id, "event": "breakpoint_resolved"},
        )
        return resolved

    def loop(self, run_id: str, max_iterations: int = DEFAULT_MAX_ITERATIONS) -> list[IterationRecord]:
        """
        Driver convenience: iterate while the run reports ``executed``.

        Stops at the first waiting/completed/failed/none record or after
        max_iterations calls.
        """
        records: list[IterationRecord] = []
        for _ in range(max_iterations):
            record = self.iterate(run_id)
            records.append(record)
            if record.status != IterationStatus.EXECUTED:
                break
        return records
