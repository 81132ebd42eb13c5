"""
HookDispatcher - invokes every hook registered on an extension point.

The dispatcher never performs work itself. Only the hooks it invokes may
call the TaskExecutor, by their own logic.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from runsitter.hooks.base import HookRuntime
from runsitter.hooks.registry import HookRegistry
from runsitter.run_store import RunStore
from runsitter.schemas import HookDecision, HookInvocationRecord

logger = logging.getLogger(__name__)


@dataclass
class HookDispatchResult:
    """Merged decision plus the per-hook audit records."""
    decision: HookDecision = field(default_factory=HookDecision)
    invocations: list[HookInvocationRecord] = field(default_factory=list)

    @property
    def hook_count(self) -> int:
        return len(self.invocations)

    def merge(self, other: "HookDispatchResult") -> "HookDispatchResult":
        return HookDispatchResult(
            decision=self.decision.merge(other.decision),
            invocations=self.invocations + other.invocations,
        )


class HookDispatcher:
    """
    Dispatch payloads to hooks and merge their decisions.

    Each invocation is written to the run journal (HOOK_INVOKED) for
    auditing.
    """

    def __init__(
        self,
        registry: HookRegistry,
        store: RunStore,
        runtime: Optional[HookRuntime] = None,
    ):
        self.registry = registry
        self.store = store
        self.runtime = runtime

    def dispatch(self, extension_point: str, payload: dict[str, Any]) -> HookDispatchResult:
        """
        Invoke all hooks on an extension point, in order.

        Raises:
            HookExecutionError: The first hard failure (later hooks do not run)
        """
        result = HookDispatchResult()
        run_id = payload.get("runId")

        for hook in self.registry.get(extension_point):
            logger.debug(
                f"Invoking hook {hook.name} for {extension_point}",
                extra={"run_id": run_id, "event": "hook_invoked"},
            )
            record = hook.invoke(extension_point, payload, self.runtime)
            result.invocations.append(record)
            result.decision = result.decision.merge(record.decision)

            if run_id:
                self.store.append_event(run_id, "HOOK_INVOKED", {
                    "extension_point": extension_point,
                    "hook": record.hook,
                    "exit_code": record.exit_code,
                    "decision": record.decision.to_dict(),
                })
            logger.info(
                f"Hook {hook.name} on {extension_point}: "
                f"action={record.decision.action} status={record.decision.status} count={record.decision.count}",
                extra={
                    "run_id": run_id,
                    "event": "hook_decision",
                    "metadata": record.decision.to_dict(),
                },
            )

        return result
