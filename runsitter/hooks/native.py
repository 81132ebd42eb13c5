"""
Built-in hook that runs every ready effect of a run.

Register it in-process:

    hooks:
      iteration-start:
        - type: callable
          target: runsitter.hooks.native:run_pending_effects

or as a command hook for deployments that keep hooks out of process:

    hooks:
      iteration-start:
        - type: command
          command: ["runsitter", "hook", "native"]
"""

import logging
from typing import Any, Optional

from runsitter.errors import HookExecutionError
from runsitter.hooks.base import HookRuntime
from runsitter.schemas import EffectStatus

logger = logging.getLogger(__name__)


def run_pending_effects(payload: dict[str, Any], runtime: Optional[HookRuntime]) -> dict[str, Any]:
    """
    Execute all ready effects of ``payload["runId"]``.

    Returns:
        Decision {action, status, count, reason}
    """
    if runtime is None:
        raise HookExecutionError("native", "run_pending_effects needs a HookRuntime")
    run_id = payload.get("runId")
    if not run_id:
        raise HookExecutionError("native", "payload has no runId")

    results = runtime.task_executor.run_pending(run_id, max_workers=runtime.max_task_workers)
    failed = [eid for eid, r in results.items() if r.status == EffectStatus.FAILED]

    if not results:
        return {"action": "noop", "status": "ok", "count": 0, "reason": "no-ready-effects"}

    logger.info(
        f"Executed {len(results)} effect(s) for run {run_id} ({len(failed)} failed)",
        extra={"run_id": run_id, "event": "native_hook_executed", "metadata": {"failed": failed}},
    )
    return {
        "action": "executed-tasks",
        "status": "ok",
        "count": len(results),
        "reason": f"{len(failed)} failed" if failed else "all-succeeded",
    }
