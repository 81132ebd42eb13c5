"""
Hook variants.

A hook is an extension program invoked at a named extension point with a
payload, returning a HookDecision. Two variants:

- CommandHook: an external program. Payload JSON on stdin, decision JSON on
  stdout, diagnostics on stderr (captured separately, logged, never parsed).
- CallableHook: a Python callable ``fn(payload, runtime)`` given directly or
  as a "module:function" target. Returns a dict, a HookDecision or None.

Hard failures (nonzero exit, a raising callable, a result that is not a JSON
object) raise HookExecutionError. A decision reporting ``status: failed`` is
the hook's own logical outcome and is returned normally.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence

from runsitter.channels import normalize_command, parse_json_object, run_json_command
from runsitter.errors import HookExecutionError
from runsitter.registry import load_entrypoint
from runsitter.run_store import RunStore
from runsitter.schemas import HookDecision, HookInvocationRecord
from runsitter.utils import truncate

if TYPE_CHECKING:
    from runsitter.executor import TaskExecutor

logger = logging.getLogger(__name__)


@dataclass
class HookRuntime:
    """What an in-process hook may use to do work."""
    store: RunStore
    task_executor: "TaskExecutor"
    max_task_workers: int = 4


class Hook(ABC):
    """Abstract base class for hooks."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable identity used in logs and audit records."""
        pass

    @abstractmethod
    def invoke(
        self,
        extension_point: str,
        payload: dict[str, Any],
        runtime: Optional[HookRuntime] = None,
    ) -> HookInvocationRecord:
        """
        Invoke the hook once.

        Raises:
            HookExecutionError: On hard failure
        """
        pass


def _decision_from(extension_point: str, data: dict[str, Any]) -> HookDecision:
    try:
        return HookDecision.from_dict(data)
    except ValueError as e:
        raise HookExecutionError(extension_point, f"invalid decision: {e}") from e


class CommandHook(Hook):
    """External program hook."""

    def __init__(
        self,
        command: str | Sequence[str],
        env: Optional[dict[str, str]] = None,
        cwd: Optional[str] = None,
    ):
        self.command = normalize_command(command)
        self.env = dict(env or {})
        self.cwd = cwd

    @property
    def name(self) -> str:
        return " ".join(self.command)

    def invoke(
        self,
        extension_point: str,
        payload: dict[str, Any],
        runtime: Optional[HookRuntime] = None,
    ) -> HookInvocationRecord:
        env = dict(self.env)
        env["RUNSITTER_EXTENSION_POINT"] = extension_point
        if payload.get("runId"):
            env["RUNSITTER_RUN_ID"] = str(payload["runId"])
        if runtime is not None and runtime.store.runs_root is not None:
            env["RUNSITTER_RUNS_ROOT"] = str(runtime.store.runs_root)

        try:
            result = run_json_command(self.command, payload, env=env, cwd=self.cwd)
        except OSError as e:
            raise HookExecutionError(extension_point, f"cannot start {self.name}: {e}") from e

        if not result.ok:
            raise HookExecutionError(
                extension_point,
                f"{self.name} exited with code {result.exit_code}: {truncate(result.stderr.strip(), 500)}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )

        try:
            data = parse_json_object(result.stdout)
        except ValueError as e:
            raise HookExecutionError(
                extension_point,
                f"{self.name} wrote an invalid {e}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            ) from e

        return HookInvocationRecord(
            extension_point=extension_point,
            hook=self.name,
            payload=payload,
            raw_stdout=result.stdout,
            exit_code=result.exit_code,
            decision=_decision_from(extension_point, data),
        )


class CallableHook(Hook):
    """In-process hook calling ``fn(payload, runtime)``."""

    def __init__(self, target: str | Callable[..., Any]):
        self.target = target
        self._fn: Optional[Callable[..., Any]] = None if isinstance(target, str) else target

    @property
    def name(self) -> str:
        if isinstance(self.target, str):
            return self.target
        return f"{self.target.__module__}:{getattr(self.target, '__qualname__', repr(self.target))}"

    def _resolve(self, extension_point: str) -> Callable[..., Any]:
        if self._fn is None:
            try:
                self._fn = load_entrypoint(self.target)
            except (ValueError, ImportError, AttributeError, TypeError) as e:
                raise HookExecutionError(extension_point, f"cannot load {self.target}: {e}") from e
        return self._fn

    def invoke(
        self,
        extension_point: str,
        payload: dict[str, Any],
        runtime: Optional[HookRuntime] = None,
    ) -> HookInvocationRecord:
        fn = self._resolve(extension_point)
        try:
            returned = fn(payload, runtime)
        except HookExecutionError:
            raise
        except Exception as e:
            raise HookExecutionError(
                extension_point,
                f"{self.name} raised {type(e).__name__}: {e}",
                exit_code=1,
            ) from e

        if returned is None:
            decision = HookDecision()
        elif isinstance(returned, HookDecision):
            decision = returned
        elif isinstance(returned, dict):
            decision = _decision_from(extension_point, returned)
        else:
            raise HookExecutionError(
                extension_point,
                f"{self.name} returned {type(returned).__name__}, expected a dict",
            )

        return HookInvocationRecord(
            extension_point=extension_point,
            hook=self.name,
            payload=payload,
            raw_stdout="",
            exit_code=0,
            decision=decision,
        )
