"""
ProcessContext - the ``ctx`` object a process issues effects through.

Every effect-issuing call (task, breakpoint, now, parallel group) gets an id
derived from its position in the call sequence:

    0000, 0001, ...            top-level calls, in call order
    0002.b1.0000               first call of branch 1 of the group at 0002
    0002.b1.0001.b0.0000       nested groups extend the path
    k-review-sprint-3          explicit key (does not consume an ordinal)

Branch scopes are numbered independently, so how far one branch gets never
shifts the ids of its siblings. Each record also stores its parent group id
and branch index, which is the parent/child map of the fan-out.

A call whose effect has a committed result returns it (a failed result raises
EffectExecutionError into the process). A call with no result suspends the
current replay by raising EffectPending.
"""

import functools
import hashlib
import json
import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Iterator, Optional

from runsitter.clock import utcnow
from runsitter.errors import EffectAlreadyResolvedError, EffectExecutionError, ReplayDivergenceError
from runsitter.run_store import RunStore
from runsitter.schemas import (
    BREAKPOINT_TASK_ID,
    NOW_TASK_ID,
    EffectKind,
    EffectRecord,
    EffectResult,
    EffectStatus,
    RunRecord,
)
from runsitter.tasks import TaskContext, TaskDef

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"[^A-Za-z0-9_-]+")


class EffectPending(BaseException):
    """
    Control flow: replay reached effects that have no result yet.

    Derives from BaseException so a broad ``except Exception`` in process
    code does not swallow the suspension.
    """

    def __init__(self, effect_ids: Iterable[str]):
        self.effect_ids = list(effect_ids)
        super().__init__(", ".join(self.effect_ids))


def compute_input_digest(value: Any) -> str:
    """sha256 of the canonical JSON form of an effect input."""
    canonical = json.dumps(value, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()


def _slug(key: Any) -> str:
    slug = _KEY_PATTERN.sub("-", str(key)).strip("-")
    if not slug:
        raise ValueError(f"Effect key has no usable characters: {key!r}")
    return slug


@dataclass
class _Scope:
    prefix: str
    parent_id: Optional[str] = None
    branch_index: Optional[int] = None
    counter: int = 0


@dataclass(frozen=True)
class BranchFailure:
    """
    Marker for a parallel branch that ended in an exception.

    Attributes:
        index: Branch position in the group
        error: {"type", "message"} of the exception
    """
    index: int
    error: dict[str, Any]
    exception: Optional[BaseException] = field(default=None, compare=False, repr=False)

    @classmethod
    def from_exception(cls, index: int, exc: BaseException) -> "BranchFailure":
        return cls(
            index=index,
            error={"type": type(exc).__name__, "message": str(exc)},
            exception=exc,
        )


def failures(results: Iterable[Any]) -> list[BranchFailure]:
    """The BranchFailure entries of a parallel result list."""
    return [r for r in results if isinstance(r, BranchFailure)]


class ParallelCombinator:
    """
    Fan-out/fan-in of independent effect-issuing branches.

    Branches run in input order within one replay. A branch that suspends
    does not stop later branches; a branch that raises is recorded as a
    BranchFailure and the others keep going. The group only returns once
    every branch is terminal, as a list in input order.
    """

    def __init__(self, ctx: "ProcessContext"):
        self._ctx = ctx

    def all(self, branches: Iterable[Callable[[], Any]], *, key: Any = None) -> list[Any]:
        branches = list(branches)
        group_id = self._ctx._next_effect_id(key)

        results: list[Any] = []
        pending: list[str] = []
        for index, branch in enumerate(branches):
            with self._ctx._branch_scope(group_id, index):
                try:
                    results.append(branch())
                except EffectPending as exc:
                    pending.extend(exc.effect_ids)
                    results.append(None)
                except ReplayDivergenceError:
                    raise
                except Exception as exc:
                    results.append(BranchFailure.from_exception(index, exc))

        if pending:
            raise EffectPending(pending)
        return results

    def map(
        self,
        task_def: TaskDef,
        args_list: Iterable[Any],
        *,
        key: Any = None,
        labels: Iterable[str] = (),
    ) -> list[Any]:
        """Run one task per args entry as parallel branches."""
        labels = tuple(labels)
        return self.all(
            [functools.partial(self._ctx.task, task_def, args, labels=labels) for args in args_list],
            key=key,
        )


class ProcessContext:
    """
    The interface a process sees during one replay.

    A fresh context is built for every replay; its only state is the position
    bookkeeping of the current invocation.
    """

    def __init__(self, run: RunRecord, store: RunStore):
        self._run = run
        self._store = store
        self._scopes: list[_Scope] = [_Scope(prefix="")]
        self._visited: set[str] = set()
        self.visited: list[str] = []
        self.requested: list[str] = []
        self.parallel = ParallelCombinator(self)

    @property
    def run_id(self) -> str:
        return self._run.run_id

    @property
    def process_id(self) -> str:
        return self._run.process_id

    # -- position bookkeeping -------------------------------------------------

    def _next_effect_id(self, key: Any = None) -> str:
        scope = self._scopes[-1]
        if key is not None:
            effect_id = f"{scope.prefix}k-{_slug(key)}"
            if effect_id in self._visited:
                raise ValueError(f"Effect key used twice in one run: {key!r}")
            return effect_id
        effect_id = f"{scope.prefix}{scope.counter:04d}"
        scope.counter += 1
        return effect_id

    @contextmanager
    def _branch_scope(self, group_id: str, index: int) -> Iterator[None]:
        self._scopes.append(_Scope(
            prefix=f"{group_id}.b{index}.",
            parent_id=group_id,
            branch_index=index,
        ))
        try:
            yield
        finally:
            self._scopes.pop()

    def _visit(self, effect_id: str) -> None:
        self._visited.add(effect_id)
        self.visited.append(effect_id)

    # -- effect issuing -------------------------------------------------------

    def _issue(
        self,
        kind: EffectKind,
        task_id: str,
        make_input: Callable[[str], Any],
        labels: tuple[str, ...] = (),
        key: Any = None,
    ) -> EffectRecord:
        """
        Reattach to (or request) the effect at the current position.

        Returns the stored record if it exists and matches this call.
        Raises EffectPending after requesting a new one.
        """
        effect_id = self._next_effect_id(key)
        self._visit(effect_id)
        effect_input = make_input(effect_id)
        digest = compute_input_digest(effect_input)

        record = self._store.get_effect(self.run_id, effect_id)
        if record is None:
            scope = self._scopes[-1]
            record = EffectRecord(
                effect_id=effect_id,
                run_id=self.run_id,
                kind=kind,
                task_id=task_id,
                input=effect_input,
                input_digest=digest,
                labels=labels,
                parent_id=scope.parent_id,
                branch_index=scope.branch_index,
            )
            self._store.request_effect(record)
            self.requested.append(effect_id)
            logger.debug(
                f"Requested effect {effect_id} ({task_id})",
                extra={"run_id": self.run_id, "effect_id": effect_id, "event": "effect_requested"},
            )
            raise EffectPending([effect_id])

        if record.kind != kind or record.task_id != task_id:
            raise ReplayDivergenceError(
                self.run_id,
                effect_id,
                f"recorded {record.kind.value}:{record.task_id}, replay issued {kind.value}:{task_id}",
            )
        if record.input_digest != digest:
            raise ReplayDivergenceError(
                self.run_id,
                effect_id,
                f"input of {task_id} differs from the recorded input",
            )
        return record

    @staticmethod
    def _value_of(record: EffectRecord) -> Any:
        if record.result is None:
            raise EffectPending([record.effect_id])
        if record.result.status == EffectStatus.FAILED:
            error = record.result.error or {}
            raise EffectExecutionError(
                record.effect_id,
                error.get("message", "effect failed"),
                error=error,
            )
        return record.result.value

    def task(
        self,
        task_def: TaskDef,
        args: Any = None,
        *,
        key: Any = None,
        labels: Iterable[str] = (),
    ) -> Any:
        """
        Issue a task effect and return its result.

        Raises:
            EffectExecutionError: If the effect's committed result is failed
        """
        def make_input(effect_id: str) -> dict[str, Any]:
            if task_def.kind == EffectKind.LOCAL:
                return {"args": args}
            task_ctx = TaskContext(run_id=self.run_id, effect_id=effect_id)
            return {"args": args, "definition": task_def.definition(args, task_ctx)}

        record = self._issue(
            task_def.kind,
            task_def.name,
            make_input,
            labels=task_def.labels + tuple(labels),
            key=key,
        )
        return self._value_of(record)

    def breakpoint(
        self,
        question: str,
        *,
        title: Optional[str] = None,
        context: Any = None,
        key: Any = None,
    ) -> Any:
        """
        Pause the run until a human resolves this breakpoint.

        Returns:
            The resolution committed by resolve_breakpoint
        """
        def make_input(effect_id: str) -> dict[str, Any]:
            return {"question": question, "title": title, "context": context}

        record = self._issue(
            EffectKind.BREAKPOINT,
            BREAKPOINT_TASK_ID,
            make_input,
            labels=("breakpoint",),
            key=key,
        )
        return self._value_of(record)

    def now(self) -> datetime:
        """
        Replay-safe current time.

        The first reach records the clock reading in the ledger; every later
        replay returns that same reading.
        """
        try:
            record = self._issue(EffectKind.LOCAL, NOW_TASK_ID, lambda effect_id: {})
        except EffectPending as exc:
            record = self._store.require_effect(self.run_id, exc.effect_ids[0])

        if record.result is None:
            try:
                record = self._store.put_effect_result(
                    self.run_id,
                    record.effect_id,
                    EffectResult.succeeded(utcnow().isoformat()),
                )
            except EffectAlreadyResolvedError:
                # A concurrent replay recorded it first; use its reading
                record = self._store.require_effect(self.run_id, record.effect_id)
        return datetime.fromisoformat(self._value_of(record))

    def log(self, message: str, **fields: Any) -> None:
        """Log a line on behalf of the process."""
        logger.info(
            message,
            extra={"run_id": self.run_id, "event": "process_log", "metadata": fields},
        )
