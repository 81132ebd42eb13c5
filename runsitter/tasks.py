"""
Task definitions - what a process asks the outside world to do.

A TaskDef names a unit of work. Processes issue it through ctx.task(); the
replay engine turns each call into an EffectRecord; the TaskExecutor later
performs it.

Two kinds:
- delegated: ``build(args, task_ctx)`` returns a definition dict that a
  Worker acts on (e.g. {"kind": "agent", "title": ..., "agent": {...}})
- local: ``fn(args)`` computes the result in-process, deterministically

Definitions register themselves by name on creation so the TaskExecutor can
find the local function for an effect it only knows by task_id.

Usage:
    from runsitter.tasks import define_task, local_task

    review = define_task("review-backlog", lambda args, tctx: {
        "kind": "agent",
        "title": f"Review backlog for {args['project']}",
    }, labels=("agent", "review"))

    total = local_task("sum-points", lambda args: sum(args["points"]))
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from runsitter.schemas import EffectKind

# Default worker kind for delegated definitions that do not name one
DEFAULT_WORKER_KIND = "agent"


@dataclass(frozen=True)
class TaskContext:
    """Identity of the effect a definition is being built for."""
    run_id: str
    effect_id: str

    @property
    def io(self) -> dict[str, str]:
        """Ledger-relative paths of the effect's input and result files."""
        return {
            "input_json_path": f"tasks/{self.effect_id}/input.json",
            "output_json_path": f"tasks/{self.effect_id}/result.json",
        }


BuildFn = Callable[[Any, TaskContext], dict[str, Any]]
LocalFn = Callable[[Any], Any]


@dataclass(frozen=True)
class TaskDef:
    """
    A named, reusable unit of work.

    Attributes:
        name: Unique task id, recorded on every effect issued from it
        kind: delegated or local
        build: Definition builder for delegated tasks
        fn: Computation for local tasks
        labels: Labels copied onto every effect
    """
    name: str
    kind: EffectKind = EffectKind.DELEGATED
    build: Optional[BuildFn] = None
    fn: Optional[LocalFn] = None
    labels: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.name or self.name.startswith("__"):
            raise ValueError(f"Invalid task name: {self.name!r}")
        if self.kind == EffectKind.LOCAL and self.fn is None:
            raise ValueError(f"Local task '{self.name}' requires fn")
        if self.kind == EffectKind.BREAKPOINT:
            raise ValueError("Breakpoints are issued with ctx.breakpoint, not a TaskDef")

    def definition(self, args: Any, task_ctx: TaskContext) -> dict[str, Any]:
        """Build the definition stored on a delegated effect."""
        if self.build is None:
            definition: dict[str, Any] = {"kind": DEFAULT_WORKER_KIND}
        else:
            definition = dict(self.build(args, task_ctx))
            definition.setdefault("kind", DEFAULT_WORKER_KIND)
        definition.setdefault("io", task_ctx.io)
        return definition


_TASKS: dict[str, TaskDef] = {}


def register_task(task: TaskDef) -> TaskDef:
    """Register a TaskDef by name. A later definition replaces an earlier one."""
    _TASKS[task.name] = task
    return task


def get_task(name: str) -> Optional[TaskDef]:
    return _TASKS.get(name)


def define_task(
    name: str,
    build: Optional[BuildFn] = None,
    *,
    kind: EffectKind | str = EffectKind.DELEGATED,
    fn: Optional[LocalFn] = None,
    labels: tuple[str, ...] | list[str] = (),
) -> TaskDef:
    """Create and register a TaskDef."""
    return register_task(TaskDef(
        name=name,
        kind=EffectKind(kind),
        build=build,
        fn=fn,
        labels=tuple(labels),
    ))


def local_task(name: str, fn: LocalFn, labels: tuple[str, ...] | list[str] = ()) -> TaskDef:
    """Shorthand for a local (in-process, deterministic) task."""
    return define_task(name, kind=EffectKind.LOCAL, fn=fn, labels=labels)
