"""
Worker Registry for dispatching delegated effects to workers.

The registry maps definition kinds ("agent", "shell", ...) to Worker
instances, providing a central dispatch mechanism for the TaskExecutor.
Local effects do NOT go through the registry; the TaskExecutor calls the
task's own function for those.
"""

from typing import Any, TYPE_CHECKING

from runsitter.schemas import EffectRecord
from runsitter.tasks import DEFAULT_WORKER_KIND
from runsitter.workers.base import NoOpWorker, Worker

if TYPE_CHECKING:
    from runsitter.config import RunsitterConfig


class WorkerRegistry:
    """
    Registry for worker dispatch by definition kind.

    Usage:
        registry = WorkerRegistry()
        registry.register("agent", CommandWorker(["my-agent"]))

        # Dispatch a delegated effect
        value = registry.dispatch(effect)

        # Or build from config
        registry = WorkerRegistry.create_default(config)
    """

    def __init__(self) -> None:
        self._workers: dict[str, Worker] = {}

    def register(self, kind: str, worker: Worker) -> None:
        """
        Register a worker for a definition kind.

        Args:
            kind: Definition kind (e.g. agent)
            worker: Worker instance for this kind
        """
        self._workers[kind] = worker

    def get(self, kind: str) -> Worker:
        """
        Get the worker for a definition kind.

        Raises:
            KeyError: If no worker registered for this kind
        """
        if kind not in self._workers:
            registered = list(self._workers.keys())
            raise KeyError(
                f"No worker registered for kind: {kind}. "
                f"Registered: {registered}"
            )
        return self._workers[kind]

    def has(self, kind: str) -> bool:
        return kind in self._workers

    def list_kinds(self) -> list[str]:
        return list(self._workers.keys())

    @staticmethod
    def kind_of(effect: EffectRecord) -> str:
        """The worker kind named by a delegated effect's definition."""
        definition = (effect.input or {}).get("definition") or {}
        return definition.get("kind", DEFAULT_WORKER_KIND)

    def dispatch(self, effect: EffectRecord) -> Any:
        """
        Dispatch a delegated effect to its worker.

        Raises:
            KeyError: If no worker registered for the effect's kind
        """
        return self.get(self.kind_of(effect)).execute(effect)

    @classmethod
    def create_default(cls, config: "RunsitterConfig | None" = None) -> "WorkerRegistry":
        """
        Create a registry from the ``workers:`` config section.

        Kinds without configuration have no worker. Effects of those kinds
        are committed as failed results until one is registered.
        """
        from runsitter.workers.command import CommandWorker

        registry = cls()
        if config is None:
            return registry

        for kind, spec in config.workers.items():
            if spec["type"] == "command":
                registry.register(kind, CommandWorker(
                    spec["command"],
                    env=spec.get("env"),
                    cwd=spec.get("cwd"),
                ))
            else:
                registry.register(kind, NoOpWorker())
        return registry

    @classmethod
    def create_noop(cls, kinds: tuple[str, ...] = (DEFAULT_WORKER_KIND,)) -> "WorkerRegistry":
        """
        Create a registry with NoOp workers.

        Useful for testing and dry runs.
        """
        registry = cls()
        for kind in kinds:
            registry.register(kind, NoOpWorker())
        return registry
