"""
Base worker protocol and common implementations.

Workers perform delegated effects. The TaskExecutor picks a worker by the
``kind`` field of the effect's definition (e.g. "agent") and hands it the
EffectRecord; whatever the worker returns becomes the effect's result value.
"""

from abc import ABC, abstractmethod
from typing import Any

from runsitter.schemas import EffectRecord


class Worker(ABC):
    """
    Abstract base class for delegated-effect workers.

    Raise TransientError for failures worth retrying; any other exception
    is committed as the effect's failed result.
    """

    @abstractmethod
    def execute(self, effect: EffectRecord) -> Any:
        """
        Perform a delegated effect.

        Args:
            effect: The pending EffectRecord (input holds args and definition)

        Returns:
            The JSON-serializable result value
        """
        pass


class NoOpWorker(Worker):
    """
    No-op worker for testing and dry runs.

    Returns a marker result without doing anything.
    """

    def execute(self, effect: EffectRecord) -> Any:
        definition = (effect.input or {}).get("definition", {})
        return {
            "status": "noop",
            "kind": definition.get("kind"),
            "effectId": effect.effect_id,
            "taskId": effect.task_id,
        }
