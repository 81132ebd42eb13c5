"""
Workers for delegated effects.

Available workers:
- NoOpWorker: Returns a marker result (testing, dry runs)
- CommandWorker: Runs an external program over the JSON stdio protocol
"""

from runsitter.workers.base import NoOpWorker, Worker
from runsitter.workers.command import CommandWorker
from runsitter.workers.registry import WorkerRegistry

__all__ = [
    "Worker",
    "NoOpWorker",
    "CommandWorker",
    "WorkerRegistry",
]
