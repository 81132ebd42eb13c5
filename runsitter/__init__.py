"""
runsitter - durable, resumable process runs

Processes are plain Python callables that issue effects through ``ctx``.
Every effect is recorded in a ledger; runs resume by deterministic replay.
Hooks decide and perform work, the engine only loops.
"""

__version__ = "0.1.0"


__all__ = [
    "Orchestrator",
    "RunsitterConfig",
    "load_config",
    "get_runsitter_home",
    "define_task",
    "local_task",
    "BranchFailure",
    "failures",
]

from .config import RunsitterConfig, get_runsitter_home, load_config
from .context import BranchFailure, failures
from .orchestrator import Orchestrator
from .tasks import define_task, local_task
