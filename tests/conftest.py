import pytest

from runsitter.config import RetryPolicy, RunsitterConfig
from runsitter.hooks import CallableHook, HookRegistry, ITERATION_START
from runsitter.hooks.native import run_pending_effects
from runsitter.orchestrator import Orchestrator
from runsitter.registry import ProcessRegistry
from runsitter.run_store import FileRunStore, InMemoryRunStore
from runsitter.testing import deterministic_ulids, fixed_clock
from runsitter.workers import WorkerRegistry


@pytest.fixture(autouse=True)
def deterministic_ids_and_time():
    """Pin the clock and run ids for every test."""
    with fixed_clock(), deterministic_ulids():
        yield


@pytest.fixture
def memory_store():
    return InMemoryRunStore()


@pytest.fixture
def file_store(tmp_path):
    return FileRunStore(tmp_path / "ledger")


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    """Both RunStore backends."""
    if request.param == "memory":
        return InMemoryRunStore()
    return FileRunStore(tmp_path / "ledger")


@pytest.fixture
def fast_config():
    """Config with no retry backoff."""
    return RunsitterConfig(task_retry=RetryPolicy(max_attempts=3, backoff_seconds=0))


@pytest.fixture
def native_hooks():
    """Hook registry that runs every ready effect at iteration-start."""
    registry = HookRegistry()
    registry.register(ITERATION_START, CallableHook(run_pending_effects))
    return registry


@pytest.fixture
def make_orchestrator(store, fast_config):
    """Build an Orchestrator over the parametrized store."""
    def _make(processes=None, hooks=None, workers=None, config=None):
        return Orchestrator(
            store=store,
            processes=ProcessRegistry(processes or {}),
            hooks=hooks or HookRegistry(),
            workers=workers or WorkerRegistry.create_noop(),
            config=config or fast_config,
        )
    return _make
