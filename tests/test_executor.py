"""Tests for TaskExecutor and workers.

Tests the effect lifecycle:
pending -> claimed (running) -> succeeded | failed
"""

import threading
import time

import pytest

from runsitter.config import RetryPolicy
from runsitter.errors import (
    EffectInFlightError,
    InvalidEffectError,
    PermanentError,
    TransientError,
)
from runsitter.executor import TaskExecutor
from runsitter.registry import ProcessRegistry
from runsitter.schemas import BREAKPOINT_TASK_ID, EffectKind, EffectRecord, EffectStatus
from runsitter.tasks import local_task
from runsitter.workers import NoOpWorker, Worker, WorkerRegistry

CALLS: list = []


def _record_call(args):
    CALLS.append(args)
    return {"echo": args}


echo = local_task("exec-echo", _record_call)
sleepy = local_task("exec-sleepy", lambda args: (time.sleep(args["delay"]), args["value"])[1])


@pytest.fixture(autouse=True)
def reset_calls():
    CALLS.clear()
    yield
    CALLS.clear()


class FlakyWorker(Worker):
    """Raises TransientError until the given attempt."""

    def __init__(self, succeed_on: int, error=TransientError):
        self.succeed_on = succeed_on
        self.error = error
        self.attempts = 0

    def execute(self, effect):
        self.attempts += 1
        if self.attempts < self.succeed_on:
            raise self.error(f"attempt {self.attempts} failed")
        return {"attempts": self.attempts}


def _request(store, run_id, effect_id="0000", kind=EffectKind.LOCAL, task_id="exec-echo", input=None):
    return store.request_effect(EffectRecord(
        effect_id=effect_id,
        run_id=run_id,
        kind=kind,
        task_id=task_id,
        input=input if input is not None else {"args": effect_id},
        input_digest="d",
    ))


def _executor(store, workers=None):
    return TaskExecutor(
        store,
        processes=ProcessRegistry(),
        workers=workers or WorkerRegistry.create_noop(),
        retry=RetryPolicy(max_attempts=3, backoff_seconds=0),
    )


@pytest.fixture
def run_id(store):
    return store.create_run("proc", None).run_id


# =============================================================================
# run_effect
# =============================================================================


class TestRunEffect:
    def test_local_effect(self, store, run_id):
        _request(store, run_id, input={"args": {"x": 1}})
        result = _executor(store).run_effect(run_id, "0000")

        assert result.status == EffectStatus.SUCCEEDED
        assert result.value == {"echo": {"x": 1}}
        assert store.get_effect(run_id, "0000").status == EffectStatus.SUCCEEDED

    def test_committed_result_is_never_rerun(self, store, run_id):
        _request(store, run_id)
        executor = _executor(store)

        first = executor.run_effect(run_id, "0000")
        second = executor.run_effect(run_id, "0000")
        third = executor.run_effect(run_id, "0000", force=True)

        assert CALLS == ["0000"]
        assert first.value == second.value == third.value

    def test_breakpoint_is_rejected(self, store, run_id):
        _request(store, run_id, kind=EffectKind.BREAKPOINT, task_id=BREAKPOINT_TASK_ID, input={"question": "?"})
        with pytest.raises(InvalidEffectError):
            _executor(store).run_effect(run_id, "0000")

    def test_in_flight_effect(self, store, run_id):
        _request(store, run_id)
        store.claim_effect(run_id, "0000")

        with pytest.raises(EffectInFlightError):
            _executor(store).run_effect(run_id, "0000")
        assert CALLS == []

    def test_force_takes_over_claim(self, store, run_id):
        _request(store, run_id)
        store.claim_effect(run_id, "0000")

        result = _executor(store).run_effect(run_id, "0000", force=True)
        assert result.status == EffectStatus.SUCCEEDED

    def test_unknown_local_task_fails(self, store, run_id):
        _request(store, run_id, task_id="exec-does-not-exist")
        result = _executor(store).run_effect(run_id, "0000")

        assert result.status == EffectStatus.FAILED
        assert result.error["type"] == "PermanentError"

    def test_non_json_value_fails(self, store, run_id):
        local_task("exec-bad-value", lambda args: {1, 2})
        _request(store, run_id, task_id="exec-bad-value")

        result = _executor(store).run_effect(run_id, "0000")
        assert result.status == EffectStatus.FAILED
        assert result.error["type"] == "TypeError"


# =============================================================================
# Delegated effects and workers
# =============================================================================


class TestDelegated:
    def _delegated(self, store, run_id, kind="agent"):
        _request(
            store, run_id,
            kind=EffectKind.DELEGATED,
            task_id="exec-agent",
            input={"args": {}, "definition": {"kind": kind, "title": "Do it"}},
        )

    def test_noop_worker(self, store, run_id):
        self._delegated(store, run_id)
        result = _executor(store).run_effect(run_id, "0000")

        assert result.value["status"] == "noop"
        assert result.value["effectId"] == "0000"

    def test_missing_worker_fails_effect(self, store, run_id):
        self._delegated(store, run_id, kind="robot")
        result = _executor(store).run_effect(run_id, "0000")

        assert result.status == EffectStatus.FAILED
        assert result.error["type"] == "KeyError"

    def test_transient_errors_are_retried(self, store, run_id):
        self._delegated(store, run_id)
        worker = FlakyWorker(succeed_on=3)
        workers = WorkerRegistry()
        workers.register("agent", worker)

        result = _executor(store, workers).run_effect(run_id, "0000")

        assert result.status == EffectStatus.SUCCEEDED
        assert worker.attempts == 3

    def test_retries_exhausted(self, store, run_id):
        self._delegated(store, run_id)
        worker = FlakyWorker(succeed_on=10)
        workers = WorkerRegistry()
        workers.register("agent", worker)

        result = _executor(store, workers).run_effect(run_id, "0000")

        assert result.status == EffectStatus.FAILED
        assert result.error["type"] == "TransientError"
        assert worker.attempts == 3

    def test_permanent_errors_are_not_retried(self, store, run_id):
        self._delegated(store, run_id)
        worker = FlakyWorker(succeed_on=2, error=PermanentError)
        workers = WorkerRegistry()
        workers.register("agent", worker)

        result = _executor(store, workers).run_effect(run_id, "0000")

        assert result.status == EffectStatus.FAILED
        assert worker.attempts == 1


# =============================================================================
# run_pending
# =============================================================================


class TestRunPending:
    def test_runs_ready_effects_and_skips_breakpoints(self, store, run_id):
        _request(store, run_id, effect_id="0000")
        _request(store, run_id, effect_id="0001", kind=EffectKind.BREAKPOINT, task_id=BREAKPOINT_TASK_ID, input={})
        _request(store, run_id, effect_id="0002")

        results = _executor(store).run_pending(run_id)

        assert list(results) == ["0000", "0002"]
        assert sorted(CALLS) == ["0000", "0002"]
        assert store.get_effect(run_id, "0001").status == EffectStatus.PENDING

    def test_nothing_ready(self, store, run_id):
        assert _executor(store).run_pending(run_id) == {}

    def test_runs_concurrently_in_ledger_order(self, store, run_id):
        for i, delay in enumerate([0.4, 0.0, 0.2]):
            _request(store, run_id, effect_id=f"000{i}", task_id="exec-sleepy",
                     input={"args": {"delay": delay, "value": i}})

        started = time.monotonic()
        results = _executor(store).run_pending(run_id, max_workers=3)
        elapsed = time.monotonic() - started

        assert [r.value for r in results.values()] == [0, 1, 2]
        assert elapsed < 0.55

    def test_claimed_effects_are_skipped(self, store, run_id):
        _request(store, run_id, effect_id="0000")
        store.claim_effect(run_id, "0000")
        _request(store, run_id, effect_id="0001")

        results = _executor(store).run_pending(run_id)
        assert list(results) == ["0001"]


def test_noop_worker_is_a_worker():
    assert isinstance(NoOpWorker(), Worker)


def test_concurrent_run_effect_executes_once(store):
    run_id = store.create_run("proc", None).run_id
    _request(store, run_id)
    executor = _executor(store)
    barrier = threading.Barrier(4)
    outcomes = []

    def attempt():
        barrier.wait()
        try:
            outcomes.append(executor.run_effect(run_id, "0000").status)
        except EffectInFlightError:
            outcomes.append("in-flight")

    threads = [threading.Thread(target=attempt) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert CALLS == ["0000"]
    assert EffectStatus.SUCCEEDED in outcomes
