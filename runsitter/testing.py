"""
Deterministic test helpers.

    with fixed_clock(), deterministic_ulids():
        run_id = orch.create_run("demo")      # run id "00000000000000000000000001"
        ...
        before = snapshot_run_state(orch.store, run_id)
        orch.iterate(run_id)
        assert snapshot_run_state(orch.store, run_id) == before
"""

import itertools
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator, Optional

from runsitter import clock
from runsitter.run_store import RunStore

DEFAULT_START = datetime(2025, 1, 1, tzinfo=timezone.utc)


@contextmanager
def fixed_clock(
    start: datetime = DEFAULT_START,
    step: Optional[timedelta] = timedelta(milliseconds=1),
) -> Iterator[None]:
    """
    Pin utcnow(). Each reading advances by ``step`` (None freezes the clock)
    so ledger ordering by timestamp stays stable.
    """
    ticks = itertools.count()

    def now() -> datetime:
        if step is None:
            return start
        return start + step * next(ticks)

    clock.set_clock_for_tests(now)
    try:
        yield
    finally:
        clock.reset_clock()


@contextmanager
def deterministic_ulids(start: int = 1) -> Iterator[None]:
    """Generate sequential 26-character ids instead of random ULIDs."""
    counter = itertools.count(start)
    clock.set_ulid_factory_for_tests(lambda: clock.encode_base32(next(counter), 26))
    try:
        yield
    finally:
        clock.reset_ulid_factory()


def snapshot_run_state(store: RunStore, run_id: str) -> dict[str, Any]:
    """Everything persisted for a run, for before/after equality checks."""
    run = store.require_run(run_id)
    output = store.get_output(run_id)
    return {
        "run": run.to_dict(),
        "effects": [e.to_dict() for e in store.list_effects(run_id)],
        "output": output.to_dict() if output is not None else None,
        "journal_length": len(store.load_journal(run_id)),
    }
