"""
RunStore - the effect ledger.

The RunStore manages:
- RunRecords (created by create_run, compare-and-swap updated by the controller)
- EffectRecords (requested by replay, claimed/resolved by the task executor)
- RunOutputs (terminal outcome, written once)
- The run journal (append-only event log)

Persisted records are the sole source of truth for resuming a run. Nothing
in memory is assumed to survive between iterate calls.

Single-write contract: put_effect_result and put_output never overwrite. A
second write raises EffectAlreadyResolvedError. This is what makes replay
idempotent.

Storage backends:
- In-memory (for testing)
- File-based (durable, one directory per run)
"""

import fcntl
import json
import os
import threading
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any, Iterator, Optional

from runsitter.clock import generate_ulid, utcnow
from runsitter.errors import (
    ConcurrentIterationError,
    EffectAlreadyResolvedError,
    EffectNotFoundError,
    RunNotFoundError,
    RunsitterError,
)
from runsitter.schemas import (
    EffectRecord,
    EffectResult,
    RunOutput,
    RunRecord,
)

DEFAULT_RUNS_ROOT = Path(".runsitter")

# How long FileRunStore waits for another writer to release a run lock
LOCK_TIMEOUT_SECONDS = 10.0
LOCK_POLL_SECONDS = 0.01


class RunStore(ABC):
    """
    Abstract base class for the effect ledger.

    Implementations must provide methods to:
    - Create, read and compare-and-swap RunRecords
    - Request, claim and resolve EffectRecords
    - Record the terminal RunOutput
    - Append to and read the run journal
    """

    @abstractmethod
    def create_run(self, process_id: str, inputs: Any) -> RunRecord:
        """
        Create a new run record.

        Args:
            process_id: The process to run
            inputs: Process inputs (must be JSON-serializable)

        Returns:
            The created RunRecord with a new ULID
        """
        pass

    @abstractmethod
    def get_run(self, run_id: str) -> Optional[RunRecord]:
        """Retrieve a run record by ID, or None."""
        pass

    @abstractmethod
    def put_run(self, run: RunRecord, expected_version: int) -> RunRecord:
        """
        Update a run record if it is unchanged since it was read.

        Args:
            run: The new record contents
            expected_version: Version the caller last read

        Returns:
            The stored record (version bumped, updated_at refreshed)

        Raises:
            RunNotFoundError: If the run does not exist
            ConcurrentIterationError: If the stored version differs
        """
        pass

    @abstractmethod
    def list_runs(self) -> list[str]:
        """List run ids known to this store."""
        pass

    @abstractmethod
    def request_effect(self, record: EffectRecord) -> EffectRecord:
        """
        Record a pending effect if it does not exist yet.

        Returns:
            The stored record (the existing one if already requested)
        """
        pass

    @abstractmethod
    def get_effect(self, run_id: str, effect_id: str) -> Optional[EffectRecord]:
        """Retrieve an effect record (with claim/result), or None."""
        pass

    @abstractmethod
    def list_effects(self, run_id: str) -> list[EffectRecord]:
        """List a run's effects in request order."""
        pass

    @abstractmethod
    def claim_effect(self, run_id: str, effect_id: str, force: bool = False) -> bool:
        """
        Claim an effect for execution (marks it running).

        Returns:
            True if this caller now holds the claim, False if someone else
            already claimed it (and force is False)
        """
        pass

    @abstractmethod
    def put_effect_result(self, run_id: str, effect_id: str, result: EffectResult) -> EffectRecord:
        """
        Commit an effect's result. Never overwrites.

        Raises:
            EffectNotFoundError: If the effect was never requested
            EffectAlreadyResolvedError: If a result already exists
        """
        pass

    @abstractmethod
    def get_output(self, run_id: str) -> Optional[RunOutput]:
        """Retrieve the terminal output of a run, or None."""
        pass

    @abstractmethod
    def put_output(self, run_id: str, output: RunOutput) -> None:
        """
        Record the terminal output of a run. Never overwrites.

        Raises:
            EffectAlreadyResolvedError: If the run already has an output
        """
        pass

    @abstractmethod
    def append_event(self, run_id: str, event_type: str, data: dict[str, Any]) -> dict[str, Any]:
        """Append an event to the run journal and return it (with seq)."""
        pass

    @abstractmethod
    def load_journal(self, run_id: str) -> list[dict[str, Any]]:
        """Return the run journal in append order."""
        pass

    @property
    def runs_root(self) -> Optional[Path]:
        """Filesystem root for stores that have one (passed to hooks)."""
        return None

    def require_run(self, run_id: str) -> RunRecord:
        """Like get_run, but raises RunNotFoundError."""
        run = self.get_run(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    def require_effect(self, run_id: str, effect_id: str) -> EffectRecord:
        """Like get_effect, but raises EffectNotFoundError."""
        record = self.get_effect(run_id, effect_id)
        if record is None:
            raise EffectNotFoundError(run_id, effect_id)
        return record


def _make_event(seq: int, event_type: str, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "seq": seq,
        "type": event_type,
        "recorded_at": utcnow().isoformat(),
        "data": data,
    }


class InMemoryRunStore(RunStore):
    """
    In-memory implementation of RunStore for testing.

    All data is lost when the instance is garbage collected. A single
    re-entrant lock serializes writers (the task executor runs effects on
    worker threads).
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._runs: dict[str, RunRecord] = {}
        self._effects: dict[str, dict[str, EffectRecord]] = {}  # run_id -> effect_id -> record
        self._outputs: dict[str, RunOutput] = {}
        self._journals: dict[str, list[dict[str, Any]]] = {}

    def create_run(self, process_id: str, inputs: Any) -> RunRecord:
        with self._lock:
            run_id = generate_ulid()
            if run_id in self._runs:
                raise RunsitterError(f"Run id collision: {run_id}")
            run = RunRecord(run_id=run_id, process_id=process_id, inputs=inputs)
            self._runs[run_id] = run
            self._effects[run_id] = {}
            self._journals[run_id] = []
        self.append_event(run_id, "RUN_CREATED", {"process_id": process_id})
        return run

    def get_run(self, run_id: str) -> Optional[RunRecord]:
        return self._runs.get(run_id)

    def put_run(self, run: RunRecord, expected_version: int) -> RunRecord:
        with self._lock:
            current = self.require_run(run.run_id)
            if current.version != expected_version:
                raise ConcurrentIterationError(run.run_id, expected_version, current.version)
            stored = replace(run, version=expected_version + 1, updated_at=utcnow())
            self._runs[run.run_id] = stored
            return stored

    def list_runs(self) -> list[str]:
        return sorted(self._runs.keys())

    def request_effect(self, record: EffectRecord) -> EffectRecord:
        with self._lock:
            self.require_run(record.run_id)
            effects = self._effects[record.run_id]
            existing = effects.get(record.effect_id)
            if existing is not None:
                return existing
            effects[record.effect_id] = record
        self.append_event(record.run_id, "EFFECT_REQUESTED", {
            "effect_id": record.effect_id,
            "kind": record.kind.value,
            "task_id": record.task_id,
        })
        return record

    def get_effect(self, run_id: str, effect_id: str) -> Optional[EffectRecord]:
        return self._effects.get(run_id, {}).get(effect_id)

    def list_effects(self, run_id: str) -> list[EffectRecord]:
        effects = list(self._effects.get(run_id, {}).values())
        return sorted(effects, key=lambda e: (e.requested_at, e.effect_id))

    def claim_effect(self, run_id: str, effect_id: str, force: bool = False) -> bool:
        with self._lock:
            record = self.require_effect(run_id, effect_id)
            if record.result is not None:
                return False
            if record.claimed_at is not None and not force:
                return False
            self._effects[run_id][effect_id] = record.with_claim(utcnow())
        self.append_event(run_id, "EFFECT_CLAIMED", {"effect_id": effect_id, "forced": force})
        return True

    def put_effect_result(self, run_id: str, effect_id: str, result: EffectResult) -> EffectRecord:
        with self._lock:
            record = self.require_effect(run_id, effect_id)
            if record.result is not None:
                raise EffectAlreadyResolvedError(run_id, effect_id)
            resolved = record.with_result(result)
            self._effects[run_id][effect_id] = resolved
        self.append_event(run_id, "EFFECT_RESOLVED", {
            "effect_id": effect_id,
            "status": result.status.value,
        })
        return resolved

    def get_output(self, run_id: str) -> Optional[RunOutput]:
        return self._outputs.get(run_id)

    def put_output(self, run_id: str, output: RunOutput) -> None:
        with self._lock:
            self.require_run(run_id)
            if run_id in self._outputs:
                raise EffectAlreadyResolvedError(run_id, "<output>")
            self._outputs[run_id] = output

    def append_event(self, run_id: str, event_type: str, data: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            journal = self._journals.setdefault(run_id, [])
            event = _make_event(len(journal) + 1, event_type, data)
            journal.append(event)
            return event

    def load_journal(self, run_id: str) -> list[dict[str, Any]]:
        return list(self._journals.get(run_id, []))

    def clear(self) -> None:
        """Clear all stored data (for testing)."""
        with self._lock:
            self._runs.clear()
            self._effects.clear()
            self._outputs.clear()
            self._journals.clear()


class FileRunStore(RunStore):
    """
    File-based implementation of RunStore.

    Stores records as JSON files in a directory tree:
        runs_root/
            runs/
                {run_id}/
                    run.json
                    output.json
                    journal.jsonl
                    tasks/
                        {effect_id}/
                            input.json
                            claim.json
                            result.json

    Write-once files (result.json, output.json, claim.json) are written to a
    temp file and hard-linked into place; os.link fails if the target exists,
    so a committed result can never be replaced. run.json and journal.jsonl
    are updated under a per-run lock file.
    """

    def __init__(self, runs_root: Path | str = DEFAULT_RUNS_ROOT):
        self._root = Path(runs_root)
        (self._root / "runs").mkdir(parents=True, exist_ok=True)

    @property
    def runs_root(self) -> Optional[Path]:
        return self._root

    def _run_dir(self, run_id: str) -> Path:
        return self._root / "runs" / run_id

    def _effect_dir(self, run_id: str, effect_id: str) -> Path:
        return self._run_dir(run_id) / "tasks" / effect_id

    @staticmethod
    def _read_json(path: Path) -> Optional[Any]:
        if not path.exists():
            return None
        with open(path) as f:
            return json.load(f)

    @staticmethod
    def _tmp_path(path: Path) -> Path:
        return path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")

    def _write_json(self, path: Path, data: Any) -> None:
        """Atomically replace path with data."""
        tmp = self._tmp_path(path)
        with open(tmp, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, path)

    def _write_json_once(self, path: Path, data: Any) -> bool:
        """Write path only if it does not exist. Returns False if it did."""
        tmp = self._tmp_path(path)
        with open(tmp, "w") as f:
            json.dump(data, f, indent=2)
        try:
            os.link(tmp, path)
            return True
        except FileExistsError:
            return False
        finally:
            tmp.unlink()

    @contextmanager
    def _locked(self, run_id: str) -> Iterator[None]:
        """
        Hold an advisory flock on the run's lock file. Not re-entrant.

        The lock file is never removed; the kernel drops the lock when the
        holder closes it or exits, so a crashed writer cannot wedge the run.
        """
        lock_path = self._run_dir(run_id) / "run.lock"
        deadline = time.monotonic() + LOCK_TIMEOUT_SECONDS
        with open(lock_path, "a") as lock_file:
            while True:
                try:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    break
                except BlockingIOError:
                    if time.monotonic() > deadline:
                        raise RunsitterError(f"Timed out waiting for run lock: {lock_path}")
                    time.sleep(LOCK_POLL_SECONDS)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def create_run(self, process_id: str, inputs: Any) -> RunRecord:
        run_id = generate_ulid()
        run = RunRecord(run_id=run_id, process_id=process_id, inputs=inputs)

        run_dir = self._run_dir(run_id)
        (run_dir / "tasks").mkdir(parents=True, exist_ok=True)
        if not self._write_json_once(run_dir / "run.json", run.to_dict()):
            raise RunsitterError(f"Run id collision: {run_id}")

        self.append_event(run_id, "RUN_CREATED", {"process_id": process_id})
        return run

    def get_run(self, run_id: str) -> Optional[RunRecord]:
        data = self._read_json(self._run_dir(run_id) / "run.json")
        if data is None:
            return None
        return RunRecord.from_dict(data)

    def put_run(self, run: RunRecord, expected_version: int) -> RunRecord:
        self.require_run(run.run_id)
        with self._locked(run.run_id):
            current = self.require_run(run.run_id)
            if current.version != expected_version:
                raise ConcurrentIterationError(run.run_id, expected_version, current.version)
            stored = replace(run, version=expected_version + 1, updated_at=utcnow())
            self._write_json(self._run_dir(run.run_id) / "run.json", stored.to_dict())
        return stored

    def list_runs(self) -> list[str]:
        runs_dir = self._root / "runs"
        return sorted(p.name for p in runs_dir.iterdir() if (p / "run.json").exists())

    def request_effect(self, record: EffectRecord) -> EffectRecord:
        self.require_run(record.run_id)
        effect_dir = self._effect_dir(record.run_id, record.effect_id)
        effect_dir.mkdir(parents=True, exist_ok=True)

        if not self._write_json_once(effect_dir / "input.json", record.request_dict()):
            return self.require_effect(record.run_id, record.effect_id)

        self.append_event(record.run_id, "EFFECT_REQUESTED", {
            "effect_id": record.effect_id,
            "kind": record.kind.value,
            "task_id": record.task_id,
        })
        return record

    def _load_effect(self, effect_dir: Path) -> Optional[EffectRecord]:
        data = self._read_json(effect_dir / "input.json")
        if data is None:
            return None
        claim = self._read_json(effect_dir / "claim.json")
        if claim is not None:
            data["claimed_at"] = claim["claimed_at"]
        result = self._read_json(effect_dir / "result.json")
        if result is not None:
            data["result"] = result
        return EffectRecord.from_dict(data)

    def get_effect(self, run_id: str, effect_id: str) -> Optional[EffectRecord]:
        return self._load_effect(self._effect_dir(run_id, effect_id))

    def list_effects(self, run_id: str) -> list[EffectRecord]:
        tasks_dir = self._run_dir(run_id) / "tasks"
        if not tasks_dir.exists():
            return []
        effects = []
        for effect_dir in tasks_dir.iterdir():
            record = self._load_effect(effect_dir)
            if record is not None:
                effects.append(record)
        return sorted(effects, key=lambda e: (e.requested_at, e.effect_id))

    def claim_effect(self, run_id: str, effect_id: str, force: bool = False) -> bool:
        record = self.require_effect(run_id, effect_id)
        if record.result is not None:
            return False

        claim_path = self._effect_dir(run_id, effect_id) / "claim.json"
        claim = {"claimed_at": utcnow().isoformat(), "pid": os.getpid()}
        if force:
            self._write_json(claim_path, claim)
        elif not self._write_json_once(claim_path, claim):
            return False

        self.append_event(run_id, "EFFECT_CLAIMED", {"effect_id": effect_id, "forced": force})
        return True

    def put_effect_result(self, run_id: str, effect_id: str, result: EffectResult) -> EffectRecord:
        record = self.require_effect(run_id, effect_id)
        result_path = self._effect_dir(run_id, effect_id) / "result.json"
        if not self._write_json_once(result_path, result.to_dict()):
            raise EffectAlreadyResolvedError(run_id, effect_id)

        self.append_event(run_id, "EFFECT_RESOLVED", {
            "effect_id": effect_id,
            "status": result.status.value,
        })
        return record.with_result(result)

    def get_output(self, run_id: str) -> Optional[RunOutput]:
        data = self._read_json(self._run_dir(run_id) / "output.json")
        if data is None:
            return None
        return RunOutput.from_dict(data)

    def put_output(self, run_id: str, output: RunOutput) -> None:
        self.require_run(run_id)
        if not self._write_json_once(self._run_dir(run_id) / "output.json", output.to_dict()):
            raise EffectAlreadyResolvedError(run_id, "<output>")

    def append_event(self, run_id: str, event_type: str, data: dict[str, Any]) -> dict[str, Any]:
        journal_path = self._run_dir(run_id) / "journal.jsonl"
        with self._locked(run_id):
            seq = 1
            if journal_path.exists():
                with open(journal_path) as f:
                    seq = sum(1 for line in f if line.strip()) + 1
            event = _make_event(seq, event_type, data)
            with open(journal_path, "a") as f:
                f.write(json.dumps(event) + "\n")
        return event

    def load_journal(self, run_id: str) -> list[dict[str, Any]]:
        journal_path = self._run_dir(run_id) / "journal.jsonl"
        if not journal_path.exists():
            return []
        with open(journal_path) as f:
            return [json.loads(line) for line in f if line.strip()]
