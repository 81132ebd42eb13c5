"""Tests for runsitter record schemas."""

from datetime import datetime, timezone

import pytest

from runsitter.schemas import (
    EffectKind,
    EffectRecord,
    EffectResult,
    EffectStatus,
    HookDecision,
    IterationRecord,
    IterationStatus,
    RunOutput,
    RunRecord,
    RunState,
)


# =============================================================================
# RunRecord / RunOutput
# =============================================================================


class TestRunRecord:
    def test_defaults(self):
        run = RunRecord(run_id="01RUN", process_id="demo")
        assert run.state == RunState.PENDING
        assert run.iteration_count == 0
        assert run.version == 0
        assert run.last_status is None

    def test_round_trip(self):
        run = RunRecord(
            run_id="01RUN",
            process_id="demo",
            inputs={"n": 1},
            state=RunState.WAITING,
            iteration_count=2,
            version=5,
            last_status="waiting",
            waiting_on=("0000", "0001"),
        )
        restored = RunRecord.from_dict(run.to_dict())
        assert restored == run

    def test_to_dict_omits_missing_last_status(self):
        assert "last_status" not in RunRecord(run_id="r", process_id="p").to_dict()

    def test_to_dict_omits_empty_waiting_on(self):
        assert "waiting_on" not in RunRecord(run_id="r", process_id="p").to_dict()

    def test_terminal_states(self):
        assert RunState.COMPLETED.is_terminal
        assert RunState.FAILED.is_terminal
        assert not RunState.WAITING.is_terminal
        assert not RunState.RUNNING.is_terminal


class TestRunOutput:
    def test_requires_terminal_status(self):
        with pytest.raises(ValueError, match="terminal"):
            RunOutput(status=RunState.RUNNING)

    def test_failed_output_keeps_error(self):
        output = RunOutput(status=RunState.FAILED, error={"type": "RuntimeError", "message": "x"})
        data = output.to_dict()
        assert data["status"] == "failed"
        assert data["error"]["type"] == "RuntimeError"


# =============================================================================
# Effects
# =============================================================================


def _effect(**kwargs) -> EffectRecord:
    fields = {
        "effect_id": "0000",
        "run_id": "01RUN",
        "kind": EffectKind.DELEGATED,
        "task_id": "review",
        "input": {"args": {"x": 1}},
        "input_digest": "abc",
    }
    fields.update(kwargs)
    return EffectRecord(**fields)


class TestEffectResult:
    def test_succeeded(self):
        result = EffectResult.succeeded({"ok": True})
        assert result.status == EffectStatus.SUCCEEDED
        assert result.value == {"ok": True}
        assert result.error is None

    def test_failed_from_exception(self):
        result = EffectResult.failed(ValueError("bad input"))
        assert result.status == EffectStatus.FAILED
        assert result.error == {"type": "ValueError", "message": "bad input"}

    def test_failed_requires_error(self):
        with pytest.raises(ValueError, match="error details"):
            EffectResult(status=EffectStatus.FAILED)

    def test_status_must_be_terminal(self):
        with pytest.raises(ValueError):
            EffectResult(status=EffectStatus.PENDING)


class TestEffectRecord:
    def test_status_is_derived(self):
        effect = _effect()
        assert effect.status == EffectStatus.PENDING

        claimed = effect.with_claim(datetime(2025, 1, 1, tzinfo=timezone.utc))
        assert claimed.status == EffectStatus.RUNNING

        resolved = claimed.with_result(EffectResult.succeeded(1))
        assert resolved.status == EffectStatus.SUCCEEDED
        assert resolved.is_resolved

    def test_breakpoint_flag(self):
        assert _effect(kind=EffectKind.BREAKPOINT).is_breakpoint
        assert not _effect().is_breakpoint

    def test_request_dict_has_no_result(self):
        data = _effect().with_result(EffectResult.succeeded(1)).request_dict()
        assert "result" not in data
        assert "status" not in data

    def test_parent_map_serialized(self):
        data = _effect(effect_id="0002.b1.0000", parent_id="0002", branch_index=1).to_dict()
        assert data["parent_id"] == "0002"
        assert data["branch_index"] == 1

    def test_round_trip_with_result(self):
        effect = _effect(labels=("agent", "review")).with_result(EffectResult.succeeded([1, 2]))
        restored = EffectRecord.from_dict(effect.to_dict())
        assert restored == effect
        assert restored.labels == ("agent", "review")


# =============================================================================
# IterationRecord
# =============================================================================


class TestIterationRecord:
    def test_closed_vocabulary(self):
        assert {s.value for s in IterationStatus} == {"executed", "waiting", "completed", "failed", "none"}

    def test_rejects_unknown_status(self):
        with pytest.raises(ValueError):
            IterationRecord(iteration=1, status="paused", run_id="r", process_id="p")

    def test_accepts_raw_string_status(self):
        record = IterationRecord(iteration=1, status="executed", run_id="r", process_id="p")
        assert record.status is IterationStatus.EXECUTED

    def test_wire_shape(self):
        record = IterationRecord(
            iteration=3,
            status=IterationStatus.EXECUTED,
            run_id="r",
            process_id="p",
            action="executed-tasks",
            count=2,
            hook_status="ok",
            run_state="running",
        )
        assert record.to_dict() == {
            "iteration": 3,
            "status": "executed",
            "action": "executed-tasks",
            "count": 2,
            "metadata": {"runId": "r", "processId": "p", "hookStatus": "ok", "runState": "running"},
        }

    def test_optional_fields_omitted(self):
        data = IterationRecord(iteration=0, status="none", run_id="r", process_id="p").to_dict()
        assert set(data) == {"iteration", "status", "metadata"}
        assert "hookStatus" not in data["metadata"]

    def test_from_dict(self):
        record = IterationRecord(
            iteration=1, status="waiting", run_id="r", process_id="p",
            reason="breakpoint-reached", extra={"breakpoints": ["0000"]},
        )
        assert IterationRecord.from_dict(record.to_dict()) == record


# =============================================================================
# HookDecision
# =============================================================================


class TestHookDecision:
    def test_from_dict_ignores_unknown_keys(self):
        decision = HookDecision.from_dict({"action": "noop", "extra": 1})
        assert decision.action == "noop"

    @pytest.mark.parametrize("count", [-1, "3", 1.5, True])
    def test_rejects_bad_count(self, count):
        with pytest.raises(ValueError, match="count"):
            HookDecision(count=count)

    def test_failed(self):
        assert HookDecision(status="failed").failed
        assert not HookDecision(status="ok").failed

    def test_merge(self):
        merged = HookDecision(action="a", status="failed", count=1, reason="first").merge(
            HookDecision(action="b", status="ok", count=2)
        )
        assert merged.action == "b"
        assert merged.count == 3
        assert merged.reason == "first"
        assert merged.failed

    def test_merge_keeps_missing_count_missing(self):
        assert HookDecision().merge(HookDecision(action="x")).count is None
