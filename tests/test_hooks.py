"""Tests for hook dispatch.

Covers:
- Stream separation: only stdout is parsed, stderr is diagnostics
- Hard failure (nonzero exit, unparseable stdout) vs reported status failed
- Callable hooks, registry construction, dispatcher merging
"""

import sys
import textwrap

import pytest

from runsitter.config import RunsitterConfig
from runsitter.errors import HookExecutionError
from runsitter.hooks import (
    CallableHook,
    CommandHook,
    HookDispatcher,
    HookRegistry,
    ITERATION_END,
    ITERATION_START,
)
from runsitter.run_store import InMemoryRunStore
from runsitter.schemas import HookDecision

PAYLOAD = {"runId": "01RUN", "processId": "demo", "iteration": 1, "runState": {"state": "running"}}


def _command_hook(tmp_path, body, name="hook.py"):
    script = tmp_path / name
    script.write_text(textwrap.dedent(body))
    return CommandHook([sys.executable, str(script)])


# =============================================================================
# CommandHook
# =============================================================================


class TestCommandHook:
    def test_stream_separation_with_noisy_stderr(self, tmp_path):
        """500 diagnostic lines, some JSON-looking, never corrupt the decision."""
        hook = _command_hook(tmp_path, """
            import json, sys
            for i in range(500):
                if i % 50 == 0:
                    print(json.dumps({"action": "bogus", "line": i}), file=sys.stderr)
                else:
                    print(f"diagnostic line {i}: {{not json", file=sys.stderr)
            sys.stdout.write(json.dumps({"action": "executed-tasks", "status": "ok", "count": 1}))
        """)

        record = hook.invoke(ITERATION_START, PAYLOAD)

        assert record.decision == HookDecision(action="executed-tasks", status="ok", count=1)
        assert record.exit_code == 0
        assert "bogus" not in record.raw_stdout

    def test_multiline_log_then_decision(self, tmp_path):
        hook = _command_hook(tmp_path, """
            import json, sys
            sys.stderr.write("starting\\n{\\n  \\"partial\\": \\n")
            print(json.dumps({"action": "noop", "reason": "nothing ready"}, indent=2))
        """)

        decision = hook.invoke(ITERATION_START, PAYLOAD).decision
        assert decision.action == "noop"
        assert decision.reason == "nothing ready"

    def test_payload_on_stdin_and_environment(self, tmp_path):
        hook = _command_hook(tmp_path, """
            import json, os, sys
            payload = json.load(sys.stdin)
            print(json.dumps({
                "action": payload["processId"],
                "reason": os.environ["RUNSITTER_EXTENSION_POINT"] + "/" + os.environ["RUNSITTER_RUN_ID"],
                "count": payload["iteration"],
            }))
        """)

        decision = hook.invoke(ITERATION_END, PAYLOAD).decision
        assert decision.action == "demo"
        assert decision.reason == "iteration-end/01RUN"
        assert decision.count == 1

    def test_nonzero_exit_is_hard_failure(self, tmp_path):
        hook = _command_hook(tmp_path, """
            import json, sys
            print("about to fail", file=sys.stderr)
            print(json.dumps({"action": "ignored"}))
            sys.exit(3)
        """)

        with pytest.raises(HookExecutionError) as exc_info:
            hook.invoke(ITERATION_START, PAYLOAD)

        assert exc_info.value.exit_code == 3
        assert "about to fail" in exc_info.value.stderr

    def test_unparseable_stdout_is_hard_failure(self, tmp_path):
        hook = _command_hook(tmp_path, """
            print("this is not json")
        """)
        with pytest.raises(HookExecutionError, match="not valid JSON"):
            hook.invoke(ITERATION_START, PAYLOAD)

    def test_non_object_stdout_is_hard_failure(self, tmp_path):
        hook = _command_hook(tmp_path, """
            print("[1, 2, 3]")
        """)
        with pytest.raises(HookExecutionError, match="JSON object"):
            hook.invoke(ITERATION_START, PAYLOAD)

    def test_invalid_count_is_hard_failure(self, tmp_path):
        hook = _command_hook(tmp_path, """
            print('{"count": -2}')
        """)
        with pytest.raises(HookExecutionError, match="count"):
            hook.invoke(ITERATION_START, PAYLOAD)

    def test_empty_stdout_is_empty_decision(self, tmp_path):
        hook = _command_hook(tmp_path, """
            import sys
            print("only diagnostics", file=sys.stderr)
        """)
        assert hook.invoke(ITERATION_START, PAYLOAD).decision == HookDecision()

    def test_reported_failure_is_not_an_error(self, tmp_path):
        hook = _command_hook(tmp_path, """
            print('{"action": "executed-tasks", "status": "failed", "reason": "worker quota"}')
        """)

        decision = hook.invoke(ITERATION_START, PAYLOAD).decision
        assert decision.failed
        assert decision.reason == "worker quota"

    def test_missing_program(self, tmp_path):
        hook = CommandHook([str(tmp_path / "does-not-exist")])
        with pytest.raises(HookExecutionError, match="cannot start"):
            hook.invoke(ITERATION_START, PAYLOAD)

    def test_string_command_is_split(self):
        assert CommandHook("notify --urgent 'a b'").command == ["notify", "--urgent", "a b"]


# =============================================================================
# CallableHook
# =============================================================================


class TestCallableHook:
    def test_dict_decision(self):
        hook = CallableHook(lambda payload, runtime: {"action": "looked", "count": 0})
        assert hook.invoke(ITERATION_START, PAYLOAD).decision.action == "looked"

    def test_none_is_empty_decision(self):
        hook = CallableHook(lambda payload, runtime: None)
        assert hook.invoke(ITERATION_START, PAYLOAD).decision == HookDecision()

    def test_raising_callable_is_hard_failure(self):
        def broken(payload, runtime):
            raise RuntimeError("kaboom")

        with pytest.raises(HookExecutionError, match="kaboom"):
            CallableHook(broken).invoke(ITERATION_START, PAYLOAD)

    def test_wrong_return_type(self):
        with pytest.raises(HookExecutionError, match="expected a dict"):
            CallableHook(lambda payload, runtime: "ok").invoke(ITERATION_START, PAYLOAD)

    def test_loads_entrypoint(self):
        hook = CallableHook("runsitter.hooks.native:run_pending_effects")
        assert hook.name == "runsitter.hooks.native:run_pending_effects"
        # No runtime: the native hook refuses to run
        with pytest.raises(HookExecutionError, match="HookRuntime"):
            hook.invoke(ITERATION_START, PAYLOAD)

    def test_bad_entrypoint(self):
        with pytest.raises(HookExecutionError, match="cannot load"):
            CallableHook("runsitter.nope:missing").invoke(ITERATION_START, PAYLOAD)


# =============================================================================
# Registry and dispatcher
# =============================================================================


class TestHookRegistry:
    def test_create_default_from_config(self):
        config = RunsitterConfig.from_dict({
            "hooks": {
                "iteration-start": [
                    {"type": "callable", "target": "runsitter.hooks.native:run_pending_effects"},
                    {"type": "command", "command": ["notify", "start"]},
                ],
                "sprint-closed": {"type": "command", "command": "notify closed"},
            },
        })

        registry = HookRegistry.create_default(config)

        hooks = registry.get("iteration-start")
        assert [type(h) for h in hooks] == [CallableHook, CommandHook]
        assert registry.has("sprint-closed")
        assert registry.get("unknown-point") == []

    def test_list_points(self):
        registry = HookRegistry()
        registry.register("custom", CallableHook(lambda p, r: None))
        assert registry.list_points() == ["custom"]


class TestHookDispatcher:
    def test_merges_decisions_in_order(self):
        store = InMemoryRunStore()
        run = store.create_run("demo", None)
        registry = HookRegistry()
        registry.register(ITERATION_START, CallableHook(lambda p, r: {"action": "first", "count": 1}))
        registry.register(ITERATION_START, CallableHook(lambda p, r: {"action": "second", "count": 2}))

        result = HookDispatcher(registry, store).dispatch(ITERATION_START, {**PAYLOAD, "runId": run.run_id})

        assert result.hook_count == 2
        assert result.decision.action == "second"
        assert result.decision.count == 3
        hook_events = [e for e in store.load_journal(run.run_id) if e["type"] == "HOOK_INVOKED"]
        assert len(hook_events) == 2

    def test_no_hooks(self):
        result = HookDispatcher(HookRegistry(), InMemoryRunStore()).dispatch(ITERATION_START, PAYLOAD)
        assert result.hook_count == 0
        assert result.decision == HookDecision()

    def test_stops_at_first_hard_failure(self):
        calls = []

        def broken(payload, runtime):
            raise ValueError("no")

        registry = HookRegistry()
        registry.register(ITERATION_START, CallableHook(broken))
        registry.register(ITERATION_START, CallableHook(lambda p, r: calls.append(1)))

        with pytest.raises(HookExecutionError):
            HookDispatcher(registry, InMemoryRunStore()).dispatch(ITERATION_START, PAYLOAD)
        assert calls == []
