"""
Error classes for runsitter.

Two families live here:

Retry classification (raised by task code, caught by the TaskExecutor):
- TransientError: Safe to retry (rate limits, network issues, temporary failures)
- PermanentError: Do not retry (invalid input, schema errors, missing resources)

Engine errors (raised by the ledger, replay engine and iteration controller):
- HookExecutionError: hook exited nonzero or wrote an unparseable decision
- EffectExecutionError: an effect's action failed (recoverable by the process)
- ReplayDivergenceError: replay no longer matches the recorded effect sequence

An unresolved breakpoint is NOT an error. Iterating a run that waits on a
breakpoint reports status=waiting.
"""

from typing import Any, Optional


class RunsitterError(Exception):
    """Base exception for runsitter."""
    pass


class TransientError(RunsitterError):
    """
    Transient error - safe to retry.

    Examples:
    - Rate limit exceeded
    - Network timeout
    - Worker temporarily unavailable

    The TaskExecutor retries actions that raise TransientError
    according to the configured retry policy.
    """
    pass


class PermanentError(RunsitterError):
    """
    Permanent error - do not retry.

    The TaskExecutor records the effect as failed immediately
    when PermanentError is raised.
    """
    pass


class ConfigError(RunsitterError):
    """Configuration validation error."""
    pass


class RunNotFoundError(RunsitterError):
    """Raised when a run id is unknown to the store."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")


class EffectNotFoundError(RunsitterError):
    """Raised when an effect id is unknown for a run."""

    def __init__(self, run_id: str, effect_id: str):
        self.run_id = run_id
        self.effect_id = effect_id
        super().__init__(f"Effect not found: {run_id}/{effect_id}")


class InvalidEffectError(RunsitterError):
    """Raised when an operation does not apply to the effect's kind."""
    pass


class EffectAlreadyResolvedError(RunsitterError):
    """
    Raised when a second result is written for the same effect.

    The ledger never overwrites a committed result; this is what makes
    replay idempotent.
    """

    def __init__(self, run_id: str, effect_id: str):
        self.run_id = run_id
        self.effect_id = effect_id
        super().__init__(f"Effect already has a result: {run_id}/{effect_id}")


class EffectInFlightError(RunsitterError):
    """Raised when an effect is already claimed by another executor."""

    def __init__(self, run_id: str, effect_id: str):
        self.run_id = run_id
        self.effect_id = effect_id
        super().__init__(f"Effect already claimed: {run_id}/{effect_id}")


class ConcurrentIterationError(RunsitterError):
    """
    Raised when the run record changed under an update (optimistic check).

    At most one iterate call may be in flight per run. The losing caller
    gets this error and may retry.
    """

    def __init__(self, run_id: str, expected_version: int, actual_version: int):
        self.run_id = run_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Run {run_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class ProcessNotFoundError(RunsitterError):
    """Raised when a process id cannot be resolved to a callable."""
    pass


class HookExecutionError(RunsitterError):
    """
    Raised when a hook fails hard.

    Either the hook program exited nonzero, or its result channel held
    content that is not a JSON object. A decision that itself reports
    ``status: failed`` is not a HookExecutionError.
    """

    def __init__(
        self,
        extension_point: str,
        message: str,
        exit_code: Optional[int] = None,
        stderr: str = "",
    ):
        self.extension_point = extension_point
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"Hook for '{extension_point}' failed: {message}")


class EffectExecutionError(RunsitterError):
    """
    An effect's underlying action failed.

    Recorded as the effect's terminal failed result. When the process
    reads that result during replay, this error is raised inside the
    process so it can branch on it instead of failing the whole run.
    """

    def __init__(
        self,
        effect_id: str,
        message: str,
        error: Optional[dict[str, Any]] = None,
    ):
        self.effect_id = effect_id
        self.error = error or {}
        super().__init__(f"Effect '{effect_id}' failed: {message}")


class ReplayDivergenceError(RunsitterError):
    """
    Replay no longer matches the recorded effect sequence.

    Always fatal: the process definition is not deterministic given
    identical prior results. The run transitions to failed.
    """

    def __init__(self, run_id: str, effect_id: str, message: str):
        self.run_id = run_id
        self.effect_id = effect_id
        super().__init__(f"Replay diverged in run {run_id} at '{effect_id}': {message}")
