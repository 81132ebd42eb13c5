"""
CommandWorker - performs delegated effects with an external program.

Same stdio protocol as command hooks (see runsitter.channels): the effect
record is written to stdin as JSON, the result object is read from stdout,
and stderr is diagnostics only.

Exit codes:
    0   success, stdout holds the result object
    75  temporary failure (EX_TEMPFAIL), retried as TransientError
    *   permanent failure
"""

import logging
from typing import Any, Optional, Sequence

from runsitter.channels import parse_json_object, run_json_command
from runsitter.errors import PermanentError, TransientError
from runsitter.schemas import EffectRecord
from runsitter.utils import truncate
from runsitter.workers.base import Worker

logger = logging.getLogger(__name__)

EXIT_TEMPFAIL = 75


class CommandWorker(Worker):
    """Run one program per delegated effect."""

    def __init__(
        self,
        command: str | Sequence[str],
        env: Optional[dict[str, str]] = None,
        cwd: Optional[str] = None,
    ):
        self.command = command
        self.env = dict(env or {})
        self.cwd = cwd

    def execute(self, effect: EffectRecord) -> Any:
        env = dict(self.env)
        env["RUNSITTER_RUN_ID"] = effect.run_id
        env["RUNSITTER_EFFECT_ID"] = effect.effect_id

        try:
            result = run_json_command(self.command, effect.to_dict(), env=env, cwd=self.cwd)
        except OSError as e:
            raise PermanentError(f"Cannot start worker {self.command!r}: {e}") from e

        if result.exit_code == EXIT_TEMPFAIL:
            raise TransientError(
                f"Worker exited {EXIT_TEMPFAIL} (temporary failure): {truncate(result.stderr.strip(), 500)}"
            )
        if not result.ok:
            raise PermanentError(
                f"Worker exited {result.exit_code}: {truncate(result.stderr.strip(), 500)}"
            )

        try:
            return parse_json_object(result.stdout)
        except ValueError as e:
            raise PermanentError(f"Worker {result.command[0]} wrote an invalid {e}") from e
