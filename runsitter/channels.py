"""
JSON-over-stdio protocol shared by command hooks and command workers.

    stdin   <- payload JSON
    stdout  -> result JSON object (the only parsed channel)
    stderr  -> free-form diagnostics, logged and never parsed

stdout and stderr are captured as two separate pipes. Diagnostic text that
happens to look like JSON never reaches the parser.
"""

import json
import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from runsitter.utils import truncate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of one command invocation."""
    command: list[str]
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def normalize_command(command: str | Sequence[str]) -> list[str]:
    """Accept "prog --flag" or ["prog", "--flag"]."""
    if isinstance(command, str):
        return shlex.split(command)
    return list(command)


def run_json_command(
    command: str | Sequence[str],
    payload: Any,
    env: Optional[dict[str, str]] = None,
    cwd: Optional[str] = None,
) -> CommandResult:
    """
    Run a command with payload JSON on stdin and both output streams captured.

    Args:
        command: Program and arguments
        payload: JSON-serializable payload written to stdin
        env: Extra environment variables (merged over os.environ)
        cwd: Working directory

    Returns:
        CommandResult (nonzero exit is reported, not raised)

    Raises:
        OSError: If the program cannot be started
    """
    argv = normalize_command(command)
    full_env = dict(os.environ)
    if env:
        full_env.update(env)

    logger.debug(f"Executing: {' '.join(argv)}")
    completed = subprocess.run(
        argv,
        input=json.dumps(payload),
        capture_output=True,
        text=True,
        env=full_env,
        cwd=cwd,
        check=False,
    )

    if completed.stderr:
        logger.debug(
            f"{argv[0]} stderr: {truncate(completed.stderr)}",
            extra={"event": "command_stderr", "metadata": {"exit_code": completed.returncode}},
        )

    return CommandResult(
        command=argv,
        exit_code=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
    )


def parse_json_object(text: str) -> dict[str, Any]:
    """
    Parse a result channel.

    Empty (or whitespace-only) output is an empty object.

    Raises:
        ValueError: If the text is not JSON or not a JSON object
    """
    if not text.strip():
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"result is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"result must be a JSON object, got {type(data).__name__}")
    return data
