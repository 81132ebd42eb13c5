"""
Configuration management for runsitter.

Loads and validates config.yaml from the runsitter home directory
($RUNSITTER_HOME, default ~/.config/runsitter).

Example config.yaml:

    runs_root: ~/.local/share/runsitter
    env_file: ~/.config/runsitter/.env
    max_task_workers: 4
    task_retry:
      max_attempts: 3
      backoff_seconds: 1
      backoff_multiplier: 2
    processes:
      scrum: methodologies.scrum:process
    hooks:
      iteration-start:
        - type: callable
          target: runsitter.hooks.native:run_pending_effects
      breakpoint-reached:
        - type: command
          command: ["notify-send", "runsitter"]
    workers:
      agent:
        type: command
        command: ["my-agent-runner"]
    logging:
      level: INFO
      format: pretty
      console: true
      output: ~/.local/state/runsitter/runsitter-{date}.log
"""

import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from runsitter.errors import ConfigError
from runsitter.run_store import DEFAULT_RUNS_ROOT

__all__ = [
    "ConfigError",
    "RetryPolicy",
    "RunsitterConfig",
    "get_runsitter_home",
    "load_config",
]

HOOK_TYPES = ("command", "callable")
WORKER_TYPES = ("command", "noop")


def get_runsitter_home() -> Path:
    """Return the runsitter home directory ($RUNSITTER_HOME or ~/.config/runsitter)."""
    env_home = os.environ.get("RUNSITTER_HOME")
    if env_home:
        return Path(env_home).expanduser()
    return Path("~/.config/runsitter").expanduser()


@dataclass(frozen=True)
class RetryPolicy:
    """Retry policy for TransientError raised by task actions."""
    max_attempts: int = 3
    backoff_seconds: float = 1.0
    backoff_multiplier: float = 2.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RetryPolicy":
        try:
            policy = cls(
                max_attempts=int(data.get("max_attempts", 3)),
                backoff_seconds=float(data.get("backoff_seconds", 1.0)),
                backoff_multiplier=float(data.get("backoff_multiplier", 2.0)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid task_retry: {e}") from e
        if policy.max_attempts < 1:
            raise ConfigError("task_retry.max_attempts must be >= 1")
        if policy.backoff_seconds < 0 or policy.backoff_multiplier < 1:
            raise ConfigError("task_retry backoff must be >= 0 with multiplier >= 1")
        return policy


@dataclass
class RunsitterConfig:
    """Complete runsitter configuration."""
    runs_root: Path = DEFAULT_RUNS_ROOT
    processes: dict[str, str] = field(default_factory=dict)
    hooks: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    workers: dict[str, dict[str, Any]] = field(default_factory=dict)
    max_task_workers: int = 4
    task_retry: RetryPolicy = field(default_factory=RetryPolicy)
    logging: dict[str, Any] = field(default_factory=dict)
    env_file: Optional[str] = None

    @classmethod
    def default(cls) -> "RunsitterConfig":
        """Configuration used when no config.yaml exists."""
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RunsitterConfig":
        """Build and validate a config from parsed YAML."""
        if not isinstance(data, dict):
            raise ConfigError("config.yaml must contain a mapping")

        runs_root = data.get("runs_root")
        max_workers = data.get("max_task_workers", 4)
        if isinstance(max_workers, bool) or not isinstance(max_workers, int) or max_workers < 1:
            raise ConfigError(f"max_task_workers must be a positive integer, got {max_workers!r}")

        config = cls(
            runs_root=Path(runs_root).expanduser() if runs_root else DEFAULT_RUNS_ROOT,
            processes=dict(data.get("processes") or {}),
            hooks=_parse_hooks(data.get("hooks") or {}),
            workers=_parse_workers(data.get("workers") or {}),
            max_task_workers=max_workers,
            task_retry=RetryPolicy.from_dict(data.get("task_retry") or {}),
            logging=dict(data.get("logging") or {}),
            env_file=data.get("env_file"),
        )
        for process_id, entrypoint in config.processes.items():
            if not isinstance(entrypoint, str) or ":" not in entrypoint:
                raise ConfigError(
                    f"processes.{process_id}: expected 'module:function', got {entrypoint!r}"
                )
        return config

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path with date interpolation (None if not configured)."""
        output = self.logging.get("output")
        if not output:
            return None
        output = output.replace("{date}", datetime.now().strftime("%Y-%m-%d"))
        return Path(output).expanduser()

    def get_log_level(self) -> str:
        return str(self.logging.get("level", "INFO")).upper()

    def get_log_format(self) -> str:
        """Get log format (structured or pretty)."""
        return self.logging.get("format", "pretty")

    def should_log_to_console(self) -> bool:
        return bool(self.logging.get("console", True))


def _parse_hooks(data: Any) -> dict[str, list[dict[str, Any]]]:
    if not isinstance(data, dict):
        raise ConfigError("hooks must map extension point names to lists of hooks")
    hooks: dict[str, list[dict[str, Any]]] = {}
    for point, specs in data.items():
        if isinstance(specs, dict):
            specs = [specs]
        if not isinstance(specs, list):
            raise ConfigError(f"hooks.{point}: expected a list of hook specs")
        for spec in specs:
            _validate_spec(f"hooks.{point}", spec, HOOK_TYPES)
        hooks[str(point)] = [dict(s) for s in specs]
    return hooks


def _parse_workers(data: Any) -> dict[str, dict[str, Any]]:
    if not isinstance(data, dict):
        raise ConfigError("workers must map worker kinds to worker specs")
    for kind, spec in data.items():
        _validate_spec(f"workers.{kind}", spec, WORKER_TYPES)
    return {str(k): dict(v) for k, v in data.items()}


def _validate_spec(where: str, spec: Any, allowed: tuple[str, ...]) -> None:
    if not isinstance(spec, dict):
        raise ConfigError(f"{where}: expected a mapping, got {spec!r}")
    spec_type = spec.get("type")
    if spec_type not in allowed:
        raise ConfigError(f"{where}: 'type' must be one of {list(allowed)}, got {spec_type!r}")
    if spec_type == "command":
        command = spec.get("command")
        if isinstance(command, str):
            return
        if not isinstance(command, list) or not command or not all(isinstance(c, str) for c in command):
            raise ConfigError(f"{where}: 'command' must be a string or a non-empty list of strings")
    if spec_type == "callable":
        target = spec.get("target")
        if not isinstance(target, str) or ":" not in target:
            raise ConfigError(f"{where}: 'target' must be 'module:function'")


def load_config(config_path: Optional[Path] = None) -> RunsitterConfig:
    """
    Load runsitter configuration.

    Args:
        config_path: Path to config file. Defaults to $RUNSITTER_HOME/config.yaml

    Returns:
        RunsitterConfig instance

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If the config is invalid
    """
    if config_path is None:
        config_path = get_runsitter_home() / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"runsitter config.yaml not found at {config_path}. Run 'runsitter init' to create one."
        )

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {config_path}: {e}") from e

    config = RunsitterConfig.from_dict(data or {})

    if config.env_file:
        env_path = Path(config.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path)

    return config
