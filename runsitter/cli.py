"""
CLI interface for runsitter.

Drivers script runs with these commands. Every command that produces data
writes JSON to stdout, while logs and human messages go to stderr.

    runsitter run create scrum --inputs inputs.json
    runsitter run loop 01J...
    runsitter breakpoint resolve 01J... 0003 --response "ship it"
"""

import json
import sys
import time
from pathlib import Path
from typing import Any, Optional

import click

from runsitter import __version__
from runsitter.errors import RunsitterError


def _emit(data: Any) -> None:
    """Write JSON to stdout."""
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.version_option(version=__version__, prog_name="runsitter")
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Path to config.yaml")
@click.option("--runs-root", type=click.Path(path_type=Path), help="Override runs_root from config")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def main(ctx, config_path: Optional[Path], runs_root: Optional[Path], verbose: bool):
    """
    runsitter - durable, resumable process runs.

    Create a run, then call `run iterate` (or `run loop`) until it reports
    waiting, completed or failed.
    """
    from runsitter.config import ConfigError, RunsitterConfig, load_config
    from runsitter.utils import setup_logging

    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except FileNotFoundError:
        if config_path is not None:
            ctx.obj["config_error"] = f"Config file not found: {config_path}"
            return
        config = RunsitterConfig.default()
    except ConfigError as e:
        ctx.obj["config_error"] = str(e)
        return

    if runs_root is not None:
        config.runs_root = runs_root
    ctx.obj["config"] = config

    setup_logging(
        log_file=config.get_log_file_path(),
        log_level="DEBUG" if verbose else config.get_log_level(),
        log_format=config.get_log_format(),
        console_output=config.should_log_to_console() or verbose,
    )


def _get_orchestrator(ctx):
    from runsitter.orchestrator import Orchestrator

    if "config" not in ctx.obj:
        click.echo(f"✗ Config not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        click.echo("Run 'runsitter init' to create a configuration file.", err=True)
        raise SystemExit(1)
    return Orchestrator.from_config(ctx.obj["config"])


def _fail(e: Exception) -> None:
    from runsitter.utils import print_error

    print_error(f"{type(e).__name__}: {e}")
    raise SystemExit(1)


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize runsitter configuration."""
    from runsitter.config import get_runsitter_home
    import yaml

    home = get_runsitter_home()
    home.mkdir(parents=True, exist_ok=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = {
        "runs_root": str(Path("~/.local/share/runsitter").expanduser()),
        "env_file": str(home / ".env"),
        "max_task_workers": 4,
        "task_retry": {"max_attempts": 3, "backoff_seconds": 1, "backoff_multiplier": 2},
        "processes": {},
        "hooks": {
            "iteration-start": [
                {"type": "callable", "target": "runsitter.hooks.native:run_pending_effects"},
            ],
        },
        "workers": {},
        "logging": {"level": "INFO", "format": "pretty", "console": True},
    }
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# Variables for hooks and workers, e.g.\n# AGENT_API_KEY=...\n")

    click.echo(f"Initialized runsitter config at {cfg_path}")


# =============================================================================
# Run Commands
# =============================================================================

@main.group("run")
def run_group():
    """Create, advance and inspect runs."""
    pass


@run_group.command("create")
@click.argument("process_id")
@click.option("--inputs", "inputs_file", type=click.File("r"), help="JSON file with process inputs ('-' for stdin)")
@click.option("--inputs-json", help="Process inputs as a JSON string")
@click.pass_context
def run_create(ctx, process_id: str, inputs_file, inputs_json: Optional[str]):
    """
    Create a run of PROCESS_ID.

    PROCESS_ID is a name from the config `processes:` section or a
    "module:function" entrypoint.
    """
    if inputs_file is not None and inputs_json is not None:
        raise click.UsageError("--inputs and --inputs-json are mutually exclusive")

    try:
        if inputs_file is not None:
            inputs = json.load(inputs_file)
        elif inputs_json is not None:
            inputs = json.loads(inputs_json)
        else:
            inputs = None
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"inputs are not valid JSON: {e}")

    orch = _get_orchestrator(ctx)
    try:
        run_id = orch.create_run(process_id, inputs)
    except (RunsitterError, ValueError) as e:
        _fail(e)
    _emit({"runId": run_id})


@run_group.command("iterate")
@click.argument("run_id")
@click.pass_context
def run_iterate(ctx, run_id: str):
    """Advance RUN_ID by one step and print the IterationRecord."""
    orch = _get_orchestrator(ctx)
    try:
        record = orch.iterate(run_id)
    except RunsitterError as e:
        _fail(e)
    _emit(record.to_dict())


@run_group.command("loop")
@click.argument("run_id")
@click.option("--max-iterations", default=100, show_default=True, type=click.IntRange(min=1))
@click.pass_context
def run_loop(ctx, run_id: str, max_iterations: int):
    """Iterate RUN_ID while it reports `executed`; print one record per line."""
    from runsitter.schemas import IterationStatus
    from runsitter.utils import format_duration, print_info, print_warning

    orch = _get_orchestrator(ctx)
    start = time.monotonic()
    try:
        records = orch.loop(run_id, max_iterations=max_iterations)
    except RunsitterError as e:
        _fail(e)

    for record in records:
        click.echo(json.dumps(record.to_dict()))

    last = records[-1]
    if last.status == IterationStatus.EXECUTED:
        print_warning(f"Stopped after {max_iterations} iterations; run {run_id} still has work")
    else:
        print_info(
            f"{len(records)} iteration(s) in {format_duration(time.monotonic() - start)}, "
            f"last status: {last.status.value}"
        )


@run_group.command("status")
@click.argument("run_id")
@click.pass_context
def run_status(ctx, run_id: str):
    """Print the state and effects of RUN_ID."""
    orch = _get_orchestrator(ctx)
    try:
        _emit(orch.status(run_id))
    except RunsitterError as e:
        _fail(e)


@run_group.command("list")
@click.pass_context
def run_list(ctx):
    """List run ids."""
    orch = _get_orchestrator(ctx)
    _emit(orch.store.list_runs())


# =============================================================================
# Task Commands
# =============================================================================

@main.group("task")
def task_group():
    """Execute and inspect effects."""
    pass


@task_group.command("run")
@click.argument("run_id")
@click.argument("effect_id")
@click.option("--force", is_flag=True, help="Take over an effect left claimed by a dead executor")
@click.pass_context
def task_run(ctx, run_id: str, effect_id: str, force: bool):
    """Perform EFFECT_ID of RUN_ID and print its result."""
    orch = _get_orchestrator(ctx)
    try:
        result = orch.run_effect(run_id, effect_id, force=force)
    except RunsitterError as e:
        _fail(e)
    _emit(result.to_dict())


@task_group.command("list")
@click.argument("run_id")
@click.option("--pending", is_flag=True, help="Only effects without a result")
@click.pass_context
def task_list(ctx, run_id: str, pending: bool):
    """List the effects of RUN_ID."""
    orch = _get_orchestrator(ctx)
    try:
        orch.store.require_run(run_id)
    except RunsitterError as e:
        _fail(e)
    effects = orch.store.list_effects(run_id)
    if pending:
        effects = [e for e in effects if e.result is None]
    _emit([
        {
            "effectId": e.effect_id,
            "kind": e.kind.value,
            "taskId": e.task_id,
            "status": e.status.value,
            "labels": list(e.labels),
        }
        for e in effects
    ])


# =============================================================================
# Breakpoint Commands
# =============================================================================

@main.group("breakpoint")
def breakpoint_group():
    """Resolve breakpoints."""
    pass


@breakpoint_group.command("resolve")
@click.argument("run_id")
@click.argument("breakpoint_id")
@click.option("--reject", is_flag=True, help="Resolve as not approved")
@click.option("--response", default=None, help="Free-text answer passed to the process")
@click.option("--json", "resolution_json", default=None, help="Full resolution as JSON (overrides the other options)")
@click.pass_context
def breakpoint_resolve(ctx, run_id: str, breakpoint_id: str, reject: bool,
                       response: Optional[str], resolution_json: Optional[str]):
    """Resolve BREAKPOINT_ID of RUN_ID."""
    from runsitter.utils import print_success

    if resolution_json is not None:
        try:
            resolution = json.loads(resolution_json)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"--json is not valid JSON: {e}")
    else:
        resolution = {"approved": not reject, "response": response}

    orch = _get_orchestrator(ctx)
    try:
        record = orch.resolve_breakpoint(run_id, breakpoint_id, resolution)
    except (RunsitterError, ValueError) as e:
        _fail(e)
    _emit(record.to_dict())
    print_success(f"Resolved breakpoint {breakpoint_id}; run `runsitter run iterate {run_id}` to continue")


# =============================================================================
# Hook Commands
# =============================================================================

@main.group("hook")
def hook_group():
    """Built-in hooks."""
    pass


@hook_group.command("native")
@click.pass_context
def hook_native(ctx):
    """
    Run ready effects for the payload on stdin; print the decision.

    Meant to be configured as a command hook. Uses RUNSITTER_RUNS_ROOT when
    the engine provides it.
    """
    import os
    from runsitter.hooks.native import run_pending_effects

    config = ctx.obj.get("config")
    if config is not None and os.environ.get("RUNSITTER_RUNS_ROOT"):
        config.runs_root = Path(os.environ["RUNSITTER_RUNS_ROOT"])

    try:
        payload = json.load(sys.stdin)
    except json.JSONDecodeError as e:
        click.echo(f"✗ Payload is not valid JSON: {e}", err=True)
        raise SystemExit(2)

    orch = _get_orchestrator(ctx)
    try:
        decision = run_pending_effects(payload, orch.runtime)
    except RunsitterError as e:
        _fail(e)
    click.echo(json.dumps(decision))


if __name__ == "__main__":
    main()
