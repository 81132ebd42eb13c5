"""
ProcessRegistry - resolves process ids to process callables.

A process id is either a name registered explicitly (or through the config
``processes:`` mapping) or an entrypoint string ``"package.module:function"``.

Usage:
    registry = ProcessRegistry()
    registry.register("scrum", scrum_process)
    registry.register("shape-up", "methodologies.shape_up:process")

    fn = registry.resolve("scrum")
    fn = registry.resolve("methodologies.kanban:process")
"""

import importlib
from typing import Any, Callable, Optional

from runsitter.errors import ProcessNotFoundError

ProcessFn = Callable[[Any, Any], Any]


def load_entrypoint(path: str) -> Callable[..., Any]:
    """
    Load a callable by ``module:function`` path.

    Raises:
        ValueError: If the path is malformed
        ImportError: If the module cannot be imported
        AttributeError: If the function is not found in the module
        TypeError: If the attribute is not callable
    """
    if ":" not in path:
        raise ValueError(f"Entrypoint must be 'module:function', got: {path}")

    module_path, func_name = path.rsplit(":", 1)
    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise ImportError(f"Cannot import module '{module_path}': {e}") from e

    target: Any = module
    for part in func_name.split("."):
        try:
            target = getattr(target, part)
        except AttributeError as e:
            raise AttributeError(f"'{func_name}' not found in '{module_path}': {e}") from e

    if not callable(target):
        raise TypeError(f"{path} is not callable")
    return target


class ProcessRegistry:
    """
    Registry of process callables by id.

    Entries may be callables or entrypoint strings; strings are imported on
    first resolve and cached.
    """

    def __init__(self, processes: Optional[dict[str, ProcessFn | str]] = None) -> None:
        self._processes: dict[str, ProcessFn | str] = dict(processes or {})

    def register(self, process_id: str, process: ProcessFn | str) -> None:
        """Register a process callable (or entrypoint string) under an id."""
        self._processes[process_id] = process

    def has(self, process_id: str) -> bool:
        return process_id in self._processes or ":" in process_id

    def list_processes(self) -> list[str]:
        return sorted(self._processes.keys())

    def resolve(self, process_id: str) -> ProcessFn:
        """
        Resolve a process id to its callable.

        Raises:
            ProcessNotFoundError: If the id is neither registered nor loadable
        """
        entry = self._processes.get(process_id)
        if entry is None:
            if ":" not in process_id:
                registered = self.list_processes()
                raise ProcessNotFoundError(
                    f"No process registered for id: {process_id}. Registered: {registered}"
                )
            entry = process_id

        if isinstance(entry, str):
            try:
                fn = load_entrypoint(entry)
            except (ValueError, ImportError, AttributeError, TypeError) as e:
                raise ProcessNotFoundError(f"Cannot load process '{process_id}': {e}") from e
            self._processes[process_id] = fn
            return fn
        return entry
