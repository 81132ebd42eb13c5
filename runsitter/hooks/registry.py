"""
Hook Registry - extension point name to ordered list of hooks.

Extension points are plain strings. The core dispatches "iteration-start",
"iteration-end" and "breakpoint-reached"; registering hooks on any other name
needs no change to the core.
"""

from typing import TYPE_CHECKING

from runsitter.hooks.base import CallableHook, CommandHook, Hook

if TYPE_CHECKING:
    from runsitter.config import RunsitterConfig

ITERATION_START = "iteration-start"
ITERATION_END = "iteration-end"
BREAKPOINT_REACHED = "breakpoint-reached"


class HookRegistry:
    """
    Registry of hooks per extension point.

    Usage:
        registry = HookRegistry()
        registry.register("iteration-start", CommandHook(["./on-iterate.sh"]))
        hooks = registry.get("iteration-start")

        # Or build from config
        registry = HookRegistry.create_default(config)
    """

    def __init__(self) -> None:
        self._hooks: dict[str, list[Hook]] = {}

    def register(self, extension_point: str, hook: Hook) -> None:
        """Append a hook to an extension point (hooks run in registration order)."""
        self._hooks.setdefault(extension_point, []).append(hook)

    def get(self, extension_point: str) -> list[Hook]:
        """Hooks for an extension point (empty list if none)."""
        return list(self._hooks.get(extension_point, []))

    def has(self, extension_point: str) -> bool:
        return bool(self._hooks.get(extension_point))

    def list_points(self) -> list[str]:
        return [point for point, hooks in self._hooks.items() if hooks]

    @classmethod
    def create_default(cls, config: "RunsitterConfig | None" = None) -> "HookRegistry":
        """Create a registry from the ``hooks:`` config section."""
        registry = cls()
        if config is None:
            return registry

        for point, specs in config.hooks.items():
            for spec in specs:
                if spec["type"] == "command":
                    registry.register(point, CommandHook(
                        spec["command"],
                        env=spec.get("env"),
                        cwd=spec.get("cwd"),
                    ))
                else:
                    registry.register(point, CallableHook(spec["target"]))
        return registry
