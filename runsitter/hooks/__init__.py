"""
Hook dispatch.

Available hook types:
- CommandHook: external program (stdin payload, stdout decision, stderr logs)
- CallableHook: Python callable fn(payload, runtime)
"""

from runsitter.hooks.base import CallableHook, CommandHook, Hook, HookRuntime
from runsitter.hooks.dispatcher import HookDispatcher, HookDispatchResult
from runsitter.hooks.registry import (
    BREAKPOINT_REACHED,
    ITERATION_END,
    ITERATION_START,
    HookRegistry,
)

__all__ = [
    "Hook",
    "HookRuntime",
    "CommandHook",
    "CallableHook",
    "HookRegistry",
    "HookDispatcher",
    "HookDispatchResult",
    "ITERATION_START",
    "ITERATION_END",
    "BREAKPOINT_REACHED",
]
