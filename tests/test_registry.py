"""Tests for runsitter.registry module.

Tests ProcessRegistry resolution, entrypoint loading, and caching.
"""

import pytest

import sample_processes
from runsitter.errors import ProcessNotFoundError
from runsitter.registry import ProcessRegistry, load_entrypoint


class TestLoadEntrypoint:
    def test_loads_function(self):
        assert load_entrypoint("sample_processes:immediate") is sample_processes.immediate

    def test_loads_nested_attribute(self):
        fn = load_entrypoint("runsitter.orchestrator:Orchestrator.from_config")
        assert callable(fn)

    def test_requires_colon(self):
        with pytest.raises(ValueError, match="module:function"):
            load_entrypoint("sample_processes.immediate")

    def test_missing_module(self):
        with pytest.raises(ImportError, match="Cannot import module"):
            load_entrypoint("no_such_module_here:fn")

    def test_missing_attribute(self):
        with pytest.raises(AttributeError, match="not found"):
            load_entrypoint("sample_processes:does_not_exist")

    def test_not_callable(self):
        with pytest.raises(TypeError, match="not callable"):
            load_entrypoint("runsitter.orchestrator:DEFAULT_MAX_ITERATIONS")


class TestProcessRegistry:
    def test_registered_callable(self):
        registry = ProcessRegistry({"now": sample_processes.immediate})
        assert registry.resolve("now") is sample_processes.immediate
        assert registry.has("now")
        assert registry.list_processes() == ["now"]

    def test_registered_string_is_loaded_and_cached(self):
        registry = ProcessRegistry()
        registry.register("chain", "sample_processes:local_chain")

        assert registry.resolve("chain") is sample_processes.local_chain
        assert registry.resolve("chain") is registry.resolve("chain")

    def test_entrypoint_id_without_registration(self):
        registry = ProcessRegistry()
        assert registry.has("sample_processes:raises")
        assert registry.resolve("sample_processes:raises") is sample_processes.raises

    def test_unknown_name(self):
        registry = ProcessRegistry({"known": sample_processes.immediate})
        with pytest.raises(ProcessNotFoundError, match="Registered: \\['known'\\]"):
            registry.resolve("unknown")

    def test_unloadable_entrypoint(self):
        registry = ProcessRegistry({"broken": "sample_processes:missing"})
        with pytest.raises(ProcessNotFoundError, match="Cannot load process 'broken'"):
            registry.resolve("broken")
