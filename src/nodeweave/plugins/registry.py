# src/nodeweave/plugins/registry.py
"""Plugin registry: discovery, registration, lifecycle and dispatch.

Uses pluggy for hook-based discovery. Plugins can also be registered
directly as instances. There is no module-level registry; each
WorkflowContext owns one.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import pluggy
import structlog

from nodeweave.contracts.results import ProcessingContext, ProcessingOutput
from nodeweave.engine.aggregation import AggregatorRegistry
from nodeweave.plugins.adapter import PluginAdapter
from nodeweave.plugins.hookspecs import PROJECT_NAME, NodeweavePluginSpec

logger = structlog.get_logger(__name__)


@dataclass
class PluginUsage:
    """Per-plugin call counters."""

    calls: int = 0
    failures: int = 0
    total_time: float = 0.0


class PluginRegistry:
    """Registry of node plugins keyed by name.

    Usage:
        registry = PluginRegistry()
        registry.register(UppercasePlugin())
        output = await registry.process_with_plugin("uppercase", inputs, {}, context)
    """

    def __init__(self, aggregators: AggregatorRegistry | None = None) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)
        self._pm.add_hookspecs(NodeweavePluginSpec)
        self._aggregators = aggregators if aggregators is not None else AggregatorRegistry()
        self._plugins: dict[str, PluginAdapter] = {}
        # Names contributed through hooks, so refreshes can replace them
        self._hooked_plugins: set[str] = set()
        self._hooked_aggregators: set[str] = set()
        self._usage: dict[str, PluginUsage] = {}

    @property
    def aggregators(self) -> AggregatorRegistry:
        return self._aggregators

    # === Discovery ===

    def register_hooks(self, hook_provider: Any) -> None:
        """Register a pluggy hook provider and pull its plugins and aggregators.

        Raises:
            ValueError: If two providers contribute the same plugin or aggregator name
        """
        self._pm.register(hook_provider)
        try:
            self._refresh()
        except ValueError:
            self._pm.unregister(hook_provider)
            self._refresh()
            raise

    def register_builtin_plugins(self) -> None:
        """Register the plugins shipped with nodeweave."""
        from nodeweave.plugins.builtin import BuiltinPlugins

        self.register_hooks(BuiltinPlugins())

    def _refresh(self) -> None:
        new_plugins: dict[str, PluginAdapter] = {}
        for plugins in self._pm.hook.nodeweave_get_plugins():
            for plugin in plugins:
                adapter = PluginAdapter.wrap(plugin)
                if adapter.name in new_plugins:
                    raise ValueError(f"Duplicate plugin name: '{adapter.name}'")
                if adapter.name in self._plugins and adapter.name not in self._hooked_plugins:
                    raise ValueError(f"Plugin '{adapter.name}' is already registered directly")
                new_plugins[adapter.name] = adapter

        new_aggregators: dict[str, Any] = {}
        for aggregators in self._pm.hook.nodeweave_get_aggregators():
            for name, fn in aggregators.items():
                if name in new_aggregators:
                    raise ValueError(f"Duplicate aggregator name: '{name}'")
                if name in self._aggregators and name not in self._hooked_aggregators:
                    raise ValueError(f"Aggregator '{name}' is already registered directly")
                new_aggregators[name] = fn

        for name in self._hooked_plugins - set(new_plugins):
            self._plugins.pop(name, None)
        for name, adapter in new_plugins.items():
            previous = self._plugins.get(name)
            # Keep the live adapter when a refresh returns the same plugin
            if previous is None or previous.wrapped is not adapter.wrapped:
                self._plugins[name] = adapter
            self._usage.setdefault(name, PluginUsage())
        self._hooked_plugins = set(new_plugins)

        for name in self._hooked_aggregators:
            if name in self._aggregators:
                self._aggregators.unregister(name)
        for name, fn in new_aggregators.items():
            self._aggregators.register(name, fn)
        self._hooked_aggregators = set(new_aggregators)
        logger.debug("plugins_refreshed", plugins=sorted(new_plugins), aggregators=sorted(new_aggregators))

    # === Registration ===

    def register(self, plugin: Any, *, replace: bool = False) -> PluginAdapter:
        """Register a plugin instance.

        Raises:
            ValueError: If the name is taken and ``replace`` is False
            ValidationError: If the object is not a plugin
        """
        adapter = PluginAdapter.wrap(plugin)
        if adapter.name in self._plugins and not replace:
            raise ValueError(f"Plugin '{adapter.name}' is already registered")
        self._plugins[adapter.name] = adapter
        self._usage[adapter.name] = PluginUsage()
        logger.info("plugin_registered", plugin=adapter.name, version=adapter.version)
        return adapter

    async def unregister(self, name: str) -> bool:
        """Remove a plugin, cleaning it up first if it was initialized."""
        adapter = self._plugins.pop(name, None)
        if adapter is None:
            return False
        self._hooked_plugins.discard(name)
        self._usage.pop(name, None)
        if adapter.initialized:
            await adapter.cleanup()
        logger.info("plugin_unregistered", plugin=name)
        return True

    # === Lookup ===

    def get(self, name: str) -> PluginAdapter | None:
        return self._plugins.get(name)

    def has(self, name: str) -> bool:
        return name in self._plugins

    def get_info(self, name: str) -> dict[str, Any] | None:
        adapter = self._plugins.get(name)
        if adapter is None:
            return None
        return {
            "name": adapter.name,
            "version": adapter.version,
            "capabilities": adapter.get_capabilities(),
            "configSchema": adapter.get_config_schema(),
            "initialized": adapter.initialized,
        }

    def get_plugins_by_capability(self, capability: str) -> list[str]:
        return [name for name, adapter in self._plugins.items() if capability in adapter.get_capabilities()]

    def validate_plugin_config(self, name: str, config: Mapping[str, Any]) -> list[str]:
        adapter = self._plugins.get(name)
        if adapter is None:
            return [f"Plugin '{name}' not found"]
        return adapter.validate_config(config)

    # === Lifecycle ===

    async def initialize(self, name: str | None = None, config: Mapping[str, Any] | None = None) -> None:
        """Initialize one plugin, or every plugin not yet initialized."""
        if name is not None:
            adapter = self._plugins.get(name)
            if adapter is None:
                raise KeyError(f"Plugin '{name}' not found")
            await adapter.initialize(config or {})
            return
        for adapter in self._plugins.values():
            if not adapter.initialized:
                await adapter.initialize(config or {})

    async def process_with_plugin(
        self,
        name: str,
        inputs: Any,
        config: Mapping[str, Any],
        context: ProcessingContext,
    ) -> ProcessingOutput:
        """Validate config, lazily initialize, and run a plugin.

        Unknown plugins and invalid config come back as a failed
        ProcessingOutput. Exceptions raised by the plugin propagate.
        """
        adapter = self._plugins.get(name)
        if adapter is None:
            return ProcessingOutput.failure(f"Plugin '{name}' not found")

        problems = adapter.validate_config(config)
        if problems:
            return ProcessingOutput.failure(*problems)

        if not adapter.initialized:
            await adapter.initialize(config)

        usage = self._usage.setdefault(name, PluginUsage())
        usage.calls += 1
        try:
            output = await adapter.process(inputs, config, context)
        except Exception:
            usage.failures += 1
            raise
        if not output.success:
            usage.failures += 1
        elapsed = output.metrics.get("processingTime")
        if isinstance(elapsed, int | float):
            usage.total_time += elapsed
        return output

    async def cleanup(self) -> None:
        """Clean up every initialized plugin. All plugins are attempted."""
        failures: list[str] = []
        for adapter in self._plugins.values():
            if not adapter.initialized:
                continue
            try:
                await adapter.cleanup()
            except Exception:
                logger.exception("plugin_cleanup_failed", plugin=adapter.name)
                failures.append(adapter.name)
        if failures:
            logger.warning("plugin_cleanup_incomplete", failed=failures)

    def get_stats(self) -> dict[str, Any]:
        return {
            "plugins": len(self._plugins),
            "initialized": sum(1 for adapter in self._plugins.values() if adapter.initialized),
            "aggregators": len(self._aggregators),
            "usage": {
                name: {"calls": usage.calls, "failures": usage.failures, "totalTime": usage.total_time}
                for name, usage in self._usage.items()
            },
        }

    # Must stay last: shadows the builtin for annotations that follow it
    def list(self) -> list[str]:  # noqa: A003
        return [*self._plugins]
