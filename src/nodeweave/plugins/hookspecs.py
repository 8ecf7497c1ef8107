# src/nodeweave/plugins/hookspecs.py
"""pluggy hook specifications for nodeweave plugins.

Plugin packages implement these hooks to contribute node plugins and named
custom aggregators. The PluginRegistry calls them during discovery.

Usage (implementing a plugin package):
    from nodeweave.plugins.hookspecs import hookimpl

    class MyPackage:
        @hookimpl
        def nodeweave_get_plugins(self):
            return [UppercasePlugin()]

        @hookimpl
        def nodeweave_get_aggregators(self):
            return {"sum_values": sum_values}
"""

from collections.abc import Callable
from typing import Any

import pluggy

PROJECT_NAME = "nodeweave"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)

hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class NodeweavePluginSpec:
    """Hook specifications for node plugins and aggregators."""

    @hookspec
    def nodeweave_get_plugins(self) -> list[Any]:  # type: ignore[empty-body]
        """Return plugin instances.

        Returns:
            List of objects with at least ``name`` and ``process``
        """

    @hookspec
    def nodeweave_get_aggregators(self) -> dict[str, Callable[..., Any]]:  # type: ignore[empty-body]
        """Return named custom aggregators.

        Returns:
            Mapping of aggregator name to ``fn(connections, node_data) -> value``
        """
