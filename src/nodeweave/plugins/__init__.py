"""Plugin capability contract, adapter, registry and pluggy hooks."""

from nodeweave.plugins.adapter import PluginAdapter
from nodeweave.plugins.hookspecs import PROJECT_NAME, hookimpl, hookspec
from nodeweave.plugins.protocols import Initializable, NodePlugin, Processable, Validatable
from nodeweave.plugins.registry import PluginRegistry

__all__ = [
    "PROJECT_NAME",
    "Initializable",
    "NodePlugin",
    "PluginAdapter",
    "PluginRegistry",
    "Processable",
    "Validatable",
    "hookimpl",
    "hookspec",
]
