# src/nodeweave/plugins/protocols.py
"""Plugin capability protocols.

Capabilities are checked by presence, not inheritance. A plugin only needs
a ``name`` and a ``process`` method; PluginAdapter fills in the rest.

Methods may be plain functions or coroutines; the adapter awaits whatever
is awaitable.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from nodeweave.contracts.results import ProcessingContext, ProcessingOutput


@runtime_checkable
class Processable(Protocol):
    """Minimal plugin: turns aggregated inputs into output."""

    name: str

    def process(
        self,
        inputs: Any,
        config: Mapping[str, Any],
        context: ProcessingContext,
    ) -> Any:
        """Return a ProcessingOutput, a mapping with a ``success`` key, or raw output data."""
        ...


@runtime_checkable
class Initializable(Protocol):
    """Plugin with setup and teardown."""

    def initialize(self, config: Mapping[str, Any]) -> Any: ...

    def cleanup(self) -> Any: ...


@runtime_checkable
class Validatable(Protocol):
    """Plugin that validates its own configuration."""

    def get_config_schema(self) -> dict[str, Any]: ...

    def validate_config(self, config: Mapping[str, Any]) -> list[str]: ...


class NodePlugin(Protocol):
    """Full capability set, as exposed by PluginAdapter."""

    name: str
    version: str

    async def initialize(self, config: Mapping[str, Any]) -> None: ...

    async def process(
        self,
        inputs: Any,
        config: Mapping[str, Any],
        context: ProcessingContext,
    ) -> ProcessingOutput: ...

    async def cleanup(self) -> None: ...

    def get_capabilities(self) -> list[str]: ...

    def get_config_schema(self) -> dict[str, Any]: ...

    def validate_config(self, config: Mapping[str, Any]) -> list[str]: ...
