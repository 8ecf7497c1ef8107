# src/nodeweave/plugins/adapter.py
"""PluginAdapter: lift a minimal plugin to the full capability set."""

from __future__ import annotations

import inspect
from collections.abc import Mapping
from typing import Any

import jsonschema
import structlog

from nodeweave.contracts.errors import ValidationError
from nodeweave.contracts.results import ProcessingContext, ProcessingOutput
from nodeweave.plugins.protocols import Initializable, Processable, Validatable

logger = structlog.get_logger(__name__)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _to_output(result: Any) -> ProcessingOutput:
    if isinstance(result, ProcessingOutput):
        return result
    if isinstance(result, Mapping) and "success" in result:
        return ProcessingOutput(
            success=bool(result["success"]),
            data=result.get("data"),
            errors=list(result.get("errors") or []),
            metrics=dict(result.get("metrics") or {}),
            directives=dict(result.get("directives") or {}),
        )
    return ProcessingOutput.ok(result)


def validate_against_schema(config: Mapping[str, Any], schema: Mapping[str, Any]) -> list[str]:
    """Validate a config against a JSON Schema (draft 7).

    Returns:
        One ``"<path>: <message>"`` entry per violation, ordered by path;
        the config itself is reported as ``config``
    """
    try:
        jsonschema.Draft7Validator.check_schema(dict(schema))
    except jsonschema.SchemaError as e:
        return [f"Invalid config schema: {e.message}"]

    validator = jsonschema.Draft7Validator(dict(schema))
    errors = sorted(validator.iter_errors(dict(config)), key=lambda e: ([str(p) for p in e.path], e.message))
    return [f"{'.'.join(str(p) for p in error.path) or 'config'}: {error.message}" for error in errors]


class PluginAdapter:
    """Wraps any Processable and exposes every capability.

    Missing capabilities get defaults: no-op lifecycle, no capabilities, empty
    schema, and schema-driven config validation.
    """

    def __init__(self, plugin: Any) -> None:
        if not isinstance(plugin, Processable):
            raise ValidationError(f"Plugin {plugin!r} must define 'name' and 'process'")
        if not isinstance(plugin.name, str) or not plugin.name:
            raise ValidationError("Plugin name must be a non-empty string")
        self._plugin = plugin
        self.name: str = plugin.name
        self.version: str = getattr(plugin, "version", "1.0.0")
        self.initialized = False

    @classmethod
    def wrap(cls, plugin: Any) -> PluginAdapter:
        return plugin if isinstance(plugin, PluginAdapter) else cls(plugin)

    @property
    def wrapped(self) -> Any:
        return self._plugin

    async def initialize(self, config: Mapping[str, Any]) -> None:
        if isinstance(self._plugin, Initializable):
            await _maybe_await(self._plugin.initialize(config))
        self.initialized = True
        logger.debug("plugin_initialized", plugin=self.name)

    async def process(
        self,
        inputs: Any,
        config: Mapping[str, Any],
        context: ProcessingContext,
    ) -> ProcessingOutput:
        return _to_output(await _maybe_await(self._plugin.process(inputs, config, context)))

    async def cleanup(self) -> None:
        if isinstance(self._plugin, Initializable):
            await _maybe_await(self._plugin.cleanup())
        self.initialized = False

    def get_capabilities(self) -> list[str]:
        get_capabilities = getattr(self._plugin, "get_capabilities", None)
        return list(get_capabilities()) if callable(get_capabilities) else []

    def get_config_schema(self) -> dict[str, Any]:
        get_schema = getattr(self._plugin, "get_config_schema", None)
        return dict(get_schema()) if callable(get_schema) else {}

    def validate_config(self, config: Mapping[str, Any]) -> list[str]:
        if isinstance(self._plugin, Validatable):
            return list(self._plugin.validate_config(config))
        return validate_against_schema(config, self.get_config_schema())
