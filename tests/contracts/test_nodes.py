# tests/contracts/test_nodes.py
"""Tests for node record defaults and validation."""

import pytest

from nodeweave.contracts.nodes import (
    connection_id,
    infer_data_type,
    new_node_data,
    strip_edge_prefix,
    validate_node_data,
)

TS = "2024-01-01T00:00:00+00:00"


class TestNewNodeData:
    """Default filling."""

    def test_empty_initial_gets_every_section(self) -> None:
        data = new_node_data(None, TS)

        assert data["meta"]["label"] == "Untitled Node"
        assert data["meta"]["category"] == "process"
        assert data["input"] == {"connections": {}, "processed": {}, "config": {}}
        assert data["output"]["data"] == {}
        assert data["output"]["meta"]["status"] == "idle"
        assert data["output"]["meta"]["timestamp"] == TS
        assert data["error"] == {"hasError": False, "errors": []}
        assert data["plugin"] is None

    def test_initial_values_override_defaults(self) -> None:
        data = new_node_data(
            {
                "meta": {"label": "Source", "category": "input"},
                "input": {"config": {"allowMultipleConnections": False}},
                "output": {"data": {"x": 1}, "meta": {"status": "success"}},
            },
            TS,
        )

        assert data["meta"]["label"] == "Source"
        assert data["meta"]["function"] == "Generic Function"
        assert data["input"]["config"] == {"allowMultipleConnections": False}
        assert data["output"]["data"] == {"x": 1}
        assert data["output"]["meta"]["status"] == "success"
        assert data["output"]["meta"]["timestamp"] == TS

    def test_plugin_section_gets_defaults(self) -> None:
        data = new_node_data({"plugin": {"name": "passthrough"}}, TS)

        assert data["plugin"] == {"name": "passthrough", "version": "1.0.0", "config": {}, "state": {}}

    def test_initial_is_not_aliased(self) -> None:
        initial = {"output": {"data": {"nested": {"x": 1}}}}
        data = new_node_data(initial, TS)

        data["output"]["data"]["nested"]["x"] = 2

        assert initial["output"]["data"]["nested"]["x"] == 1


class TestValidateNodeData:
    """Structural checks."""

    def test_defaults_are_valid(self) -> None:
        assert validate_node_data(new_node_data(None, TS)) == []

    def test_bad_category_reported(self) -> None:
        data = new_node_data({"meta": {"category": "sideways"}}, TS)

        assert validate_node_data(data) == ['meta.category must be "input", "process", or "output"']

    def test_missing_sections_reported(self) -> None:
        problems = validate_node_data({})

        assert "meta section is required" in problems
        assert "input section is required" in problems
        assert "output section is required" in problems


class TestConnectionHelpers:
    """Connection identity and metadata helpers."""

    def test_connection_id_is_composite(self) -> None:
        assert connection_id("a", "b") == "a-b-default-default"
        assert connection_id("a", "b", "out", "in") == "a-b-out-in"

    def test_strip_edge_prefix(self) -> None:
        assert strip_edge_prefix("xy-edge__a-b") == "a-b"
        assert strip_edge_prefix("a-b") == "a-b"

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, "null"),
            (True, "boolean"),
            (3, "number"),
            (2.5, "number"),
            ("s", "string"),
            ([1], "array"),
            ({"a": 1}, "object"),
        ],
    )
    def test_infer_data_type(self, value: object, expected: str) -> None:
        assert infer_data_type(value) == expected
