# tests/plugins/test_builtin.py
"""Tests for the built-in plugins and aggregators."""

from nodeweave.contracts.nodes import ConnectionMeta, ConnectionRecord
from nodeweave.contracts.results import ProcessingContext
from nodeweave.plugins.builtin import FieldMapperPlugin, PassthroughPlugin, collect_by_source


def _context(connections: dict | None = None) -> ProcessingContext:
    return ProcessingContext(
        node_id="n",
        node_data={},
        connections=connections or {},
        timestamp="2024-01-01T00:00:00+00:00",
    )


class TestPassthrough:
    def test_returns_inputs(self) -> None:
        output = PassthroughPlugin().process({"x": 1}, {}, _context())

        assert output.success is True
        assert output.data == {"x": 1}
        assert output.metrics == {"connectionCount": 0}


class TestFieldMapper:
    def test_maps_keys(self) -> None:
        output = FieldMapperPlugin().process({"a": 1, "b": 2}, {"mapping": {"x": "a", "y": "missing"}}, _context())

        assert output.data == {"x": 1, "y": None}

    def test_drop_missing(self) -> None:
        config = {"mapping": {"x": "a", "y": "missing"}, "dropMissing": True}

        output = FieldMapperPlugin().process({"a": 1}, config, _context())

        assert output.data == {"x": 1}

    def test_non_mapping_input_fails(self) -> None:
        output = FieldMapperPlugin().process([1, 2], {"mapping": {}}, _context())

        assert output.success is False
        assert "needs object input" in output.errors[0]


class TestCollectBySource:
    def test_keys_by_source(self) -> None:
        meta = ConnectionMeta(timestamp="2024-01-01T00:00:00+00:00")
        connections = {
            "a-n": ConnectionRecord(id="a-n", source_node_id="a", target_node_id="n", meta=meta, data={"v": 1}),
            "b-n": ConnectionRecord(id="b-n", source_node_id="b", target_node_id="n", meta=meta, data=[2]),
        }

        assert collect_by_source(connections, {}) == {"a": {"v": 1}, "b": [2]}
