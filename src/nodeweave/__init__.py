"""
nodeweave: dataflow and consistency core for node-graph workflow editors.

Keeps per-node state, connection snapshots, deferred cross-node directives
and the three editor representations (canvas, store, projection) converging.
"""

__version__ = "0.1.0"
