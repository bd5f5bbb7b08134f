"""
dag/ - Block DAG derivation for rendering.
"""

from dag.builder import (
    DagBuilder,
    DagEdge,
    DagGraph,
    DagNode,
    resolve_parent_hash,
    round_timestamp,
)

__all__ = [
    "DagBuilder",
    "DagEdge",
    "DagGraph",
    "DagNode",
    "resolve_parent_hash",
    "round_timestamp",
]
