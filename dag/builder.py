"""
dag/builder.py - Block DAG derivation.

DAG CONTRACT
============
Layout keys:
  - lane   = index of chain_from in the sorted set of chain_from values
  - bucket = round(timestamp / bucket_ms), half up
  - column = index of bucket in the sorted set of buckets
  - blocks sharing (lane, bucket) stack, ordered by (timestamp, hash)

Edges (blocks visited in hash order, one pass):
  1. parent: parent_hash (explicit, else deps[0]) present in the set AND
     on the same chain_from -> parent->block, is_parent=True
  2. deps: every other dep present in the set, not the block itself, with
     no edge yet between the pair in either direction
     -> dep->block, is_parent=False, is_same_chain by chain_from

A resolved parent on another chain_from is not a parent (parents stay
within one chain); it is emitted as an ordinary dependency edge.

Pure: no I/O, blocks are not mutated, every call rebuilds from scratch.
============
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional

from core.constants import TIMESTAMP_BUCKET_MS
from core.models import Block


def round_timestamp(timestamp: int, bucket_ms: int = TIMESTAMP_BUCKET_MS) -> int:
    """Coarse time bucket, rounding half up."""
    return (2 * timestamp + bucket_ms) // (2 * bucket_ms)


def resolve_parent_hash(block: Block) -> Optional[str]:
    """Explicit parent, else first dependency."""
    if block.parent_hash:
        return block.parent_hash
    return block.deps[0] if block.deps else None


@dataclass(frozen=True)
class DagNode:
    """A block placed on the graph."""
    block: Block
    lane: int
    bucket: int
    column: int
    stack_index: int
    stack_size: int

    @property
    def hash(self) -> str:
        return self.block.hash

    @property
    def is_stale(self) -> bool:
        return self.block.is_stale

    def to_dict(self) -> dict:
        return {
            **self.block.to_dict(),
            "lane": self.lane,
            "bucket": self.bucket,
            "column": self.column,
            "stackIndex": self.stack_index,
            "stackSize": self.stack_size,
            "isStale": self.is_stale,
        }


@dataclass(frozen=True)
class DagEdge:
    """Directed edge source -> target."""
    source: str
    target: str
    is_parent: bool
    is_same_chain: bool

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "target": self.target,
            "isParent": self.is_parent,
            "isSameChain": self.is_same_chain,
        }


@dataclass
class DagGraph:
    """Renderable node/edge set."""
    nodes: list[DagNode] = field(default_factory=list)
    edges: list[DagEdge] = field(default_factory=list)
    lanes: list[int] = field(default_factory=list)  # chain_from per lane
    buckets: list[int] = field(default_factory=list)  # bucket per column

    def node(self, block_hash: str) -> Optional[DagNode]:
        for node in self.nodes:
            if node.hash == block_hash:
                return node
        return None

    def edges_between(self, source: str, target: str) -> list[DagEdge]:
        return [e for e in self.edges if e.source == source and e.target == target]

    def to_dict(self) -> dict:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "lanes": list(self.lanes),
            "buckets": list(self.buckets),
        }


class DagBuilder:
    """Builds a DagGraph from a block set."""

    def __init__(self, bucket_ms: int = TIMESTAMP_BUCKET_MS):
        if bucket_ms <= 0:
            raise ValueError(f"bucket_ms must be positive, got {bucket_ms}")
        self.bucket_ms = bucket_ms

    def build(
        self,
        blocks: Iterable[Block],
        visible_chains: Optional[Iterable[int]] = None,
    ) -> DagGraph:
        """
        Derive nodes and edges.

        Args:
            blocks: Block set (duplicates by hash: first wins)
            visible_chains: Optional chain_from filter applied before layout

        Returns:
            DagGraph
        """
        visible = set(visible_chains) if visible_chains is not None else None
        by_hash: dict[str, Block] = {}
        for block in blocks:
            if block.hash in by_hash:
                continue
            if visible is not None and block.chain_from not in visible:
                continue
            by_hash[block.hash] = block

        ordered = [by_hash[h] for h in sorted(by_hash)]
        graph = DagGraph()
        graph.lanes = sorted({b.chain_from for b in ordered})
        graph.buckets = sorted({round_timestamp(b.timestamp, self.bucket_ms) for b in ordered})
        graph.nodes = self._place(ordered, graph.lanes, graph.buckets)
        graph.edges = self._derive_edges(ordered, by_hash)
        return graph

    def _place(
        self,
        ordered: list[Block],
        lanes: list[int],
        buckets: list[int],
    ) -> list[DagNode]:
        lane_of = {chain: i for i, chain in enumerate(lanes)}
        column_of = {bucket: i for i, bucket in enumerate(buckets)}

        slots: dict[tuple[int, int], list[Block]] = {}
        for block in ordered:
            key = (block.chain_from, round_timestamp(block.timestamp, self.bucket_ms))
            slots.setdefault(key, []).append(block)

        nodes = []
        for (chain_from, bucket) in sorted(slots):
            members = sorted(slots[(chain_from, bucket)], key=lambda b: (b.timestamp, b.hash))
            for idx, block in enumerate(members):
                nodes.append(DagNode(
                    block=block,
                    lane=lane_of[chain_from],
                    bucket=bucket,
                    column=column_of[bucket],
                    stack_index=idx,
                    stack_size=len(members),
                ))
        return nodes

    def _derive_edges(
        self,
        ordered: list[Block],
        by_hash: dict[str, Block],
    ) -> list[DagEdge]:
        edges: list[DagEdge] = []
        linked: set[frozenset[str]] = set()

        for block in ordered:
            parent_hash = resolve_parent_hash(block)
            parent = by_hash.get(parent_hash) if parent_hash else None
            if parent is not None and (
                parent.hash == block.hash or parent.chain_from != block.chain_from
            ):
                parent = None

            if parent is not None:
                edges.append(DagEdge(
                    source=parent.hash,
                    target=block.hash,
                    is_parent=True,
                    is_same_chain=True,
                ))
                linked.add(frozenset((parent.hash, block.hash)))

            for dep_hash in block.deps:
                if parent is not None and dep_hash == parent.hash:
                    continue
                dep = by_hash.get(dep_hash)
                if dep is None or dep.hash == block.hash:
                    continue
                pair = frozenset((dep.hash, block.hash))
                if pair in linked:
                    continue
                edges.append(DagEdge(
                    source=dep.hash,
                    target=block.hash,
                    is_parent=False,
                    is_same_chain=dep.chain_from == block.chain_from,
                ))
                linked.add(pair)

        return edges
