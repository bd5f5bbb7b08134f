# PATH: core/models.py
"""
Core data models.

BLOCK CONTRACT
==============

A Block is immutable once built. Identity is the hash: two records with
the same hash are the same block regardless of field differences.

Raw node records are camelCase; normalize_block() is the single place
where they become Blocks:
  - chainFrom / chainTo coerced to int (default 0)
  - deps defaults to []
  - parent_hash = explicit "parent"/"parentHash" field, else deps[0]
  - transactions kept as-is (records or plain hash strings)

The deps[0] fallback treats "first dependency" as the parent. This is an
assumption about the node's ordering, not a verified protocol rule.

MERGE CONTRACT
==============

merge_blocks() is the only merge used by the polling and push paths:
  - first occurrence of a hash wins
  - sorted by timestamp descending, hash ascending on ties
  - idempotent: merge(A, A) == merge(A)
  - commutative on the hash set: merge(A, B) and merge(B, A) hold the
    same hashes in the same order
==============
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from core.exceptions import ValidationError


@dataclass(frozen=True)
class Block:
    """Canonical block record."""
    hash: str
    height: int
    timestamp: int  # ms since epoch
    chain_from: int
    chain_to: int
    parent_hash: Optional[str] = None
    deps: tuple[str, ...] = ()
    transactions: tuple[Any, ...] = ()

    # Informational, carried through unchanged
    nonce: Optional[str] = None
    version: Optional[int] = None
    size: Optional[int] = None
    main_chain: Optional[bool] = None

    @property
    def chain_pair(self) -> tuple[int, int]:
        return (self.chain_from, self.chain_to)

    @property
    def is_stale(self) -> bool:
        """True for blocks the node reports as off the main chain."""
        return self.main_chain is False

    @property
    def transaction_ids(self) -> list[str]:
        """Transaction ids, tolerating both record and hash-string entries."""
        ids = []
        for tx in self.transactions:
            tx_id = transaction_id(tx)
            if tx_id:
                ids.append(tx_id)
        return ids

    def to_dict(self) -> dict:
        """Serialize to the camelCase shape used by the rendering layer."""
        return {
            "hash": self.hash,
            "height": self.height,
            "timestamp": self.timestamp,
            "chainFrom": self.chain_from,
            "chainTo": self.chain_to,
            "parentHash": self.parent_hash,
            "deps": list(self.deps),
            "transactions": list(self.transactions),
            "nonce": self.nonce,
            "version": self.version,
            "size": self.size,
            "mainChain": self.main_chain,
        }


def transaction_id(tx: Any) -> Optional[str]:
    """Extract a transaction id from a hash string or a transaction record."""
    if isinstance(tx, str):
        return tx or None
    if isinstance(tx, Mapping):
        unsigned = tx.get("unsigned")
        if isinstance(unsigned, Mapping) and unsigned.get("txId"):
            return str(unsigned["txId"])
        for key in ("txId", "hash", "id"):
            if tx.get(key):
                return str(tx[key])
    return None


def _as_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def normalize_block(raw: Mapping[str, Any]) -> Block:
    """
    Normalize a raw node record into a Block.

    Args:
        raw: Record as returned by the node or the push channel

    Returns:
        Block

    Raises:
        ValidationError: If hash, height or timestamp are missing/invalid
    """
    if not isinstance(raw, Mapping):
        raise ValidationError(
            f"Block record must be a mapping, got {type(raw).__name__}",
        )

    block_hash = raw.get("hash")
    if not isinstance(block_hash, str) or not block_hash:
        raise ValidationError("Block record has no hash", details={"keys": sorted(raw)})

    height = _as_int(raw.get("height"))
    timestamp = _as_int(raw.get("timestamp"))
    if height is None or height < 0:
        raise ValidationError(
            f"Block {block_hash[:8]} has invalid height",
            details={"hash": block_hash, "height": raw.get("height")},
        )
    if timestamp is None:
        raise ValidationError(
            f"Block {block_hash[:8]} has invalid timestamp",
            details={"hash": block_hash, "timestamp": raw.get("timestamp")},
        )

    deps = raw.get("deps") or raw.get("blockDeps") or []
    deps = tuple(str(d) for d in deps if d)

    parent_hash = raw.get("parent") or raw.get("parentHash")
    if not parent_hash and deps:
        parent_hash = deps[0]

    main_chain = raw.get("mainChain")

    return Block(
        hash=block_hash,
        height=height,
        timestamp=timestamp,
        chain_from=_as_int(raw.get("chainFrom"), 0),
        chain_to=_as_int(raw.get("chainTo"), 0),
        parent_hash=parent_hash or None,
        deps=deps,
        transactions=tuple(raw.get("transactions") or ()),
        nonce=raw.get("nonce"),
        version=_as_int(raw.get("version")),
        size=_as_int(raw.get("size")),
        main_chain=main_chain if isinstance(main_chain, bool) else None,
    )


def merge_blocks(
    *sources: Iterable[Block],
    limit: Optional[int] = None,
) -> list[Block]:
    """
    Merge block collections: dedupe by hash, then sort newest first.

    Args:
        *sources: Block iterables, earlier sources win on hash collisions
        limit: Optional truncation after sorting

    Returns:
        Deduplicated blocks sorted by timestamp descending
    """
    unique: dict[str, Block] = {}
    for source in sources:
        for block in source:
            if block is None or block.hash in unique:
                continue
            unique[block.hash] = block

    merged = sorted(unique.values(), key=lambda b: (-b.timestamp, b.hash))
    if limit is not None:
        merged = merged[:max(limit, 0)]
    return merged


@dataclass
class NetworkInfo:
    """Snapshot of node/network state."""
    current_height: int = 0
    average_block_time_ms: int = 0
    node_version: str = "unknown"
    network: str = "mainnet"
    timestamp: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "currentHeight": self.current_height,
            "averageBlockTime": self.average_block_time_ms,
            "nodeVersion": self.node_version,
            "network": self.network,
            "timestamp": self.timestamp,
            **self.extra,
        }
