"""
Module 02 - Commitment Merkle Tree
Fixed-depth binary Merkle tree of note commitments, root and proof queries.

This module provides:
- compute_zero_values: per-level empty-subtree hashes
- CommitmentTree: sparse fixed-depth tree rebuilt from commitment events
- MerkleProof: path elements + path indices (leaf to root) + root
- verify_merkle_proof: recompute a root from a leaf and its path

Canonical Commitment Rules (Hard Contracts):
1. Parent hashing: parent = Poseidon(left, right)
2. Level-0 zero value is a fixed constant (default 0)
3. zeros[k + 1] = Poseidon(zeros[k], zeros[k])
4. Empty tree: root = zeros[depth]
5. Unfilled slots read as zeros[0]; unfilled subtrees hash to zeros[level]
6. Path index 0 = current node is the left child, 1 = right child

Only non-zero nodes are stored. Every root and proof is identical to one
computed over all 2^depth slots.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Iterable, Mapping, Optional

from core.crypto.hashing import hash_pair, to_field
from core.schemas.errors import CapacityExceeded, ConflictingLeaf


logger = logging.getLogger(__name__)

Hasher = Callable[[int, int], int]

DEFAULT_DEPTH: int = 20
DEFAULT_ZERO_VALUE: int = 0
MAX_DEPTH: int = 32


@dataclass(frozen=True)
class MerkleProof:
    """
    A Merkle inclusion proof for a single leaf.

    Attributes:
        leaf: The leaf value being proven
        index: The 0-based leaf index
        path_elements: Sibling values, leaf level first
        path_indices: Direction bits, leaf level first
            (0 = current node is the left child, 1 = right child)
        root: The root this proof is against
    """
    leaf: int
    index: int
    path_elements: tuple[int, ...]
    path_indices: tuple[int, ...]
    root: int

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ValueError(f"Leaf index must be non-negative, got {self.index}")
        if len(self.path_elements) != len(self.path_indices):
            raise ValueError(
                f"Path length mismatch: {len(self.path_elements)} elements, "
                f"{len(self.path_indices)} indices"
            )

    @property
    def depth(self) -> int:
        return len(self.path_elements)


@lru_cache(maxsize=64)
def compute_zero_values(
    depth: int,
    zero_value: int = DEFAULT_ZERO_VALUE,
    hasher: Hasher = hash_pair,
) -> tuple[int, ...]:
    """
    Compute the empty-subtree hash for every level.

    Args:
        depth: Tree depth
        zero_value: Level-0 zero leaf
        hasher: Two-input hash

    Returns:
        Tuple of depth + 1 values; index k is the root of an empty
        subtree of height k, index depth is the empty-tree root
    """
    zeros = [zero_value]
    for _ in range(depth):
        zeros.append(hasher(zeros[-1], zeros[-1]))
    return tuple(zeros)


def _leaf_pair(item: Any) -> tuple[int, int]:
    """Extract (index, commitment) from an event model, mapping or pair."""
    if isinstance(item, Mapping):
        index, commitment = item.get("index"), item.get("commitment")
    elif isinstance(item, tuple) and len(item) == 2:
        commitment, index = item
    else:
        index = getattr(item, "index", None)
        commitment = getattr(item, "commitment", None)
    if index is None or commitment is None:
        raise ValueError(f"Leaf record needs both index and commitment: {item!r}")
    if isinstance(index, bool) or not isinstance(index, int):
        raise ValueError(f"Leaf index must be an int, got {index!r}")
    return index, to_field(commitment)


def verify_merkle_proof(
    proof: MerkleProof,
    leaf: Optional[int] = None,
    hasher: Hasher = hash_pair,
) -> bool:
    """
    Verify a Merkle proof.

    Recomputes the root from the leaf and path, then compares it to the
    proof's root. Also rejects proofs whose direction bits disagree with
    the claimed index.

    Args:
        proof: MerkleProof to verify
        leaf: Leaf to check instead of proof.leaf (e.g. a recomputed
            note commitment)
        hasher: Two-input hash

    Returns:
        True if the proof is valid, False otherwise
    """
    current = proof.leaf if leaf is None else leaf
    index = proof.index

    for sibling, direction in zip(proof.path_elements, proof.path_indices):
        if direction not in (0, 1) or direction != index % 2:
            return False
        if direction == 0:
            current = hasher(current, sibling)
        else:
            current = hasher(sibling, current)
        index //= 2

    if index != 0:
        return False

    return current == proof.root


class CommitmentTree:
    """
    Fixed-depth Merkle tree of commitments.

    Usage:
        tree = CommitmentTree(depth=20)
        root = tree.build_from_events(events)
        proof = tree.get_merkle_proof(tree.find_leaf_index(commitment))
        assert verify_merkle_proof(proof)

    A tree is trusted only after a full rebuild from a verified, ordered
    event window; build_from_events always starts from an empty tree.
    """

    def __init__(
        self,
        depth: int = DEFAULT_DEPTH,
        zero_value: int = DEFAULT_ZERO_VALUE,
        hasher: Hasher = hash_pair,
    ) -> None:
        if depth < 1 or depth > MAX_DEPTH:
            raise ValueError(f"Tree depth must be in 1..{MAX_DEPTH}, got {depth}")
        self.depth = depth
        self.zero_value = to_field(zero_value)
        self._hasher = hasher
        self._zeros = compute_zero_values(depth, self.zero_value, hasher)
        self._leaves: dict[int, int] = {}
        self._positions: dict[int, int] = {}
        self._next_index = 0
        self._layers: Optional[list[dict[int, int]]] = None

    @property
    def capacity(self) -> int:
        """Number of addressable leaf slots (2^depth)."""
        return 1 << self.depth

    @property
    def zeros(self) -> tuple[int, ...]:
        return self._zeros

    @property
    def leaf_count(self) -> int:
        """One past the highest occupied index (gaps included)."""
        return self._next_index

    def __len__(self) -> int:
        return self._next_index

    def _check_index(self, index: int) -> None:
        if index < 0 or index >= self.capacity:
            raise CapacityExceeded(index, self.capacity)

    def reset(self) -> None:
        """Drop every leaf."""
        self._leaves.clear()
        self._positions.clear()
        self._next_index = 0
        self._layers = None

    def insert_at(self, index: int, leaf: int) -> None:
        """
        Place a leaf at an explicit index.

        Re-inserting the identical value is a no-op.

        Raises:
            CapacityExceeded: If index is outside [0, 2^depth)
            ConflictingLeaf: If the index already holds a different value
        """
        self._check_index(index)
        leaf = to_field(leaf)
        existing = self._leaves.get(index)
        if existing is not None:
            if existing != leaf:
                raise ConflictingLeaf(index, existing, leaf)
            return
        self._leaves[index] = leaf
        self._positions.setdefault(leaf, index)
        self._next_index = max(self._next_index, index + 1)
        self._layers = None

    def insert(self, leaf: int) -> int:
        """
        Append a leaf at the next free index.

        Returns:
            The index assigned to the leaf
        """
        index = self._next_index
        self.insert_at(index, leaf)
        return index

    def build_from_events(self, events: Iterable[Any]) -> int:
        """
        Rebuild the tree from {commitment, index} records.

        Records are sorted by index; indices with no record read back as
        the level-0 zero value. Input order does not affect the result.

        Args:
            events: CommitmentEvent models, mappings or (commitment, index)
                pairs, each with an explicit index

        Returns:
            The resulting root

        Raises:
            CapacityExceeded: If an index is outside the tree
            ConflictingLeaf: If two records share an index with different values
        """
        pairs = sorted((_leaf_pair(item) for item in events), key=lambda p: p[0])

        # Stage the new leaves; the current tree is untouched until all records pass
        leaves: dict[int, int] = {}
        positions: dict[int, int] = {}
        for index, commitment in pairs:
            self._check_index(index)
            existing = leaves.get(index)
            if existing is not None:
                if existing != commitment:
                    raise ConflictingLeaf(index, existing, commitment)
                continue
            leaves[index] = commitment
            positions.setdefault(commitment, index)

        self._leaves = leaves
        self._positions = positions
        self._next_index = pairs[-1][0] + 1 if pairs else 0
        self._layers = None

        gaps = self._next_index - len(self._leaves)
        if gaps:
            logger.warning(f"Tree built with {gaps} zero-filled gap(s) below index {self._next_index}")

        root = self.get_root()
        logger.info(
            f"Built tree from {len(pairs)} commitments "
            f"(depth={self.depth}, next_index={self._next_index}): root={hex(root)}"
        )
        return root

    def get_leaf(self, index: int) -> int:
        """Return the leaf at index, or the level-0 zero value if unfilled."""
        self._check_index(index)
        return self._leaves.get(index, self._zeros[0])

    def find_leaf_index(self, commitment: int) -> Optional[int]:
        """Return the lowest index holding commitment, or None."""
        return self._positions.get(commitment)

    def __contains__(self, commitment: object) -> bool:
        return commitment in self._positions

    def _build_layers(self) -> list[dict[int, int]]:
        """Hash bottom-up, one level at a time, over non-zero nodes only."""
        if self._layers is not None:
            return self._layers

        layers: list[dict[int, int]] = [dict(self._leaves)]
        current = layers[0]
        for level in range(self.depth):
            zero = self._zeros[level]
            parents: dict[int, int] = {}
            for parent in sorted({i >> 1 for i in current}):
                left = current.get(2 * parent, zero)
                right = current.get(2 * parent + 1, zero)
                parents[parent] = self._hasher(left, right)
            layers.append(parents)
            current = parents

        self._layers = layers
        return layers

    def get_root(self) -> int:
        """
        Return the tree root.

        The empty tree returns the precomputed zeros[depth].
        """
        if not self._leaves:
            return self._zeros[self.depth]
        return self._build_layers()[self.depth][0]

    def get_merkle_proof(self, index: int) -> MerkleProof:
        """
        Generate the inclusion proof for the leaf slot at index.

        At each level records the sibling and whether the current node is
        a left (0) or right (1) child, then moves to index // 2.

        Raises:
            CapacityExceeded: If index is outside the tree
        """
        self._check_index(index)
        layers = self._build_layers() if self._leaves else None

        path_elements: list[int] = []
        path_indices: list[int] = []
        current = index
        for level in range(self.depth):
            is_right = current & 1
            sibling_index = current ^ 1
            if layers is None:
                sibling = self._zeros[level]
            else:
                sibling = layers[level].get(sibling_index, self._zeros[level])
            path_elements.append(sibling)
            path_indices.append(is_right)
            current >>= 1

        return MerkleProof(
            leaf=self.get_leaf(index),
            index=index,
            path_elements=tuple(path_elements),
            path_indices=tuple(path_indices),
            root=self.get_root(),
        )


__all__ = [
    "DEFAULT_DEPTH",
    "DEFAULT_ZERO_VALUE",
    "Hasher",
    "MerkleProof",
    "CommitmentTree",
    "compute_zero_values",
    "verify_merkle_proof",
]
