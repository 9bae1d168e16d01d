"""
Module 02 - Commitment Merkle Tree
Fixed-depth Poseidon Merkle tree of note commitments.

This module provides:
- CommitmentTree: rebuild from commitment events, root, leaf and proof queries
- MerkleProof: path elements + path indices + root
- compute_zero_values: per-level empty-subtree hashes
- verify_merkle_proof: recompute a root from a leaf and its path

Usage:
    from core.merkle import CommitmentTree, verify_merkle_proof

    tree = CommitmentTree(depth=20)
    root = tree.build_from_events(events)
    proof = tree.get_merkle_proof(3)
    assert verify_merkle_proof(proof)
"""
from .merkle_tree import (
    DEFAULT_DEPTH,
    DEFAULT_ZERO_VALUE,
    CommitmentTree,
    Hasher,
    MerkleProof,
    compute_zero_values,
    verify_merkle_proof,
)


__all__ = [
    "DEFAULT_DEPTH",
    "DEFAULT_ZERO_VALUE",
    "CommitmentTree",
    "Hasher",
    "MerkleProof",
    "compute_zero_values",
    "verify_merkle_proof",
]
