"""
Test fixtures package for the shielded ledger tests.

Usage:
    from fixtures.common import make_config, make_commitment_payloads

    def test_something():
        config = make_config(depth=4)
        payloads = make_commitment_payloads([11, 22, 33])
"""

from .common import (
    make_commitment_payload,
    make_commitment_payloads,
    make_config,
    make_nullifier_payload,
    make_owned_notes,
    expected_root,
)

__all__ = [
    "make_commitment_payload",
    "make_commitment_payloads",
    "make_config",
    "make_nullifier_payload",
    "make_owned_notes",
    "expected_root",
]
