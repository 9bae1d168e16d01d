"""
Core cryptographic utilities.

Module 02 provides the field helpers and the Poseidon hash shared with the
circuits and the on-chain hasher.
"""
from .poseidon import (
    SNARK_SCALAR_FIELD,
    poseidon,
    poseidon_constants,
)
from .hashing import (
    FieldLike,
    to_field,
    field_to_hex,
    to_hex,
    from_hex,
    hash_pair,
    hash_note,
    event_topic,
    function_selector,
)

__all__ = [
    "SNARK_SCALAR_FIELD",
    "poseidon",
    "poseidon_constants",
    "FieldLike",
    "to_field",
    "field_to_hex",
    "to_hex",
    "from_hex",
    "hash_pair",
    "hash_note",
    "event_topic",
    "function_selector",
]
