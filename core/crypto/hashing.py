"""
Module 02 - Field Hashing Utilities
Field-element helpers and the two-input tree hash.

This module provides:
- The BN254 scalar field modulus shared by the circuits and the contracts
- Parsing of field elements from ints, decimal strings and 0x-hex strings
- 32-byte hex encoding/decoding with 0x prefix
- hash_pair: the Merkle parent hash (Poseidon, two inputs)
- hash_note: the note commitment hash (Poseidon, three inputs)
- event_topic / function_selector: keccak256-derived log topics and call data

Compatibility Notes:
- Every value handed to a hash must be a canonical field element (< p)
- Hex encodings are big-endian, left-padded to 32 bytes
"""
from __future__ import annotations

from typing import Union

from eth_utils import keccak

from core.crypto.poseidon import SNARK_SCALAR_FIELD, poseidon


FieldLike = Union[int, str, bytes]


def to_field(value: FieldLike) -> int:
    """
    Parse a value into a canonical field element.

    Accepts Python ints, decimal strings, 0x-prefixed hex strings and
    big-endian bytes.

    Args:
        value: Value to parse

    Returns:
        Integer in [0, SNARK_SCALAR_FIELD)

    Raises:
        ValueError: If the value is malformed or outside the field
    """
    if isinstance(value, bool):
        raise ValueError("Booleans are not field elements")

    if isinstance(value, bytes):
        parsed = int.from_bytes(value, "big")
    elif isinstance(value, int):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("Empty string is not a field element")
        try:
            if text.lower().startswith("0x"):
                parsed = int(text, 16)
            else:
                parsed = int(text, 10)
        except ValueError as e:
            raise ValueError(f"Invalid field element string: {value!r}") from e
    else:
        raise ValueError(f"Unsupported field element type: {type(value).__name__}")

    if parsed < 0 or parsed >= SNARK_SCALAR_FIELD:
        raise ValueError(f"Value {parsed} is outside the scalar field")
    return parsed


def field_to_hex(value: int) -> str:
    """
    Encode a field element as a 0x-prefixed, 32-byte big-endian hex string.

    Example:
        >>> field_to_hex(255)
        '0x00000000000000000000000000000000000000000000000000000000000000ff'
    """
    return to_hex(value.to_bytes(32, "big"))


def to_hex(data: bytes) -> str:
    """
    Convert bytes to hexadecimal string with 0x prefix.

    Example:
        >>> to_hex(bytes.fromhex("deadbeef"))
        '0xdeadbeef'
    """
    return "0x" + data.hex()


def from_hex(hex_string: str) -> bytes:
    """
    Convert hexadecimal string (with 0x prefix) to bytes.

    Raises:
        ValueError: If string doesn't start with 0x, has odd length,
                   or contains invalid hex characters
    """
    if not hex_string.startswith("0x"):
        raise ValueError(
            f"Hex string must start with '0x' prefix, got: {hex_string[:10]}..."
        )

    hex_content = hex_string[2:]

    if len(hex_content) % 2 != 0:
        raise ValueError(
            f"Hex string must have even length after 0x prefix, "
            f"got length {len(hex_content)}"
        )

    try:
        return bytes.fromhex(hex_content)
    except ValueError as e:
        raise ValueError(f"Invalid hex characters in string: {e}") from e


def hash_pair(left: int, right: int) -> int:
    """
    Hash two tree nodes together.

    parent = Poseidon([left, right]), bit-compatible with the on-chain
    PoseidonT3 hasher and the circuits' Merkle checker.

    Args:
        left: Left child field element
        right: Right child field element

    Returns:
        Parent field element
    """
    return poseidon([left, right])


def hash_note(amount: int, secret: int, nullifier: int) -> int:
    """
    Compute a note commitment: Poseidon([amount, secret, nullifier]).

    Args:
        amount: Note amount
        secret: Note secret randomness
        nullifier: Note nullifier randomness

    Returns:
        Commitment field element
    """
    return poseidon([amount, secret, nullifier])


def event_topic(signature: str) -> str:
    """
    topic0 of an EVM event: keccak256 of its canonical signature.

    Example:
        >>> event_topic("Transfer(address,address,uint256)")
        '0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef'
    """
    return to_hex(keccak(text=signature))


def function_selector(signature: str) -> str:
    """First four bytes of keccak256(signature), as eth_call data."""
    return to_hex(keccak(text=signature)[:4])


__all__ = [
    "SNARK_SCALAR_FIELD",
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
