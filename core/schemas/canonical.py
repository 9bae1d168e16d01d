"""
Module 01 - Schemas & Errors
File: canonical.py

Purpose: Deterministic serialization for persisted documents and
prover bundles. Same input always yields byte-identical output.
"""

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel

from .errors import CanonicalizationException

# Canonical JSON separators - no whitespace
CANONICAL_JSON_SEPARATORS: tuple[str, str] = (",", ":")


def canonicalize_value(value: Any, path: str = "") -> Any:
    """
    Recursively canonicalize a value for deterministic JSON serialization.

    Args:
        value: Any Python value to canonicalize.
        path: Current path for error reporting.

    Returns:
        A JSON-serializable canonical representation.

    Raises:
        CanonicalizationException: If the value cannot be canonicalized
            (floats are rejected; amounts and field elements are ints).
    """
    if value is None or isinstance(value, (bool, int, str)):
        return value

    if isinstance(value, float):
        raise CanonicalizationException(
            message=f"Float value encountered at {path or '<root>'}: {value}",
            details={"path": path, "value": str(value)},
        )

    if isinstance(value, Enum):
        return value.value

    if isinstance(value, BaseModel):
        dumped = value.model_dump(mode="json", by_alias=True)
        return canonicalize_value(dumped, path)

    if isinstance(value, dict):
        return {
            str(k): canonicalize_value(v, f"{path}.{k}" if path else str(k))
            for k, v in value.items()
        }

    if isinstance(value, (list, tuple)):
        return [
            canonicalize_value(item, f"{path}[{i}]")
            for i, item in enumerate(value)
        ]

    if isinstance(value, bytes):
        return "0x" + value.hex()

    raise CanonicalizationException(
        message=f"Cannot canonicalize value of type {type(value).__name__}",
        details={"path": path, "type": type(value).__name__},
    )


def dumps_canonical(obj: Any, *, indent: int | None = None) -> str:
    """
    Serialize an object to a canonical JSON string.

    Sorted keys, no extra whitespace (unless indent is given for
    human-facing output), no floats.

    Raises:
        CanonicalizationException: If serialization fails.

    Example:
        >>> dumps_canonical({"b": 2, "a": 1})
        '{"a":1,"b":2}'
    """
    canonicalized = canonicalize_value(obj)
    try:
        return json.dumps(
            canonicalized,
            sort_keys=True,
            separators=CANONICAL_JSON_SEPARATORS if indent is None else None,
            indent=indent,
            ensure_ascii=False,
        )
    except (TypeError, ValueError) as e:
        raise CanonicalizationException(
            message=f"Failed to serialize to canonical JSON: {e}",
            details={"type": type(obj).__name__, "error": str(e)},
        ) from e


def loads_canonical(json_str: str) -> Any:
    """Parse a canonical JSON string."""
    return json.loads(json_str)
