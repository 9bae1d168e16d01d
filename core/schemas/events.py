"""
Module 01 - Schemas & Errors
File: events.py

Purpose: Strict ingestion schemas for pool log events.
Payloads from log sources are parsed into these models immediately;
nothing loosely typed reaches the tree or the hash function.
"""

from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.crypto.hashing import field_to_hex, to_field

from .errors import MalformedEvent


def _parse_uint(value: Any) -> Any:
    """Accept ints and decimal or 0x-hex strings (RPC quantities)."""
    if isinstance(value, str):
        text = value.strip()
        if text.lower().startswith("0x"):
            return int(text, 16)
        return int(text, 10)
    return value


class PoolEvent(BaseModel):
    """
    Fields shared by every pool log event.

    The canonical order key (block_number, log_index) matches the order
    in which the contract increments its commitment counter.
    """

    model_config = ConfigDict(
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    block_number: int = Field(..., alias="blockNumber", ge=0)
    log_index: int = Field(..., alias="logIndex", ge=0)
    transaction_hash: str = Field(
        ...,
        alias="transactionHash",
        pattern=r"^0x[0-9a-fA-F]{64}$",
    )

    @field_validator("block_number", "log_index", mode="before")
    @classmethod
    def parse_quantities(cls, v: Any) -> Any:
        return _parse_uint(v)

    @field_validator("transaction_hash", mode="after")
    @classmethod
    def normalize_tx_hash(cls, v: str) -> str:
        return v.lower()

    @property
    def order_key(self) -> tuple[int, int]:
        """Canonical ordering key: (block_number, log_index)."""
        return (self.block_number, self.log_index)

    @property
    def dedup_key(self) -> tuple[str, int]:
        """Identity of the log across sources: (transaction_hash, log_index)."""
        return (self.transaction_hash, self.log_index)


class CommitmentEvent(PoolEvent):
    """
    A NoteCommitted log: one commitment appended to the pool tree.

    `index` is the contract's commitment counter when the payload carries
    it; None means the source did not report it.
    """

    commitment: int = Field(..., description="Commitment field element")
    index: Optional[int] = Field(default=None, ge=0, description="Leaf index")
    encrypted_note: Optional[str] = Field(default=None, alias="encryptedNote")

    @field_validator("commitment", mode="before")
    @classmethod
    def parse_commitment(cls, v: Any) -> int:
        return to_field(v)

    @field_validator("index", mode="before")
    @classmethod
    def parse_index(cls, v: Any) -> Any:
        return None if v is None else _parse_uint(v)

    @property
    def commitment_hex(self) -> str:
        return field_to_hex(self.commitment)


class NullifierEvent(PoolEvent):
    """A NullifierSpent log: a note's nullifier revealed by a spend."""

    nullifier: int = Field(..., description="Revealed nullifier field element")

    @field_validator("nullifier", mode="before")
    @classmethod
    def parse_nullifier(cls, v: Any) -> int:
        return to_field(v)


def parse_commitment_event(payload: Any) -> CommitmentEvent:
    """
    Parse one raw commitment payload at the ingestion boundary.

    Raises:
        MalformedEvent: If the payload does not match the schema
    """
    if isinstance(payload, CommitmentEvent):
        return payload
    try:
        return CommitmentEvent.model_validate(payload)
    except ValidationError as e:
        raise MalformedEvent(
            f"Malformed commitment event: {e.error_count()} validation error(s)",
            payload=payload,
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e


def parse_nullifier_event(payload: Any) -> NullifierEvent:
    """
    Parse one raw nullifier payload at the ingestion boundary.

    Raises:
        MalformedEvent: If the payload does not match the schema
    """
    if isinstance(payload, NullifierEvent):
        return payload
    try:
        return NullifierEvent.model_validate(payload)
    except ValidationError as e:
        raise MalformedEvent(
            f"Malformed nullifier event: {e.error_count()} validation error(s)",
            payload=payload,
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e


def canonical_order(events: Iterable[PoolEvent]) -> list:
    """Sort events by (block_number, log_index)."""
    return sorted(events, key=lambda e: e.order_key)
