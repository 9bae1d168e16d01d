"""
Module 01 - Schemas & Errors
File: notes.py

Purpose: The owner's private note (UTXO) record.
"""

import secrets
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from core.crypto.hashing import SNARK_SCALAR_FIELD, field_to_hex, hash_note, to_field


class Note(BaseModel):
    """
    A client-held note: amount plus the secret material behind one commitment.

    secret/nullifier are None for notes whose commitment is known but whose
    secret material is not held locally; such notes are never spendable.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    commitment: int = Field(..., description="Poseidon(amount, secret, nullifier)")
    amount: int = Field(..., ge=0, lt=SNARK_SCALAR_FIELD)
    secret: Optional[int] = Field(default=None)
    nullifier: Optional[int] = Field(default=None)
    spent: bool = Field(default=False)
    leaf_index: Optional[int] = Field(default=None, ge=0)

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, v: Any) -> Any:
        if isinstance(v, str):
            return int(v, 0) if v.lower().startswith("0x") else int(v, 10)
        return v

    @field_validator("commitment", mode="before")
    @classmethod
    def parse_commitment(cls, v: Any) -> int:
        return to_field(v)

    @field_validator("secret", "nullifier", mode="before")
    @classmethod
    def parse_secret_material(cls, v: Any) -> Optional[int]:
        return None if v is None else to_field(v)

    @field_serializer("commitment")
    def serialize_commitment(self, v: int) -> str:
        return field_to_hex(v)

    @field_serializer("secret", "nullifier")
    def serialize_secret_material(self, v: Optional[int]) -> Optional[str]:
        return None if v is None else field_to_hex(v)

    @field_serializer("amount")
    def serialize_amount(self, v: int) -> str:
        return str(v)

    @classmethod
    def create(
        cls,
        amount: int,
        secret: Optional[int] = None,
        nullifier: Optional[int] = None,
    ) -> "Note":
        """
        Create a fresh note, drawing any missing secret material at random.

        The commitment is derived with the circuit's note hash.
        """
        if secret is None:
            secret = secrets.randbelow(SNARK_SCALAR_FIELD)
        if nullifier is None:
            nullifier = secrets.randbelow(SNARK_SCALAR_FIELD)
        return cls(
            commitment=hash_note(amount, secret, nullifier),
            amount=amount,
            secret=secret,
            nullifier=nullifier,
        )

    @property
    def has_secret_material(self) -> bool:
        return self.secret is not None and self.nullifier is not None

    @property
    def confirmed(self) -> bool:
        """The commitment has been located in a root-verified tree."""
        return self.leaf_index is not None

    @property
    def spendable(self) -> bool:
        return not self.spent and self.confirmed and self.has_secret_material

    def derive_commitment(self) -> Optional[int]:
        """Recompute the commitment from the note fields, if possible."""
        if not self.has_secret_material:
            return None
        return hash_note(self.amount, self.secret, self.nullifier)

    def same_payload(self, other: "Note") -> bool:
        """Compare the committed payload, ignoring local bookkeeping fields."""
        return (
            self.commitment == other.commitment
            and self.amount == other.amount
            and self.secret == other.secret
            and self.nullifier == other.nullifier
        )
