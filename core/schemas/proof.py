"""
Module 01 - Schemas & Errors
File: proof.py

Purpose: Prover-facing and chain-facing bundles.

- ProverInput: the witness input handed to the external prover. Field
  aliases are the circuit's declared signal names; values are decimal
  strings as snarkjs expects.
- ProofTriple: a Groth16 proof (a, b, c) in verifier calldata order.
- PublicSignals / SpendSubmission: what goes to the submission collaborator.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .versioning import PROVER_INPUT_VERSION


def _dec(values: list[int]) -> list[str]:
    return [str(v) for v in values]


class ProverInput(BaseModel):
    """
    Normalized input bundle for one circuit execution.

    Path arrays are two-dimensional: one row per input note, one column
    per tree level (leaf to root).
    """

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    version: str = Field(default=PROVER_INPUT_VERSION, exclude=True)
    circuit: str = Field(..., exclude=True)

    root: Optional[int] = Field(default=None, alias="root")
    input_amounts: list[int] = Field(default_factory=list, alias="inputAmounts")
    input_secrets: list[int] = Field(default_factory=list, alias="inputSecrets")
    input_nullifiers: list[int] = Field(default_factory=list, alias="inputNullifiers")
    path_elements: list[list[int]] = Field(default_factory=list, alias="pathElements")
    path_indices: list[list[int]] = Field(default_factory=list, alias="pathIndices")
    output_amounts: list[int] = Field(default_factory=list, alias="outputAmounts")
    output_secrets: list[int] = Field(default_factory=list, alias="outputSecrets")
    output_nullifiers: list[int] = Field(default_factory=list, alias="outputNullifiers")
    output_commitments: list[int] = Field(default_factory=list, alias="outputCommitments")
    public_amount: Optional[int] = Field(default=None, alias="publicAmount")
    recipient: Optional[str] = Field(default=None, alias="recipient")

    @model_validator(mode="after")
    def validate_shapes(self) -> "ProverInput":
        """Ensure per-input and per-output arrays line up."""
        n_in = len(self.input_amounts)
        for name in ("input_secrets", "input_nullifiers", "path_elements", "path_indices"):
            if len(getattr(self, name)) != n_in:
                raise ValueError(f"{name} has {len(getattr(self, name))} rows, expected {n_in}")
        depths = {len(row) for row in self.path_elements} | {len(row) for row in self.path_indices}
        if len(depths) > 1:
            raise ValueError(f"Inconsistent path depths: {sorted(depths)}")
        for row in self.path_indices:
            if any(bit not in (0, 1) for bit in row):
                raise ValueError("path indices must be 0 or 1")
        n_out = len(self.output_amounts)
        for name in ("output_secrets", "output_nullifiers", "output_commitments"):
            if len(getattr(self, name)) != n_out:
                raise ValueError(f"{name} has {len(getattr(self, name))} entries, expected {n_out}")
        if n_in and self.root is None:
            raise ValueError("root is required when spending input notes")
        return self

    def to_circuit_input(self) -> dict[str, Any]:
        """
        Render the bundle with the circuit's signal names.

        Empty arrays (e.g. no outputs for a withdrawal) are omitted because
        the circuit does not declare those signals. The deposit circuit
        only proves knowledge of one note's preimage and takes the bare
        amount/secret/nullifier signals.
        """
        if self.circuit == "deposit":
            return {
                "amount": str(self.output_amounts[0]),
                "secret": str(self.output_secrets[0]),
                "nullifier": str(self.output_nullifiers[0]),
            }

        data: dict[str, Any] = {}
        if self.root is not None:
            data["root"] = str(self.root)
        if self.input_amounts:
            data["inputAmounts"] = _dec(self.input_amounts)
            data["inputSecrets"] = _dec(self.input_secrets)
            data["inputNullifiers"] = _dec(self.input_nullifiers)
            data["pathElements"] = [_dec(row) for row in self.path_elements]
            data["pathIndices"] = [_dec(row) for row in self.path_indices]
        if self.output_amounts:
            data["outputAmounts"] = _dec(self.output_amounts)
            data["outputSecrets"] = _dec(self.output_secrets)
            data["outputNullifiers"] = _dec(self.output_nullifiers)
        if self.public_amount is not None:
            data["publicAmount"] = str(self.public_amount)
        if self.recipient is not None:
            data["recipient"] = str(int(self.recipient, 16))
        return data


class ProofTriple(BaseModel):
    """Groth16 proof points as the on-chain verifier takes them."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    a: tuple[int, int]
    b: tuple[tuple[int, int], tuple[int, int]]
    c: tuple[int, int]

    @classmethod
    def from_snarkjs(cls, proof: dict[str, Any]) -> "ProofTriple":
        """
        Convert a snarkjs proof JSON object.

        snarkjs emits pi_b coordinates in (c0, c1) order; the Solidity
        verifier expects (c1, c0), so each pair is swapped.
        """
        pi_a, pi_b, pi_c = proof["pi_a"], proof["pi_b"], proof["pi_c"]
        return cls(
            a=(int(pi_a[0]), int(pi_a[1])),
            b=(
                (int(pi_b[0][1]), int(pi_b[0][0])),
                (int(pi_b[1][1]), int(pi_b[1][0])),
            ),
            c=(int(pi_c[0]), int(pi_c[1])),
        )


class PublicSignals(BaseModel):
    """Public values a spend reveals on-chain."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    nullifiers: list[int] = Field(default_factory=list)
    commitments: list[int] = Field(default_factory=list)
    root: Optional[int] = None
    public_amount: Optional[int] = None
    recipient: Optional[str] = None


class SpendSubmission(BaseModel):
    """Proof plus public signals, ready for signing and broadcast."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    circuit: str
    proof: ProofTriple
    public_signals: PublicSignals
