"""
Proof Assembler

Turns a spend request (input notes, output amounts, public amount) plus a
verified reconciliation snapshot into the exact input bundle the external
prover expects. Never proves; proving and submission are collaborators.

Checks performed before anything reaches the prover:
1. Input/output counts match the circuit
2. Each input holds secret + nullifier and re-derives its commitment
3. Each input is unspent and present in the snapshot's tree
4. sum(in) + public_in == sum(out) + public_out
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Sequence, Union, runtime_checkable

from core.merkle import verify_merkle_proof
from core.schemas import (
    CircuitShapeError,
    CommitmentMismatch,
    IntegrityError,
    MissingSecretMaterial,
    Note,
    NoteAlreadySpent,
    NotFoundInTree,
    ProofTriple,
    ProverInput,
    PublicSignals,
    SpendSubmission,
    ValueNotConserved,
)

from pool.note_store import NoteStore
from pool.reconciler import ReconciliationResult


logger = logging.getLogger(__name__)

OutputLike = Union[int, Note]


# =============================================================================
# Circuits
# =============================================================================

@dataclass(frozen=True)
class CircuitShape:
    """
    Shape of one spend circuit.

    public_flow is "in" when value enters the pool with the proof
    (deposit), "out" when it leaves (withdraw), None for pure transfers.
    """
    name: str
    n_inputs: int
    n_outputs: int
    public_flow: Optional[str] = None


CIRCUITS: dict[str, CircuitShape] = {
    "deposit": CircuitShape("deposit", n_inputs=0, n_outputs=1, public_flow="in"),
    "transfer": CircuitShape("transfer", n_inputs=2, n_outputs=2),
    "withdraw": CircuitShape("withdraw", n_inputs=1, n_outputs=1, public_flow="out"),
}


def get_circuit(name: str) -> CircuitShape:
    try:
        return CIRCUITS[name]
    except KeyError:
        raise ValueError(f"Unknown circuit '{name}'. Known: {sorted(CIRCUITS)}") from None


# =============================================================================
# Collaborator Protocols
# =============================================================================

@runtime_checkable
class Prover(Protocol):
    """External zk prover (e.g. a snarkjs wrapper)."""

    def prove(self, circuit: str, circuit_input: dict[str, Any]) -> dict[str, Any]:
        """Return a snarkjs-style Groth16 proof object (pi_a, pi_b, pi_c)."""
        ...


@runtime_checkable
class Submitter(Protocol):
    """Signs and broadcasts a spend; returns the transaction hash."""

    def submit(self, submission: SpendSubmission) -> str:
        ...


# =============================================================================
# Assembled Spend
# =============================================================================

@dataclass(frozen=True)
class AssembledSpend:
    """Everything derived from one spend request against one snapshot."""
    circuit: CircuitShape
    prover_input: ProverInput
    public_signals: PublicSignals
    inputs: tuple[Note, ...] = ()
    outputs: tuple[Note, ...] = ()
    to_block: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def circuit_input(self) -> dict[str, Any]:
        return self.prover_input.to_circuit_input()


def build_submission(spend: AssembledSpend, proof: ProofTriple) -> SpendSubmission:
    """Join a proof with the public signals of the spend it proves."""
    return SpendSubmission(
        circuit=spend.circuit.name,
        proof=proof,
        public_signals=spend.public_signals,
    )


# =============================================================================
# Assembler
# =============================================================================

class ProofAssembler:
    """
    Builds prover input bundles from notes and a reconciliation snapshot.

    Usage:
        assembler = ProofAssembler(store)
        spend = assembler.assemble("transfer", snapshot, outputs=[60, 40])
        submission = assembler.prove(spend, prover)
    """

    def __init__(self, store: Optional[NoteStore] = None) -> None:
        self.store = store

    def assemble(
        self,
        circuit: str,
        snapshot: Optional[ReconciliationResult],
        outputs: Sequence[OutputLike] = (),
        *,
        inputs: Optional[Sequence[Note]] = None,
        public_amount: int = 0,
        recipient: Optional[str] = None,
    ) -> AssembledSpend:
        """
        Validate a spend and build its ProverInput.

        Args:
            circuit: "deposit", "transfer" or "withdraw"
            snapshot: Verified reconciliation result (may be None for deposits)
            outputs: Output notes, or bare amounts to mint fresh notes for
            inputs: Input notes; selected from the store when omitted
            public_amount: Value entering (deposit) or leaving (withdraw)
            recipient: Withdrawal recipient address

        Raises:
            CircuitShapeError, MissingSecretMaterial, CommitmentMismatch,
            NoteAlreadySpent, NotFoundInTree, ValueNotConserved,
            InsufficientNotes, InsufficientBalance, IntegrityError
        """
        shape = get_circuit(circuit)
        if public_amount < 0:
            raise ValueError("public_amount must be non-negative")
        if shape.public_flow is None and public_amount:
            raise ValueError(f"Circuit '{shape.name}' takes no public amount")
        if shape.name == "withdraw" and not recipient:
            raise ValueError("withdraw requires a recipient")

        if shape.n_inputs:
            if snapshot is None or not snapshot.verified:
                raise IntegrityError("Spends require a root-verified reconciliation snapshot")

        output_notes = [o if isinstance(o, Note) else Note.create(o) for o in outputs]
        if len(output_notes) != shape.n_outputs:
            raise CircuitShapeError(shape.name, "outputs", shape.n_outputs, len(output_notes))
        for note in output_notes:
            self._check_secret_material(note)

        public_in = public_amount if shape.public_flow == "in" else 0
        public_out = public_amount if shape.public_flow == "out" else 0
        total_out = sum(n.amount for n in output_notes) + public_out

        if inputs is None:
            inputs = self._select_inputs(shape, total_out - public_in)
        input_notes = list(inputs)
        if len(input_notes) != shape.n_inputs:
            raise CircuitShapeError(shape.name, "inputs", shape.n_inputs, len(input_notes))

        seen: set[int] = set()
        for note in input_notes:
            if note.commitment in seen:
                raise CircuitShapeError(shape.name, "distinct inputs", shape.n_inputs, len(seen))
            seen.add(note.commitment)
            self._check_secret_material(note)
            if note.spent:
                raise NoteAlreadySpent(note.commitment)

        total_in = sum(n.amount for n in input_notes) + public_in
        if total_in != total_out:
            raise ValueNotConserved(total_in=total_in, total_out=total_out)

        path_elements: list[list[int]] = []
        path_indices: list[list[int]] = []
        for note in input_notes:
            index = snapshot.tree.find_leaf_index(note.commitment)
            if index is None:
                raise NotFoundInTree(note.commitment)
            proof = snapshot.tree.get_merkle_proof(index)
            if proof.root != snapshot.root or not verify_merkle_proof(proof):
                raise IntegrityError(
                    f"Merkle path for {hex(note.commitment)} does not reach the snapshot root",
                    computed_root=proof.root,
                    onchain_root=snapshot.root,
                )
            path_elements.append(list(proof.path_elements))
            path_indices.append(list(proof.path_indices))

        root = snapshot.root if shape.n_inputs else None
        prover_input = ProverInput(
            circuit=shape.name,
            root=root,
            input_amounts=[n.amount for n in input_notes],
            input_secrets=[n.secret for n in input_notes],
            input_nullifiers=[n.nullifier for n in input_notes],
            path_elements=path_elements,
            path_indices=path_indices,
            output_amounts=[n.amount for n in output_notes],
            output_secrets=[n.secret for n in output_notes],
            output_nullifiers=[n.nullifier for n in output_notes],
            output_commitments=[n.commitment for n in output_notes],
            public_amount=public_amount if shape.public_flow else None,
            recipient=recipient,
        )
        public_signals = PublicSignals(
            nullifiers=[n.nullifier for n in input_notes],
            commitments=[n.commitment for n in output_notes],
            root=root,
            public_amount=public_amount if shape.public_flow else None,
            recipient=recipient,
        )

        logger.info(
            f"Assembled {shape.name}: {len(input_notes)} in / {len(output_notes)} out, "
            f"value {total_in}"
            + (f", root {hex(root)}" if root is not None else "")
        )
        return AssembledSpend(
            circuit=shape,
            prover_input=prover_input,
            public_signals=public_signals,
            inputs=tuple(input_notes),
            outputs=tuple(output_notes),
            to_block=snapshot.to_block if snapshot is not None else None,
        )

    def prove(self, spend: AssembledSpend, prover: Prover) -> SpendSubmission:
        """Hand the bundle to the prover and package the result for submission."""
        raw = prover.prove(spend.circuit.name, spend.circuit_input())
        return build_submission(spend, ProofTriple.from_snarkjs(raw))

    def _select_inputs(self, shape: CircuitShape, target: int) -> list[Note]:
        if shape.n_inputs == 0:
            return []
        if self.store is None:
            raise ValueError("No inputs given and no NoteStore to select from")
        return self.store.select_spendable(shape.n_inputs, target)

    @staticmethod
    def _check_secret_material(note: Note) -> None:
        derived = note.derive_commitment()
        if derived is None:
            raise MissingSecretMaterial(note.commitment)
        if derived != note.commitment:
            raise CommitmentMismatch(note.commitment, derived)
