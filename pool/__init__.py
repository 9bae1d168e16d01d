"""
Shielded Pool Client

Reconciles the pool's commitment tree from chain events, keeps the owner's
notes, and assembles prover inputs for spends.
"""

from pool.note_store import NoteStore, namespace_for, owner_lock
from pool.proof_assembler import (
    CIRCUITS,
    AssembledSpend,
    CircuitShape,
    ProofAssembler,
    Prover,
    Submitter,
    build_submission,
    get_circuit,
)
from pool.reconciler import CancelToken, EventReconciler, ReconciliationResult
from pool.storage import FileNoteStorage, InMemoryNoteStorage, NoteStorage

__all__ = [
    # Reconciliation
    "CancelToken",
    "EventReconciler",
    "ReconciliationResult",
    # Notes
    "NoteStore",
    "NoteStorage",
    "InMemoryNoteStorage",
    "FileNoteStorage",
    "namespace_for",
    "owner_lock",
    # Spends
    "CIRCUITS",
    "AssembledSpend",
    "CircuitShape",
    "ProofAssembler",
    "Prover",
    "Submitter",
    "build_submission",
    "get_circuit",
]
