"""
Module 01 - Schemas & Errors
File: __init__.py

Purpose: Export the public API for the schemas module.
This is the main entry point for other modules to import schema definitions.
"""

# Version constants
from .versioning import (
    NOTE_STORE_VERSION,
    PROVER_INPUT_VERSION,
    SUPPORTED_NOTE_STORE_VERSIONS,
    is_compatible_note_store_version,
)

# Canonical serialization API
from .canonical import (
    CANONICAL_JSON_SEPARATORS,
    canonicalize_value,
    dumps_canonical,
    loads_canonical,
)

# Error models and exceptions
from .errors import (
    CanonicalizationException,
    CapacityExceeded,
    CircuitShapeError,
    CommitmentMismatch,
    ConflictingLeaf,
    ConflictingNote,
    ErrorCodes,
    InsufficientBalance,
    InsufficientNotes,
    IntegrityError,
    InvalidNote,
    LedgerError,
    LedgerException,
    MalformedEvent,
    MissingSecretMaterial,
    NoteAlreadySpent,
    NotFoundInTree,
    ReconciliationCancelled,
    SourceUnavailable,
    StoreLocked,
    ValueNotConserved,
)

# Event schemas
from .events import (
    CommitmentEvent,
    NullifierEvent,
    PoolEvent,
    canonical_order,
    parse_commitment_event,
    parse_nullifier_event,
)

# Note schemas
from .notes import Note

# Prover and submission schemas
from .proof import (
    ProofTriple,
    ProverInput,
    PublicSignals,
    SpendSubmission,
)


__all__ = [
    # Versioning
    "NOTE_STORE_VERSION",
    "PROVER_INPUT_VERSION",
    "SUPPORTED_NOTE_STORE_VERSIONS",
    "is_compatible_note_store_version",
    # Canonical
    "CANONICAL_JSON_SEPARATORS",
    "canonicalize_value",
    "dumps_canonical",
    "loads_canonical",
    # Errors
    "CanonicalizationException",
    "CapacityExceeded",
    "CircuitShapeError",
    "CommitmentMismatch",
    "ConflictingLeaf",
    "ConflictingNote",
    "ErrorCodes",
    "InsufficientBalance",
    "InsufficientNotes",
    "IntegrityError",
    "InvalidNote",
    "LedgerError",
    "LedgerException",
    "MalformedEvent",
    "MissingSecretMaterial",
    "NoteAlreadySpent",
    "NotFoundInTree",
    "ReconciliationCancelled",
    "SourceUnavailable",
    "StoreLocked",
    "ValueNotConserved",
    # Events
    "CommitmentEvent",
    "NullifierEvent",
    "PoolEvent",
    "canonical_order",
    "parse_commitment_event",
    "parse_nullifier_event",
    # Notes
    "Note",
    # Proofs
    "ProofTriple",
    "ProverInput",
    "PublicSignals",
    "SpendSubmission",
]
