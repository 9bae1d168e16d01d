"""
Module 01 - Schemas & Errors
File: errors.py

Purpose: Standard error taxonomy across the ledger engine.
Defines both Pydantic models for structured error communication
and Python exceptions for control flow.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Error Codes (Machine-Readable Constants)
# =============================================================================

class ErrorCodes:
    """Stable machine-readable error codes used across the engine."""

    # Schema & Ingestion Errors
    SCHEMA_VALIDATION_ERROR = "SCHEMA_VALIDATION_ERROR"
    MALFORMED_EVENT = "MALFORMED_EVENT"
    CANONICALIZATION_ERROR = "CANONICALIZATION_ERROR"

    # Tree Errors
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    CONFLICTING_LEAF = "CONFLICTING_LEAF"
    NOT_FOUND_IN_TREE = "NOT_FOUND_IN_TREE"

    # Reconciliation Errors
    INTEGRITY_ERROR = "INTEGRITY_ERROR"
    ROOT_MISMATCH = "ROOT_MISMATCH"
    INDEX_INFERENCE_UNSOUND = "INDEX_INFERENCE_UNSOUND"
    INDEX_ORDER_VIOLATION = "INDEX_ORDER_VIOLATION"
    SOURCE_UNAVAILABLE = "SOURCE_UNAVAILABLE"
    RECONCILIATION_CANCELLED = "RECONCILIATION_CANCELLED"

    # Note Errors
    CONFLICTING_NOTE = "CONFLICTING_NOTE"
    INSUFFICIENT_NOTES = "INSUFFICIENT_NOTES"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    MISSING_SECRET_MATERIAL = "MISSING_SECRET_MATERIAL"
    COMMITMENT_MISMATCH = "COMMITMENT_MISMATCH"
    NOTE_ALREADY_SPENT = "NOTE_ALREADY_SPENT"
    STORE_LOCKED = "STORE_LOCKED"

    # Spend Assembly Errors
    CIRCUIT_SHAPE_MISMATCH = "CIRCUIT_SHAPE_MISMATCH"
    VALUE_NOT_CONSERVED = "VALUE_NOT_CONSERVED"


# =============================================================================
# Pydantic Error Models (Structured Communication)
# =============================================================================

class LedgerError(BaseModel):
    """
    Base error model for structured error communication.

    Used when an error has to be reported (CLI JSON output, logs)
    rather than raised.
    """

    model_config = ConfigDict(
        extra="forbid",
        frozen=False,
        validate_assignment=True,
    )

    code: str = Field(
        ...,
        description="Stable machine-readable error code",
        examples=[ErrorCodes.INTEGRITY_ERROR],
    )
    message: str = Field(
        ...,
        description="Human-readable error message",
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional structured details about the error",
    )
    retryable: bool = Field(
        default=False,
        description="Whether the operation can be retried",
    )

    def to_exception(self) -> "LedgerException":
        """Convert this error model to a raised exception."""
        return LedgerException(
            code=self.code,
            message=self.message,
            details=self.details,
            retryable=self.retryable,
        )


# =============================================================================
# Python Exceptions (Control Flow)
# =============================================================================

class LedgerException(Exception):
    """
    Base exception for all ledger engine errors.

    Carries structured error information and can be converted
    to a LedgerError model.
    """

    def __init__(
        self,
        message: str,
        code: str = "LEDGER_ERROR",
        details: dict[str, Any] | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        self.retryable = retryable

    def to_error_model(self) -> LedgerError:
        """Convert this exception to a LedgerError model."""
        return LedgerError(
            code=self.code,
            message=self.message,
            details=self.details,
            retryable=self.retryable,
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class CanonicalizationException(LedgerException):
    """Exception raised when canonical serialization fails."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code=ErrorCodes.CANONICALIZATION_ERROR,
            details=details,
            retryable=False,
        )


class MalformedEvent(LedgerException):
    """Exception raised when a log payload fails the ingestion schema."""

    def __init__(
        self,
        message: str,
        payload: Any = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        full_details = details or {}
        if payload is not None:
            full_details["payload"] = repr(payload)[:500]
        super().__init__(
            message=message,
            code=ErrorCodes.MALFORMED_EVENT,
            details=full_details,
            retryable=False,
        )


class IntegrityError(LedgerException):
    """
    Exception raised when the locally built tree cannot be trusted.

    Covers computed root != on-chain root, unsound index inference and
    index ordering violations. Fatal to the current request.
    """

    def __init__(
        self,
        message: str,
        code: str = ErrorCodes.INTEGRITY_ERROR,
        computed_root: int | None = None,
        onchain_root: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        full_details = details or {}
        if computed_root is not None:
            full_details["computed_root"] = hex(computed_root)
        if onchain_root is not None:
            full_details["onchain_root"] = hex(onchain_root)
        super().__init__(
            message=message,
            code=code,
            details=full_details,
            retryable=False,
        )


class CapacityExceeded(LedgerException):
    """Exception raised when a leaf index is outside the tree's range."""

    def __init__(self, index: int, capacity: int) -> None:
        self.index = index
        self.capacity = capacity
        super().__init__(
            message=f"Leaf index {index} outside tree capacity {capacity}",
            code=ErrorCodes.CAPACITY_EXCEEDED,
            details={"index": index, "capacity": capacity},
            retryable=False,
        )


class ConflictingLeaf(LedgerException):
    """Exception raised when an index is re-inserted with a different value."""

    def __init__(self, index: int, existing: int, incoming: int) -> None:
        self.index = index
        super().__init__(
            message=f"Leaf {index} already holds {hex(existing)}, refusing {hex(incoming)}",
            code=ErrorCodes.CONFLICTING_LEAF,
            details={"index": index, "existing": hex(existing), "incoming": hex(incoming)},
            retryable=False,
        )


class NotFoundInTree(LedgerException):
    """Exception raised when an input note's commitment is not a tree leaf."""

    def __init__(self, commitment: int) -> None:
        self.commitment = commitment
        super().__init__(
            message=(
                f"Commitment {hex(commitment)} not found in tree "
                "(unconfirmed note or incomplete reconciliation)"
            ),
            code=ErrorCodes.NOT_FOUND_IN_TREE,
            details={"commitment": hex(commitment)},
            retryable=False,
        )


class SourceUnavailable(LedgerException):
    """Exception raised when an event source fails or rate-limits."""

    def __init__(
        self,
        message: str,
        source_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        full_details = details or {}
        if source_id:
            full_details["source_id"] = source_id
        super().__init__(
            message=message,
            code=ErrorCodes.SOURCE_UNAVAILABLE,
            details=full_details,
            retryable=True,
        )


class ReconciliationCancelled(LedgerException):
    """Exception raised when a reconciliation pass is cancelled mid-scan."""

    def __init__(self, message: str = "Reconciliation cancelled") -> None:
        super().__init__(
            message=message,
            code=ErrorCodes.RECONCILIATION_CANCELLED,
            retryable=True,
        )


class ConflictingNote(LedgerException):
    """Exception raised when a commitment is re-added with a different payload."""

    def __init__(self, commitment: int) -> None:
        self.commitment = commitment
        super().__init__(
            message=f"Note {hex(commitment)} already stored with a different payload",
            code=ErrorCodes.CONFLICTING_NOTE,
            details={"commitment": hex(commitment)},
            retryable=False,
        )


class InsufficientNotes(LedgerException):
    """Exception raised when fewer unspent notes exist than a circuit needs."""

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(
            message=f"Need {required} unspent notes, only {available} available",
            code=ErrorCodes.INSUFFICIENT_NOTES,
            details={"required": required, "available": available},
            retryable=False,
        )


class InsufficientBalance(LedgerException):
    """Exception raised when the selected notes cannot cover the spend."""

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(
            message=f"Selected notes hold {available}, spend requires {required}",
            code=ErrorCodes.INSUFFICIENT_BALANCE,
            details={"required": str(required), "available": str(available)},
            retryable=False,
        )


class MissingSecretMaterial(LedgerException):
    """Exception raised when an input note lacks its secret or nullifier."""

    def __init__(self, commitment: int) -> None:
        super().__init__(
            message=f"Note {hex(commitment)} has no local secret/nullifier",
            code=ErrorCodes.MISSING_SECRET_MATERIAL,
            details={"commitment": hex(commitment)},
            retryable=False,
        )


class CommitmentMismatch(LedgerException):
    """Exception raised when a note's fields do not hash to its commitment."""

    def __init__(self, commitment: int, derived: int) -> None:
        super().__init__(
            message=f"Note {hex(commitment)} re-derives to {hex(derived)}",
            code=ErrorCodes.COMMITMENT_MISMATCH,
            details={"commitment": hex(commitment), "derived": hex(derived)},
            retryable=False,
        )


class NoteAlreadySpent(LedgerException):
    """Exception raised when a spent note is offered as a spend input."""

    def __init__(self, commitment: int) -> None:
        super().__init__(
            message=f"Note {hex(commitment)} is already spent",
            code=ErrorCodes.NOTE_ALREADY_SPENT,
            details={"commitment": hex(commitment)},
            retryable=False,
        )


class CircuitShapeError(LedgerException):
    """Exception raised when input/output counts do not match the circuit."""

    def __init__(
        self,
        circuit: str,
        kind: str,
        expected: int,
        actual: int,
    ) -> None:
        super().__init__(
            message=f"Circuit '{circuit}' takes {expected} {kind}, got {actual}",
            code=ErrorCodes.CIRCUIT_SHAPE_MISMATCH,
            details={"circuit": circuit, "kind": kind, "expected": expected, "actual": actual},
            retryable=False,
        )


class ValueNotConserved(LedgerException):
    """Exception raised when inputs and outputs do not balance."""

    def __init__(self, total_in: int, total_out: int) -> None:
        super().__init__(
            message=f"Inputs total {total_in} but outputs total {total_out}",
            code=ErrorCodes.VALUE_NOT_CONSERVED,
            details={"total_in": str(total_in), "total_out": str(total_out)},
            retryable=False,
        )


class InvalidNote(LedgerException):
    """Exception raised when note fields supplied by a caller fail validation."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(
            message=message,
            code=ErrorCodes.SCHEMA_VALIDATION_ERROR,
            details={"field": field} if field else {},
            retryable=False,
        )


class StoreLocked(LedgerException):
    """Exception raised when another process holds an owner's note store."""

    def __init__(self, namespace: str, timeout: float) -> None:
        super().__init__(
            message=f"Note store {namespace} is locked by another process (waited {timeout}s)",
            code=ErrorCodes.STORE_LOCKED,
            details={"namespace": namespace, "timeout": timeout},
            retryable=True,
        )
