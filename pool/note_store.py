"""
Note Store

The owner's private record of notes: amounts, secret material, spent
flags and known leaf indices, persisted as one schema-versioned document
per owner.

Concurrency: every NoteStore instance for the same owner shares one
re-entrant lock from a process-wide registry, so reads and writes for an
owner are serialized even across instances. transaction() adds the
storage backend's lock for writers in other processes.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Iterator, Optional

from pydantic import ValidationError

from core.schemas import (
    NOTE_STORE_VERSION,
    ConflictingNote,
    InsufficientBalance,
    InsufficientNotes,
    IntegrityError,
    Note,
    dumps_canonical,
    is_compatible_note_store_version,
    loads_canonical,
)

from pool.storage import InMemoryNoteStorage, NoteStorage

if TYPE_CHECKING:
    from pool.reconciler import ReconciliationResult


logger = logging.getLogger(__name__)


# =============================================================================
# Owner Lock Registry
# =============================================================================

_OWNER_LOCKS: dict[str, threading.RLock] = {}
_OWNER_LOCKS_GUARD = threading.Lock()


def owner_lock(namespace: str) -> threading.RLock:
    """Return the process-wide lock for a storage namespace."""
    with _OWNER_LOCKS_GUARD:
        lock = _OWNER_LOCKS.get(namespace)
        if lock is None:
            lock = threading.RLock()
            _OWNER_LOCKS[namespace] = lock
        return lock


def namespace_for(owner: str) -> str:
    """Storage key for an owner's notes."""
    owner = owner.strip().lower()
    if not owner:
        raise ValueError("owner must be non-empty")
    return f"notes-{owner}"


# =============================================================================
# Note Store
# =============================================================================

class NoteStore:
    """
    Per-owner note collection with explicit load/save.

    Usage:
        store = NoteStore("0xabc...", FileNoteStorage("~/.shielded-ledger/notes"))
        store.load()
        store.add_note(Note.create(100))
        store.save()
    """

    def __init__(self, owner: str, storage: Optional[NoteStorage] = None) -> None:
        self.owner = owner
        self.namespace = namespace_for(owner)
        self.storage = storage or InMemoryNoteStorage()
        self._lock = owner_lock(self.namespace)
        self._notes: dict[int, Note] = {}

    @contextmanager
    def session(self) -> Iterator["NoteStore"]:
        """Hold the owner lock across several operations."""
        with self._lock:
            yield self

    @contextmanager
    def transaction(self) -> Iterator["NoteStore"]:
        """
        Reload, update and save the document as one unit.

        Holds the in-process owner lock and the storage lock for the whole
        block, so concurrent writers (threads or processes) cannot lose each
        other's changes. The document is saved only if the block completes.

        Raises:
            StoreLocked: If another process keeps the storage lock too long
        """
        with self._lock, self.storage.lock(self.namespace):
            self.load()
            yield self
            self.save()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> int:
        """
        Replace in-memory notes with the persisted document.

        A document with an unrecognised schema version is discarded as a
        whole; individual malformed records are skipped. Both cases log a
        warning and never raise.

        Returns:
            Number of notes loaded
        """
        with self._lock:
            self._notes = {}
            text = self.storage.load(self.namespace)
            if text is None:
                return 0

            try:
                document = loads_canonical(text)
            except ValueError as e:
                logger.warning(f"Discarding unreadable note document for {self.namespace}: {e}")
                return 0

            version = document.get("schema_version") if isinstance(document, dict) else None
            if not is_compatible_note_store_version(version):
                logger.warning(
                    f"Discarding note document for {self.namespace}: "
                    f"unsupported schema version {version!r}"
                )
                return 0

            records = document.get("notes")
            if not isinstance(records, list):
                logger.warning(f"Discarding note document for {self.namespace}: 'notes' is not a list")
                return 0

            for position, record in enumerate(records):
                try:
                    note = Note.model_validate(record)
                except ValidationError as e:
                    logger.warning(
                        f"Discarding malformed note record #{position} for {self.namespace}: "
                        f"{e.error_count()} validation error(s)"
                    )
                    continue
                if note.commitment in self._notes:
                    logger.warning(f"Discarding duplicate note record #{position} for {self.namespace}")
                    continue
                self._notes[note.commitment] = note

            logger.debug(f"Loaded {len(self._notes)} notes for {self.namespace}")
            return len(self._notes)

    def to_document(self) -> dict[str, Any]:
        with self._lock:
            return {
                "schema_version": NOTE_STORE_VERSION,
                "owner": self.owner.lower(),
                "notes": [
                    self._notes[c].model_dump(mode="json")
                    for c in sorted(self._notes)
                ],
            }

    def save(self) -> None:
        with self._lock:
            self.storage.save(self.namespace, dumps_canonical(self.to_document(), indent=2))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._notes)

    def __contains__(self, commitment: object) -> bool:
        return commitment in self._notes

    def get(self, commitment: int) -> Optional[Note]:
        with self._lock:
            note = self._notes.get(commitment)
            return note.model_copy() if note is not None else None

    def notes(self) -> list[Note]:
        """All notes, ordered by commitment."""
        with self._lock:
            return [self._notes[c].model_copy() for c in sorted(self._notes)]

    def unspent(self) -> list[Note]:
        return [n for n in self.notes() if not n.spent]

    def balance(self) -> int:
        """Sum of unspent note amounts."""
        return sum(n.amount for n in self.unspent())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_note(self, note: Note) -> bool:
        """
        Record a note keyed by its commitment.

        Returns:
            True if added, False if an identical note was already present

        Raises:
            ConflictingNote: If the commitment is stored with a different payload
        """
        with self._lock:
            existing = self._notes.get(note.commitment)
            if existing is not None:
                if not existing.same_payload(note):
                    raise ConflictingNote(note.commitment)
                return False
            self._notes[note.commitment] = note.model_copy()
            return True

    def mark_spent(self, nullifier: int) -> bool:
        """
        Flag the note owning this nullifier as spent.

        Returns:
            True if a note changed state; False if the nullifier is unknown
            or the note was already spent
        """
        with self._lock:
            for note in self._notes.values():
                if note.nullifier == nullifier:
                    if note.spent:
                        return False
                    note.spent = True
                    return True
            return False

    def select_spendable(self, count: int, target_amount: int) -> list[Note]:
        """
        Pick exactly `count` unspent notes for a spend.

        Candidates are unspent notes with secret material whose leaf index
        has been recorded by a verified reconciliation, ordered by amount
        descending then commitment ascending; the first `count` are taken.
        Notes created locally but not yet seen on-chain are never chosen.

        Raises:
            InsufficientNotes: Fewer than `count` candidates exist
            InsufficientBalance: The chosen notes sum below target_amount
        """
        if count < 0:
            raise ValueError("count must be non-negative")
        with self._lock:
            candidates = sorted(
                (n for n in self._notes.values() if n.spendable),
                key=lambda n: (-n.amount, n.commitment),
            )
            if len(candidates) < count:
                raise InsufficientNotes(required=count, available=len(candidates))

            chosen = candidates[:count]
            total = sum(n.amount for n in chosen)
            if total < target_amount:
                raise InsufficientBalance(required=target_amount, available=total)
            return [n.model_copy() for n in chosen]

    def apply_reconciliation(self, result: "ReconciliationResult") -> dict[str, int]:
        """
        Fold a verified reconciliation pass into the store and persist it.

        Marks notes whose nullifier appeared on-chain as spent and records
        the leaf index of every owned commitment found in the tree. All
        changes are staged first; the in-memory state and the persisted
        document change together or not at all.

        Raises:
            IntegrityError: If the result was not root-verified
        """
        if not result.verified:
            raise IntegrityError("Refusing to apply an unverified reconciliation result")

        with self._lock:
            staged = {c: n.model_copy() for c, n in self._notes.items()}
            by_nullifier = {
                n.nullifier: c for c, n in staged.items() if n.nullifier is not None
            }

            spent = 0
            for event in result.nullifiers:
                commitment = by_nullifier.get(event.nullifier)
                if commitment is not None and not staged[commitment].spent:
                    staged[commitment].spent = True
                    spent += 1

            located = 0
            for event in result.commitments:
                note = staged.get(event.commitment)
                if note is not None and note.leaf_index != event.index:
                    note.leaf_index = event.index
                    located += 1

            previous = self._notes
            self._notes = staged
            try:
                self.save()
            except Exception:
                self._notes = previous
                raise

            logger.info(
                f"Applied reconciliation at block {result.to_block} to {self.namespace}: "
                f"{spent} newly spent, {located} leaf indices recorded"
            )
            return {"spent": spent, "located": located}
