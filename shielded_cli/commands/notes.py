"""
CLI Notes Command

Inspect or extend an owner's note store.

Usage:
    shielded notes list --owner 0xabc... [--all] [--json]
    shielded notes add --owner 0xabc... --amount 100 [--secret S --nullifier N]
"""

from __future__ import annotations

import logging
from argparse import Namespace

from core.crypto import field_to_hex, to_field
from core.schemas import InvalidNote, LedgerException, Note

from shielded_cli.commands.common import (
    EXIT_RUNTIME_ERROR,
    EXIT_SUCCESS,
    emit,
    note_store,
    open_store,
    report_error,
)


logger = logging.getLogger(__name__)


def _note_row(note: Note) -> dict:
    return {
        "commitment": field_to_hex(note.commitment),
        "amount": str(note.amount),
        "spent": note.spent,
        "leaf_index": note.leaf_index,
        "spendable": note.spendable,
    }


def _status(note: Note) -> str:
    if note.spent:
        return "spent"
    if not note.has_secret_material:
        return "unspendable"
    return "unspent" if note.confirmed else "pending"


def notes_list_cmd(args: Namespace) -> int:
    store = open_store(args.runtime_config, args.owner)
    notes = store.notes() if args.all else store.unspent()

    lines = [f"{len(notes)} note(s) for {args.owner.lower()}, balance {store.balance()}"]
    for note in notes:
        index = "-" if note.leaf_index is None else str(note.leaf_index)
        lines.append(f"  {field_to_hex(note.commitment)}  {note.amount:>20}  leaf={index:>7}  {_status(note)}")

    emit(
        args,
        {
            "owner": args.owner.lower(),
            "balance": str(store.balance()),
            "notes": [_note_row(n) for n in notes],
        },
        "\n".join(lines),
    )
    return EXIT_SUCCESS


def _parse_note(args: Namespace) -> Note:
    """Build the note from CLI values, reporting which one was rejected."""
    material = {}
    for name in ("secret", "nullifier"):
        raw = getattr(args, name)
        try:
            material[name] = None if raw is None else to_field(raw)
        except ValueError as e:
            raise InvalidNote(f"Invalid --{name} {raw!r}: {e}", field=name) from e
    try:
        return Note.create(int(args.amount), **material)
    except ValueError as e:
        raise InvalidNote(f"Invalid --amount {args.amount}: must be a field element", field="amount") from e


def notes_add_cmd(args: Namespace) -> int:
    """Add a note; fresh secret material is drawn when not given."""
    if (args.secret is None) != (args.nullifier is None):
        logger.error("--secret and --nullifier must be given together")
        return EXIT_RUNTIME_ERROR

    store = note_store(args.runtime_config, args.owner)
    try:
        note = _parse_note(args)
        with store.transaction():
            added = store.add_note(note)
    except LedgerException as e:
        return report_error(args, e)

    verb = "Added" if added else "Already present"
    emit(
        args,
        {"added": added, **_note_row(note)},
        f"{verb}: {field_to_hex(note.commitment)} ({note.amount})",
    )
    return EXIT_SUCCESS


def notes_cmd(args: Namespace) -> int:
    if args.notes_action == "add":
        return notes_add_cmd(args)
    return notes_list_cmd(args)
