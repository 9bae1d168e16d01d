"""
Shared helpers for CLI commands: wiring config into stores, sources and
the reconciler, plus output formatting.
"""

from __future__ import annotations

import json
import logging
import sys
from argparse import Namespace
from pathlib import Path
from typing import Any, Optional

from core.config import RuntimeConfig
from core.crypto import to_field
from core.schemas import IntegrityError, LedgerException, dumps_canonical

from pool import EventReconciler, FileNoteStorage, NoteStore
from pool.sources import FixedRootReader, StaticEventSource, build_sources


logger = logging.getLogger(__name__)


# Exit codes
EXIT_SUCCESS = 0
EXIT_RUNTIME_ERROR = 1
EXIT_INTEGRITY_FAILED = 2


def note_store(config: RuntimeConfig, owner: str) -> NoteStore:
    """The owner's file-backed note store, not yet loaded."""
    storage = FileNoteStorage(config.storage.notes_path, lock_timeout=config.storage.lock_timeout)
    return NoteStore(owner, storage)


def open_store(config: RuntimeConfig, owner: str) -> NoteStore:
    """Open and load the owner's note store for reading."""
    store = note_store(config, owner)
    loaded = store.load()
    logger.debug(f"Opened note store {store.namespace} ({loaded} notes)")
    return store


def load_event_dump(path: Path) -> tuple[StaticEventSource, FixedRootReader]:
    """
    Load a recorded event dump.

    Format:
        {"commitments": [...], "nullifiers": [...], "root": "0x...", "toBlock": n}
    """
    with open(path) as f:
        data = json.load(f)
    if "root" not in data:
        raise ValueError(f"Event dump {path} has no 'root'")
    source = StaticEventSource(
        data.get("commitments", []),
        data.get("nullifiers", []),
        head_block=data.get("toBlock"),
    )
    return source, FixedRootReader(to_field(data["root"]))


def build_reconciler(config: RuntimeConfig, events_file: Optional[str] = None) -> EventReconciler:
    """Reconciler over a recorded dump, or over the configured live sources."""
    if events_file:
        source, root_reader = load_event_dump(Path(events_file))
        return EventReconciler(source, root_reader=root_reader, config=config)

    primary, fallback, root_reader = build_sources(config)
    return EventReconciler(primary, fallback=fallback, root_reader=root_reader, config=config)


def emit(args: Namespace, payload: dict[str, Any], human: str) -> None:
    """Print JSON when --json is set, the human summary otherwise."""
    if getattr(args, "json", False):
        print(dumps_canonical(payload, indent=2))
    else:
        print(human)


def report_error(args: Namespace, error: LedgerException) -> int:
    """Print a ledger error and map it to an exit code."""
    if getattr(args, "json", False):
        print(error.to_error_model().model_dump_json(indent=2))
    else:
        print(f"Error [{error.code}]: {error.message}", file=sys.stderr)
    if isinstance(error, IntegrityError):
        return EXIT_INTEGRITY_FAILED
    return EXIT_RUNTIME_ERROR
