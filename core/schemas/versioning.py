"""
Module 01 - Schemas & Errors
File: versioning.py

Purpose: Version tags for persisted note documents and prover input bundles.
No imports from other schema files.
"""

# Current note store document version
NOTE_STORE_VERSION: str = "v1"

# Prover input bundle layout version
PROVER_INPUT_VERSION: str = "v1"

# Versions NoteStore.load accepts; anything else discards the document
SUPPORTED_NOTE_STORE_VERSIONS: frozenset[str] = frozenset({NOTE_STORE_VERSION})


def is_compatible_note_store_version(version: object) -> bool:
    """Check whether a persisted note document can be loaded."""
    return isinstance(version, str) and version in SUPPORTED_NOTE_STORE_VERSIONS
