"""
CLI command modules.
"""

from shielded_cli.commands import assemble, notes, sync

__all__ = ["assemble", "notes", "sync"]
