"""
Shielded Ledger CLI

Command-line interface for syncing the pool tree, managing notes and
assembling prover inputs.

Usage:
    python -m shielded_cli sync --owner 0xabc...
    python -m shielded_cli notes list --owner 0xabc...
    python -m shielded_cli assemble --owner 0xabc... --circuit transfer --amount 60
    python -m shielded_cli config --init
"""

__version__ = "0.1.0"
