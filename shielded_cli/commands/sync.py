"""
CLI Sync Command

Reconcile the commitment tree from chain events, verify it against the
on-chain root, and fold spent nullifiers and leaf indices into the
owner's note store.

Usage:
    shielded sync --owner 0xabc... [--to-block N] [--events-file dump.json] [--json]
"""

from __future__ import annotations

import logging
from argparse import Namespace

from core.schemas import LedgerException

from shielded_cli.commands.common import (
    EXIT_SUCCESS,
    build_reconciler,
    emit,
    note_store,
    report_error,
)


logger = logging.getLogger(__name__)


def sync_cmd(args: Namespace) -> int:
    """
    Execute the sync command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code
    """
    config = args.runtime_config

    try:
        reconciler = build_reconciler(config, args.events_file)
        result = reconciler.reconcile(to_block=args.to_block)
        store = note_store(config, args.owner)
        with store.transaction():
            changes = store.apply_reconciliation(result)
    except LedgerException as e:
        logger.error(f"Sync failed: {e.message}")
        return report_error(args, e)

    payload = {
        **result.to_dict(),
        "owner": args.owner.lower(),
        "newly_spent": changes["spent"],
        "leaf_indices_recorded": changes["located"],
        "balance": str(store.balance()),
        "unspent_notes": len(store.unspent()),
    }
    human = "\n".join([
        f"Synced to block {result.to_block} via {'+'.join(result.sources_used)}",
        f"  Root:       {hex(result.root)} (verified)",
        f"  Leaves:     {len(result.commitments)}",
        f"  Nullifiers: {len(result.nullifiers)}",
        f"  Owner:      {args.owner.lower()}",
        f"  Spent now:  {changes['spent']}",
        f"  Balance:    {store.balance()} across {len(store.unspent())} unspent notes",
    ])
    if result.requested_to_block is not None and result.requested_to_block != result.to_block:
        human += f"\n  Note: --to-block {result.requested_to_block} moved to {result.to_block} after a root mismatch"
    emit(args, payload, human)
    return EXIT_SUCCESS
