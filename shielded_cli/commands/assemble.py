"""
CLI Assemble Command

Reconcile, select input notes, and write the prover input bundle for one
spend. Change notes (and the deposited note) are added to the owner's
store; the recipient's note of a transfer is not.

Usage:
    shielded assemble --owner 0xabc... --circuit deposit --amount 100
    shielded assemble --owner 0xabc... --circuit transfer --amount 60 [--out input.json]
    shielded assemble --owner 0xabc... --circuit withdraw --amount 60 --recipient 0xdef...
"""

from __future__ import annotations

import json
import logging
from argparse import Namespace
from pathlib import Path

from core.crypto import field_to_hex
from core.schemas import LedgerException, Note

from pool import ProofAssembler, get_circuit
from shielded_cli.commands.common import (
    EXIT_SUCCESS,
    build_reconciler,
    emit,
    note_store,
    report_error,
)


logger = logging.getLogger(__name__)


def assemble_cmd(args: Namespace) -> int:
    """
    Execute the assemble command.

    Returns:
        Exit code
    """
    config = args.runtime_config
    shape = get_circuit(args.circuit)
    amount = int(args.amount)

    try:
        store = note_store(config, args.owner)
        assembler = ProofAssembler(store)

        with store.transaction():
            if shape.name == "deposit":
                spend = assembler.assemble("deposit", None, [amount], public_amount=amount)
                owned = list(spend.outputs)
            else:
                snapshot = build_reconciler(config, args.events_file).reconcile(to_block=args.to_block)
                store.apply_reconciliation(snapshot)

                inputs = store.select_spendable(shape.n_inputs, amount)
                change = Note.create(sum(n.amount for n in inputs) - amount)
                if shape.name == "transfer":
                    outputs = [Note.create(amount), change]
                    spend = assembler.assemble("transfer", snapshot, outputs, inputs=inputs)
                else:
                    spend = assembler.assemble(
                        "withdraw", snapshot, [change],
                        inputs=inputs, public_amount=amount, recipient=args.recipient,
                    )
                owned = [change]

            for note in owned:
                store.add_note(note)
    except LedgerException as e:
        logger.error(f"Assembly failed: {e.message}")
        return report_error(args, e)

    circuit_input = spend.circuit_input()
    if args.out:
        out_path = Path(args.out)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(json.dumps(circuit_input, indent=2))
        logger.info(f"Wrote prover input to {out_path}")

    payload = {
        "circuit": shape.name,
        "to_block": spend.to_block,
        "root": field_to_hex(spend.public_signals.root) if spend.public_signals.root is not None else None,
        "nullifiers": [field_to_hex(n) for n in spend.public_signals.nullifiers],
        "commitments": [field_to_hex(c) for c in spend.public_signals.commitments],
        "out": args.out,
    }
    if not args.out:
        payload["circuit_input"] = circuit_input

    human = "\n".join(
        [f"Assembled {shape.name} ({len(spend.inputs)} in / {len(spend.outputs)} out)"]
        + [f"  Output: {field_to_hex(c)}" for c in spend.public_signals.commitments]
        + ([f"  Prover input: {args.out}"] if args.out else [json.dumps(circuit_input, indent=2)])
    )
    emit(args, payload, human)
    return EXIT_SUCCESS
