"""
CLI Main Entry Point

Parses command-line arguments and dispatches to subcommands.

Usage:
    python -m shielded_cli sync --owner ADDR [--to-block N] [--events-file PATH] [--json]
    python -m shielded_cli notes list --owner ADDR [--all] [--json]
    python -m shielded_cli notes add --owner ADDR --amount N [--secret S --nullifier N]
    python -m shielded_cli assemble --owner ADDR --circuit {deposit,transfer,withdraw} --amount N
    python -m shielded_cli config --init

Environment Variables:
    SHIELDED_RPC_URL            JSON-RPC endpoint
    SHIELDED_POOL_ADDRESS       Pool contract address
    SHIELDED_INDEXER_URL        Indexer API URL
    SHIELDED_GENESIS_BLOCK      Pool deployment block
    SHIELDED_NOTES_DIR          Note storage directory
    SHIELDED_LOG_LEVEL          Log level (default: INFO)
"""

from __future__ import annotations

import argparse
import logging
import sys
import traceback
from pathlib import Path
from typing import Sequence

from shielded_cli import __version__
from shielded_cli.commands import assemble, notes, sync
from shielded_cli.commands.common import EXIT_RUNTIME_ERROR, EXIT_SUCCESS
from shielded_cli.config import get_default_config_template, load_config


def setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Configure logging for the CLI."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]

    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )


def _add_common(parser: argparse.ArgumentParser, *, owner: bool = True) -> None:
    if owner:
        parser.add_argument(
            "--owner",
            type=str,
            required=True,
            help="Owner address whose notes are used",
        )
    parser.add_argument(
        "--json",
        action="store_true",
        default=argparse.SUPPRESS,
        help="Output machine-readable JSON",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Print tracebacks on unexpected errors",
    )


def _add_source_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--to-block",
        type=int,
        default=None,
        help="Last block to reconcile (default: chain head)",
    )
    parser.add_argument(
        "--events-file",
        type=str,
        default=None,
        help="Replay a recorded event dump instead of querying live sources",
    )


def config_cmd(args: argparse.Namespace) -> int:
    template = get_default_config_template()
    if not args.init:
        print(template, end="")
        return EXIT_SUCCESS

    path = Path(args.path)
    if path.exists():
        print(f"Config file already exists: {path}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR
    path.write_text(template)
    print(f"Wrote {path}")
    return EXIT_SUCCESS


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog="shielded",
        description="Shielded pool ledger - sync the commitment tree, manage notes, assemble spends.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        default=None,
        help="Path to YAML configuration (default: ./shielded.yaml or ~/.config/shielded/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (overrides config)",
    )
    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Also write logs to this file",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Output machine-readable JSON",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- sync command ---
    sync_parser = subparsers.add_parser(
        "sync",
        help="Reconcile the tree and update the owner's notes",
        description="Fetch pool events, verify the root, mark spent notes and record leaf indices.",
    )
    _add_common(sync_parser)
    _add_source_options(sync_parser)
    sync_parser.set_defaults(func=sync.sync_cmd)

    # --- notes command ---
    notes_parser = subparsers.add_parser(
        "notes",
        help="List or add notes",
        description="Inspect or extend the owner's note store.",
    )
    notes_sub = notes_parser.add_subparsers(dest="notes_action", required=True)

    list_parser = notes_sub.add_parser("list", help="List notes")
    _add_common(list_parser)
    list_parser.add_argument(
        "--all",
        action="store_true",
        default=False,
        help="Include spent notes",
    )

    add_parser = notes_sub.add_parser("add", help="Add a note")
    _add_common(add_parser)
    add_parser.add_argument("--amount", type=int, required=True, help="Note amount")
    add_parser.add_argument("--secret", type=str, default=None, help="Existing secret (decimal or 0x)")
    add_parser.add_argument("--nullifier", type=str, default=None, help="Existing nullifier (decimal or 0x)")
    notes_parser.set_defaults(func=notes.notes_cmd)

    # --- assemble command ---
    assemble_parser = subparsers.add_parser(
        "assemble",
        help="Build the prover input for a spend",
        description="Reconcile, select input notes and write the circuit input JSON.",
    )
    _add_common(assemble_parser)
    _add_source_options(assemble_parser)
    assemble_parser.add_argument(
        "--circuit",
        type=str,
        required=True,
        choices=["deposit", "transfer", "withdraw"],
        help="Circuit to assemble for",
    )
    assemble_parser.add_argument(
        "--amount",
        type=int,
        required=True,
        help="Deposited, transferred or withdrawn amount",
    )
    assemble_parser.add_argument(
        "--recipient",
        type=str,
        default=None,
        help="Withdrawal recipient address",
    )
    assemble_parser.add_argument(
        "--out", "-o",
        type=str,
        default=None,
        help="Write the prover input JSON here (default: print it)",
    )
    assemble_parser.set_defaults(func=assemble.assemble_cmd)

    # --- config command ---
    config_parser = subparsers.add_parser(
        "config",
        help="Print or initialize a configuration file",
    )
    config_parser.add_argument(
        "--init",
        action="store_true",
        default=False,
        help="Write the template to --path",
    )
    config_parser.add_argument(
        "--path",
        type=str,
        default="shielded.yaml",
        help="Where --init writes the template",
    )
    config_parser.set_defaults(func=config_cmd)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0=success, 1=error, 2=integrity failure)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_RUNTIME_ERROR

    # Load configuration
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    # Setup logging
    log_level = args.log_level or config.log_level
    setup_logging(level=log_level, log_file=args.log_file)

    # Attach config to args for commands to use
    args.runtime_config = config

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_RUNTIME_ERROR
    except Exception as e:
        if getattr(args, "debug", False):
            traceback.print_exc()
        else:
            print(f"Error: {e}", file=sys.stderr)
        return EXIT_RUNTIME_ERROR


if __name__ == "__main__":
    sys.exit(main())
