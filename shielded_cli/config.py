"""
CLI Configuration

Resolves the RuntimeConfig the CLI runs with: an explicit --config file,
else the first default location that exists, else the environment alone.
Environment variables always override file values.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from core.config import RuntimeConfig


DEFAULT_CONFIG_PATHS = (
    Path("shielded.yaml"),
    Path("~/.config/shielded/config.yaml"),
)


def find_config_file() -> Optional[Path]:
    """Return the first default config file that exists."""
    for candidate in DEFAULT_CONFIG_PATHS:
        path = candidate.expanduser()
        if path.exists():
            return path
    return None


def load_config(path: Optional[Path] = None) -> RuntimeConfig:
    """
    Load the CLI's runtime configuration.

    Raises:
        FileNotFoundError: If an explicit path does not exist
    """
    if path is None:
        path = find_config_file()
    if path is None:
        return RuntimeConfig.from_env()
    return RuntimeConfig.from_yaml(path).with_env_overrides()


def get_default_config_template() -> str:
    """YAML template written by `shielded config --init`."""
    return """\
chain:
  rpc_url: null            # JSON-RPC endpoint (fallback source + root reads)
  pool_address: null
  # nullifier_topic: 0x...  # defaults to keccak256("NullifierSpent(bytes32)")
  # root_call_data: 0x...   # defaults to the getMerkleRoot() selector
  genesis_block: 0

indexer:
  url: null                # primary event source
  timeout: 60
  page_size: 1000

tree:
  depth: 20
  zero_value: 0

fetch:
  max_retries: 3
  retry_delay: 1.0
  backoff_factor: 2.0
  chunk_size: 100
  max_root_refetches: 1

storage:
  notes_dir: ~/.shielded-ledger/notes
  lock_timeout: 30.0       # seconds to wait on another process's store lock

log_level: INFO
"""
