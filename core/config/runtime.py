"""
Runtime Configuration

Central configuration for chain access, event fetching, tree shape and
note storage.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from core.crypto.hashing import event_topic, function_selector

load_dotenv()


NOTE_COMMITTED_EVENT = "NoteCommitted(bytes32,uint256,bytes)"
NULLIFIER_SPENT_EVENT = "NullifierSpent(bytes32)"
ROOT_GETTER = "getMerkleRoot()"

DEFAULT_COMMITMENT_TOPIC = event_topic(NOTE_COMMITTED_EVENT)
DEFAULT_NULLIFIER_TOPIC = event_topic(NULLIFIER_SPENT_EVENT)
DEFAULT_ROOT_CALL_DATA = function_selector(ROOT_GETTER)


@dataclass
class ChainConfig:
    """Configuration for the pool contract and its JSON-RPC endpoint."""
    rpc_url: Optional[str] = None
    pool_address: Optional[str] = None
    commitment_topic: str = DEFAULT_COMMITMENT_TOPIC
    nullifier_topic: str = DEFAULT_NULLIFIER_TOPIC
    # ABI-encoded calldata for the contract's root getter
    root_call_data: str = DEFAULT_ROOT_CALL_DATA
    genesis_block: int = 0


@dataclass
class IndexerConfig:
    """Configuration for the primary (indexer) event source."""
    url: Optional[str] = None
    timeout: float = 60.0
    page_size: int = 1000


@dataclass
class TreeConfig:
    """Shape of the commitment tree; must match the contract and circuits."""
    depth: int = 20
    zero_value: int = 0


@dataclass
class FetchConfig:
    """Retry and chunking policy for event fetches."""
    timeout: float = 30.0
    max_retries: int = 3
    retry_delay: float = 1.0
    backoff_factor: float = 2.0
    chunk_size: int = 100
    max_root_refetches: int = 1


@dataclass
class StorageConfig:
    """Where owner note documents are persisted."""
    notes_dir: str = "~/.shielded-ledger/notes"
    # Seconds to wait for another process holding an owner's store
    lock_timeout: float = 30.0

    @property
    def notes_path(self) -> Path:
        return Path(self.notes_dir).expanduser()


@dataclass
class RuntimeConfig:
    """
    Complete runtime configuration for the ledger engine.

    Can be loaded from:
    - Environment variables
    - YAML file
    - Programmatic construction
    """
    chain: ChainConfig = field(default_factory=ChainConfig)
    indexer: IndexerConfig = field(default_factory=IndexerConfig)
    tree: TreeConfig = field(default_factory=TreeConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    log_level: str = "INFO"
    extra: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def _get_env_overrides() -> dict[str, Any]:
        """
        Get configuration overrides from environment variables.

        This is the SINGLE source of truth for all env var reading.

        Supported variables:
        - SHIELDED_RPC_URL: JSON-RPC endpoint
        - SHIELDED_POOL_ADDRESS: Pool contract address
        - SHIELDED_NULLIFIER_TOPIC: NullifierSpent topic0
        - SHIELDED_ROOT_CALL_DATA: Calldata for the root getter
        - SHIELDED_GENESIS_BLOCK: Pool deployment block
        - SHIELDED_INDEXER_URL: Indexer API URL
        - SHIELDED_TREE_DEPTH: Tree depth
        - SHIELDED_NOTES_DIR: Note storage directory
        - SHIELDED_LOG_LEVEL: Log level
        """
        overrides: dict[str, Any] = {}

        # Chain settings
        if os.getenv("SHIELDED_RPC_URL"):
            overrides.setdefault("chain", {})["rpc_url"] = os.getenv("SHIELDED_RPC_URL")
        if os.getenv("SHIELDED_POOL_ADDRESS"):
            overrides.setdefault("chain", {})["pool_address"] = os.getenv("SHIELDED_POOL_ADDRESS")
        if os.getenv("SHIELDED_NULLIFIER_TOPIC"):
            overrides.setdefault("chain", {})["nullifier_topic"] = os.getenv("SHIELDED_NULLIFIER_TOPIC")
        if os.getenv("SHIELDED_ROOT_CALL_DATA"):
            overrides.setdefault("chain", {})["root_call_data"] = os.getenv("SHIELDED_ROOT_CALL_DATA")
        if os.getenv("SHIELDED_GENESIS_BLOCK"):
            overrides.setdefault("chain", {})["genesis_block"] = int(os.getenv("SHIELDED_GENESIS_BLOCK", "0"))

        # Indexer
        if os.getenv("SHIELDED_INDEXER_URL"):
            overrides.setdefault("indexer", {})["url"] = os.getenv("SHIELDED_INDEXER_URL")

        # Tree
        if os.getenv("SHIELDED_TREE_DEPTH"):
            overrides.setdefault("tree", {})["depth"] = int(os.getenv("SHIELDED_TREE_DEPTH", "20"))

        # Storage
        if os.getenv("SHIELDED_NOTES_DIR"):
            overrides.setdefault("storage", {})["notes_dir"] = os.getenv("SHIELDED_NOTES_DIR")

        if os.getenv("SHIELDED_LOG_LEVEL"):
            overrides["log_level"] = os.getenv("SHIELDED_LOG_LEVEL")

        return overrides

    @classmethod
    def from_env(cls) -> "RuntimeConfig":
        """
        Load configuration purely from environment variables.

        Uses defaults for any values not specified in env vars.
        """
        return cls.from_dict(cls._get_env_overrides())

    @classmethod
    def from_yaml(cls, path: str | Path) -> "RuntimeConfig":
        """Load configuration from a YAML file."""
        import yaml
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RuntimeConfig":
        """Load configuration from a dictionary (supports partial data)."""
        chain_data = data.get("chain", {}) or {}
        indexer_data = data.get("indexer", {}) or {}
        tree_data = data.get("tree", {}) or {}
        fetch_data = data.get("fetch", {}) or {}
        storage_data = data.get("storage", {}) or {}

        return cls(
            chain=ChainConfig(**chain_data),
            indexer=IndexerConfig(**indexer_data),
            tree=TreeConfig(**tree_data),
            fetch=FetchConfig(**fetch_data),
            storage=StorageConfig(**storage_data),
            log_level=data.get("log_level", "INFO"),
            extra=data.get("extra", {}),
        )

    def with_env_overrides(self) -> "RuntimeConfig":
        """
        Return a new config with environment variable overrides applied.

        This allows loading from a config file first, then overlaying env vars.
        """
        overrides = self._get_env_overrides()
        if not overrides:
            return self

        import copy
        new_config = copy.deepcopy(self)

        for section in ("chain", "indexer", "tree", "fetch", "storage"):
            for key, value in overrides.get(section, {}).items():
                setattr(getattr(new_config, section), key, value)

        if "log_level" in overrides:
            new_config.log_level = overrides["log_level"]

        return new_config

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to a dictionary."""
        return {
            "chain": asdict(self.chain),
            "indexer": asdict(self.indexer),
            "tree": asdict(self.tree),
            "fetch": asdict(self.fetch),
            "storage": asdict(self.storage),
            "log_level": self.log_level,
            "extra": self.extra,
        }


# Global default configuration
_default_config: Optional[RuntimeConfig] = None


def get_default_config() -> RuntimeConfig:
    """Get the default runtime configuration."""
    global _default_config
    if _default_config is None:
        _default_config = RuntimeConfig.from_env()
    return _default_config


def set_default_config(config: RuntimeConfig) -> None:
    """Set the default runtime configuration."""
    global _default_config
    _default_config = config
