"""
Runtime Configuration Module

Provides configuration loading and management for the ledger engine.
"""

from .runtime import (
    DEFAULT_COMMITMENT_TOPIC,
    DEFAULT_NULLIFIER_TOPIC,
    DEFAULT_ROOT_CALL_DATA,
    ChainConfig,
    FetchConfig,
    IndexerConfig,
    RuntimeConfig,
    StorageConfig,
    TreeConfig,
    get_default_config,
    set_default_config,
)

__all__ = [
    "DEFAULT_COMMITMENT_TOPIC",
    "DEFAULT_NULLIFIER_TOPIC",
    "DEFAULT_ROOT_CALL_DATA",
    "ChainConfig",
    "FetchConfig",
    "IndexerConfig",
    "RuntimeConfig",
    "StorageConfig",
    "TreeConfig",
    "get_default_config",
    "set_default_config",
]
