"""
Pool Event Sources Package

Adapters that pull NoteCommitted / NullifierSpent logs from the indexer
(primary) or a JSON-RPC node (fallback).
"""

from pool.sources.base_source import (
    BaseEventSource,
    EventSourceProtocol,
    FixedRootReader,
    LogPage,
    RootReader,
    StaticEventSource,
)
from pool.sources.indexer_source import IndexerSource
from pool.sources.rpc_source import (
    RpcLogSource,
    decode_commitment_log,
    decode_nullifier_log,
)

__all__ = [
    # Base
    "BaseEventSource",
    "EventSourceProtocol",
    "FixedRootReader",
    "LogPage",
    "RootReader",
    "StaticEventSource",
    # Adapters
    "IndexerSource",
    "RpcLogSource",
    "decode_commitment_log",
    "decode_nullifier_log",
    "build_sources",
]


def build_sources(config):
    """
    Build (primary, fallback, root_reader) from a RuntimeConfig.

    The indexer is primary when configured; the RPC source is always the
    fallback and the root reader when `chain.rpc_url` is set.
    """
    rpc = None
    if config.chain.rpc_url and config.chain.pool_address:
        rpc = RpcLogSource(
            config.chain,
            chunk_size=config.fetch.chunk_size,
            timeout=config.fetch.timeout,
        )

    if config.indexer.url:
        primary = IndexerSource(config.indexer, pool_address=config.chain.pool_address)
        return primary, rpc, rpc

    if rpc is None:
        raise ValueError("No event source configured: set indexer.url or chain.rpc_url")
    return rpc, None, rpc
