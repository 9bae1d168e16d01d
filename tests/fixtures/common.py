"""
Common test fixtures shared by all modules.

Provides factory functions for:
- RuntimeConfig with a small tree and instant retries
- Raw commitment / nullifier log payloads
- Owner notes with secret material
- Fake event sources and root readers
"""

from typing import Any, Iterable, Iterator, Optional, Sequence

from core.config import RuntimeConfig
from core.crypto import field_to_hex
from core.merkle import CommitmentTree
from core.schemas import Note, SourceUnavailable

from pool.sources import LogPage, StaticEventSource


TEST_DEPTH = 4


# =============================================================================
# Config Factory
# =============================================================================

def make_config(
    depth: int = TEST_DEPTH,
    genesis_block: int = 0,
    max_retries: int = 2,
    max_root_refetches: int = 1,
    notes_dir: Optional[str] = None,
) -> RuntimeConfig:
    """Create a RuntimeConfig suitable for unit tests."""
    data: dict[str, Any] = {
        "chain": {"genesis_block": genesis_block},
        "tree": {"depth": depth},
        "fetch": {
            "max_retries": max_retries,
            "retry_delay": 0.5,
            "backoff_factor": 2.0,
            "chunk_size": 10,
            "max_root_refetches": max_root_refetches,
        },
    }
    if notes_dir is not None:
        data["storage"] = {"notes_dir": notes_dir}
    return RuntimeConfig.from_dict(data)


# =============================================================================
# Payload Factories
# =============================================================================

def make_tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def make_commitment_payload(
    commitment: int,
    index: Optional[int],
    block_number: int,
    log_index: int = 0,
    tx: Optional[int] = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "commitment": field_to_hex(commitment),
        "blockNumber": block_number,
        "logIndex": log_index,
        "transactionHash": make_tx_hash(tx if tx is not None else block_number * 100 + log_index),
    }
    if index is not None:
        payload["index"] = index
    return payload


def make_commitment_payloads(
    commitments: Sequence[int],
    with_index: bool = True,
    first_block: int = 1,
) -> list[dict[str, Any]]:
    """One commitment per block, indices 0..n-1."""
    return [
        make_commitment_payload(c, i if with_index else None, first_block + i)
        for i, c in enumerate(commitments)
    ]


def make_nullifier_payload(nullifier: int, block_number: int, log_index: int = 1) -> dict[str, Any]:
    return {
        "nullifier": field_to_hex(nullifier),
        "blockNumber": block_number,
        "logIndex": log_index,
        "transactionHash": make_tx_hash(block_number * 100 + log_index),
    }


# =============================================================================
# Notes / Trees
# =============================================================================

def make_owned_notes(amounts: Iterable[int], seed: int = 1000) -> list[Note]:
    """Deterministic notes with secret material."""
    return [
        Note.create(amount, secret=seed + 2 * i, nullifier=seed + 2 * i + 1)
        for i, amount in enumerate(amounts)
    ]


def confirm_notes(notes: Iterable[Note], first_index: int = 0) -> list[Note]:
    """Copies of `notes` carrying consecutive leaf indices, as after a sync."""
    return [
        note.model_copy(update={"leaf_index": first_index + i})
        for i, note in enumerate(notes)
    ]


def expected_root(commitments: Sequence[int], depth: int = TEST_DEPTH) -> int:
    tree = CommitmentTree(depth=depth)
    for c in commitments:
        tree.insert(c)
    return tree.get_root()


# =============================================================================
# Fake Sources
# =============================================================================

class FailingSource(StaticEventSource):
    """A source that is always unavailable."""

    source_id = "down"

    def __init__(self, head_block: int = 0):
        super().__init__(head_block=head_block)
        self.calls = 0

    def latest_block(self) -> int:
        self.calls += 1
        raise SourceUnavailable("down", source_id=self.source_id)

    def _pages(self, payloads, from_block, to_block) -> Iterator[LogPage]:
        self.calls += 1
        raise SourceUnavailable("rate limited", source_id=self.source_id)
        yield  # pragma: no cover


class FlakySource(StaticEventSource):
    """
    Serves pages normally but fails the first `failures` page requests
    that start at or after `fail_from_block`.
    """

    source_id = "flaky"

    def __init__(self, commitments, failures: int, fail_from_block: int = 0, **kwargs):
        super().__init__(commitments, **kwargs)
        self.failures = failures
        self.fail_from_block = fail_from_block
        self.requests: list[tuple[int, int]] = []

    def _pages(self, payloads, from_block, to_block) -> Iterator[LogPage]:
        for page in super()._pages(payloads, from_block, to_block):
            self.requests.append((page.from_block, page.to_block))
            if self.failures and page.from_block >= self.fail_from_block:
                self.failures -= 1
                raise SourceUnavailable("HTTP 429", source_id=self.source_id)
            yield page


class CountingRootReader:
    """Returns scripted roots in order, repeating the last one."""

    def __init__(self, *roots: int):
        self.roots = list(roots)
        self.calls: list[Optional[int]] = []

    def read_root(self, block_number: Optional[int] = None) -> int:
        self.calls.append(block_number)
        index = min(len(self.calls) - 1, len(self.roots) - 1)
        return self.roots[index]


class GrowingSource(StaticEventSource):
    """First full scan misses the last commitment; later scans see all of it."""

    source_id = "growing"

    def __init__(self, commitments, **kwargs):
        super().__init__(commitments, **kwargs)
        self.scans = 0
        self._full = list(self._commitments)

    def iter_commitment_pages(self, from_block: int, to_block: int) -> Iterator[LogPage]:
        self.scans += 1
        self._commitments = self._full[:-1] if self.scans == 1 else self._full
        return super().iter_commitment_pages(from_block, to_block)
