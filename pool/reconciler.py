"""
Event Reconciler

Pulls pool logs from the event sources, turns them into an ordered,
de-duplicated, indexed commitment list, rebuilds the tree and checks the
computed root against the contract.

Key features:
- Primary source retried with bounded exponential backoff
- Chunked fallback source on exhaustion; results merged by
  (transaction_hash, log_index)
- Index inference only for windows that start at the pool's genesis block
- Root mismatch triggers a bounded refetch, then fails closed
- Cancellable between pages; a cancelled pass leaves no state behind
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional, TypeVar

from core.config import RuntimeConfig, get_default_config
from core.merkle import CommitmentTree
from core.schemas import (
    CommitmentEvent,
    ErrorCodes,
    IntegrityError,
    NullifierEvent,
    ReconciliationCancelled,
    SourceUnavailable,
    canonical_order,
    parse_commitment_event,
    parse_nullifier_event,
)

from pool.sources import EventSourceProtocol, LogPage, RootReader


logger = logging.getLogger(__name__)

T = TypeVar("T")
PageFn = Callable[[int, int], Iterator[LogPage]]


def _log_value(event: Any) -> tuple[int, Optional[int], Optional[int]]:
    return (
        event.block_number,
        getattr(event, "commitment", None),
        getattr(event, "nullifier", None),
    )


# =============================================================================
# Cancellation
# =============================================================================

class CancelToken:
    """
    Cooperative cancellation flag for long event scans.

    The reconciler checks the token between pages and between retries.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ReconciliationCancelled()


# =============================================================================
# Reconciliation Result
# =============================================================================

@dataclass(frozen=True)
class ReconciliationResult:
    """
    Immutable snapshot of one reconciliation pass.

    The root and every proof generated from `tree` come from the same
    event view. Treat `tree` as read-only.
    """
    tree: CommitmentTree
    root: int
    onchain_root: Optional[int]
    to_block: int
    commitments: tuple[CommitmentEvent, ...] = ()
    nullifiers: tuple[NullifierEvent, ...] = ()
    verified: bool = False
    sources_used: tuple[str, ...] = field(default_factory=tuple)
    # Cutoff the caller asked for; differs from to_block when a root
    # mismatch moved the window to the chain head
    requested_to_block: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": hex(self.root),
            "onchain_root": hex(self.onchain_root) if self.onchain_root is not None else None,
            "to_block": self.to_block,
            "commitment_count": len(self.commitments),
            "nullifier_count": len(self.nullifiers),
            "verified": self.verified,
            "sources_used": list(self.sources_used),
            "requested_to_block": self.requested_to_block,
        }


# =============================================================================
# Reconciler
# =============================================================================

class EventReconciler:
    """
    Builds a verified commitment tree from pool events.

    Usage:
        reconciler = EventReconciler(primary, fallback=rpc, root_reader=rpc)
        result = reconciler.reconcile()
        store.apply_reconciliation(result)
    """

    def __init__(
        self,
        primary: EventSourceProtocol,
        fallback: Optional[EventSourceProtocol] = None,
        root_reader: Optional[RootReader] = None,
        *,
        config: Optional[RuntimeConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the reconciler.

        Args:
            primary: Preferred event source (fast, may be rate-limited)
            fallback: Slower chunked source used when primary is exhausted
            root_reader: Reads the on-chain root; required by reconcile()
            config: Runtime configuration (process default if omitted)
            sleep: Backoff sleep function (injectable for tests)
        """
        self.primary = primary
        self.fallback = fallback
        self.root_reader = root_reader
        self.config = config or get_default_config()
        self._sleep = sleep

    @property
    def genesis_block(self) -> int:
        return self.config.chain.genesis_block

    # ------------------------------------------------------------------
    # Retry plumbing
    # ------------------------------------------------------------------

    def _call_with_retry(
        self,
        label: str,
        fn: Callable[[], T],
        cancel: Optional[CancelToken] = None,
    ) -> T:
        """Run fn, retrying SourceUnavailable with exponential backoff."""
        fetch = self.config.fetch
        delay = fetch.retry_delay
        attempt = 0
        while True:
            if cancel:
                cancel.raise_if_cancelled()
            try:
                return fn()
            except SourceUnavailable as e:
                if attempt >= fetch.max_retries:
                    raise
                attempt += 1
                logger.warning(
                    f"{label} failed (attempt {attempt}/{fetch.max_retries + 1}): "
                    f"{e.message}; retrying in {delay:.1f}s"
                )
                self._sleep(delay)
                delay *= fetch.backoff_factor

    def _drain(
        self,
        source: EventSourceProtocol,
        pages: PageFn,
        from_block: int,
        to_block: int,
        sink: list[Any],
        cancel: Optional[CancelToken],
    ) -> int:
        """
        Pull every page of [from_block, to_block] into sink.

        A failed page is retried from its first block with backoff; pages
        already received are kept.

        Returns:
            to_block + 1 once the window is complete

        Raises:
            SourceUnavailable: When a page still fails after max_retries,
                with details["resume_block"] set to the first missing block
        """
        fetch = self.config.fetch
        cursor = from_block
        attempt = 0
        delay = fetch.retry_delay

        while cursor <= to_block:
            if cancel:
                cancel.raise_if_cancelled()
            try:
                for page in pages(cursor, to_block):
                    if cancel:
                        cancel.raise_if_cancelled()
                    sink.extend(page.payloads)
                    cursor = page.to_block + 1
                    attempt = 0
                    delay = fetch.retry_delay
                break
            except SourceUnavailable as e:
                if attempt >= fetch.max_retries:
                    e.details["resume_block"] = cursor
                    raise
                attempt += 1
                logger.warning(
                    f"{source.source_id} page at block {cursor} failed "
                    f"(attempt {attempt}/{fetch.max_retries + 1}): {e.message}; "
                    f"retrying in {delay:.1f}s"
                )
                self._sleep(delay)
                delay *= fetch.backoff_factor

        return to_block + 1

    def _collect(
        self,
        kind: str,
        from_block: int,
        to_block: int,
        cancel: Optional[CancelToken],
    ) -> tuple[list[Any], list[str]]:
        """
        Fetch raw payloads of one kind, falling back when primary gives up.

        Returns:
            (payloads, ids of the sources that contributed)
        """
        payloads: list[Any] = []
        used = [self.primary.source_id]
        attr = f"iter_{kind}_pages"

        try:
            self._drain(
                self.primary, getattr(self.primary, attr),
                from_block, to_block, payloads, cancel,
            )
            return payloads, used
        except SourceUnavailable as e:
            if self.fallback is None:
                raise
            resume = e.details.get("resume_block", from_block)
            logger.warning(
                f"{self.primary.source_id} exhausted for {kind} at block {resume}, "
                f"falling back to {self.fallback.source_id}"
            )

        used.append(self.fallback.source_id)
        self._drain(
            self.fallback, getattr(self.fallback, attr),
            resume, to_block, payloads, cancel,
        )
        return payloads, used

    # ------------------------------------------------------------------
    # Event normalization
    # ------------------------------------------------------------------

    @staticmethod
    def _dedupe(events: list[Any]) -> list[Any]:
        """
        Drop duplicate logs by (transaction_hash, log_index).

        A copy carrying an explicit leaf index wins over one without.

        Raises:
            IntegrityError: If two copies of the same log disagree
        """
        seen: dict[tuple[str, int], Any] = {}
        for event in events:
            existing = seen.get(event.dedup_key)
            if existing is None:
                seen[event.dedup_key] = event
                continue
            if _log_value(existing) != _log_value(event):
                raise IntegrityError(
                    f"Sources disagree on log {event.dedup_key[0]}#{event.dedup_key[1]}",
                    details={"first": existing.model_dump(mode="json"),
                             "second": event.model_dump(mode="json")},
                )
            first_index = getattr(existing, "index", None)
            second_index = getattr(event, "index", None)
            if first_index is None:
                seen[event.dedup_key] = event
            elif second_index is not None and second_index != first_index:
                raise IntegrityError(
                    f"Sources report indices {first_index} and {second_index} "
                    f"for log {event.dedup_key[0]}#{event.dedup_key[1]}",
                    code=ErrorCodes.INDEX_ORDER_VIOLATION,
                )
        return list(seen.values())

    def assign_indices(
        self,
        events: list[CommitmentEvent],
        from_block: int,
    ) -> list[CommitmentEvent]:
        """
        Give every commitment event a leaf index.

        Events without an explicit index take their position in canonical
        order. That position equals the contract counter only if the window
        covers every commitment since deployment, so inference is refused
        for windows starting after the genesis block.

        Raises:
            IntegrityError: INDEX_INFERENCE_UNSOUND or INDEX_ORDER_VIOLATION
        """
        ordered = canonical_order(events)
        from_genesis = from_block <= self.genesis_block
        indexed: list[CommitmentEvent] = []
        previous: Optional[int] = None

        for position, event in enumerate(ordered):
            if event.index is None:
                if not from_genesis:
                    raise IntegrityError(
                        f"Cannot infer leaf index for {event.commitment_hex}: "
                        f"window starts at block {from_block}, after genesis {self.genesis_block}",
                        code=ErrorCodes.INDEX_INFERENCE_UNSOUND,
                        details={"from_block": from_block, "genesis_block": self.genesis_block},
                    )
                event = event.model_copy(update={"index": position})

            if previous is not None and event.index <= previous:
                raise IntegrityError(
                    f"Leaf index {event.index} at block {event.block_number} "
                    f"does not follow index {previous}",
                    code=ErrorCodes.INDEX_ORDER_VIOLATION,
                    details={"index": event.index, "previous": previous},
                )
            previous = event.index
            indexed.append(event)

        return indexed

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def latest_block(self, cancel: Optional[CancelToken] = None) -> int:
        """Chain head as seen by primary, or fallback if primary is down."""
        try:
            return self._call_with_retry(
                f"{self.primary.source_id} latest_block", self.primary.latest_block, cancel,
            )
        except SourceUnavailable:
            if self.fallback is None:
                raise
            logger.warning(f"{self.primary.source_id} head unavailable, asking {self.fallback.source_id}")
            return self._call_with_retry(
                f"{self.fallback.source_id} latest_block", self.fallback.latest_block, cancel,
            )

    def fetch_commitment_events(
        self,
        from_block: int,
        to_block: int,
        cancel: Optional[CancelToken] = None,
    ) -> tuple[list[CommitmentEvent], list[str]]:
        """
        Fetch, parse, de-duplicate, order and index commitment events.

        Raises:
            MalformedEvent: If any payload fails the ingestion schema
            IntegrityError: On unsound inference or index order violations
            SourceUnavailable: If every source fails
            ReconciliationCancelled: If cancel fires mid-scan
        """
        payloads, used = self._collect("commitment", from_block, to_block, cancel)
        events = self._dedupe([parse_commitment_event(p) for p in payloads])
        indexed = self.assign_indices(events, from_block)
        logger.info(
            f"Fetched {len(indexed)} commitment events in [{from_block}, {to_block}] "
            f"({len(payloads) - len(events)} duplicates dropped) via {'+'.join(used)}"
        )
        return indexed, used

    def fetch_nullifier_events(
        self,
        from_block: int,
        to_block: int,
        cancel: Optional[CancelToken] = None,
    ) -> list[NullifierEvent]:
        """Fetch, parse, de-duplicate and order nullifier events."""
        payloads, _ = self._collect("nullifier", from_block, to_block, cancel)
        events = canonical_order(self._dedupe([parse_nullifier_event(p) for p in payloads]))
        logger.info(f"Fetched {len(events)} nullifier events in [{from_block}, {to_block}]")
        return events

    def read_onchain_root(self, block_number: int, cancel: Optional[CancelToken] = None) -> int:
        if self.root_reader is None:
            raise ValueError("EventReconciler has no root_reader; cannot verify the tree")
        return self._call_with_retry(
            "root read", lambda: self.root_reader.read_root(block_number), cancel,
        )

    def reconcile(
        self,
        to_block: Optional[int] = None,
        cancel: Optional[CancelToken] = None,
    ) -> ReconciliationResult:
        """
        Run one full reconciliation pass from the genesis block.

        Args:
            to_block: Last block to include (chain head if None)
            cancel: Optional cancellation token

        Returns:
            A verified ReconciliationResult

        Raises:
            IntegrityError: If the computed root still differs from the
                on-chain root after max_root_refetches refetches
            SourceUnavailable: If every source fails
            ReconciliationCancelled: If cancel fires
        """
        tree_config = self.config.tree
        requested = to_block
        refetches = 0

        while True:
            head = to_block if to_block is not None else self.latest_block(cancel)
            events, used = self.fetch_commitment_events(self.genesis_block, head, cancel)

            tree = CommitmentTree(depth=tree_config.depth, zero_value=tree_config.zero_value)
            computed = tree.build_from_events(events)
            onchain = self.read_onchain_root(head, cancel)
            logger.info(f"Block {head}: computed root {hex(computed)}, on-chain root {hex(onchain)}")

            if computed == onchain:
                break

            if refetches >= self.config.fetch.max_root_refetches:
                raise IntegrityError(
                    f"Computed root does not match on-chain root at block {head}",
                    code=ErrorCodes.ROOT_MISMATCH,
                    computed_root=computed,
                    onchain_root=onchain,
                    details={"block": head, "commitments": len(events), "refetches": refetches},
                )
            refetches += 1
            logger.warning(
                f"Root mismatch at block {head}; refetching up to chain head "
                f"({refetches}/{self.config.fetch.max_root_refetches})"
            )
            to_block = None

        if requested is not None and head != requested:
            logger.warning(
                f"Requested cutoff block {requested} was not honoured; "
                f"verified view ends at chain head {head}"
            )

        nullifiers = self.fetch_nullifier_events(self.genesis_block, head, cancel)
        return ReconciliationResult(
            tree=tree,
            root=computed,
            onchain_root=onchain,
            to_block=head,
            commitments=tuple(events),
            nullifiers=tuple(nullifiers),
            verified=True,
            sources_used=tuple(used),
            requested_to_block=requested,
        )
