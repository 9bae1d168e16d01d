"""
Event Reconciler Unit Tests
Tests for pool/reconciler.py

Tests:
- Verified happy path and bounded root refetch
- Retry with exponential backoff and page-level resume
- Fallback source on primary exhaustion
- De-duplication across sources
- Index inference soundness and index ordering
- Cancellation
"""
import pytest

from core.schemas import (
    ErrorCodes,
    IntegrityError,
    ReconciliationCancelled,
    SourceUnavailable,
    parse_commitment_event,
)
from pool import CancelToken, EventReconciler
from pool.sources import FixedRootReader, StaticEventSource

from fixtures.common import (
    CountingRootReader,
    FailingSource,
    FlakySource,
    GrowingSource,
    expected_root,
    make_commitment_payload,
    make_commitment_payloads,
    make_config,
    make_nullifier_payload,
)


COMMITMENTS = [11, 22, 33]


def make_reconciler(primary, reader=None, fallback=None, config=None, sleeps=None):
    return EventReconciler(
        primary,
        fallback=fallback,
        root_reader=reader if reader is not None else FixedRootReader(expected_root(COMMITMENTS)),
        config=config or make_config(),
        sleep=(sleeps.append if sleeps is not None else lambda _: None),
    )


class CancellingSource(StaticEventSource):
    """Cancels the token after serving its first page."""

    def __init__(self, token, commitments, **kwargs):
        super().__init__(commitments, **kwargs)
        self.token = token

    def _pages(self, payloads, from_block, to_block):
        for page in super()._pages(payloads, from_block, to_block):
            yield page
            self.token.cancel()


class FlakyRootReader:
    def __init__(self, root, failures):
        self.root = root
        self.failures = failures

    def read_root(self, block_number=None):
        if self.failures:
            self.failures -= 1
            raise SourceUnavailable("node busy", source_id="rpc")
        return self.root


class TestReconcile:
    """Full reconciliation passes."""

    def test_happy_path(self):
        source = StaticEventSource(make_commitment_payloads(COMMITMENTS))
        reader = CountingRootReader(expected_root(COMMITMENTS))
        result = make_reconciler(source, reader).reconcile()

        assert result.verified is True
        assert result.root == expected_root(COMMITMENTS)
        assert result.onchain_root == result.root
        assert result.to_block == 3
        assert [e.index for e in result.commitments] == [0, 1, 2]
        assert result.sources_used == ("static",)
        assert reader.calls == [3]

    def test_proofs_match_snapshot_root(self):
        source = StaticEventSource(make_commitment_payloads(COMMITMENTS))
        result = make_reconciler(source).reconcile()
        proof = result.tree.get_merkle_proof(1)
        assert proof.leaf == 22
        assert proof.root == result.root

    def test_explicit_to_block(self):
        source = StaticEventSource(make_commitment_payloads(COMMITMENTS))
        reader = CountingRootReader(expected_root(COMMITMENTS[:2]))
        result = make_reconciler(source, reader).reconcile(to_block=2)
        assert result.to_block == 2
        assert len(result.commitments) == 2
        assert reader.calls == [2]
        assert result.requested_to_block == 2

    def test_empty_pool(self):
        source = StaticEventSource(head_block=10)
        result = make_reconciler(source, FixedRootReader(expected_root([]))).reconcile()
        assert result.verified
        assert result.commitments == ()
        assert result.to_block == 10

    def test_nullifiers_collected(self):
        nullifiers = [
            make_nullifier_payload(501, 3),
            make_nullifier_payload(500, 2),
            make_nullifier_payload(500, 2),
        ]
        source = StaticEventSource(make_commitment_payloads(COMMITMENTS), nullifiers)
        result = make_reconciler(source).reconcile()
        assert [e.nullifier for e in result.nullifiers] == [500, 501]

    def test_to_dict(self):
        source = StaticEventSource(make_commitment_payloads(COMMITMENTS))
        summary = make_reconciler(source).reconcile().to_dict()
        assert summary["commitment_count"] == 3
        assert summary["verified"] is True
        assert summary["root"] == hex(expected_root(COMMITMENTS))
        assert summary["sources_used"] == ["static"]

    def test_missing_root_reader(self):
        source = StaticEventSource(make_commitment_payloads(COMMITMENTS))
        reconciler = EventReconciler(source, config=make_config())
        with pytest.raises(ValueError, match="root_reader"):
            reconciler.reconcile()

    def test_root_read_retried(self, sleeps):
        source = StaticEventSource(make_commitment_payloads(COMMITMENTS))
        reader = FlakyRootReader(expected_root(COMMITMENTS), failures=1)
        result = make_reconciler(source, reader, sleeps=sleeps).reconcile()
        assert result.verified
        assert sleeps == [0.5]


class TestRootVerification:
    """Root mismatch handling."""

    def test_refetch_recovers_lagging_view(self):
        source = GrowingSource(make_commitment_payloads(COMMITMENTS))
        reader = CountingRootReader(expected_root(COMMITMENTS))
        result = make_reconciler(source, reader).reconcile()

        assert source.scans == 2
        assert reader.calls == [3, 3]
        assert len(result.commitments) == 3
        assert result.verified

    def test_persistent_mismatch_fails_closed(self):
        source = StaticEventSource(make_commitment_payloads(COMMITMENTS))
        reader = CountingRootReader(12345)
        with pytest.raises(IntegrityError) as exc_info:
            make_reconciler(source, reader).reconcile()

        error = exc_info.value
        assert error.code == ErrorCodes.ROOT_MISMATCH
        assert error.details["computed_root"] == hex(expected_root(COMMITMENTS))
        assert error.details["onchain_root"] == hex(12345)
        assert error.details["refetches"] == 1
        assert len(reader.calls) == 2

    def test_refetches_disabled(self):
        source = GrowingSource(make_commitment_payloads(COMMITMENTS))
        reconciler = make_reconciler(source, config=make_config(max_root_refetches=0))
        with pytest.raises(IntegrityError) as exc_info:
            reconciler.reconcile()
        assert exc_info.value.code == ErrorCodes.ROOT_MISMATCH
        assert source.scans == 1

    def test_refetch_moves_to_chain_head(self, caplog):
        source = StaticEventSource(make_commitment_payloads(COMMITMENTS))
        reader = CountingRootReader(expected_root(COMMITMENTS[:2]) + 1, expected_root(COMMITMENTS))
        with caplog.at_level("WARNING"):
            result = make_reconciler(source, reader).reconcile(to_block=2)
        assert reader.calls == [2, 3]
        assert result.to_block == 3
        assert result.requested_to_block == 2
        assert result.to_dict()["requested_to_block"] == 2
        assert "Requested cutoff block 2 was not honoured" in caplog.text


class TestRetryAndFallback:
    """Backoff, page resume and source fallback."""

    def test_flaky_primary_retried(self, sleeps):
        source = FlakySource(make_commitment_payloads(COMMITMENTS), failures=1)
        events, used = make_reconciler(source, sleeps=sleeps).fetch_commitment_events(0, 3)
        assert len(events) == 3
        assert used == ["flaky"]
        assert sleeps == [0.5]

    def test_resume_from_failed_page(self, sleeps):
        source = FlakySource(
            make_commitment_payloads(COMMITMENTS), failures=1, fail_from_block=2, page_blocks=2,
        )
        events, _ = make_reconciler(source, sleeps=sleeps).fetch_commitment_events(0, 3)
        assert source.requests == [(0, 1), (2, 3), (2, 3)]
        assert [e.commitment for e in events] == COMMITMENTS

    def test_backoff_is_exponential(self, sleeps):
        source = FlakySource(make_commitment_payloads(COMMITMENTS), failures=2)
        make_reconciler(source, sleeps=sleeps).fetch_commitment_events(0, 3)
        assert sleeps == [0.5, 1.0]

    def test_exhausted_without_fallback(self, sleeps):
        source = FailingSource()
        with pytest.raises(SourceUnavailable) as exc_info:
            make_reconciler(source, sleeps=sleeps).fetch_commitment_events(0, 3)
        assert exc_info.value.details["resume_block"] == 0
        assert source.calls == 3
        assert sleeps == [0.5, 1.0]

    def test_fallback_on_exhaustion(self, sleeps):
        fallback = StaticEventSource(make_commitment_payloads(COMMITMENTS))
        reconciler = make_reconciler(FailingSource(), fallback=fallback, sleeps=sleeps)
        result = reconciler.reconcile(to_block=3)

        assert result.verified
        assert result.sources_used == ("down", "static")
        # Commitment scan and nullifier scan each back off twice
        assert sleeps == [0.5, 1.0, 0.5, 1.0]

    def test_fallback_resumes_where_primary_stopped(self):
        primary = FlakySource(
            make_commitment_payloads(COMMITMENTS), failures=3, fail_from_block=2, page_blocks=2,
        )
        fallback = FlakySource(make_commitment_payloads(COMMITMENTS), failures=0, page_blocks=2)
        fallback.source_id = "rpc"

        events, used = make_reconciler(primary, fallback=fallback).fetch_commitment_events(0, 3)

        assert used == ["flaky", "rpc"]
        assert fallback.requests == [(2, 3)]
        assert [e.index for e in events] == [0, 1, 2]

    def test_head_from_fallback(self):
        fallback = StaticEventSource(make_commitment_payloads(COMMITMENTS), head_block=7)
        reconciler = make_reconciler(FailingSource(), fallback=fallback)
        assert reconciler.latest_block() == 7


class TestDeduplication:
    """Merging overlapping or duplicated logs."""

    def test_duplicate_logs_dropped(self):
        payloads = make_commitment_payloads(COMMITMENTS)
        source = StaticEventSource(payloads + payloads[:2])
        events, _ = make_reconciler(source).fetch_commitment_events(0, 3)
        assert [e.commitment for e in events] == COMMITMENTS

    @pytest.mark.parametrize("indexed_first", [True, False])
    def test_indexed_copy_wins(self, indexed_first):
        indexed = make_commitment_payloads(COMMITMENTS)
        bare = make_commitment_payload(22, None, 2)
        payloads = indexed + [bare] if indexed_first else [bare] + indexed
        source = StaticEventSource(payloads)
        reconciler = make_reconciler(source, config=make_config(genesis_block=1))
        events, _ = reconciler.fetch_commitment_events(2, 3)
        assert [e.index for e in events] == [1, 2]

    def test_disagreeing_copies(self):
        payloads = make_commitment_payloads(COMMITMENTS) + [make_commitment_payload(99, 1, 2)]
        source = StaticEventSource(payloads)
        with pytest.raises(IntegrityError) as exc_info:
            make_reconciler(source).fetch_commitment_events(0, 3)
        assert exc_info.value.code == ErrorCodes.INTEGRITY_ERROR

    def test_disagreeing_indices(self):
        payloads = make_commitment_payloads(COMMITMENTS) + [make_commitment_payload(22, 5, 2)]
        source = StaticEventSource(payloads)
        with pytest.raises(IntegrityError) as exc_info:
            make_reconciler(source).fetch_commitment_events(0, 3)
        assert exc_info.value.code == ErrorCodes.INDEX_ORDER_VIOLATION


class TestIndexAssignment:
    """Index inference and ordering."""

    def test_inference_from_genesis(self):
        source = StaticEventSource(make_commitment_payloads(COMMITMENTS, with_index=False))
        result = make_reconciler(source).reconcile()
        assert [e.index for e in result.commitments] == [0, 1, 2]
        assert result.root == expected_root(COMMITMENTS)

    def test_inference_uses_canonical_order(self):
        payloads = [
            make_commitment_payload(33, None, 2, log_index=5),
            make_commitment_payload(11, None, 1),
            make_commitment_payload(22, None, 2, log_index=1),
        ]
        reconciler = make_reconciler(StaticEventSource(payloads))
        events, _ = reconciler.fetch_commitment_events(0, 2)
        assert [(e.commitment, e.index) for e in events] == [(11, 0), (22, 1), (33, 2)]

    def test_inference_after_genesis_refused(self):
        payloads = make_commitment_payloads([11], with_index=False, first_block=5)
        reconciler = make_reconciler(StaticEventSource(payloads))
        with pytest.raises(IntegrityError) as exc_info:
            reconciler.fetch_commitment_events(5, 10)
        assert exc_info.value.code == ErrorCodes.INDEX_INFERENCE_UNSOUND
        assert exc_info.value.details == {"from_block": 5, "genesis_block": 0}

    def test_inference_at_configured_genesis(self):
        payloads = make_commitment_payloads([11], with_index=False, first_block=5)
        reconciler = make_reconciler(StaticEventSource(payloads), config=make_config(genesis_block=5))
        events, _ = reconciler.fetch_commitment_events(5, 10)
        assert events[0].index == 0

    def test_explicit_indices_after_genesis(self):
        reconciler = make_reconciler(StaticEventSource(make_commitment_payloads(COMMITMENTS)))
        events, _ = reconciler.fetch_commitment_events(2, 3)
        assert [e.index for e in events] == [1, 2]

    def test_index_against_block_order(self):
        events = [
            parse_commitment_event(make_commitment_payload(11, 1, 1)),
            parse_commitment_event(make_commitment_payload(22, 0, 2)),
        ]
        with pytest.raises(IntegrityError) as exc_info:
            make_reconciler(StaticEventSource()).assign_indices(events, 0)
        assert exc_info.value.code == ErrorCodes.INDEX_ORDER_VIOLATION

    def test_repeated_index(self):
        events = [
            parse_commitment_event(make_commitment_payload(11, 0, 1)),
            parse_commitment_event(make_commitment_payload(22, 0, 2)),
        ]
        with pytest.raises(IntegrityError) as exc_info:
            make_reconciler(StaticEventSource()).assign_indices(events, 0)
        assert exc_info.value.code == ErrorCodes.INDEX_ORDER_VIOLATION


class TestCancellation:
    """Cooperative cancellation."""

    def test_cancelled_before_start(self):
        token = CancelToken()
        token.cancel()
        source = StaticEventSource(make_commitment_payloads(COMMITMENTS))
        with pytest.raises(ReconciliationCancelled):
            make_reconciler(source).reconcile(cancel=token)

    def test_cancelled_between_pages(self):
        token = CancelToken()
        source = CancellingSource(token, make_commitment_payloads(COMMITMENTS), page_blocks=1)
        with pytest.raises(ReconciliationCancelled) as exc_info:
            make_reconciler(source).reconcile(to_block=3, cancel=token)
        assert exc_info.value.code == ErrorCodes.RECONCILIATION_CANCELLED

    def test_token_state(self):
        token = CancelToken()
        assert token.cancelled is False
        token.raise_if_cancelled()
        token.cancel()
        assert token.cancelled is True
