"""
Event Source Unit Tests
Tests for pool/sources/

Tests:
- Indexer pagination, params and failure translation
- JSON-RPC log decoding, chunking and error handling
- Root reads via eth_call
- build_sources wiring
"""
import json
from datetime import timedelta

import pytest
import requests

from core.config import DEFAULT_NULLIFIER_TOPIC, ChainConfig, IndexerConfig, RuntimeConfig
from core.crypto import field_to_hex
from core.http import HttpClient, HttpError, HttpResponse
from core.schemas import MalformedEvent, SourceUnavailable, parse_commitment_event
from pool import EventReconciler
from pool.sources import (
    EventSourceProtocol,
    IndexerSource,
    LogPage,
    RootReader,
    RpcLogSource,
    build_sources,
    decode_commitment_log,
    decode_nullifier_log,
)

from fixtures.common import expected_root, make_commitment_payloads, make_config


COMMITMENT_TOPIC = "0x" + "c0" * 32
NULLIFIER_TOPIC = "0x" + "4e" * 32
ROOT_CALL = "0xebf0c717"
TX = "0x" + "ab" * 32


def json_response(body, status: int = 200) -> HttpResponse:
    return HttpResponse(status_code=status, content=json.dumps(body).encode())


def rpc_result(result) -> HttpResponse:
    return json_response({"jsonrpc": "2.0", "id": 1, "result": result})


class StubHttp:
    """Replays queued responses and records requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def _next(self):
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, *, params=None, **kwargs):
        self.requests.append(("GET", url, params))
        return self._next()

    def post(self, url, *, json=None, **kwargs):
        self.requests.append(("POST", url, json))
        return self._next()


def word(value: int) -> str:
    return f"{value:064x}"


def commitment_log(commitment: int, index: int, block: int, note: bytes = b"", removed: bool = False):
    padded = note.hex().ljust(((len(note) + 31) // 32) * 64, "0")
    return {
        "address": "0xpool",
        "topics": [COMMITMENT_TOPIC, field_to_hex(commitment)],
        "data": "0x" + word(index) + word(64) + word(len(note)) + padded,
        "blockNumber": hex(block),
        "logIndex": "0x0",
        "transactionHash": "0x" + f"{block:064x}",
        "removed": removed,
    }


def chain_config(**overrides) -> ChainConfig:
    data = {
        "rpc_url": "http://node.local",
        "pool_address": "0xpool",
        "commitment_topic": COMMITMENT_TOPIC,
        "nullifier_topic": NULLIFIER_TOPIC,
        "root_call_data": ROOT_CALL,
    }
    data.update(overrides)
    return ChainConfig(**data)


def make_rpc(*responses, chunk_size: int = 10, **chain):
    http = StubHttp(*responses)
    return RpcLogSource(chain_config(**chain), chunk_size=chunk_size, http=http), http


# =============================================================================
# Indexer
# =============================================================================

class TestIndexerSource:
    """Paged HTTP indexer adapter."""

    def make_source(self, *responses):
        http = StubHttp(*responses)
        config = IndexerConfig(url="https://indexer.local/api/", page_size=2)
        return IndexerSource(config, pool_address="0xpool", http=http), http

    def test_satisfies_protocol(self):
        source, _ = self.make_source()
        assert isinstance(source, EventSourceProtocol)

    def test_requires_url(self):
        with pytest.raises(ValueError):
            IndexerSource(IndexerConfig())

    def test_pagination(self):
        first, second, third = make_commitment_payloads([11, 22, 33])
        source, http = self.make_source(
            json_response({"notes": [first, second], "hasMore": True, "nextBlock": 3}),
            json_response({"notes": [third], "hasMore": False}),
        )

        pages = list(source.iter_commitment_pages(0, 5))

        assert [(p.from_block, p.to_block, len(p)) for p in pages] == [(0, 2, 2), (3, 5, 1)]
        assert [r[2]["fromBlock"] for r in http.requests] == [0, 3]
        assert http.requests[0] == (
            "GET",
            "https://indexer.local/api",
            {"event": "commitments", "fromBlock": 0, "toBlock": 5, "limit": 2, "address": "0xpool"},
        )

    def test_next_block_clamped(self):
        source, _ = self.make_source(json_response({"notes": [], "hasMore": True, "nextBlock": 50}))
        pages = list(source.iter_commitment_pages(0, 9))
        assert [(p.from_block, p.to_block) for p in pages] == [(0, 9)]

    def test_nullifier_key(self):
        payload = {"nullifier": "0x2a", "blockNumber": 4, "logIndex": 0, "transactionHash": TX}
        source, http = self.make_source(json_response({"nullifiers": [payload], "hasMore": False}))
        pages = list(source.iter_nullifier_pages(0, 10))
        assert pages[0].payloads == [payload]
        assert http.requests[0][2]["event"] == "nullifiers"

    def test_latest_block(self):
        source, http = self.make_source(json_response({"latestBlock": 42}))
        assert source.latest_block() == 42
        assert http.requests[0][2]["event"] == "status"

    def test_latest_block_missing(self):
        source, _ = self.make_source(json_response({}))
        with pytest.raises(SourceUnavailable, match="latestBlock"):
            source.latest_block()

    def test_rate_limited(self):
        source, _ = self.make_source(json_response({"error": "slow down"}, status=429))
        with pytest.raises(SourceUnavailable) as exc_info:
            list(source.iter_commitment_pages(0, 5))
        details = exc_info.value.details
        assert details["status_code"] == 429
        assert details["retryable_status"] is True
        assert details["source_id"] == "indexer"
        assert exc_info.value.retryable is True

    def test_transport_error(self):
        source, _ = self.make_source(HttpError("connection reset"))
        with pytest.raises(SourceUnavailable, match="connection reset"):
            list(source.iter_commitment_pages(0, 5))

    def test_invalid_json(self):
        source, _ = self.make_source(HttpResponse(status_code=200, content=b"<html>"))
        with pytest.raises(SourceUnavailable, match="invalid JSON"):
            list(source.iter_commitment_pages(0, 5))

    def test_missing_list(self):
        source, _ = self.make_source(json_response({"hasMore": False}))
        with pytest.raises(SourceUnavailable, match="'notes'"):
            list(source.iter_commitment_pages(0, 5))

    def test_stalled_pagination(self):
        source, _ = self.make_source(json_response({"notes": [], "hasMore": True, "nextBlock": 0}))
        with pytest.raises(SourceUnavailable, match="stalled"):
            list(source.iter_commitment_pages(0, 5))


# =============================================================================
# JSON-RPC
# =============================================================================

class TestLogDecoding:
    """ABI decoding of raw logs."""

    def test_commitment_log(self):
        payload = decode_commitment_log(commitment_log(77, 5, 10, note=b"\xde\xad\xbe\xef"))
        assert payload["commitment"] == field_to_hex(77)
        assert payload["index"] == 5
        assert payload["encryptedNote"] == "0xdeadbeef"

        event = parse_commitment_event(payload)
        assert (event.commitment, event.index, event.block_number) == (77, 5, 10)

    def test_long_encrypted_note(self):
        note = bytes(range(40))
        payload = decode_commitment_log(commitment_log(77, 5, 10, note=note))
        assert payload["encryptedNote"] == "0x" + note.hex()

    def test_index_only_data(self):
        log = commitment_log(77, 5, 10)
        log["data"] = "0x" + word(5)
        payload = decode_commitment_log(log)
        assert payload["index"] == 5
        assert "encryptedNote" not in payload

    def test_missing_topic(self):
        log = commitment_log(77, 5, 10)
        log["topics"] = [COMMITMENT_TOPIC]
        with pytest.raises(ValueError, match="indexed commitment"):
            decode_commitment_log(log)

    def test_short_data(self):
        log = commitment_log(77, 5, 10)
        log["data"] = "0x1234"
        with pytest.raises(ValueError, match="too short"):
            decode_commitment_log(log)

    def test_nullifier_log(self):
        log = {
            "topics": [NULLIFIER_TOPIC, field_to_hex(42)],
            "data": "0x",
            "blockNumber": "0x4",
            "logIndex": "0x1",
            "transactionHash": TX,
        }
        assert decode_nullifier_log(log)["nullifier"] == field_to_hex(42)


class TestRpcLogSource:
    """Chunked eth_getLogs scanning."""

    def make_source(self, *responses, chunk_size=10, **chain):
        return make_rpc(*responses, chunk_size=chunk_size, **chain)

    def test_satisfies_protocols(self):
        source, _ = self.make_source()
        assert isinstance(source, EventSourceProtocol)
        assert isinstance(source, RootReader)

    def test_requires_pool_address(self):
        with pytest.raises(ValueError, match="pool_address"):
            RpcLogSource(chain_config(pool_address=None))

    def test_chunking(self):
        source, http = self.make_source(
            rpc_result([commitment_log(11, 0, 3)]),
            rpc_result([]),
            rpc_result([commitment_log(22, 1, 24)]),
        )

        pages = list(source.iter_commitment_pages(0, 25))

        assert [(p.from_block, p.to_block) for p in pages] == [(0, 9), (10, 19), (20, 25)]
        ranges = [(r[2]["params"][0]["fromBlock"], r[2]["params"][0]["toBlock"]) for r in http.requests]
        assert ranges == [("0x0", "0x9"), ("0xa", "0x13"), ("0x14", "0x19")]
        assert http.requests[0][2]["params"][0]["topics"] == [COMMITMENT_TOPIC]
        assert http.requests[0][2]["params"][0]["address"] == "0xpool"
        assert [len(p) for p in pages] == [1, 0, 1]

    def test_request_ids_increment(self):
        source, http = self.make_source(rpc_result("0x1"), rpc_result("0x2"))
        source.latest_block()
        source.latest_block()
        assert [r[2]["id"] for r in http.requests] == [1, 2]

    def test_removed_logs_skipped(self):
        source, _ = self.make_source(
            rpc_result([commitment_log(11, 0, 3, removed=True), commitment_log(12, 0, 4)]),
        )
        page = next(iter(source.iter_commitment_pages(0, 9)))
        assert [p["commitment"] for p in page.payloads] == [field_to_hex(12)]

    def test_undecodable_log(self):
        bad = commitment_log(11, 0, 3)
        bad["topics"] = []
        source, _ = self.make_source(rpc_result([bad]))
        with pytest.raises(MalformedEvent):
            list(source.iter_commitment_pages(0, 9))

    def test_rpc_error(self):
        source, _ = self.make_source(
            json_response({"jsonrpc": "2.0", "id": 1, "error": {"code": -32005, "message": "query limit"}}),
        )
        with pytest.raises(SourceUnavailable, match="query limit") as exc_info:
            list(source.iter_commitment_pages(0, 9))
        assert exc_info.value.details["rpc_error"]["code"] == -32005

    def test_missing_result(self):
        source, _ = self.make_source(json_response({"jsonrpc": "2.0", "id": 1}))
        with pytest.raises(SourceUnavailable, match="no result"):
            source.latest_block()

    def test_http_error_status(self):
        source, _ = self.make_source(json_response({}, status=503))
        with pytest.raises(SourceUnavailable, match="HTTP 503"):
            source.latest_block()

    def test_latest_block(self):
        source, http = self.make_source(rpc_result("0x1a"))
        assert source.latest_block() == 26
        assert http.requests[0][2]["method"] == "eth_blockNumber"

    def test_read_root_at_block(self):
        source, http = self.make_source(rpc_result("0x" + word(12345)))
        assert source.read_root(26) == 12345
        call, tag = http.requests[0][2]["params"]
        assert call == {"to": "0xpool", "data": ROOT_CALL}
        assert tag == "0x1a"

    def test_read_root_latest(self):
        source, http = self.make_source(rpc_result("0x" + word(1)))
        source.read_root()
        assert http.requests[0][2]["params"][1] == "latest"

    def test_read_root_unconfigured(self):
        source, _ = self.make_source(root_call_data=None)
        with pytest.raises(ValueError, match="root_call_data"):
            source.read_root()

    def test_nullifier_scan_without_topic(self):
        source, http = self.make_source(nullifier_topic=None)
        with pytest.raises(ValueError, match="nullifier_topic"):
            source.iter_nullifier_pages(0, 100)
        assert http.requests == []

    def test_default_chain_topics_scan_nullifiers(self):
        http = StubHttp(rpc_result([]))
        source = RpcLogSource(ChainConfig(rpc_url="http://node.local", pool_address="0xpool"), http=http)
        assert list(source.iter_nullifier_pages(0, 5)) == [LogPage(payloads=[], from_block=0, to_block=5)]
        assert http.requests[0][2]["params"][0]["topics"] == [DEFAULT_NULLIFIER_TOPIC]


class TestIndexerWithRpcFallback:
    """Reconciling through a rate-limited indexer and an RPC fallback."""

    def test_fallback_and_root_read(self):
        indexer = IndexerSource(
            IndexerConfig(url="https://indexer.local"),
            http=StubHttp(*[json_response({}, status=429)] * 6),
        )
        root = expected_root([11, 22])
        rpc, _ = make_rpc(
            rpc_result([commitment_log(11, 0, 2), commitment_log(22, 1, 5)]),
            rpc_result("0x" + word(root)),
            rpc_result([]),
            chunk_size=100,
        )
        reconciler = EventReconciler(
            indexer, fallback=rpc, root_reader=rpc, config=make_config(), sleep=lambda _: None,
        )

        result = reconciler.reconcile(to_block=9)

        assert result.verified
        assert result.root == root
        assert result.sources_used == ("indexer", "rpc")
        assert result.nullifiers == ()


class TestBuildSources:
    """Source wiring from configuration."""

    def test_indexer_primary(self):
        config = RuntimeConfig.from_dict({
            "chain": {"rpc_url": "http://node.local", "pool_address": "0xpool"},
            "indexer": {"url": "https://indexer.local"},
        })
        primary, fallback, reader = build_sources(config)
        assert isinstance(primary, IndexerSource)
        assert isinstance(fallback, RpcLogSource)
        assert reader is fallback

    def test_rpc_only(self):
        config = RuntimeConfig.from_dict({
            "chain": {"rpc_url": "http://node.local", "pool_address": "0xpool"},
        })
        primary, fallback, reader = build_sources(config)
        assert isinstance(primary, RpcLogSource)
        assert fallback is None
        assert reader is primary

    def test_indexer_only(self):
        config = RuntimeConfig.from_dict({"indexer": {"url": "https://indexer.local"}})
        primary, fallback, reader = build_sources(config)
        assert isinstance(primary, IndexerSource)
        assert fallback is None and reader is None

    def test_nothing_configured(self):
        with pytest.raises(ValueError, match="No event source"):
            build_sources(RuntimeConfig())


class FakeSession:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def request(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class FakeRequestsResponse:
    status_code = 429
    content = b'{"error": "slow down"}'
    headers = {"Retry-After": "1"}
    url = "https://indexer.local/api?event=status"
    elapsed = timedelta(milliseconds=12)


class TestHttpClient:
    """requests wrapper."""

    def test_wraps_response(self):
        client = HttpClient(timeout=5.0)
        session = FakeSession(FakeRequestsResponse())
        client._session = session

        response = client.get("https://indexer.local/api", params={"event": "status"})

        assert response.status_code == 429
        assert response.retryable is True
        assert response.ok is False
        assert response.json() == {"error": "slow down"}
        assert response.elapsed_ms == pytest.approx(12.0)
        assert session.calls[0]["method"] == "GET"
        assert session.calls[0]["timeout"] == 5.0

    def test_transport_failure(self):
        client = HttpClient()
        client._session = FakeSession(requests.ConnectionError("refused"))
        with pytest.raises(HttpError, match="refused"):
            client.post("http://node.local", json={})

    def test_default_headers(self):
        client = HttpClient(default_headers={"Authorization": "Bearer t"})
        assert client.default_headers["Accept"] == "application/json"
        assert client.default_headers["Authorization"] == "Bearer t"
