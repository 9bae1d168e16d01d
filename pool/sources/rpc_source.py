"""
JSON-RPC Log Source

Fallback source: raw `eth_getLogs` over fixed block chunks against any
Ethereum JSON-RPC endpoint. Slower than the indexer but available wherever
a node is. Also serves `eth_blockNumber` and the contract root read.

Event layouts decoded here:

    NoteCommitted(bytes32 indexed commitment, uint256 index, bytes encryptedNote)
        topics[1] = commitment
        data      = index . offset . len . encryptedNote

    NullifierSpent(bytes32 indexed nullifier)
        topics[1] = nullifier
"""

import itertools
import logging
from typing import Any, Iterator, Optional

from core.config import ChainConfig
from core.http import HttpClient, HttpError
from core.schemas import MalformedEvent

from .base_source import BaseEventSource, LogPage


logger = logging.getLogger(__name__)

WORD_HEX = 64


def _word(data: str, position: int) -> int:
    chunk = data[position * WORD_HEX:(position + 1) * WORD_HEX]
    if len(chunk) != WORD_HEX:
        raise ValueError(f"log data too short for word {position}")
    return int(chunk, 16)


def decode_commitment_log(log: dict[str, Any]) -> dict[str, Any]:
    """
    Flatten a raw NoteCommitted log into the ingestion payload shape.

    The result still goes through `parse_commitment_event`; this only
    pulls fields out of topics and ABI-encoded data.
    """
    topics = log.get("topics") or []
    if len(topics) < 2:
        raise ValueError("NoteCommitted log without indexed commitment")
    data = (log.get("data") or "0x")[2:]

    payload: dict[str, Any] = {
        "commitment": topics[1],
        "index": _word(data, 0),
        "blockNumber": log.get("blockNumber"),
        "logIndex": log.get("logIndex"),
        "transactionHash": log.get("transactionHash"),
    }

    # Dynamic `bytes` tail: offset word, then length word at that offset
    if len(data) >= 2 * WORD_HEX:
        offset_words = _word(data, 1) // 32
        length = _word(data, offset_words)
        start = (offset_words + 1) * WORD_HEX
        payload["encryptedNote"] = "0x" + data[start:start + 2 * length]
    return payload


def decode_nullifier_log(log: dict[str, Any]) -> dict[str, Any]:
    """Flatten a raw NullifierSpent log into the ingestion payload shape."""
    topics = log.get("topics") or []
    if len(topics) < 2:
        raise ValueError("NullifierSpent log without indexed nullifier")
    return {
        "nullifier": topics[1],
        "blockNumber": log.get("blockNumber"),
        "logIndex": log.get("logIndex"),
        "transactionHash": log.get("transactionHash"),
    }


class RpcLogSource(BaseEventSource):
    """
    Chunked `eth_getLogs` scanner and contract root reader.

    A failing chunk raises SourceUnavailable; the page boundaries let the
    reconciler resume from the first unfetched block.
    """

    source_id: str = "rpc"

    def __init__(
        self,
        config: ChainConfig,
        chunk_size: int = 100,
        http: Optional[HttpClient] = None,
        timeout: float = 30.0,
    ):
        if not config.rpc_url:
            raise ValueError("RpcLogSource requires chain.rpc_url")
        if not config.pool_address:
            raise ValueError("RpcLogSource requires chain.pool_address")
        super().__init__({"rpc_url": config.rpc_url})
        self.chain = config
        self.chunk_size = max(1, chunk_size)
        self.http = http or HttpClient(timeout=timeout)
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # JSON-RPC
    # ------------------------------------------------------------------

    def call(self, method: str, params: list[Any]) -> Any:
        """
        Issue one JSON-RPC request and return its `result`.

        Raises:
            SourceUnavailable: On transport failure, HTTP error or RPC error
        """
        request = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            response = self.http.post(self.chain.rpc_url, json=request)
        except HttpError as e:
            raise self._transport_error(method, e) from e
        body = self._check_response(response, method)

        if not isinstance(body, dict):
            raise self._unavailable(f"{method} returned a non-object response")
        if body.get("error"):
            error = body["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise self._unavailable(
                f"{method} RPC error: {message}",
                details={"rpc_error": error},
            )
        if "result" not in body:
            raise self._unavailable(f"{method} response has no result")
        return body["result"]

    def latest_block(self) -> int:
        return int(self.call("eth_blockNumber", []), 16)

    def read_root(self, block_number: Optional[int] = None) -> int:
        """Read the pool's current Merkle root via `eth_call`."""
        if not self.chain.root_call_data:
            raise ValueError("chain.root_call_data is not configured")
        block_tag = "latest" if block_number is None else hex(block_number)
        result = self.call(
            "eth_call",
            [{"to": self.chain.pool_address, "data": self.chain.root_call_data}, block_tag],
        )
        return int(result, 16)

    # ------------------------------------------------------------------
    # Log scanning
    # ------------------------------------------------------------------

    def iter_commitment_pages(self, from_block: int, to_block: int) -> Iterator[LogPage]:
        return self._iter_chunks(
            self.chain.commitment_topic, decode_commitment_log, from_block, to_block,
        )

    def iter_nullifier_pages(self, from_block: int, to_block: int) -> Iterator[LogPage]:
        if not self.chain.nullifier_topic:
            raise ValueError("chain.nullifier_topic is not configured")
        return self._iter_chunks(
            self.chain.nullifier_topic, decode_nullifier_log, from_block, to_block,
        )

    def _iter_chunks(self, topic, decode, from_block: int, to_block: int) -> Iterator[LogPage]:
        start = from_block
        while start <= to_block:
            end = min(start + self.chunk_size - 1, to_block)
            logs = self.call(
                "eth_getLogs",
                [{
                    "address": self.chain.pool_address,
                    "topics": [topic],
                    "fromBlock": hex(start),
                    "toBlock": hex(end),
                }],
            )
            if not isinstance(logs, list):
                raise self._unavailable("eth_getLogs returned a non-list result")

            payloads = []
            for log in logs:
                if log.get("removed"):
                    continue
                try:
                    payloads.append(decode(log))
                except ValueError as e:
                    raise MalformedEvent(
                        f"Undecodable log in block range [{start}, {end}]: {e}",
                        payload=log,
                    ) from e

            logger.debug(f"eth_getLogs [{start}, {end}]: {len(payloads)} logs")
            yield LogPage(from_block=start, to_block=end, payloads=payloads)
            start = end + 1
