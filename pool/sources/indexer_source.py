"""
Indexer Event Source

Primary source: a paged HTTP indexer that serves decoded pool logs.

Route contract (one call per page):

    GET {url}?event=commitments&fromBlock=A&toBlock=B&limit=N
    -> {"notes": [...], "nextBlock": n, "hasMore": true|false}

    GET {url}?event=nullifiers&...
    -> {"nullifiers": [...], "nextBlock": n, "hasMore": true|false}

When `hasMore` is true the page covers [fromBlock, nextBlock - 1] and the
next call starts at `nextBlock`.
"""

import logging
from typing import Any, Iterator, Optional

from core.config import IndexerConfig
from core.http import HttpClient, HttpError

from .base_source import BaseEventSource, LogPage


logger = logging.getLogger(__name__)


class IndexerSource(BaseEventSource):
    """Fast, rate-limited indexer API."""

    source_id: str = "indexer"

    def __init__(
        self,
        config: IndexerConfig,
        pool_address: Optional[str] = None,
        http: Optional[HttpClient] = None,
    ):
        if not config.url:
            raise ValueError("IndexerSource requires indexer.url")
        super().__init__({"url": config.url})
        self.url = config.url.rstrip("/")
        self.page_size = config.page_size
        self.pool_address = pool_address
        self.http = http or HttpClient(timeout=config.timeout)

    def latest_block(self) -> int:
        body = self._get({"event": "status"}, "indexer status")
        try:
            return int(body["latestBlock"])
        except (KeyError, TypeError, ValueError) as e:
            raise self._unavailable(f"indexer status missing latestBlock: {e}") from e

    def iter_commitment_pages(self, from_block: int, to_block: int) -> Iterator[LogPage]:
        return self._iter_pages("commitments", "notes", from_block, to_block)

    def iter_nullifier_pages(self, from_block: int, to_block: int) -> Iterator[LogPage]:
        return self._iter_pages("nullifiers", "nullifiers", from_block, to_block)

    def _iter_pages(
        self,
        event: str,
        key: str,
        from_block: int,
        to_block: int,
    ) -> Iterator[LogPage]:
        cursor = from_block
        while cursor <= to_block:
            body = self._get(
                {
                    "event": event,
                    "fromBlock": cursor,
                    "toBlock": to_block,
                    "limit": self.page_size,
                },
                f"indexer {event} page",
            )
            payloads = body.get(key) if isinstance(body, dict) else None
            if not isinstance(payloads, list):
                raise self._unavailable(f"indexer {event} page has no '{key}' list")

            if body.get("hasMore"):
                next_block = int(body.get("nextBlock", cursor))
                if next_block <= cursor:
                    raise self._unavailable(
                        f"indexer pagination stalled at block {cursor}",
                        details={"next_block": next_block},
                    )
                page_end = min(next_block - 1, to_block)
            else:
                page_end = to_block

            logger.debug(f"indexer {event} [{cursor}, {page_end}]: {len(payloads)} logs")
            yield LogPage(from_block=cursor, to_block=page_end, payloads=payloads)
            cursor = page_end + 1

    def _get(self, params: dict[str, Any], what: str) -> Any:
        if self.pool_address:
            params = {**params, "address": self.pool_address}
        try:
            response = self.http.get(self.url, params=params)
        except HttpError as e:
            raise self._transport_error(what, e) from e
        return self._check_response(response, what)
