"""
Base Event Source Interface

Defines the adapter protocol for pool log sources and the LogPage dataclass.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Optional, Protocol, runtime_checkable

from core.http import HttpError, HttpResponse
from core.schemas import SourceUnavailable


@dataclass
class LogPage:
    """
    One page of raw log payloads from a source.

    A page covers the closed block range [from_block, to_block]; every log
    in that range is in `payloads`. A caller can resume an interrupted scan
    from `to_block + 1`.
    """

    from_block: int
    to_block: int
    payloads: list[dict[str, Any]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.payloads)


@runtime_checkable
class EventSourceProtocol(Protocol):
    """Protocol defining the event source interface."""

    source_id: str

    def latest_block(self) -> int:
        """Return the newest block the source has indexed."""
        ...

    def iter_commitment_pages(self, from_block: int, to_block: int) -> Iterator[LogPage]:
        """Yield NoteCommitted payloads in ascending block order."""
        ...

    def iter_nullifier_pages(self, from_block: int, to_block: int) -> Iterator[LogPage]:
        """Yield NullifierSpent payloads in ascending block order."""
        ...


@runtime_checkable
class RootReader(Protocol):
    """Anything that can read the pool contract's Merkle root."""

    def read_root(self, block_number: Optional[int] = None) -> int:
        """Return the on-chain root at `block_number` (latest if None)."""
        ...


class BaseEventSource(ABC):
    """
    Abstract base class for event source adapters.

    Subclasses translate transport failures into SourceUnavailable so the
    reconciler can retry or fall back uniformly.
    """

    source_id: str = "base"

    def __init__(self, config: Optional[dict[str, Any]] = None):
        """
        Initialize the source adapter.

        Args:
            config: Optional configuration for the adapter
        """
        self.config = config or {}

    @abstractmethod
    def latest_block(self) -> int:
        pass

    @abstractmethod
    def iter_commitment_pages(self, from_block: int, to_block: int) -> Iterator[LogPage]:
        pass

    @abstractmethod
    def iter_nullifier_pages(self, from_block: int, to_block: int) -> Iterator[LogPage]:
        pass

    def _unavailable(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> SourceUnavailable:
        return SourceUnavailable(message, source_id=self.source_id, details=details)

    def _check_response(self, response: HttpResponse, what: str) -> Any:
        """
        Validate an HTTP response and decode its JSON body.

        Raises:
            SourceUnavailable: On non-2xx status or an undecodable body
        """
        if not response.ok:
            raise self._unavailable(
                f"{what} returned HTTP {response.status_code}",
                details={
                    "status_code": response.status_code,
                    "retryable_status": response.retryable,
                    "body": response.text[:200],
                },
            )
        try:
            return response.json()
        except ValueError as e:
            raise self._unavailable(f"{what} returned invalid JSON: {e}") from e

    def _transport_error(self, what: str, error: HttpError) -> SourceUnavailable:
        return self._unavailable(
            f"{what} failed: {error}",
            details={"status_code": error.status_code},
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(source_id={self.source_id})"


class StaticEventSource(BaseEventSource):
    """
    Serves a fixed, already-recorded set of payloads.

    Useful for replaying an exported event dump (see `shielded sync
    --events-file`) or for driving the reconciler without a network.
    """

    source_id: str = "static"

    def __init__(
        self,
        commitments: Iterable[dict[str, Any]] = (),
        nullifiers: Iterable[dict[str, Any]] = (),
        *,
        head_block: Optional[int] = None,
        page_blocks: int = 1000,
        config: Optional[dict[str, Any]] = None,
    ):
        super().__init__(config)
        self._commitments = list(commitments)
        self._nullifiers = list(nullifiers)
        self._page_blocks = max(1, page_blocks)
        if head_block is None:
            blocks = [_block_of(p) for p in self._commitments + self._nullifiers]
            head_block = max(blocks) if blocks else 0
        self._head_block = head_block

    def latest_block(self) -> int:
        return self._head_block

    def iter_commitment_pages(self, from_block: int, to_block: int) -> Iterator[LogPage]:
        return self._pages(self._commitments, from_block, to_block)

    def iter_nullifier_pages(self, from_block: int, to_block: int) -> Iterator[LogPage]:
        return self._pages(self._nullifiers, from_block, to_block)

    def _pages(
        self,
        payloads: list[dict[str, Any]],
        from_block: int,
        to_block: int,
    ) -> Iterator[LogPage]:
        start = from_block
        while start <= to_block:
            end = min(start + self._page_blocks - 1, to_block)
            yield LogPage(
                from_block=start,
                to_block=end,
                payloads=[p for p in payloads if start <= _block_of(p) <= end],
            )
            start = end + 1


class FixedRootReader:
    """RootReader returning a root recorded alongside a static event dump."""

    def __init__(self, root: int):
        self.root = root

    def read_root(self, block_number: Optional[int] = None) -> int:
        return self.root


def _block_of(payload: dict[str, Any]) -> int:
    value = payload.get("blockNumber", payload.get("block_number", 0))
    if isinstance(value, str):
        return int(value, 16) if value.lower().startswith("0x") else int(value)
    return int(value)
