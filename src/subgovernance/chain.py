"""Block and time source for the governance engine.

The engine never reads a wall clock directly. Every outermost public call
asks the chain for the block it runs in, which gives a total order over
operations and a deterministic snapshot point for membership queries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class BlockInfo:
    """A block number with its timestamp (unix seconds)."""
    number: int
    timestamp: int


class Chain(Protocol):
    """What the service needs from the surrounding ledger."""

    @property
    def latest(self) -> BlockInfo: ...

    def begin_transaction(self) -> BlockInfo: ...


class ManualChain:
    """Deterministic in-process chain.

    With automine enabled (the default) each transaction lands in its own
    new block, one second after the previous one. Disable automine to put
    several transactions into the same block, then call ``mine()``.
    """

    def __init__(
        self,
        block_number: int = 0,
        timestamp: int = 1_700_000_000,
        automine: bool = True,
    ) -> None:
        self._number = block_number
        self._timestamp = timestamp
        self.automine = automine

    @property
    def latest(self) -> BlockInfo:
        return BlockInfo(self._number, self._timestamp)

    def begin_transaction(self) -> BlockInfo:
        if self.automine:
            self.mine()
        return self.latest

    def mine(self, blocks: int = 1, seconds: int = 1) -> BlockInfo:
        """Mine ``blocks`` blocks, advancing time ``seconds`` per block."""
        if blocks < 1:
            raise ValueError("blocks must be >= 1")
        self._number += blocks
        self._timestamp += seconds * blocks
        return self.latest

    def advance_time(self, seconds: int) -> None:
        """Move the clock forward without mining (like evm_increaseTime)."""
        if seconds < 0:
            raise ValueError("Time cannot move backwards")
        self._timestamp += seconds

    def to_record(self) -> dict[str, int]:
        return {"block_number": self._number, "timestamp": self._timestamp}
