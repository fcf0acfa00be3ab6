"""
Core types passed between the chain client, the block processor
and the domain handlers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Tuple, Union


@dataclass(frozen=True)
class BlockHeader:
    """
    The subset of a block header used by the indexer.
    """

    number: int
    hash: str
    parent_hash: str
    # Block timestamp in seconds, as reported by the ledger.
    timestamp: int = 0


@dataclass(frozen=True)
class RawLog:
    """
    An undecoded log as returned by a log fetch.
    """

    address: str
    topics: Tuple[str, ...]
    data: str
    tx_hash: str
    block_number: int
    log_index: int
    block_hash: str = ""
    tx_index: int = 0


@dataclass(frozen=True)
class DecodedEvent:
    """
    A log decoded against the market event ABI.
    """

    name: str
    args: dict
    address: str
    tx_hash: str
    block_number: int
    log_index: int


@dataclass(frozen=True)
class ContractCall:
    """
    A single read-only contract call in a batched read.

    Attributes:
        address: The contract address.
        contract: The ABI name of the contract, e.g. "Vault".
        function: The function name.
        args: The call arguments.
    """

    address: str
    contract: str
    function: str
    args: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class CallResult:
    """
    The result of one sub-call of a batched read.
    A failed sub-call has ok=False and value=None.
    """

    ok: bool
    value: Any = None


@dataclass(frozen=True)
class Committed:
    """The block was processed and the cursor advanced to it."""

    height: int
    block_hash: str


@dataclass(frozen=True)
class Skipped:
    """The block failed twice and was skipped; a resync over it repairs it."""

    height: int
    reason: str


@dataclass(frozen=True)
class Reorg:
    """A reorg was detected at height and state was rolled back to target."""

    height: int
    target: int


BlockResult = Union[Committed, Skipped, Reorg]


@dataclass
class RangeResult:
    """
    Summary of a processed block range.
    """

    from_block: int
    to_block: int
    committed: int = 0
    skipped: list[Skipped] = field(default_factory=list)
    reorgs: list[Reorg] = field(default_factory=list)
    last_committed: Optional[int] = None
