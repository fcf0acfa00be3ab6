"""lendcore

A ledger indexer for a collateralized lending protocol
"""

from lendcore.core.block_processor import BlockRangeProcessor
from lendcore.core.chain_client import ChainClient
from lendcore.core.config import IndexerConfig, MarketConfig, MarketSet
from lendcore.core.events import EventDecoder
from lendcore.core.handlers import EventHandlers
from lendcore.core.indexer import IndexerService
from lendcore.core.jobs import PeriodicJob, SnapshotJobs
from lendcore.core.reorg import detect_reorg
from lendcore.core.severity import Severity
from lendcore.core.snapshot import SnapshotComputer
from lendcore.core.store import SQLIndexStore
from lendcore.core.types import Committed, RangeResult, Reorg, Skipped
from lendcore.core.web3_chain_client import Web3HTTPChainClient
from lendcore.utils.log import get_default_logger

__all__ = [
    "BlockRangeProcessor",
    "ChainClient",
    "IndexerConfig",
    "MarketConfig",
    "MarketSet",
    "EventDecoder",
    "EventHandlers",
    "IndexerService",
    "PeriodicJob",
    "SnapshotJobs",
    "detect_reorg",
    "Severity",
    "SnapshotComputer",
    "SQLIndexStore",
    "Committed",
    "RangeResult",
    "Reorg",
    "Skipped",
    "Web3HTTPChainClient",
    "get_default_logger",
]
