"""
Block range processor.

Walks a block range one height at a time:
fetch the header, check it against the recorded hash of its parent,
fetch the logs of every tracked market, dispatch them in log index order,
and commit the cursor and block hash.
All entry points (startup catch-up, tip subscription, operator resync)
funnel into process_block, and the processor is the only writer of the
cursor, the block hash ledger and liquidation events.
"""

import logging
import threading
from typing import Dict, Optional

from lendcore.core.chain_client import ChainClient
from lendcore.core.config import IndexerConfig, MarketSet
from lendcore.core.events import EventDecoder
from lendcore.core.handlers import EventHandlers
from lendcore.core.models import SyncCursor
from lendcore.core.reorg import detect_reorg
from lendcore.core.store import SQLIndexStore
from lendcore.core.types import BlockResult, Committed, RangeResult, Reorg, Skipped
from lendcore.utils.error_utils import OperatorError
from lendcore.utils.log import get_default_logger
from lendcore.utils.retries import with_retries

_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)

# Log range progress every this many blocks.
_PROGRESS_INTERVAL = 100

_CHAIN_LOCKS: Dict[int, threading.RLock] = {}
_CHAIN_LOCKS_GUARD = threading.Lock()


def chain_lock(chain_id: int) -> threading.RLock:
    """
    Return the process-wide lock that serializes cursor writers for a chain.
    """
    with _CHAIN_LOCKS_GUARD:
        if chain_id not in _CHAIN_LOCKS:
            _CHAIN_LOCKS[chain_id] = threading.RLock()
        return _CHAIN_LOCKS[chain_id]


class BlockRangeProcessor:
    """
    Deterministic, replayable block-by-block processor.
    """

    def __init__(
        self,
        config: IndexerConfig,
        chain: ChainClient,
        store: SQLIndexStore,
        handlers: EventHandlers,
        decoder: Optional[EventDecoder] = None,
    ):
        self.config = config
        self.chain = chain
        self.store = store
        self.handlers = handlers
        self.decoder = decoder if decoder is not None else EventDecoder()
        self.lock = chain_lock(config.chain_id)

    def current_cursor(self) -> Optional[SyncCursor]:
        return self.store.get_cursor(self.config.chain_id)

    def _process_block_once(self, height: int, markets: MarketSet) -> BlockResult:
        header = self.chain.block_header(height)

        target = detect_reorg(
            height,
            header.parent_hash,
            self.store.get_indexed_block_hash(height - 1),
            self.config.reorg_buffer,
            self.config.deployment_block,
        )
        if target is not None:
            _LOG.warning(
                "Reorg detected at block %s: stored parent %s, observed parent %s",
                height,
                self.store.get_indexed_block_hash(height - 1),
                header.parent_hash,
            )
            self.store.rollback_from(self.config.chain_id, target)
            return Reorg(height=height, target=target)

        raw_logs = self.chain.logs(markets.addresses, height, height)

        # Log index is the ledger's own order within a block.
        for raw_log in sorted(raw_logs, key=lambda log: log.log_index):
            market = markets.by_address(raw_log.address)
            if market is None:
                continue
            event = self.decoder.decode(raw_log)
            if event is None:
                _LOG.debug(
                    "Could not decode log %s:%s in block %s, skipping",
                    raw_log.tx_hash,
                    raw_log.log_index,
                    height,
                )
                continue
            self.handlers.handle(event, market, header)

        self.store.commit_block(
            self.config.chain_id, height, header.hash, self.config.reorg_buffer
        )
        return Committed(height=height, block_hash=header.hash)

    def process_block(self, height: int, markets: MarketSet) -> BlockResult:
        """
        Process a single block with one retry.
        A block that fails twice is skipped so that the range keeps moving;
        a later resync over the same range repairs it.

        :param height: The block height.
        :param markets: The markets to index.
        :return: Committed, Skipped or Reorg.
        """
        try:
            return with_retries(
                lambda: self._process_block_once(height, markets),
                _LOG,
                max_attempts=2,
                delay=self.config.retry_delay,
                exponential=False,
                description=f"Block {height}",
            )
        except Exception as e:  # pylint: disable=broad-except
            _LOG.error("Block %s failed after retry, skipping: %s", height, e)
            return Skipped(height=height, reason=str(e))

    def process_range(
        self, from_block: int, to_block: int, markets: MarketSet
    ) -> RangeResult:
        """
        Process a range of blocks.
        A reorg rewinds the walk to the rollback target,
        so more blocks than requested may be processed.

        :param from_block: The first height, inclusive.
        :param to_block: The last height, inclusive.
        :param markets: The markets to index.
        :return: The range summary.
        """
        if len(markets) == 0:
            raise OperatorError("No markets loaded; refusing to process blocks")

        result = RangeResult(from_block=from_block, to_block=to_block)
        if from_block > to_block:
            return result

        total = to_block - from_block + 1
        with self.lock:
            _LOG.info(
                "Processing blocks %s to %s (%s blocks)", from_block, to_block, total
            )
            current = from_block
            while current <= to_block:
                block_result = self.process_block(current, markets)

                if isinstance(block_result, Reorg):
                    _LOG.info(
                        "Restarting range from block %s after reorg rollback",
                        block_result.target,
                    )
                    result.reorgs.append(block_result)
                    current = block_result.target
                    continue

                if isinstance(block_result, Committed):
                    result.committed += 1
                    result.last_committed = current
                else:
                    result.skipped.append(block_result)

                if current % _PROGRESS_INTERVAL == 0:
                    pct = round((current - from_block + 1) / total * 100)
                    _LOG.info("Progress: block %s (%s%%)", current, pct)
                current += 1

        _LOG.info(
            "Blocks %s to %s complete: %s committed, %s skipped, %s reorgs",
            from_block,
            to_block,
            result.committed,
            len(result.skipped),
            len(result.reorgs),
        )
        return result

    def catch_up(self, to_block: int, markets: MarketSet) -> RangeResult:
        """
        Process everything after the cursor up to a height.
        The start height is read under the chain lock,
        so concurrent callers never process the same blocks twice.

        :param to_block: The last height, inclusive.
        :param markets: The markets to index.
        :return: The range summary.
        """
        with self.lock:
            cursor = self.current_cursor()
            from_block = (
                cursor.last_processed_block + 1
                if cursor is not None
                else self.config.deployment_block
            )
            from_block = max(from_block, self.config.deployment_block)
            return self.process_range(from_block, to_block, markets)
