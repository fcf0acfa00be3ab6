"""
Indexer orchestration and operator surface.

The indexer loads the active markets once per run, catches up from the
cursor to the safe tip, and then follows the tip with a pull-based watch
whose callback only triggers a range walk.
"""

import logging
import threading
from typing import Optional, Union

import pandas as pd

from lendcore.core.block_processor import BlockRangeProcessor
from lendcore.core.chain_client import ChainClient, TipSubscription
from lendcore.core.config import IndexerConfig, MarketSet
from lendcore.core.events import EventDecoder
from lendcore.core.handlers import EventHandlers
from lendcore.core.models import SyncCursor
from lendcore.core.severity import Severity, compute_protocol_severity
from lendcore.core.snapshot import SnapshotComputer
from lendcore.core.store import SQLIndexStore
from lendcore.core.types import RangeResult
from lendcore.utils.error_utils import OperatorError
from lendcore.utils.log import get_default_logger

_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)


class IndexerService:
    """
    Runs the block range processor for one chain and exposes operator operations.
    """

    def __init__(
        self,
        config: IndexerConfig,
        chain: ChainClient,
        store: SQLIndexStore,
    ):
        self.config = config
        self.chain = chain
        self.store = store
        self.computer = SnapshotComputer(chain, store)
        self.processor = BlockRangeProcessor(
            config, chain, store, EventHandlers(store, self.computer), EventDecoder()
        )

        self.markets: MarketSet = MarketSet()
        self._state_lock = threading.Lock()
        self._subscription: Optional[TipSubscription] = None
        self._started_at: Optional[pd.Timestamp] = None

    @property
    def running(self) -> bool:
        return self._subscription is not None

    def safe_head(self) -> int:
        """The current chain tip less the confirmation depth."""
        return self.config.safe_head(self.chain.current_height())

    def load_markets(self) -> MarketSet:
        """
        Load the active markets from the registry for this run.
        """
        self.markets = self.store.load_active_markets()
        return self.markets

    def _on_tip(self, height: int):
        safe_head = self.config.safe_head(height)
        self.processor.catch_up(safe_head, self.markets)

    def start(self) -> dict:
        """
        Start indexing: catch up to the safe tip, then follow the tip.

        :return: A status dict.
        """
        with self._state_lock:
            if self.running:
                _LOG.info("Indexer already running")
                return {"already_running": True}

            markets = self.load_markets()
            if len(markets) == 0:
                _LOG.warning("No active markets found. Seed the market registry first.")
                return {"error": "No active markets"}
            _LOG.info("Found %s active market(s)", len(markets))

            result = self.processor.catch_up(self.safe_head(), markets)
            _LOG.info(
                "Startup catch-up complete: %s committed, %s skipped",
                result.committed,
                len(result.skipped),
            )

            self._subscription = self.chain.subscribe_to_tip(
                self._on_tip, poll_interval=self.config.tip_poll_interval
            )
            self._started_at = pd.Timestamp.now(tz="UTC")
            _LOG.info("Indexer running")
            return {
                "started": True,
                "markets": [m.market_id for m in markets],
            }

    def stop(self) -> dict:
        """
        Stop following the tip. A range in flight runs to completion.

        :return: A status dict.
        """
        with self._state_lock:
            if not self.running:
                return {"already_stopped": True}
            self._subscription.stop()
            self._subscription = None
            uptime = pd.Timestamp.now(tz="UTC") - self._started_at
            self._started_at = None
            _LOG.info("Indexer stopped (uptime: %ss)", round(uptime.total_seconds()))
            return {"stopped": True, "uptime_ms": int(uptime.total_seconds() * 1000)}

    def status(self) -> dict:
        return {
            "running": self.running,
            "started_at": str(self._started_at) if self._started_at is not None else None,
            "active_markets": len(self.markets),
        }

    def current_cursor(self, chain_id: Optional[int] = None) -> Optional[SyncCursor]:
        """
        Return the cursor for a chain, or None if nothing has been processed.
        """
        if chain_id is None:
            chain_id = self.config.chain_id
        return self.store.get_cursor(chain_id)

    def _require_markets(self) -> MarketSet:
        if len(self.markets) == 0:
            raise OperatorError("No active markets loaded; start the indexer first")
        return self.markets

    def process_range(
        self, from_block: int, to_block: int, markets: Optional[MarketSet] = None
    ) -> RangeResult:
        """
        Process an explicit block range.

        :param from_block: The first height, inclusive.
        :param to_block: The last height, inclusive.
        :param markets: The markets to index; defaults to the loaded markets.
        :return: The range summary.
        """
        if markets is None:
            markets = self._require_markets()
        return self.processor.process_range(from_block, to_block, markets)

    def resync(self) -> RangeResult:
        """
        Replay from a reorg buffer below the cursor to the safe tip.
        Used to repair skipped blocks.

        :return: The range summary.
        """
        markets = self._require_markets()
        cursor = self.current_cursor()
        if cursor is not None:
            replay_from = max(
                cursor.last_processed_block - self.config.reorg_buffer,
                self.config.deployment_block,
            )
        else:
            replay_from = self.config.deployment_block
        safe_head = self.safe_head()
        _LOG.info("Resync: replaying blocks %s to %s", replay_from, safe_head)
        return self.processor.process_range(replay_from, safe_head, markets)

    def backfill(self, from_block: int, to_block: Union[int, str]) -> RangeResult:
        """
        Process a block range given by an operator.

        :param from_block: The first height; clamped to the deployment height.
        :param to_block: The last height, or "latest" for the safe tip.
        :return: The range summary.
        """
        markets = self._require_markets()
        if to_block == "latest":
            to_block = self.safe_head()
            _LOG.info("Resolved 'latest' to confirmed head %s", to_block)
        to_block = int(to_block)
        if from_block < self.config.deployment_block:
            _LOG.warning(
                "from_block %s is before the deployment block %s, clamping",
                from_block,
                self.config.deployment_block,
            )
            from_block = self.config.deployment_block
        return self.processor.process_range(from_block, to_block, markets)

    def reindex(self, confirm: bool = False) -> RangeResult:
        """
        Delete all derived state and the cursor, then replay from the deployment height.
        Destructive; the market registry is preserved.

        :param confirm: Must be True.
        :return: The range summary.
        """
        if not confirm:
            raise OperatorError("Full reindex is destructive and requires confirmation")
        markets = self._require_markets()
        with self.processor.lock:
            _LOG.warning("Full reindex: truncating derived tables")
            self.store.truncate_derived()
            safe_head = self.safe_head()
            _LOG.info(
                "Full reindex: replaying blocks %s to %s",
                self.config.deployment_block,
                safe_head,
            )
            return self.processor.process_range(
                self.config.deployment_block, safe_head, markets
            )

    def protocol_severity(self) -> Severity:
        """
        The worst overall severity across the latest snapshot of every active market.
        Falls back to the market registry when no markets are loaded for this run.
        """
        markets = self.markets if len(self.markets) else self.store.load_active_markets()
        latest = [self.store.latest_market_snapshot(m.market_id) for m in markets]
        return compute_protocol_severity(s.overall_severity for s in latest if s is not None)

    def health(self) -> dict:
        """
        Report database and node connectivity and indexing progress.
        """
        try:
            db_ok = self.store.ping()
        except Exception as e:  # pylint: disable=broad-except
            _LOG.error("Database health check failed: %s", e)
            db_ok = False
        try:
            rpc = self.chain.current_height()
        except Exception as e:  # pylint: disable=broad-except
            _LOG.error("RPC health check failed: %s", e)
            rpc = None
        cursor = self.current_cursor() if db_ok else None
        return {
            "status": "ok" if db_ok and rpc is not None else "degraded",
            "db": "connected" if db_ok else "error",
            "rpc": rpc if rpc is not None else "error",
            "last_indexed_block": cursor.last_processed_block if cursor else None,
            "stale": self.store.is_stale(self.config.chain_id) if db_ok else True,
            "severity": int(self.protocol_severity()) if db_ok else None,
        }
