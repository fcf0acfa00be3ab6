"""
Periodic jobs that run beside block processing.

Jobs only write append-only snapshots, so they may run concurrently
with the block processor without taking the cursor lock.
"""

import logging
import threading
from typing import Callable, List, Optional

import pandas as pd

from lendcore.core.config import MarketSet
from lendcore.core.snapshot import SnapshotComputer
from lendcore.core.store import SQLIndexStore, now_ms
from lendcore.utils.log import get_default_logger

_LOG = get_default_logger(__name__)
_LOG.setLevel(logging.INFO)

SNAPSHOT_INTERVAL_SECONDS = 60
HEALTH_FACTOR_RECHECK_INTERVAL_SECONDS = 600
DAILY_AGGREGATE_INTERVAL_SECONDS = 24 * 60 * 60


class SnapshotJobs:
    """
    The snapshot, health factor recheck and daily aggregate jobs.
    """

    def __init__(
        self, computer: SnapshotComputer, store: SQLIndexStore, markets: MarketSet
    ):
        self.computer = computer
        self.store = store
        self.markets = markets

    def snapshot_tick(self) -> int:
        """
        Take a market snapshot for every active market.
        A failure for one market does not stop the others.

        :return: The number of snapshots saved.
        """
        saved = 0
        for market in self.markets:
            try:
                self.computer.compute_market_snapshot(market)
                saved += 1
            except Exception as e:  # pylint: disable=broad-except
                _LOG.error("Snapshot failed for market %s: %s", market.market_id, e)
        _LOG.debug("Snapshot tick saved %s of %s markets", saved, len(self.markets))
        return saved

    def health_factor_recheck(
        self, window_seconds: int = HEALTH_FACTOR_RECHECK_INTERVAL_SECONDS
    ) -> int:
        """
        Recompute the positions of users with a recent position snapshot.

        :param window_seconds: How far back to look for active users.
        :return: The number of positions refreshed.
        """
        since = now_ms() - window_seconds * 1000
        refreshed = 0
        for user, market_id in self.store.recent_position_keys(since):
            market = self.markets.by_id(market_id)
            if market is None:
                continue
            try:
                self.computer.compute_user_position(user, market)
                refreshed += 1
            except Exception as e:  # pylint: disable=broad-except
                _LOG.error(
                    "Health factor recheck failed for %s in market %s: %s",
                    user,
                    market_id,
                    e,
                )
        _LOG.info("Health factor recheck refreshed %s position(s)", refreshed)
        return refreshed

    def daily_aggregate(self, window_seconds: int = DAILY_AGGREGATE_INTERVAL_SECONDS) -> List[dict]:
        """
        Summarize the last window of snapshots per market.

        :param window_seconds: The aggregation window.
        :return: One summary dict per market.
        """
        since = now_ms() - window_seconds * 1000
        summaries = []
        for market in self.markets:
            snapshots = self.store.market_snapshots_since(market.market_id, since)
            df = pd.DataFrame([s.model_dump() for s in snapshots])
            positions = [
                p for p in self.store.position_snapshots(market.market_id)
                if p.timestamp >= since
            ]
            summary = {
                "market_id": market.market_id,
                "snapshots": len(df),
                "peak_utilization": float(df["utilization_rate"].max()) if len(df) else 0.0,
                "avg_utilization": float(df["utilization_rate"].mean()) if len(df) else 0.0,
                "peak_tvl": float(df["total_supply"].max()) if len(df) else 0.0,
                "unique_users": len({p.user_address for p in positions}),
                "liquidations": self.store.liquidation_count_since(market.market_id, since),
            }
            _LOG.info("Daily aggregate: %s", summary)
            summaries.append(summary)
        return summaries


class PeriodicJob:
    """
    Runs a function at a fixed interval on a daemon thread.
    """

    def __init__(self, interval: float, fn: Callable[[], object], name: str):
        self.interval = interval
        self.fn = fn
        self.name = name
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _run(self):
        while not self._stopped.wait(self.interval):
            try:
                self.fn()
            except Exception as e:  # pylint: disable=broad-except
                _LOG.error("Job %s failed: %s", self.name, e)

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        _LOG.info("Started job %s every %ss", self.name, self.interval)

    def stop(self, timeout: Optional[float] = None):
        self._stopped.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
